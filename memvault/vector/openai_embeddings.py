"""
OpenAI embeddings API provider.
"""

from typing import List

import openai
from openai import AsyncOpenAI

from ..core.errors import ConfigurationError, ProviderUnavailableError
from ..util.logging import get_logger
from .embeddings import IEmbeddingProvider
from .types import BatchEmbeddingResult, EmbeddingOptions, EmbeddingResult

logger = get_logger(__name__)

# Native output size per model; `dimensions` is only sent when it differs
MODEL_DIMENSIONS = {
    "text-embedding-3-small": 1536,
    "text-embedding-3-large": 3072,
    "text-embedding-ada-002": 1536,
}

# Inputs the embeddings endpoint accepts per request
DEFAULT_MAX_BATCH_SIZE = 2048


class OpenAIEmbeddingProvider(IEmbeddingProvider):
    """Remote embeddings through openai.AsyncOpenAI.

    A batch is sent as one request per ``max_batch_size`` texts.
    """

    provider_name = "openai"
    default_model = "text-embedding-3-small"

    def __init__(self, options: EmbeddingOptions = None):
        super().__init__(options)
        if not self.options.api_key:
            raise ConfigurationError("OpenAI API key required (set OPENAI_API_KEY)")

        self.native_dimension = MODEL_DIMENSIONS.get(self.model_name)
        if self.options.dimension:
            self._dimension = self.options.dimension
        elif self.native_dimension:
            self._dimension = self.native_dimension
        self.max_batch_size = self.options.max_batch_size or DEFAULT_MAX_BATCH_SIZE
        self._client = None

    async def _initialize(self) -> None:
        client_kwargs = {
            "api_key": self.options.api_key,
            "max_retries": self.options.provider_options.get("max_retries", 3),
        }
        if self.options.timeout:
            client_kwargs["timeout"] = self.options.timeout
        if self.options.provider_options.get("base_url"):
            client_kwargs["base_url"] = self.options.provider_options["base_url"]

        self._client = AsyncOpenAI(**client_kwargs)

    def _request_kwargs(self, texts) -> dict:
        kwargs = {"model": self.model_name, "input": texts}
        if self.dimension != self.native_dimension:
            kwargs["dimensions"] = self.dimension
        return kwargs

    async def _create(self, texts):
        try:
            return await self._client.embeddings.create(**self._request_kwargs(texts))
        except openai.APIError as e:
            logger.log_embedding_operation(self.provider_name, "request", 1 if isinstance(texts, str) else len(texts),
                                           status="error", details={"error": type(e).__name__})
            raise ProviderUnavailableError(f"OpenAI embeddings request failed: {e}") from e

    async def _embed(self, text: str) -> EmbeddingResult:
        response = await self._create(text)
        usage = getattr(response, "usage", None)
        return EmbeddingResult(
            embedding=list(response.data[0].embedding),
            model=self.model_name,
            tokens=usage.total_tokens if usage else None,
        )

    async def _embed_batch(self, texts: List[str]) -> BatchEmbeddingResult:
        embeddings: List[List[float]] = []
        total_tokens = None
        for start in range(0, len(texts), self.max_batch_size):
            response = await self._create(texts[start:start + self.max_batch_size])
            embeddings.extend(list(d.embedding) for d in sorted(response.data, key=lambda d: d.index))
            usage = getattr(response, "usage", None)
            if usage:
                total_tokens = (total_tokens or 0) + usage.total_tokens

        return BatchEmbeddingResult(embeddings=embeddings, model=self.model_name, total_tokens=total_tokens)

    async def _dispose(self) -> None:
        if self._client is not None:
            await self._client.close()
        self._client = None
