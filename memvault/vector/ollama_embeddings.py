"""
Embeddings from a local Ollama daemon.
"""

from typing import List

import httpx
import ollama

from ..core.errors import ProviderUnavailableError
from ..util.logging import get_logger
from .embeddings import IEmbeddingProvider
from .types import BatchEmbeddingResult, EmbeddingOptions, EmbeddingResult

logger = get_logger(__name__)


class OllamaEmbeddingProvider(IEmbeddingProvider):
    """
    Embedding provider backed by ``ollama.AsyncClient.embed``.

    initialize() sends one sample embedding, which both checks that the daemon
    and model are reachable and detects the vector dimension.
    """

    provider_name = "ollama"
    default_model = "nomic-embed-text"

    def __init__(self, options: EmbeddingOptions = None):
        super().__init__(options)
        self.host = self.options.provider_options.get("host")
        self._client = None

    async def _initialize(self) -> None:
        client_kwargs = {"host": self.host}
        if self.options.timeout:
            client_kwargs["timeout"] = self.options.timeout
        self._client = ollama.AsyncClient(**client_kwargs)

        try:
            sample = await self._request(["dimension check"])
        except ProviderUnavailableError:
            self._client = None
            raise
        if sample:
            self._dimension = len(sample[0])

    async def _request(self, texts: List[str]) -> List[List[float]]:
        try:
            response = await self._client.embed(model=self.model_name, input=texts)
        except (ollama.ResponseError, httpx.HTTPError, ConnectionError, OSError) as e:
            logger.log_embedding_operation(self.provider_name, "request", len(texts),
                                           status="error", details={"error": type(e).__name__})
            raise ProviderUnavailableError(f"Ollama embed request failed: {e}") from e

        return [list(embedding) for embedding in response["embeddings"]]

    async def _embed(self, text: str) -> EmbeddingResult:
        embeddings = await self._request([text])
        return EmbeddingResult(embedding=embeddings[0], model=self.model_name)

    async def _embed_batch(self, texts: List[str]) -> BatchEmbeddingResult:
        embeddings = await self._request(texts)
        return BatchEmbeddingResult(embeddings=embeddings, model=self.model_name)

    async def _dispose(self) -> None:
        self._client = None
