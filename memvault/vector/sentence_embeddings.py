"""
Local sentence-transformers embedding provider.

The model is loaded inside initialize(), never at import, so choosing
another provider does not pull in torch.
"""

import asyncio
from typing import List

from ..core.errors import ConfigurationError, ProviderUnavailableError
from .embeddings import IEmbeddingProvider
from .types import BatchEmbeddingResult, EmbeddingOptions, EmbeddingResult


class SentenceTransformerEmbeddingProvider(IEmbeddingProvider):
    """Sentence transformers embedding provider using pre-trained models.

    Encoding runs in a worker thread so the event loop is not blocked.
    """

    provider_name = "sentence-transformers"
    default_model = "all-MiniLM-L6-v2"

    def __init__(self, options: EmbeddingOptions = None):
        super().__init__(options)
        self._model = None

    async def _initialize(self) -> None:
        try:
            from sentence_transformers import SentenceTransformer
        except ImportError as e:
            raise ConfigurationError("sentence-transformers is not installed") from e

        device = self.options.provider_options.get("device")
        try:
            self._model = await asyncio.to_thread(SentenceTransformer, self.model_name, device=device)
        except OSError as e:
            raise ConfigurationError(f"Could not load sentence-transformers model {self.model_name}: {e}") from e

        model_dimension = self._model.get_sentence_embedding_dimension()
        if model_dimension:
            self._dimension = model_dimension

    def _encode(self, texts):
        try:
            return self._model.encode(texts, convert_to_tensor=False)
        except RuntimeError as e:
            raise ProviderUnavailableError(f"sentence-transformers encode failed: {e}") from e

    async def _embed(self, text: str) -> EmbeddingResult:
        embedding = await asyncio.to_thread(self._encode, text)
        return EmbeddingResult(embedding=embedding.tolist(), model=self.model_name)

    async def _embed_batch(self, texts: List[str]) -> BatchEmbeddingResult:
        embeddings = await asyncio.to_thread(self._encode, texts)
        return BatchEmbeddingResult(
            embeddings=[embedding.tolist() for embedding in embeddings],
            model=self.model_name,
        )

    async def _dispose(self) -> None:
        self._model = None
