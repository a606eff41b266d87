"""
Embedding provider registry.

The registry is the single place providers are constructed. It owns the
instances it creates, reuses a ready instance when the same configuration
is requested again, and disposes all of them on dispose_all().
"""

import asyncio
from typing import Dict, List, Optional

from ..core.errors import ConfigurationError, MemVaultError, ProviderUnavailableError
from ..util.logging import get_logger
from .embeddings import CachedEmbeddingProvider, IEmbeddingProvider, MockEmbeddingProvider
from .llama_embeddings import LlamaCppEmbeddingProvider
from .ollama_embeddings import OllamaEmbeddingProvider
from .openai_embeddings import OpenAIEmbeddingProvider
from .sentence_embeddings import SentenceTransformerEmbeddingProvider
from .types import EmbeddingConfig, EmbeddingOptions

logger = get_logger(__name__)

PROVIDERS = {
    "mock": MockEmbeddingProvider,
    "openai": OpenAIEmbeddingProvider,
    "sentence-transformers": SentenceTransformerEmbeddingProvider,
    "ollama": OllamaEmbeddingProvider,
    "llama": LlamaCppEmbeddingProvider,
}


class EmbeddingRegistry:
    """
    Registry for embedding provider instances.

    Instances are keyed by ``provider-<options json>``; two configurations
    with equal options share one instance for as long as it stays ready.
    """

    def __init__(self):
        self.instances: Dict[str, IEmbeddingProvider] = {}

    def _build(self, config: EmbeddingConfig) -> IEmbeddingProvider:
        provider_class = PROVIDERS.get(config.provider)
        if provider_class is None:
            raise ConfigurationError(
                f"Unknown embedding provider: {config.provider}. Supported: {list(PROVIDERS)}"
            )

        provider = provider_class(config.options)
        if config.provider != "mock" and config.options.cache is not False:
            provider = CachedEmbeddingProvider(provider)
        return provider

    async def create(self, config: EmbeddingConfig) -> IEmbeddingProvider:
        """
        Get a ready provider for the configuration, reusing a cached one.

        Args:
            config: Provider kind and options

        Returns:
            An initialized provider owned by this registry
        """
        key = config.cache_key()
        provider = self.instances.get(key)
        if provider is not None and provider.is_ready():
            return provider

        provider = self._build(config)
        await provider.initialize()
        self.instances[key] = provider
        logger.log_operation("registry.create", "success",
                             details={"provider": config.provider, "instances": len(self.instances)})
        return provider

    async def create_new(self, config: EmbeddingConfig) -> IEmbeddingProvider:
        """Build and initialize a provider without caching it. The caller owns it."""
        provider = self._build(config)
        await provider.initialize()
        return provider

    async def create_with_fallback(self, config: EmbeddingConfig) -> IEmbeddingProvider:
        """Like create(), but falls back to the mock provider when the configured one is unusable."""
        try:
            return await self.create(config)
        except (ConfigurationError, ProviderUnavailableError) as e:
            logger.log_operation("registry.create", "fallback",
                                 details={"provider": config.provider, "fallback": "mock",
                                          "error": type(e).__name__})
            logger.warning(f"Embedding provider '{config.provider}' unavailable ({e}); using mock embeddings")

        mock_options = EmbeddingOptions(
            dimension=config.options.dimension,
            max_concurrency=config.options.max_concurrency,
        )
        return await self.create(EmbeddingConfig(provider="mock", options=mock_options))

    async def dispose_all(self) -> None:
        """Dispose every cached instance and clear the registry. Safe when empty."""
        providers = list(self.instances.values())
        self.instances.clear()
        if providers:
            await asyncio.gather(*(provider.dispose() for provider in providers))
        logger.log_operation("registry.dispose_all", "success", details={"count": len(providers)})

    @staticmethod
    def available_providers() -> List[str]:
        return list(PROVIDERS)

    async def is_provider_available(self, provider: str,
                                    options: Optional[EmbeddingOptions] = None) -> bool:
        """Try to bring up a throwaway instance of the provider."""
        try:
            instance = await self.create_new(EmbeddingConfig(provider=provider, options=options or EmbeddingOptions()))
        except MemVaultError:
            return False

        ready = instance.is_ready()
        await instance.dispose()
        return ready
