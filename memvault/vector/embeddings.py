"""
Embedding provider abstraction.

Every provider goes through the same lifecycle:
UNINITIALIZED -> INITIALIZING -> READY -> DISPOSED. Subclasses implement the
underscore hooks; the public coroutines enforce the lifecycle and logging.
"""

import asyncio
import math
import time
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from ..core.errors import BatchEmbeddingError, DisposedError, NotInitializedError
from ..util.logging import get_logger
from .types import BatchEmbeddingResult, EmbeddingOptions, EmbeddingResult, ProviderState

logger = get_logger(__name__)

DEFAULT_MAX_CONCURRENCY = 4


async def run_bounded(func: Callable[[Any], Awaitable[Any]], items: Sequence[Any],
                      max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
                      timeout: Optional[float] = None) -> List[Any]:
    """
    Apply ``func`` to every item with at most ``max_concurrency`` calls in flight.

    Workers pull (index, item) pairs from a shared queue and write each
    result at its original index. All workers finish before this returns.
    A failing or timed out item does not stop the others; once the queue is
    drained any failures are raised together as BatchEmbeddingError with the
    successful results attached.
    """
    results: List[Any] = [None] * len(items)
    if not items:
        return results

    failures: Dict[int, BaseException] = {}
    queue: asyncio.Queue = asyncio.Queue()
    for index, item in enumerate(items):
        queue.put_nowait((index, item))

    async def worker():
        while True:
            try:
                index, item = queue.get_nowait()
            except asyncio.QueueEmpty:
                return
            try:
                if timeout is not None:
                    results[index] = await asyncio.wait_for(func(item), timeout)
                else:
                    results[index] = await func(item)
            except Exception as e:
                failures[index] = e

    worker_count = min(max(max_concurrency, 1), len(items))
    await asyncio.gather(*(worker() for _ in range(worker_count)))

    if failures:
        raise BatchEmbeddingError(failures, results)
    return results


class IEmbeddingProvider(ABC):
    """Abstract interface for embedding providers."""

    provider_name = "base"
    default_dimension = 384
    default_model: Optional[str] = None

    def __init__(self, options: Optional[EmbeddingOptions] = None):
        self.options = options or EmbeddingOptions()
        self.model_name = self.options.model or self.default_model
        self._dimension = self.options.dimension or self.default_dimension
        self._state = ProviderState.UNINITIALIZED

    @property
    def state(self) -> ProviderState:
        return self._state

    @property
    def dimension(self) -> int:
        """Get the dimension of the embedding vectors."""
        return self._dimension

    def get_dimension(self) -> int:
        return self.dimension

    @property
    def max_concurrency(self) -> int:
        return self.options.max_concurrency or DEFAULT_MAX_CONCURRENCY

    def is_ready(self) -> bool:
        return self._state == ProviderState.READY

    async def initialize(self) -> None:
        """Load models or connect to the backend. A no-op when already ready."""
        if self._state == ProviderState.READY:
            return
        if self._state == ProviderState.DISPOSED:
            raise DisposedError(f"{self.provider_name} provider has been disposed")

        self._state = ProviderState.INITIALIZING
        start_time = time.perf_counter()
        try:
            await self._initialize()
        except Exception:
            self._state = ProviderState.UNINITIALIZED
            logger.log_embedding_operation(self.provider_name, "initialize", 0, status="error")
            raise

        self._state = ProviderState.READY
        duration_ms = (time.perf_counter() - start_time) * 1000
        logger.log_embedding_operation(self.provider_name, "initialize", 0, duration_ms=duration_ms,
                                       details={"model": self.model_name, "dimension": self.dimension})

    async def embed(self, text: str) -> EmbeddingResult:
        """Generate the embedding for one text."""
        self._ensure_ready()
        start_time = time.perf_counter()
        result = await self._embed(text)
        if result.latency_ms is None:
            result.latency_ms = (time.perf_counter() - start_time) * 1000
        logger.debug(f"embed provider={self.provider_name} latency_ms={result.latency_ms:.2f}")
        return result

    async def embed_batch(self, texts: List[str]) -> BatchEmbeddingResult:
        """Generate embeddings for several texts, returned in input order."""
        self._ensure_ready()
        if not texts:
            return BatchEmbeddingResult(embeddings=[], latency_ms=0.0, model=self.model_name)

        start_time = time.perf_counter()
        try:
            result = await self._embed_batch(list(texts))
        except Exception:
            logger.log_embedding_operation(self.provider_name, "embed_batch", len(texts), status="error")
            raise

        duration_ms = (time.perf_counter() - start_time) * 1000
        if result.latency_ms is None:
            result.latency_ms = duration_ms
        logger.log_embedding_operation(self.provider_name, "embed_batch", len(texts), duration_ms=duration_ms)
        return result

    async def dispose(self) -> None:
        """Release backend resources. Later calls raise DisposedError."""
        if self._state == ProviderState.DISPOSED:
            return
        try:
            await self._dispose()
        finally:
            self._state = ProviderState.DISPOSED
        logger.log_embedding_operation(self.provider_name, "dispose", 0)

    def get_metrics(self) -> Dict[str, Any]:
        return {
            "provider": self.provider_name,
            "model": self.model_name,
            "state": self._state.value,
            "dimension": self.dimension,
        }

    def _ensure_ready(self) -> None:
        if self._state == ProviderState.DISPOSED:
            raise DisposedError(f"{self.provider_name} provider has been disposed")
        if self._state != ProviderState.READY:
            raise NotInitializedError(
                f"{self.provider_name} provider is not initialized. Call initialize() first."
            )

    @abstractmethod
    async def _initialize(self) -> None:
        pass

    @abstractmethod
    async def _embed(self, text: str) -> EmbeddingResult:
        pass

    async def _embed_batch(self, texts: List[str]) -> BatchEmbeddingResult:
        """Fallback batching: independent single calls through the bounded pool."""
        try:
            results = await run_bounded(self._embed, texts, self.max_concurrency, self.options.timeout)
        except BatchEmbeddingError as e:
            partial = [r.embedding if r is not None else None for r in e.partial]
            raise BatchEmbeddingError(e.failures, partial) from e

        return BatchEmbeddingResult(
            embeddings=[r.embedding for r in results],
            model=self.model_name,
            total_tokens=sum(r.tokens or 0 for r in results),
        )

    async def _dispose(self) -> None:
        pass


class MockEmbeddingProvider(IEmbeddingProvider):
    """Deterministic embedding provider for tests and as the default fallback.

    The vector is a pure function of the text: the sum of its character
    codes seeds a sine-based generator, so the same text yields the same
    vector across calls, instances and processes.
    """

    provider_name = "mock"
    default_model = "mock"

    async def _initialize(self) -> None:
        pass

    def embed_text(self, text: str) -> List[float]:
        """Synchronous form of the mock embedding."""
        seed = sum(ord(char) for char in text)
        vector = []
        for i in range(self.dimension):
            value = math.sin(seed + i) * 10000
            value = value - math.floor(value)
            vector.append(value * 2 - 1)  # map [0, 1) onto [-1, 1)
        return vector

    async def _embed(self, text: str) -> EmbeddingResult:
        return EmbeddingResult(
            embedding=self.embed_text(text),
            model=self.model_name,
            tokens=len(text.split(" ")),
        )

    async def _embed_batch(self, texts: List[str]) -> BatchEmbeddingResult:
        embeddings = [self.embed_text(text) for text in texts]
        return BatchEmbeddingResult(
            embeddings=embeddings,
            model=self.model_name,
            total_tokens=sum(len(text.split(" ")) for text in texts),
        )


class CachedEmbeddingProvider(IEmbeddingProvider):
    """
    Memoizes another provider by exact input text.

    The cache is unbounded and only emptied by clear_cache() or dispose().
    Hits return a copy of the stored vector, and the wrapped provider never
    sees the same text twice while it stays cached.
    """

    def __init__(self, provider: IEmbeddingProvider):
        super().__init__(provider.options)
        self.provider = provider
        self.provider_name = provider.provider_name
        self.model_name = provider.model_name
        self._dimension = provider.dimension
        self._cache: Dict[str, List[float]] = {}
        self.cache_hits = 0
        self.cache_misses = 0

    @property
    def dimension(self) -> int:
        return self.provider.dimension

    @property
    def cache_size(self) -> int:
        return len(self._cache)

    @property
    def cache_hit_rate(self) -> float:
        total = self.cache_hits + self.cache_misses
        return self.cache_hits / total if total > 0 else 0.0

    def is_ready(self) -> bool:
        return self._state == ProviderState.READY and self.provider.is_ready()

    async def _initialize(self) -> None:
        await self.provider.initialize()

    async def embed(self, text: str) -> EmbeddingResult:
        self._ensure_ready()

        cached = self._cache.get(text)
        if cached is not None:
            self.cache_hits += 1
            return EmbeddingResult(embedding=list(cached), latency_ms=0.0, model=self.model_name)

        self.cache_misses += 1
        result = await self.provider.embed(text)
        self._cache[text] = list(result.embedding)
        return result

    async def embed_batch(self, texts: List[str]) -> BatchEmbeddingResult:
        self._ensure_ready()

        results: List[Optional[List[float]]] = [None] * len(texts)
        uncached_texts: List[str] = []
        uncached_indices: Dict[str, List[int]] = {}

        for index, text in enumerate(texts):
            cached = self._cache.get(text)
            if cached is not None:
                self.cache_hits += 1
                results[index] = list(cached)
                continue

            self.cache_misses += 1
            if text not in uncached_indices:
                uncached_texts.append(text)
                uncached_indices[text] = []
            uncached_indices[text].append(index)

        if not uncached_texts:
            return BatchEmbeddingResult(embeddings=results, latency_ms=0.0, model=self.model_name)

        try:
            uncached_result = await self.provider.embed_batch(uncached_texts)
        except BatchEmbeddingError as e:
            # Keep whatever the batch managed to compute
            for text, embedding in zip(uncached_texts, e.partial):
                if embedding is not None:
                    self._cache[text] = list(embedding)
            raise

        for text, embedding in zip(uncached_texts, uncached_result.embeddings):
            self._cache[text] = list(embedding)
            for index in uncached_indices[text]:
                results[index] = list(embedding)

        return BatchEmbeddingResult(
            embeddings=results,
            latency_ms=uncached_result.latency_ms,
            model=uncached_result.model,
            total_tokens=uncached_result.total_tokens,
        )

    async def _embed(self, text: str) -> EmbeddingResult:
        return await self.provider.embed(text)

    def clear_cache(self) -> None:
        """Drop every cached embedding and reset the counters."""
        self._cache.clear()
        self.cache_hits = 0
        self.cache_misses = 0

    async def _dispose(self) -> None:
        logger.log_cache_stats(self.provider_name, self.cache_hits, self.cache_misses, self.cache_size)
        try:
            await self.provider.dispose()
        finally:
            self.clear_cache()

    def get_metrics(self) -> Dict[str, Any]:
        metrics = self.provider.get_metrics()
        metrics.update({
            "cached": True,
            "cache_size": self.cache_size,
            "cache_hits": self.cache_hits,
            "cache_misses": self.cache_misses,
            "cache_hit_rate": self.cache_hit_rate,
        })
        return metrics
