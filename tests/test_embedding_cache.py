"""
Tests for CachedEmbeddingProvider.
"""

import pytest
import pytest_asyncio

from memvault.core.errors import BatchEmbeddingError, DisposedError
from memvault.vector.embeddings import CachedEmbeddingProvider

from conftest import CountingProvider


@pytest_asyncio.fixture
async def cached():
    inner = CountingProvider()
    provider = CachedEmbeddingProvider(inner)
    await provider.initialize()
    yield provider
    await provider.dispose()


@pytest.mark.asyncio
async def test_initialize_delegates():
    inner = CountingProvider()
    provider = CachedEmbeddingProvider(inner)
    assert not provider.is_ready()
    await provider.initialize()
    assert inner.is_ready()
    assert provider.is_ready()
    assert provider.dimension == inner.dimension
    assert provider.provider_name == "counting"


@pytest.mark.asyncio
async def test_second_embed_hits_cache(cached):
    """The wrapped provider is called once per distinct text."""
    first = await cached.embed("x")
    second = await cached.embed("x")

    assert cached.provider.calls == ["x"]
    assert second.embedding == first.embedding
    assert second.latency_ms == 0
    assert cached.cache_hits == 1
    assert cached.cache_misses == 1
    assert cached.cache_hit_rate == 0.5


@pytest.mark.asyncio
async def test_hit_rate_zero_without_calls(cached):
    assert cached.cache_hit_rate == 0.0


@pytest.mark.asyncio
async def test_key_is_exact_text(cached):
    await cached.embed("Dark mode")
    await cached.embed("dark mode")
    await cached.embed("dark mode ")
    assert len(cached.provider.calls) == 3


@pytest.mark.asyncio
async def test_cached_vector_is_protected_from_callers(cached):
    first = await cached.embed("x")
    first.embedding[0] = 99.0
    second = await cached.embed("x")
    assert second.embedding[0] != 99.0


@pytest.mark.asyncio
async def test_batch_only_embeds_misses(cached):
    await cached.embed("b")
    cached.provider.calls.clear()

    batch = await cached.embed_batch(["a", "b", "c"])

    assert sorted(cached.provider.calls) == ["a", "c"]
    assert len(batch.embeddings) == 3
    for text, embedding in zip(["a", "b", "c"], batch.embeddings):
        assert embedding == (await cached.embed(text)).embedding


@pytest.mark.asyncio
async def test_batch_all_hits_skips_provider(cached):
    await cached.embed_batch(["a", "b"])
    cached.provider.calls.clear()

    batch = await cached.embed_batch(["b", "a"])
    assert cached.provider.calls == []
    assert batch.latency_ms == 0.0
    assert len(batch.embeddings) == 2


@pytest.mark.asyncio
async def test_batch_collapses_duplicate_misses(cached):
    batch = await cached.embed_batch(["dup", "other", "dup"])
    assert sorted(cached.provider.calls) == ["dup", "other"]
    assert batch.embeddings[0] == batch.embeddings[2]
    assert cached.cache_misses == 3


@pytest.mark.asyncio
async def test_batch_matches_single(cached):
    texts = ["one", "two", "three"]
    batch = await cached.embed_batch(texts)
    cached.clear_cache()
    for text, embedding in zip(texts, batch.embeddings):
        assert (await cached.embed(text)).embedding == embedding


@pytest.mark.asyncio
async def test_partial_batch_failure_caches_successes():
    inner = CountingProvider(fail_on=["bad"])
    provider = CachedEmbeddingProvider(inner)
    await provider.initialize()

    with pytest.raises(BatchEmbeddingError) as exc_info:
        await provider.embed_batch(["good", "bad", "fine"])

    assert list(exc_info.value.failures) == [1]
    assert provider.cache_size == 2

    inner.calls.clear()
    await provider.embed("good")
    await provider.embed("fine")
    assert inner.calls == []


@pytest.mark.asyncio
async def test_clear_cache_resets(cached):
    await cached.embed("x")
    cached.clear_cache()
    assert cached.cache_size == 0
    assert cached.cache_hits == 0
    assert cached.cache_misses == 0

    await cached.embed("x")
    assert cached.provider.calls == ["x", "x"]


@pytest.mark.asyncio
async def test_dispose_clears_and_disposes_inner():
    inner = CountingProvider()
    provider = CachedEmbeddingProvider(inner)
    await provider.initialize()
    await provider.embed("x")

    await provider.dispose()
    assert provider.cache_size == 0
    assert not inner.is_ready()
    with pytest.raises(DisposedError):
        await provider.embed("x")


@pytest.mark.asyncio
async def test_metrics_include_cache_counters(cached):
    await cached.embed("x")
    await cached.embed("x")
    metrics = cached.get_metrics()
    assert metrics["cached"] is True
    assert metrics["cache_size"] == 1
    assert metrics["cache_hits"] == 1
    assert metrics["cache_misses"] == 1
    assert metrics["cache_hit_rate"] == 0.5
