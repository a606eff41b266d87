"""
Shared fixtures: fresh stores, ready providers and a counting test double.
"""

import asyncio

import pytest
import pytest_asyncio

from memvault.core.memory_service import MemoryService
from memvault.vector.embeddings import IEmbeddingProvider, MockEmbeddingProvider
from memvault.vector.index import InMemoryVectorStore
from memvault.vector.types import EmbeddingOptions, EmbeddingResult


class CountingProvider(IEmbeddingProvider):
    """Mock-backed provider that records calls and peak concurrency.

    It has no native batching, so embed_batch goes through the bounded pool.
    """

    provider_name = "counting"

    def __init__(self, options=None, delay: float = 0.0, fail_on=None):
        super().__init__(options or EmbeddingOptions(dimension=8))
        self.delay = delay
        self.fail_on = set(fail_on or [])
        self.calls = []
        self.in_flight = 0
        self.max_in_flight = 0
        self._mock = MockEmbeddingProvider(EmbeddingOptions(dimension=self.dimension))

    async def _initialize(self):
        pass

    async def _embed(self, text):
        self.calls.append(text)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delay)
            if text in self.fail_on:
                raise RuntimeError(f"boom: {text}")
            return EmbeddingResult(embedding=self._mock.embed_text(text), model="counting", tokens=1)
        finally:
            self.in_flight -= 1


class KeywordProvider(IEmbeddingProvider):
    """Bag-of-words provider: each lowercase word adds 1 to one hashed slot.

    Vectors are non-negative, so two texts sharing a word always have a
    cosine similarity above zero.
    """

    provider_name = "keyword"

    async def _initialize(self):
        pass

    async def _embed(self, text):
        vector = [0.0] * self.dimension
        for word in text.lower().split():
            vector[sum(ord(char) for char in word) % self.dimension] += 1.0
        return EmbeddingResult(embedding=vector, model="keyword")


@pytest.fixture
def store():
    return InMemoryVectorStore(dimension=384)


@pytest_asyncio.fixture
async def mock_provider():
    provider = MockEmbeddingProvider()
    await provider.initialize()
    yield provider
    await provider.dispose()


@pytest_asyncio.fixture
async def counting_provider():
    provider = CountingProvider()
    await provider.initialize()
    yield provider
    await provider.dispose()


@pytest.fixture
def service(store, mock_provider):
    return MemoryService(store=store, embeddings=mock_provider)
