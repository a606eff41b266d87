"""
Embedding providers, the provider registry and the entity stores.
"""

# Package initialization for vector module
from .embeddings import CachedEmbeddingProvider, IEmbeddingProvider, MockEmbeddingProvider, run_bounded
from .index import IVectorStore, InMemoryVectorStore, rank_by_similarity
from .registry import EmbeddingRegistry
from .similarity import cosine_similarity, euclidean_distance, k_nearest, normalize
from .types import BatchEmbeddingResult, EmbeddingConfig, EmbeddingOptions, EmbeddingResult, ProviderState

__all__ = [
    'IEmbeddingProvider',
    'MockEmbeddingProvider',
    'CachedEmbeddingProvider',
    'run_bounded',
    'IVectorStore',
    'InMemoryVectorStore',
    'rank_by_similarity',
    'EmbeddingRegistry',
    'cosine_similarity',
    'euclidean_distance',
    'k_nearest',
    'normalize',
    'EmbeddingResult',
    'BatchEmbeddingResult',
    'EmbeddingOptions',
    'EmbeddingConfig',
    'ProviderState',
]
