"""
Value types shared by the embedding providers and the provider registry.
"""

import json
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class ProviderState(str, Enum):
    """Lifecycle of an embedding provider instance."""
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"
    DISPOSED = "disposed"


@dataclass
class EmbeddingResult:
    """A single embedding with optional call details."""

    embedding: List[float]
    """The embedding vector"""

    latency_ms: Optional[float] = None
    """Wall time spent producing it; 0 for cache hits"""

    model: Optional[str] = None
    """Model that produced it"""

    tokens: Optional[int] = None
    """Token count, when the backend reports one"""


@dataclass
class BatchEmbeddingResult:
    """Embeddings for a batch, in input order."""

    embeddings: List[List[float]]
    latency_ms: Optional[float] = None
    model: Optional[str] = None
    total_tokens: Optional[int] = None


@dataclass
class EmbeddingOptions:
    """Provider options. Unset fields fall back to per-provider defaults."""

    model: Optional[str] = None
    dimension: Optional[int] = None
    max_batch_size: Optional[int] = None
    timeout: Optional[float] = None
    api_key: Optional[str] = None
    max_concurrency: int = 4
    cache: Optional[bool] = None
    provider_options: Dict[str, Any] = field(default_factory=dict)

    def serialize(self) -> str:
        """Stable JSON form, used as part of the registry cache key."""
        return json.dumps(asdict(self), sort_keys=True, default=str)


@dataclass
class EmbeddingConfig:
    """Which provider to build and how."""

    provider: str
    options: EmbeddingOptions = field(default_factory=EmbeddingOptions)

    def cache_key(self) -> str:
        return f"{self.provider}-{self.options.serialize()}"
