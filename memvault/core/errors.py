"""
Error taxonomy shared by the embedding providers, the stores and the services.

Lookup misses are not errors: getters return None, listings return [] and
deletes return False or 0.
"""

from typing import Dict, List, Optional


class MemVaultError(Exception):
    """Base class for all memvault errors."""
    pass


class ConfigurationError(MemVaultError):
    """Missing credential, binary or invalid setting. Not retried."""
    pass


class NotInitializedError(MemVaultError):
    """An embedding provider was used before initialize() completed."""
    pass


class DisposedError(MemVaultError):
    """An embedding provider was used after dispose()."""
    pass


class DimensionMismatchError(MemVaultError, ValueError):
    """Two vectors, or a vector and a store, disagree on dimension."""

    def __init__(self, expected: int, actual: int):
        self.expected = expected
        self.actual = actual
        super().__init__(f"Vector dimension {actual} does not match expected dimension {expected}")


class ProviderUnavailableError(MemVaultError):
    """Transient failure reported by a remote or local embedding backend.

    Callers may retry with backoff; the cache layer never retries on its own.
    """
    pass


class BatchEmbeddingError(ProviderUnavailableError):
    """One or more items of a batch failed.

    Items that succeeded are available in ``partial`` (None at failed
    positions) so callers can keep them.
    """

    def __init__(self, failures: Dict[int, BaseException], partial: List[Optional[list]]):
        self.failures = failures
        self.partial = partial
        first_index = min(failures)
        super().__init__(
            f"{len(failures)} of {len(partial)} batch items failed "
            f"(first failure at index {first_index}: {failures[first_index]})"
        )
