"""
memvault: scoped text memories with pluggable embeddings and similarity search.
"""

from .api.client import MemoryClient
from .core.config import VERSION as __version__
from .core.memory_service import MemoryService

__all__ = ['MemoryClient', 'MemoryService', '__version__']
