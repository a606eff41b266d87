"""
Runtime configuration for memvault.

Every setting is read from the environment (and a local .env file) once at
import time. Each variable is also accepted with a MEMVAULT_ prefix, which
wins when both are set. Builder functions read the module attributes at
call time so tests can patch them.
"""

import os
from typing import List, Optional

from dotenv import load_dotenv

load_dotenv()


def _env(name: str, default: Optional[str] = None) -> Optional[str]:
    """Read NAME, preferring MEMVAULT_NAME when present."""
    value = os.getenv(f"MEMVAULT_{name}")
    if value is None:
        value = os.getenv(name)
    return value if value is not None else default


def _env_bool(name: str, default: str = "false") -> bool:
    return _env(name, default).lower() == "true"


def _env_int(name: str) -> Optional[int]:
    value = _env(name)
    return int(value) if value else None


def _env_float(name: str) -> Optional[float]:
    value = _env(name)
    return float(value) if value else None


# Storage backend
DB_BACKEND = _env("DB_BACKEND", "memory")  # memory|lancedb
LANCEDB_URI = _env("LANCEDB_URI", "./data/lancedb")
LANCEDB_API_KEY = _env("LANCEDB_API_KEY")

# Embeddings
EMBEDDING_PROVIDER = _env("EMBEDDING_PROVIDER", "mock")  # mock|openai|sentence-transformers|ollama|llama
EMBEDDING_MODEL = _env("EMBEDDING_MODEL")
EMBEDDING_DIMENSIONS = _env_int("EMBEDDING_DIMENSIONS")  # None lets the provider choose
EMBED_MAX_CONCURRENCY = _env_int("EMBED_MAX_CONCURRENCY") or 4
EMBED_TIMEOUT_SEC = _env_float("EMBED_TIMEOUT_SEC")
EMBED_CACHE_ENABLED = _env_bool("EMBED_CACHE_ENABLED", "true")

# OpenAI
OPENAI_API_KEY = _env("OPENAI_API_KEY")
OPENAI_EMBEDDING_MODEL = _env("OPENAI_EMBEDDING_MODEL", "text-embedding-3-small")
OPENAI_MODEL = _env("OPENAI_MODEL", "gpt-4o-mini")

# Ollama
OLLAMA_HOST = _env("OLLAMA_HOST")
OLLAMA_MODEL = _env("OLLAMA_MODEL", "llama3.2:latest")
OLLAMA_EMBED_MODEL = _env("OLLAMA_EMBED_MODEL", "nomic-embed-text")

# llama.cpp
LLAMA_BINARY = _env("LLAMA_BINARY", "./llama-embedding")
LLAMA_MODEL_PATH = _env("LLAMA_MODEL_PATH", "./models/nomic-embed-text-v1.5.f16.gguf")
LLAMA_THREADS = _env_int("LLAMA_THREADS") or 4

# Language model collaborators (PII stripping, result filtering)
LLM_PROVIDER = _env("LLM_PROVIDER", "openai" if OPENAI_API_KEY else "mock")  # mock|ollama|openai

# Policy defaults
STRIP_PII_DEFAULT = _env_bool("STRIP_PII_DEFAULT")
FILTER_WITH_LLM_DEFAULT = _env_bool("FILTER_WITH_LLM_DEFAULT")

DEBUG = _env_bool("DEBUG")

VERSION = "0.1.0"

VALID_DB_BACKENDS = ["memory", "lancedb"]
VALID_EMBEDDING_PROVIDERS = ["mock", "openai", "sentence-transformers", "ollama", "llama"]
VALID_LLM_PROVIDERS = ["mock", "ollama", "openai"]


def get_embedding_config():
    """Build the EmbeddingConfig for the configured provider."""
    from ..vector.types import EmbeddingConfig, EmbeddingOptions

    provider = EMBEDDING_PROVIDER
    options = EmbeddingOptions(
        dimension=EMBEDDING_DIMENSIONS,
        timeout=EMBED_TIMEOUT_SEC,
        max_concurrency=EMBED_MAX_CONCURRENCY,
        cache=EMBED_CACHE_ENABLED,
    )

    if provider == "openai":
        options.model = OPENAI_EMBEDDING_MODEL
        options.api_key = OPENAI_API_KEY
    elif provider == "sentence-transformers":
        options.model = EMBEDDING_MODEL
    elif provider == "ollama":
        options.model = OLLAMA_EMBED_MODEL
        if OLLAMA_HOST:
            options.provider_options["host"] = OLLAMA_HOST
    elif provider == "llama":
        options.model = LLAMA_MODEL_PATH
        options.provider_options["llama_binary"] = LLAMA_BINARY
        options.provider_options["threads"] = LLAMA_THREADS

    return EmbeddingConfig(provider=provider, options=options)


def get_vector_store(dimension: Optional[int] = None):
    """Get the configured entity store implementation."""
    from .errors import ConfigurationError

    if DB_BACKEND == "memory":
        from ..vector.index import InMemoryVectorStore
        return InMemoryVectorStore(dimension=dimension)
    elif DB_BACKEND == "lancedb":
        from ..vector.lance_store import LanceDBVectorStore
        return LanceDBVectorStore(uri=LANCEDB_URI, dimension=dimension or 384, api_key=LANCEDB_API_KEY)

    raise ConfigurationError(f"Unknown DB_BACKEND: {DB_BACKEND}. Supported: {VALID_DB_BACKENDS}")


def debug_enabled() -> bool:
    """Check if debug mode is enabled."""
    return _env_bool("DEBUG")


def validate_config() -> List[str]:
    """Validate configuration and return any issues."""
    issues = []

    if DB_BACKEND not in VALID_DB_BACKENDS:
        issues.append(f"Invalid DB_BACKEND: {DB_BACKEND}")

    if EMBEDDING_PROVIDER not in VALID_EMBEDDING_PROVIDERS:
        issues.append(f"Invalid EMBEDDING_PROVIDER: {EMBEDDING_PROVIDER}")

    if EMBEDDING_PROVIDER == "openai" and not OPENAI_API_KEY:
        issues.append("EMBEDDING_PROVIDER=openai requires OPENAI_API_KEY")

    if LLM_PROVIDER not in VALID_LLM_PROVIDERS:
        issues.append(f"Invalid LLM_PROVIDER: {LLM_PROVIDER}")

    if LLM_PROVIDER == "openai" and not OPENAI_API_KEY:
        issues.append("LLM_PROVIDER=openai requires OPENAI_API_KEY")

    if EMBEDDING_DIMENSIONS is not None and EMBEDDING_DIMENSIONS < 1:
        issues.append("EMBEDDING_DIMENSIONS must be >= 1")

    if EMBED_MAX_CONCURRENCY < 1:
        issues.append("EMBED_MAX_CONCURRENCY must be >= 1")

    if EMBED_TIMEOUT_SEC is not None and EMBED_TIMEOUT_SEC <= 0:
        issues.append("EMBED_TIMEOUT_SEC must be > 0")

    return issues
