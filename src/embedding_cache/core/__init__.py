"""
Core subpackage for the embedding cache.

Contains configuration, exceptions, and logging utilities.
"""

from .config import CacheConfig, EmbeddingsConfig
from .exceptions import (
    EmbeddingCacheError,
    BackendError,
    EmbeddingProviderError,
    ConfigError,
)

__all__ = [
    # Config
    "CacheConfig",
    "EmbeddingsConfig",
    # Exceptions
    "EmbeddingCacheError",
    "BackendError",
    "EmbeddingProviderError",
    "ConfigError",
]
