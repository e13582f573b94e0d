"""
Persistence backends for the embedding cache.

The default backend is Supabase (SupabaseBackend), talking to PostgREST.
SQLite (SqliteBackend) is for local development and tests.

To select backend, set the EMBEDDING_CACHE_BACKEND environment variable:
    - EMBEDDING_CACHE_BACKEND=supabase (default)
    - EMBEDDING_CACHE_BACKEND=sqlite
"""

import logging
from typing import Optional

from ..core.config import CacheConfig
from .base import EmbeddingBackend
from .sqlite_backend import SqliteBackend
from .supabase_backend import SupabaseBackend


logger = logging.getLogger(__name__)


def create_backend(config: Optional[CacheConfig] = None) -> EmbeddingBackend:
    """
    Build the backend named by the configuration.

    Intended to be called once at process start; the returned backend is
    then passed to every EmbeddingCache that needs it.

    Args:
        config: Cache configuration (read from the environment if omitted)

    Returns:
        EmbeddingBackend instance

    Raises:
        ConfigError: If the backend is unknown or credentials are missing
    """
    config = config or CacheConfig.from_env()
    config.validate()

    if config.backend == "sqlite":
        logger.info(f"Using SQLite embedding cache at {config.sqlite_path}")
        return SqliteBackend(db_path=config.sqlite_path, table=config.table)

    logger.info(f"Using Supabase embedding cache table {config.table}")
    return SupabaseBackend(
        url=config.supabase_url,
        api_key=config.supabase_key,
        table=config.table,
        match_function=config.match_function,
        timeout=config.timeout_seconds,
    )


__all__ = [
    "EmbeddingBackend",
    "SqliteBackend",
    "SupabaseBackend",
    "create_backend",
]
