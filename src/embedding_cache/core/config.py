"""
Configuration for the embedding cache and the embeddings provider.

Values come from environment variables (a local .env file is loaded first,
existing shell variables take precedence) or from a YAML file with
environment overrides applied on top.
"""

import logging
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml
from dotenv import load_dotenv

from .exceptions import ConfigError


logger = logging.getLogger(__name__)

DEFAULT_TABLE = "contract_embeddings"
DEFAULT_MATCH_FUNCTION = "search_similar_embeddings"
DEFAULT_RETENTION_DAYS = 30
DEFAULT_EMBEDDING_MODEL = "text-embedding-3-small"
DEFAULT_OPENAI_BASE_URL = "https://api.openai.com/v1"

SUPPORTED_BACKENDS = ("supabase", "sqlite")

_INT_FIELDS = ("retention_days", "timeout_seconds")

_DOTENV_LOADED = False


def _load_dotenv_once() -> None:
    """Load .env into the process environment without overriding it."""
    global _DOTENV_LOADED
    if _DOTENV_LOADED:
        return
    load_dotenv(override=False)
    _DOTENV_LOADED = True


def _first_non_empty_env(*keys: str) -> Optional[str]:
    """Return the first non-empty env var value for the given keys."""
    for key in keys:
        value = os.environ.get(key)
        if value is not None and value.strip() != "":
            return value
    return None


def _int_env(value: Any, name: str, default: int) -> int:
    if value is None:
        return default
    if isinstance(value, bool):
        raise ConfigError(f"{name} must be an integer, got {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{name} must be an integer, got {value!r}")


@dataclass
class CacheConfig:
    """
    Configuration for the embedding cache backend.

    Attributes:
        backend: Backend name ('supabase' or 'sqlite')
        supabase_url: Project URL, e.g. https://xyz.supabase.co
        supabase_key: Service role or anon key sent as apikey and bearer token
        table: Table holding cached embeddings
        match_function: Postgres function used for similarity search
        sqlite_path: Database file for the sqlite backend
        retention_days: Default age threshold for the retention sweep
        timeout_seconds: HTTP timeout for backend calls
    """
    backend: str = "supabase"
    supabase_url: Optional[str] = None
    supabase_key: Optional[str] = None
    table: str = DEFAULT_TABLE
    match_function: str = DEFAULT_MATCH_FUNCTION
    sqlite_path: str = "embedding_cache.db"
    retention_days: int = DEFAULT_RETENTION_DAYS
    timeout_seconds: int = 30

    def validate(self) -> None:
        """Raise ConfigError if the configuration cannot build a backend."""
        if self.backend not in SUPPORTED_BACKENDS:
            raise ConfigError(
                f"Unknown embedding cache backend: {self.backend!r} "
                f"(expected one of {', '.join(SUPPORTED_BACKENDS)})"
            )
        if self.backend == "supabase" and not (self.supabase_url and self.supabase_key):
            raise ConfigError(
                "Supabase backend requires SUPABASE_URL and "
                "SUPABASE_SERVICE_ROLE_KEY (or SUPABASE_ANON_KEY)"
            )
        if self.retention_days < 0:
            raise ConfigError("retention_days must be non-negative")

    @classmethod
    def from_env(cls) -> "CacheConfig":
        """Create config from environment variables."""
        _load_dotenv_once()
        config = cls()
        config.apply_env_overrides()
        return config

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CacheConfig":
        """
        Create config from a mapping, ignoring unknown keys.

        Raises:
            ConfigError: If data is not a mapping or an integer field is not
                an integer
        """
        if not isinstance(data, dict):
            raise ConfigError(
                f"Cache config must be a mapping, got {type(data).__name__}"
            )
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            logger.warning(f"Ignoring unknown cache config keys: {sorted(unknown)}")
        values = {k: v for k, v in data.items() if k in known}
        for name in _INT_FIELDS:
            if name in values:
                values[name] = _int_env(values[name], name, getattr(cls, name))
        return cls(**values)

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "CacheConfig":
        """
        Load config from a YAML file, then apply environment overrides.

        The file may hold the settings at the top level or under an
        ``embedding_cache`` key.
        """
        path = Path(path)
        if not path.exists():
            raise ConfigError(f"Config file not found: {path}")

        logger.info(f"Loading config from: {path}")
        with open(path, "r", encoding="utf-8") as f:
            try:
                data = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigError(f"Invalid YAML in {path}: {e}")

        if not isinstance(data, dict):
            raise ConfigError(f"Config file {path} must contain a mapping")
        section = data.get("embedding_cache", data)
        if not isinstance(section, dict):
            raise ConfigError(f"'embedding_cache' in {path} must be a mapping")

        _load_dotenv_once()
        config = cls.from_dict(section)
        config.apply_env_overrides()
        return config

    def apply_env_overrides(self) -> None:
        """Overwrite fields with any environment variables that are set."""
        self.backend = (_first_non_empty_env("EMBEDDING_CACHE_BACKEND") or self.backend).lower()
        self.supabase_url = _first_non_empty_env("SUPABASE_URL") or self.supabase_url
        self.supabase_key = _first_non_empty_env(
            "SUPABASE_SERVICE_ROLE_KEY",
            "SUPABASE_ANON_KEY",
        ) or self.supabase_key
        self.table = _first_non_empty_env("EMBEDDING_CACHE_TABLE") or self.table
        self.match_function = (
            _first_non_empty_env("EMBEDDING_CACHE_MATCH_FUNCTION") or self.match_function
        )
        self.sqlite_path = _first_non_empty_env("EMBEDDING_CACHE_SQLITE_PATH") or self.sqlite_path
        self.retention_days = _int_env(
            _first_non_empty_env("EMBEDDING_CACHE_RETENTION_DAYS"),
            "EMBEDDING_CACHE_RETENTION_DAYS",
            self.retention_days,
        )
        self.timeout_seconds = _int_env(
            _first_non_empty_env("EMBEDDING_CACHE_TIMEOUT"),
            "EMBEDDING_CACHE_TIMEOUT",
            self.timeout_seconds,
        )


@dataclass
class EmbeddingsConfig:
    """
    Configuration for the embeddings provider.

    Attributes:
        api_key: Provider API key
        model: Embedding model name
        base_url: Base URL for the OpenAI-compatible API
        timeout_seconds: Request timeout in seconds
    """
    api_key: Optional[str] = None
    model: str = DEFAULT_EMBEDDING_MODEL
    base_url: str = DEFAULT_OPENAI_BASE_URL
    timeout_seconds: int = 60

    @classmethod
    def from_env(cls) -> "EmbeddingsConfig":
        """Create config from environment variables."""
        _load_dotenv_once()
        return cls(
            api_key=_first_non_empty_env("OPENAI_API_KEY"),
            model=_first_non_empty_env("OPENAI_EMBEDDING_MODEL") or DEFAULT_EMBEDDING_MODEL,
            base_url=_first_non_empty_env("OPENAI_BASE_URL") or DEFAULT_OPENAI_BASE_URL,
            timeout_seconds=_int_env(
                _first_non_empty_env("OPENAI_TIMEOUT"),
                "OPENAI_TIMEOUT",
                60,
            ),
        )
