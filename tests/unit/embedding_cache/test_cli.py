"""
Unit tests for the embedding-cache CLI.
"""

import json
import logging
from datetime import datetime, timedelta, timezone

import pytest

from embedding_cache.backends import SqliteBackend
from embedding_cache.cli import build_parser, main
from embedding_cache.contracts.models import EmbeddedChunk
from embedding_cache.core import logging as cache_logging
from embedding_cache.core.exceptions import BackendError
from embedding_cache.store import EmbeddingCache


@pytest.fixture(autouse=True)
def reset_logging(monkeypatch):
    """Skip .env loading and drop handlers installed by main()."""
    monkeypatch.setattr("embedding_cache.core.config._DOTENV_LOADED", True)
    yield
    for name in cache_logging.PACKAGE_LOGGERS:
        handler = cache_logging._HANDLERS.pop(name, None)
        package_logger = logging.getLogger(name)
        if handler is not None:
            package_logger.removeHandler(handler)
        package_logger.setLevel(logging.NOTSET)


@pytest.fixture
def sqlite_env(tmp_path, monkeypatch):
    """Point the CLI at a file-backed SQLite cache."""
    path = tmp_path / "cache.db"
    for key in ("EMBEDDING_CACHE_RETENTION_DAYS", "EMBEDDING_CACHE_TABLE", "EMBEDDING_CACHE_TIMEOUT"):
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("EMBEDDING_CACHE_BACKEND", "sqlite")
    monkeypatch.setenv("EMBEDDING_CACHE_SQLITE_PATH", str(path))
    return path


def _seed(path, text, section, importance, age_days):
    """Store one chunk stamped age_days in the past."""
    stamp = datetime.now(timezone.utc) - timedelta(days=age_days)
    with SqliteBackend(path, clock=lambda: stamp) as backend:
        EmbeddingCache(backend).store([EmbeddedChunk(text, section, importance, [1.0, 0.0])])


class TestParser:
    """Tests for argument parsing."""

    def test_sweep_days(self):
        args = build_parser().parse_args(["sweep", "--days", "7"])
        assert args.command == "sweep"
        assert args.days == 7

    def test_sweep_default_days(self):
        assert build_parser().parse_args(["sweep"]).days is None

    def test_stats_user(self):
        args = build_parser().parse_args(["--json-logs", "stats", "--user-id", "u-1"])
        assert args.command == "stats"
        assert args.user_id == "u-1"
        assert args.json_logs is True


class TestMain:
    """Tests for the CLI entry point."""

    def test_no_command(self):
        assert main([]) == 1

    def test_stats(self, sqlite_env, capsys):
        """Test stats prints the public JSON fields."""
        _seed(sqlite_env, "A", "intro", 1.0, 0)
        _seed(sqlite_env, "B", "terms", 3.0, 0)

        assert main(["stats"]) == 0

        output = json.loads(capsys.readouterr().out)
        assert output["command"] == "stats"
        assert output["totalEmbeddings"] == 2
        assert output["sectionsCount"] == 2
        assert output["averageImportance"] == 2.0

    def test_sweep(self, sqlite_env, capsys):
        """Test sweep deletes rows past the threshold."""
        _seed(sqlite_env, "old", "s", 1.0, 10)
        _seed(sqlite_env, "new", "s", 1.0, 1)

        assert main(["sweep", "--days", "5"]) == 0

        assert json.loads(capsys.readouterr().out) == {
            "command": "sweep",
            "success": True,
            "max_age_days": 5,
            "deleted": 1,
        }
        with SqliteBackend(sqlite_env) as backend:
            assert backend.count() == 1

    def test_sweep_uses_retention(self, sqlite_env, monkeypatch, capsys):
        """Test sweep without --days uses the configured retention."""
        monkeypatch.setenv("EMBEDDING_CACHE_RETENTION_DAYS", "3")
        _seed(sqlite_env, "old", "s", 1.0, 4)

        assert main(["sweep"]) == 0

        assert json.loads(capsys.readouterr().out)["max_age_days"] == 3
        with SqliteBackend(sqlite_env) as backend:
            assert backend.count() == 0

    def test_sweep_negative_days(self, sqlite_env):
        assert main(["sweep", "--days", "-1"]) == 1

    def test_config_error(self, monkeypatch):
        """Test missing Supabase credentials exit with status 1."""
        for key in ("EMBEDDING_CACHE_BACKEND", "SUPABASE_URL", "SUPABASE_SERVICE_ROLE_KEY", "SUPABASE_ANON_KEY"):
            monkeypatch.delenv(key, raising=False)

        assert main(["stats"]) == 1

    def test_yaml_config(self, tmp_path, monkeypatch):
        """Test --config reads a YAML file."""
        for key in ("EMBEDDING_CACHE_BACKEND", "EMBEDDING_CACHE_SQLITE_PATH", "EMBEDDING_CACHE_RETENTION_DAYS"):
            monkeypatch.delenv(key, raising=False)
        db_path = tmp_path / "cache.db"
        config_path = tmp_path / "config.yaml"
        config_path.write_text(
            "embedding_cache:\n"
            "  backend: sqlite\n"
            f"  sqlite_path: '{db_path}'\n"
            "  retention_days: 3\n"
        )
        _seed(db_path, "old", "s", 1.0, 4)

        assert main(["--config", str(config_path), "sweep"]) == 0

        with SqliteBackend(db_path) as backend:
            assert backend.count() == 0

    def test_missing_config_file(self, tmp_path):
        assert main(["--config", str(tmp_path / "missing.yaml"), "stats"]) == 1

    def test_sweep_backend_failure(self, sqlite_env, monkeypatch, capsys):
        """Test a failed delete exits 1 and reports the error."""
        def fail(self, cutoff):
            raise BackendError("database is locked", backend="sqlite")

        monkeypatch.setattr(SqliteBackend, "delete_older_than", fail)

        assert main(["sweep", "--days", "5"]) == 1

        output = json.loads(capsys.readouterr().out)
        assert output["success"] is False
        assert "database is locked" in output["error"]

    def test_empty_config_section(self, tmp_path):
        """Test an embedding_cache key without settings exits 1."""
        config_path = tmp_path / "config.yaml"
        config_path.write_text("embedding_cache:\n")

        assert main(["--config", str(config_path), "stats"]) == 1

    def test_non_integer_retention_in_config(self, tmp_path, monkeypatch):
        monkeypatch.delenv("EMBEDDING_CACHE_RETENTION_DAYS", raising=False)
        config_path = tmp_path / "config.yaml"
        config_path.write_text(
            "embedding_cache:\n"
            "  backend: sqlite\n"
            f"  sqlite_path: '{tmp_path / 'cache.db'}'\n"
            "  retention_days: thirty\n"
        )

        assert main(["--config", str(config_path), "stats"]) == 1
