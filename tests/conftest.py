"""
Shared test fixtures and configuration for pytest.
"""

import logging
import sys
from datetime import datetime, timezone
from pathlib import Path

import pytest

# Add src directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))


logger = logging.getLogger(__name__)


# ============================================================================
# Helpers
# ============================================================================

class FakeClock:
    """Settable clock for created_at stamps and sweep cutoffs."""

    def __init__(self, now: datetime):
        self.current = now

    def __call__(self) -> datetime:
        return self.current

    def set(self, now: datetime) -> None:
        self.current = now


# ============================================================================
# Pytest hooks
# ============================================================================

def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests (no external dependencies)")
    config.addinivalue_line("markers", "integration: Integration tests (requires Supabase)")
    config.addinivalue_line("markers", "slow: Tests that take a long time to run")


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def fixed_now() -> datetime:
    """A fixed 'now' for time-dependent tests."""
    return datetime(2024, 6, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def clock(fixed_now) -> FakeClock:
    """Settable clock starting at fixed_now."""
    return FakeClock(fixed_now)


@pytest.fixture
def sqlite_backend(clock):
    """In-memory SQLite backend driven by the fake clock."""
    from embedding_cache.backends.sqlite_backend import SqliteBackend

    backend = SqliteBackend(":memory:", clock=clock)
    yield backend
    backend.close()
