"""
SQLite backend for the embedding cache.

Suitable for local development and tests. Mirrors the Supabase table shape;
similarity search is computed in Python with cosine similarity instead of
a pgvector function.
"""

import json
import logging
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

from ..contracts.models import (
    SimilarSection,
    StoredEmbedding,
    format_timestamp,
    parse_timestamp,
    parse_vector,
)
from ..core.config import DEFAULT_TABLE
from ..core.exceptions import BackendError
from ..similarity import cosine_similarity
from .base import Clock, EmbeddingBackend


logger = logging.getLogger(__name__)

# Stay under SQLITE_MAX_VARIABLE_NUMBER on older builds
_MAX_PARAMS = 900


class SqliteBackend(EmbeddingBackend):
    """
    SQLite implementation of the embedding cache backend.

    Embeddings are stored as JSON text and created_at as fixed-width UTC
    ISO text, so age comparisons can be done with plain string comparison.
    """

    name = "sqlite"

    def __init__(
        self,
        db_path: Union[str, Path] = ":memory:",
        table: str = DEFAULT_TABLE,
        auto_init: bool = True,
        clock: Optional[Clock] = None,
    ):
        """
        Initialize the SQLite backend.

        Args:
            db_path: Path to the database file, or ':memory:'
            table: Embedding table name
            auto_init: Whether to create the table automatically
            clock: Optional clock for created_at stamps
        """
        super().__init__(clock=clock)
        self.db_path = str(db_path)
        self.table = table
        self.conn = None
        self._connect()

        if auto_init:
            self._init_schema()

    def _connect(self) -> None:
        """Establish database connection."""
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        logger.debug(f"Connected to SQLite embedding cache: {self.db_path}")

    def _init_schema(self) -> None:
        """Initialize database schema."""
        with self._guard("initialize schema"):
            self.conn.execute(f"""
                CREATE TABLE IF NOT EXISTS {self.table} (
                    content_hash TEXT PRIMARY KEY,
                    chunk_text TEXT NOT NULL,
                    section TEXT NOT NULL,
                    importance_score REAL NOT NULL,
                    embedding TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    user_id TEXT
                )
            """)
            self.conn.execute(f"""
                CREATE INDEX IF NOT EXISTS idx_{self.table}_created_at
                ON {self.table}(created_at)
            """)
            self.conn.execute(f"""
                CREATE INDEX IF NOT EXISTS idx_{self.table}_user_id
                ON {self.table}(user_id)
            """)
            self.conn.commit()

    # =========================================================================
    # Operations
    # =========================================================================

    def upsert_embeddings(self, rows: Sequence[StoredEmbedding]) -> None:
        if not rows:
            return

        with self._guard("upsert embeddings"):
            self.conn.executemany(
                f"""
                INSERT INTO {self.table}
                    (content_hash, chunk_text, section, importance_score,
                     embedding, created_at, user_id)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(content_hash) DO UPDATE SET
                    chunk_text = excluded.chunk_text,
                    section = excluded.section,
                    importance_score = excluded.importance_score,
                    embedding = excluded.embedding,
                    created_at = excluded.created_at,
                    user_id = COALESCE(excluded.user_id, {self.table}.user_id)
                """,
                [
                    (
                        row.content_hash,
                        row.chunk_text,
                        row.section,
                        row.importance_score,
                        json.dumps(row.embedding),
                        format_timestamp(row.created_at),
                        row.user_id,
                    )
                    for row in rows
                ],
            )
            self.conn.commit()

    def fetch_by_hashes(self, hashes: Sequence[str]) -> List[StoredEmbedding]:
        if not hashes:
            return []

        results = []
        with self._guard("fetch embeddings"):
            for start in range(0, len(hashes), _MAX_PARAMS):
                batch = list(hashes[start:start + _MAX_PARAMS])
                placeholders = ", ".join("?" * len(batch))
                cursor = self.conn.execute(
                    f"""
                    SELECT content_hash, chunk_text, section, importance_score,
                           embedding, created_at, user_id
                    FROM {self.table}
                    WHERE content_hash IN ({placeholders})
                    """,
                    batch,
                )
                results.extend(self._row_to_embedding(row) for row in cursor.fetchall())
        return results

    def match_embeddings(
        self,
        query_embedding: Sequence[float],
        threshold: float,
        limit: int,
        user_id: Optional[str] = None,
    ) -> List[SimilarSection]:
        query = f"""
            SELECT content_hash, chunk_text, section, importance_score, embedding
            FROM {self.table}
        """
        params: List[Any] = []
        if user_id:
            query += " WHERE user_id = ?"
            params.append(user_id)

        scored = []
        with self._guard("search embeddings"):
            for row in self.conn.execute(query, params).fetchall():
                try:
                    score = cosine_similarity(query_embedding, parse_vector(row["embedding"]))
                except ValueError as e:
                    logger.warning(f"Skipping row {row['content_hash'][:12]}: {e}")
                    continue
                if score < threshold:
                    continue
                scored.append((score, row))

        # Highest similarity first, content hash for deterministic ties
        scored.sort(key=lambda item: (-item[0], item[1]["content_hash"]))

        return [
            SimilarSection(
                text=row["chunk_text"],
                section=row["section"],
                similarity=score,
                importance=row["importance_score"],
            )
            for score, row in scored[:max(limit, 0)]
        ]

    def delete_older_than(self, cutoff: datetime) -> Optional[int]:
        with self._guard("delete old embeddings"):
            cursor = self.conn.execute(
                f"DELETE FROM {self.table} WHERE created_at < ?",
                (format_timestamp(cutoff),),
            )
            self.conn.commit()
            return cursor.rowcount

    def fetch_stat_rows(self, user_id: Optional[str] = None) -> List[Dict[str, Any]]:
        query = f"SELECT section, importance_score, chunk_text FROM {self.table}"
        params: List[Any] = []
        if user_id:
            query += " WHERE user_id = ?"
            params.append(user_id)

        with self._guard("read stats"):
            return [dict(row) for row in self.conn.execute(query, params).fetchall()]

    def count(self) -> int:
        """Number of cached rows."""
        with self._guard("count embeddings"):
            return self.conn.execute(f"SELECT COUNT(*) FROM {self.table}").fetchone()[0]

    def close(self) -> None:
        """Close database connection."""
        if self.conn:
            self.conn.close()
            self.conn = None

    # =========================================================================
    # Helpers
    # =========================================================================

    def _row_to_embedding(self, row: sqlite3.Row) -> StoredEmbedding:
        try:
            return StoredEmbedding(
                content_hash=row["content_hash"],
                chunk_text=row["chunk_text"],
                section=row["section"],
                importance_score=row["importance_score"],
                embedding=parse_vector(row["embedding"]),
                created_at=parse_timestamp(row["created_at"]),
                user_id=row["user_id"],
            )
        except (TypeError, ValueError) as e:
            raise BackendError(
                f"Malformed embedding row {row['content_hash']}: {e}",
                backend=self.name,
            )

    def _guard(self, action: str) -> "_SqliteErrorGuard":
        if self.conn is None:
            raise BackendError("SQLite backend is closed", backend=self.name)
        return _SqliteErrorGuard(self, action)


class _SqliteErrorGuard:
    """Translates sqlite3 errors raised inside the block into BackendError."""

    def __init__(self, backend: SqliteBackend, action: str):
        self.backend = backend
        self.action = action

    def __enter__(self) -> None:
        return None

    def __exit__(self, exc_type, exc, tb) -> bool:
        if exc_type is not None and issubclass(exc_type, sqlite3.Error):
            self.backend.conn.rollback()
            raise BackendError(
                f"SQLite failed to {self.action}: {exc}",
                backend=self.backend.name,
            ) from exc
        return False
