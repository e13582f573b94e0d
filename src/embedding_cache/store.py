"""
Embedding Cache - content-addressed reuse of chunk embeddings.

Callers chunk a document, ask the cache which chunks already have an
embedding, compute embeddings only for the missing ones, then store those.
Identity is the SHA256 of a chunk's full text, so identical text anywhere
in any document is a cache hit.

The cache is a performance path only. Every public operation catches
backend failures, logs them, and returns a degraded result (everything
missing, no matches, zero stats, nothing stored) instead of raising.
"""

import logging
from datetime import timedelta
from typing import Dict, List, Optional, Sequence

from .backends.base import Clock, EmbeddingBackend
from .contracts.models import (
    CachePartition,
    ContractChunk,
    EmbeddedChunk,
    EmbeddingStats,
    SearchOutcome,
    SweepOutcome,
    SimilarSection,
    StoredEmbedding,
    compute_content_hash,
)
from .core.config import DEFAULT_RETENTION_DAYS
from .core.logging import LogContext


logger = logging.getLogger(__name__)

BYTES_PER_MB = 1024 * 1024


class EmbeddingCache:
    """
    Embedding cache over an injected backend.

    The backend is created once per process (see
    embedding_cache.backends.create_backend) and shared by every cache
    instance; this class holds no other state.

    Example:
        >>> cache = EmbeddingCache(SqliteBackend(":memory:"))
        >>> result = cache.partition(chunks)
        >>> new = [c.with_embedding(v) for c, v in zip(result.missing, vectors)]
        >>> cache.store(new, user_id="user-1")
    """

    def __init__(
        self,
        backend: EmbeddingBackend,
        retention_days: int = DEFAULT_RETENTION_DAYS,
        clock: Optional[Clock] = None,
    ):
        """
        Initialize the cache.

        Args:
            backend: Persistence backend
            retention_days: Default age threshold for sweep()
            clock: Clock for the sweep cutoff (defaults to the backend clock)
        """
        self.backend = backend
        self.retention_days = retention_days
        self._clock = clock or backend.now

    # =========================================================================
    # Lookup / store
    # =========================================================================

    def partition(self, chunks: Sequence[ContractChunk]) -> CachePartition:
        """
        Split chunks into those with a cached embedding and those without.

        All hashes are looked up in one backend query. A cached chunk keeps
        the importance passed in, not the stored one. Input order and
        duplicates are preserved. If the lookup fails every chunk is
        reported missing.

        Args:
            chunks: Chunks to look up

        Returns:
            CachePartition with cached and missing chunks
        """
        chunks = list(chunks)
        if not chunks:
            return CachePartition()

        hashes = [compute_content_hash(chunk.text) for chunk in chunks]
        unique_hashes = list(dict.fromkeys(hashes))

        with LogContext(operation="partition"):
            try:
                rows = self.backend.fetch_by_hashes(unique_hashes)
            except Exception as e:
                logger.error(f"Error retrieving cached embeddings: {e}")
                return CachePartition(cached=[], missing=chunks)

            stored: Dict[str, List[float]] = {row.content_hash: row.embedding for row in rows}

            result = CachePartition()
            for chunk, content_hash in zip(chunks, hashes):
                embedding = stored.get(content_hash)
                if embedding is not None:
                    result.cached.append(chunk.with_embedding(embedding))
                else:
                    result.missing.append(chunk)

            logger.info(
                f"Found {result.hit_count} cached, {result.miss_count} missing embeddings"
            )
            return result

    def store(self, chunks: Sequence[EmbeddedChunk], user_id: Optional[str] = None) -> None:
        """
        Persist embeddings, replacing rows with the same content hash.

        The hash is taken over the full text; only the first 1000
        characters are kept as chunk_text. When one batch holds the same
        text twice, the later chunk wins. Failures are logged, never raised.

        Args:
            chunks: Chunks with their embeddings
            user_id: Optional owner tag for the rows
        """
        if not chunks:
            return

        with LogContext(operation="store", user_id=user_id):
            try:
                created_at = self.backend.now()
                rows_by_hash: Dict[str, StoredEmbedding] = {}
                for chunk in chunks:
                    row = StoredEmbedding.from_chunk(chunk, user_id=user_id, created_at=created_at)
                    rows_by_hash[row.content_hash] = row

                rows = list(rows_by_hash.values())
                self.backend.upsert_embeddings(rows)
            except Exception as e:
                logger.error(f"Error storing embeddings: {e}")
                return

            if len(rows) < len(chunks):
                logger.debug(f"Collapsed {len(chunks) - len(rows)} duplicate chunks before upsert")
            logger.info(f"Stored {len(rows)} embeddings")

    # =========================================================================
    # Search
    # =========================================================================

    def search(
        self,
        query_embedding: Sequence[float],
        limit: int = 10,
        min_similarity: float = 0.7,
        user_id: Optional[str] = None,
    ) -> List[SimilarSection]:
        """
        Find cached sections similar to a query vector.

        Ordering is whatever the backend's similarity search returns
        (descending similarity). Returns an empty list both when nothing
        matches and when the backend fails; use search_with_status() to
        tell the two apart.

        Args:
            query_embedding: Query vector
            limit: Maximum number of results
            min_similarity: Minimum similarity in [0, 1]
            user_id: Restrict to one owner when given

        Returns:
            List of SimilarSection
        """
        return self.search_with_status(
            query_embedding,
            limit=limit,
            min_similarity=min_similarity,
            user_id=user_id,
        ).sections

    def search_with_status(
        self,
        query_embedding: Sequence[float],
        limit: int = 10,
        min_similarity: float = 0.7,
        user_id: Optional[str] = None,
    ) -> SearchOutcome:
        """Like search(), but reports whether the backend call succeeded."""
        with LogContext(operation="search", user_id=user_id):
            try:
                sections = self.backend.match_embeddings(
                    query_embedding,
                    threshold=min_similarity,
                    limit=limit,
                    user_id=user_id,
                )
            except Exception as e:
                logger.error(f"Error searching similar sections: {e}")
                return SearchOutcome(success=False, sections=[], error_message=str(e))

            logger.debug(f"Similarity search returned {len(sections)} sections")
            return SearchOutcome(success=True, sections=list(sections))

    # =========================================================================
    # Maintenance
    # =========================================================================

    def sweep(self, max_age_days: Optional[int] = None) -> None:
        """
        Delete cached rows older than the given age.

        Not scheduled here; run it from cron or a queue consumer (see the
        `embedding-cache sweep` command). Repeated runs are no-ops until
        more rows age out.

        Args:
            max_age_days: Age threshold in days (defaults to retention_days)

        Raises:
            ValueError: If max_age_days is negative
        """
        self.sweep_with_status(max_age_days)

    def sweep_with_status(self, max_age_days: Optional[int] = None) -> SweepOutcome:
        """Like sweep(), but reports whether the backend delete succeeded."""
        days = self.retention_days if max_age_days is None else max_age_days
        if days < 0:
            raise ValueError(f"max_age_days must be non-negative, got {days}")

        cutoff = self._clock() - timedelta(days=days)

        with LogContext(operation="sweep"):
            try:
                deleted = self.backend.delete_older_than(cutoff)
            except Exception as e:
                logger.error(f"Error cleaning up old embeddings: {e}")
                return SweepOutcome(success=False, max_age_days=days, error_message=str(e))

            if deleted is None:
                logger.info(f"Cleaned up embeddings older than {cutoff.isoformat()}")
            else:
                logger.info(f"Cleaned up {deleted} embeddings older than {cutoff.isoformat()}")
            return SweepOutcome(success=True, max_age_days=days, deleted=deleted)

    def stats(self, user_id: Optional[str] = None) -> EmbeddingStats:
        """
        Summarize cache occupancy.

        storage_used_mb is the total chunk_text length in MB; vector storage
        is not counted.

        Args:
            user_id: Restrict to one owner when given

        Returns:
            EmbeddingStats (all zeros on failure)
        """
        with LogContext(operation="stats", user_id=user_id):
            try:
                rows = self.backend.fetch_stat_rows(user_id)

                total = len(rows)
                sections = {row.get("section") for row in rows}
                total_importance = sum(float(row.get("importance_score") or 0.0) for row in rows)
                storage_chars = sum(len(row.get("chunk_text") or "") for row in rows)
            except Exception as e:
                logger.error(f"Error getting embedding stats: {e}")
                return EmbeddingStats.empty()

            return EmbeddingStats(
                total_embeddings=total,
                sections_count=len(sections),
                average_importance=total_importance / (total or 1),
                storage_used_mb=storage_chars / BYTES_PER_MB,
            )
