"""
Backend interface for embedding cache persistence.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence

from ..contracts.models import SimilarSection, StoredEmbedding


Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class EmbeddingBackend(ABC):
    """
    Abstract base class for embedding cache backends.

    A backend owns one table of StoredEmbedding rows keyed by content_hash
    and exposes the four operations the cache needs: upsert, batched
    lookup by key, similarity search, and delete by age. Implementations
    raise BackendError for every failure; callers decide how to degrade.
    """

    name = "backend"

    def __init__(self, clock: Optional[Clock] = None):
        self._clock = clock or utc_now

    def now(self) -> datetime:
        """Timestamp used for created_at on writes."""
        return self._clock()

    @abstractmethod
    def upsert_embeddings(self, rows: Sequence[StoredEmbedding]) -> None:
        """
        Insert rows, replacing any existing row with the same content_hash.

        Args:
            rows: Rows with distinct content hashes
        """
        pass

    @abstractmethod
    def fetch_by_hashes(self, hashes: Sequence[str]) -> List[StoredEmbedding]:
        """
        Fetch every stored row whose content_hash is in the given set.

        Args:
            hashes: Content hashes to look up in one batched query (long
                lists may be split into bounded batches)

        Returns:
            Matching rows in no particular order
        """
        pass

    @abstractmethod
    def match_embeddings(
        self,
        query_embedding: Sequence[float],
        threshold: float,
        limit: int,
        user_id: Optional[str] = None,
    ) -> List[SimilarSection]:
        """
        Find stored rows similar to a query vector.

        Args:
            query_embedding: Query vector
            threshold: Minimum similarity to include
            limit: Maximum number of rows
            user_id: Restrict to rows owned by this user when given

        Returns:
            Matches ordered by descending similarity
        """
        pass

    @abstractmethod
    def delete_older_than(self, cutoff: datetime) -> Optional[int]:
        """
        Delete rows with created_at strictly before cutoff.

        Returns:
            Number of rows deleted, or None if the backend does not report it
        """
        pass

    @abstractmethod
    def fetch_stat_rows(self, user_id: Optional[str] = None) -> List[Dict[str, Any]]:
        """
        Fetch section, importance_score and chunk_text for every row.

        Args:
            user_id: Restrict to rows owned by this user when given
        """
        pass

    def close(self) -> None:
        """Release connections held by the backend."""
        pass

    def __enter__(self):
        return self

    def __exit__(self, *args) -> None:
        self.close()
