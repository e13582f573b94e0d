"""
Embedding Cache Data Models

Record types for the content-addressed embedding cache. One persisted row
(StoredEmbedding) maps to one row of the `contract_embeddings` table:

- content_hash: SHA256 of the chunk's full text (unique key)
- chunk_text: first 1000 characters of the chunk, for display only
- section, importance_score: caller-supplied, carried through
- embedding: vector computed by an external embedding API
- created_at: set by the persistence layer on every write
- user_id: optional owner tag
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
import hashlib
import json
import re


# Stored chunk_text is truncated; identity always uses the full text.
CHUNK_TEXT_MAX_CHARS = 1000

_FRACTION_RE = re.compile(r"\.(\d+)")
_HOUR_OFFSET_RE = re.compile(r"(:\d{2}(?:\.\d+)?[+-]\d{2})$")


@dataclass
class ContractChunk:
    """
    A span of document text awaiting an embedding.

    Attributes:
        text: Full chunk text
        section: Section label from the source document
        importance: Caller weighting, may depend on the current query
    """
    text: str
    section: str
    importance: float

    @property
    def content_hash(self) -> str:
        """Cache key for this chunk."""
        return compute_content_hash(self.text)

    def with_embedding(self, embedding: List[float]) -> "EmbeddedChunk":
        """Attach a vector, keeping text, section and importance."""
        return EmbeddedChunk(
            text=self.text,
            section=self.section,
            importance=self.importance,
            embedding=list(embedding),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "text": self.text,
            "section": self.section,
            "importance": self.importance,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ContractChunk":
        """Create from dictionary."""
        return cls(
            text=data["text"],
            section=data["section"],
            importance=data["importance"],
        )


@dataclass
class EmbeddedChunk:
    """
    A chunk together with its embedding vector.

    Attributes:
        text: Full chunk text
        section: Section label from the source document
        importance: Caller weighting
        embedding: Embedding vector
    """
    text: str
    section: str
    importance: float
    embedding: List[float]

    @property
    def content_hash(self) -> str:
        """Cache key for this chunk."""
        return compute_content_hash(self.text)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "text": self.text,
            "section": self.section,
            "importance": self.importance,
            "embedding": self.embedding,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EmbeddedChunk":
        """Create from dictionary."""
        return cls(
            text=data["text"],
            section=data["section"],
            importance=data["importance"],
            embedding=parse_vector(data["embedding"]),
        )


@dataclass
class StoredEmbedding:
    """
    One cached row.

    Attributes:
        content_hash: SHA256 hex digest of the full chunk text
        chunk_text: Chunk text truncated to CHUNK_TEXT_MAX_CHARS
        section: Section label
        importance_score: Importance at the time of the last write
        embedding: Embedding vector
        created_at: Timestamp of the last write
        user_id: Optional owner tag
    """
    content_hash: str
    chunk_text: str
    section: str
    importance_score: float
    embedding: List[float]
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    user_id: Optional[str] = None

    @classmethod
    def from_chunk(
        cls,
        chunk: EmbeddedChunk,
        user_id: Optional[str] = None,
        created_at: Optional[datetime] = None,
    ) -> "StoredEmbedding":
        """Build the row for a chunk: hash the full text, store a truncated copy."""
        return cls(
            content_hash=compute_content_hash(chunk.text),
            chunk_text=truncate_chunk_text(chunk.text),
            section=chunk.section,
            importance_score=chunk.importance,
            embedding=list(chunk.embedding),
            created_at=created_at or datetime.now(timezone.utc),
            user_id=user_id,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the column mapping used by the backends."""
        return {
            "content_hash": self.content_hash,
            "chunk_text": self.chunk_text,
            "section": self.section,
            "importance_score": self.importance_score,
            "embedding": self.embedding,
            "created_at": format_timestamp(self.created_at),
            "user_id": self.user_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StoredEmbedding":
        """Create from a backend row. Columns not selected fall back to defaults."""
        created = data.get("created_at")
        return cls(
            content_hash=data["content_hash"],
            chunk_text=data.get("chunk_text") or "",
            section=data.get("section") or "",
            importance_score=float(data.get("importance_score") or 0.0),
            embedding=parse_vector(data["embedding"]),
            created_at=parse_timestamp(created) if created else datetime.now(timezone.utc),
            user_id=data.get("user_id"),
        )


@dataclass
class CachePartition:
    """
    Result of splitting chunks by cache membership.

    Attributes:
        cached: Chunks with a stored embedding, carrying the input importance
        missing: Chunks that still need an embedding, unchanged
    """
    cached: List[EmbeddedChunk] = field(default_factory=list)
    missing: List[ContractChunk] = field(default_factory=list)

    @property
    def hit_count(self) -> int:
        return len(self.cached)

    @property
    def miss_count(self) -> int:
        return len(self.missing)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "cached": [c.to_dict() for c in self.cached],
            "missing": [c.to_dict() for c in self.missing],
        }


@dataclass
class SimilarSection:
    """
    A row returned by similarity search.

    Attributes:
        text: Stored (truncated) chunk text
        section: Section label
        similarity: Similarity score in [0, 1] reported by the search engine
        importance: Stored importance score
    """
    text: str
    section: str
    similarity: float
    importance: float

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "text": self.text,
            "section": self.section,
            "similarity": self.similarity,
            "importance": self.importance,
        }

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "SimilarSection":
        """Reshape a similarity RPC row (chunk_text, importance_score)."""
        return cls(
            text=row.get("chunk_text") or "",
            section=row.get("section") or "",
            similarity=float(row["similarity"]),
            importance=float(row.get("importance_score") or 0.0),
        )


@dataclass
class SearchOutcome:
    """
    Similarity search result with an explicit status.

    Attributes:
        success: False when the backend call failed
        sections: Matches in descending similarity (empty on failure)
        error_message: Failure description when success is False
    """
    success: bool
    sections: List[SimilarSection] = field(default_factory=list)
    error_message: Optional[str] = None


@dataclass
class SweepOutcome:
    """
    Retention sweep result with an explicit status.

    Attributes:
        success: False when the backend delete failed
        max_age_days: Age threshold that was applied
        deleted: Rows removed, or None when the backend does not report it
        error_message: Failure description when success is False
    """
    success: bool
    max_age_days: int
    deleted: Optional[int] = None
    error_message: Optional[str] = None


@dataclass
class EmbeddingStats:
    """
    Cache occupancy summary.

    storage_used_mb counts chunk_text characters only, so it undercounts the
    space taken by the vectors themselves.
    """
    total_embeddings: int
    sections_count: int
    average_importance: float
    storage_used_mb: float

    @classmethod
    def empty(cls) -> "EmbeddingStats":
        return cls(
            total_embeddings=0,
            sections_count=0,
            average_importance=0.0,
            storage_used_mb=0.0,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary using the public field names."""
        return {
            "totalEmbeddings": self.total_embeddings,
            "sectionsCount": self.sections_count,
            "averageImportance": self.average_importance,
            "storageUsedMB": self.storage_used_mb,
        }


def compute_content_hash(content: str) -> str:
    """
    Compute SHA256 hash of chunk text.

    Args:
        content: Full (untruncated) chunk text

    Returns:
        64-character hex string

    Example:
        >>> compute_content_hash("Hello, World!")
        'dffd6021bb2bd5b0af676290809ec3a53191dd81c7f70a4b28688a362182986f'
    """
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def truncate_chunk_text(text: str) -> str:
    """Return the display copy of a chunk's text."""
    return text[:CHUNK_TEXT_MAX_CHARS]


def parse_vector(value: Any) -> List[float]:
    """
    Read an embedding from a backend value.

    pgvector columns come back from PostgREST as text ("[0.1,0.2]"); JSON
    arrays and Python lists are accepted as-is.
    """
    if isinstance(value, str):
        value = json.loads(value)
    if not isinstance(value, (list, tuple)):
        raise ValueError(f"Embedding must be a list of numbers, got {type(value).__name__}")
    return [float(v) for v in value]


def format_timestamp(value: datetime) -> str:
    """
    Format a timestamp as fixed-width UTC ISO text.

    Naive datetimes are taken to be UTC. The fixed width keeps string order
    equal to time order for backends that compare timestamps as text.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f+00:00")


def parse_timestamp(value: Any) -> datetime:
    """Parse a backend timestamp into an aware UTC datetime."""
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip().replace(" ", "T", 1)
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        # Postgres trims trailing zeros from fractional seconds
        text = _FRACTION_RE.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), text, count=1)
        text = _HOUR_OFFSET_RE.sub(r"\1:00", text)
        parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


__all__ = [
    # Constants
    "CHUNK_TEXT_MAX_CHARS",
    # Data classes
    "ContractChunk",
    "EmbeddedChunk",
    "StoredEmbedding",
    "CachePartition",
    "SimilarSection",
    "SearchOutcome",
    "SweepOutcome",
    "EmbeddingStats",
    # Utilities
    "compute_content_hash",
    "truncate_chunk_text",
    "parse_vector",
    "format_timestamp",
    "parse_timestamp",
]
