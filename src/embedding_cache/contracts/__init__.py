"""
Embedding Cache Contracts

Record types for chunks, cached rows, similarity results and cache stats.
"""

from .models import (
    CHUNK_TEXT_MAX_CHARS,
    ContractChunk,
    EmbeddedChunk,
    StoredEmbedding,
    CachePartition,
    SimilarSection,
    SearchOutcome,
    SweepOutcome,
    EmbeddingStats,
    compute_content_hash,
    truncate_chunk_text,
)

__all__ = [
    "CHUNK_TEXT_MAX_CHARS",
    "ContractChunk",
    "EmbeddedChunk",
    "StoredEmbedding",
    "CachePartition",
    "SimilarSection",
    "SearchOutcome",
    "SweepOutcome",
    "EmbeddingStats",
    "compute_content_hash",
    "truncate_chunk_text",
]
