"""
Embedding Cache Module

Content-addressed cache for chunk embeddings used by contract analysis.
Chunks are keyed by the SHA256 of their full text, so identical text is
embedded once and reused on every later analysis.

Key components:
- contracts/: Record types for chunks, stored rows, and search results
- backends/: Persistence backends (Supabase REST, SQLite)
- store.py: EmbeddingCache with partition, store, search, sweep, stats
- cli.py: Operator commands for the retention sweep and cache stats
"""

from .store import EmbeddingCache

__version__ = "0.1.0"

__all__ = ["EmbeddingCache"]
