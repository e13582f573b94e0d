"""
Contract analysis pipeline on top of the embedding cache.

Chunks contract text, embeds chunks through an OpenAI-compatible API and
reuses cached embeddings for text that has been seen before.
"""

from .chunking import (
    ChunkingResult,
    ChunkingStrategy,
    LabeledChunk,
    Section,
    chunk_contract,
    chunk_importance,
    chunk_with_overlap,
    estimate_tokens,
    identify_sections,
    process_large_contract,
    sanitize_text,
    section_importance,
    split_paragraph_chunks,
)
from .embeddings_client import EmbeddingsClient
from .relevant_text import DEFAULT_QUERY, RelevantTextExtractor, RelevantTextResult


__all__ = [
    # Chunking
    "ChunkingResult",
    "ChunkingStrategy",
    "LabeledChunk",
    "Section",
    "chunk_contract",
    "chunk_importance",
    "chunk_with_overlap",
    "estimate_tokens",
    "identify_sections",
    "process_large_contract",
    "sanitize_text",
    "section_importance",
    "split_paragraph_chunks",
    # Embeddings
    "EmbeddingsClient",
    # Relevant text
    "DEFAULT_QUERY",
    "RelevantTextExtractor",
    "RelevantTextResult",
]
