"""
Relevant Text Extraction - pick the parts of a contract worth analyzing.

Splits a document into paragraph chunks, embeds the query and the chunks,
and keeps the chunks most similar to the query in document order. Chunk
embeddings go through the EmbeddingCache so repeated analysis of the same
text only embeds what has not been seen before.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from embedding_cache.contracts.models import ContractChunk, EmbeddedChunk, compute_content_hash
from embedding_cache.core.exceptions import EmbeddingProviderError
from embedding_cache.similarity import cosine_similarity, top_k_indices
from embedding_cache.store import EmbeddingCache

from .chunking import chunk_importance, estimate_tokens, sanitize_text, split_paragraph_chunks
from .embeddings_client import EmbeddingsClient


logger = logging.getLogger(__name__)

DEFAULT_QUERY = (
    "Extract key contract information including parties, terms, dates, "
    "and financial details"
)

# Processing limits for large documents
MAX_CHUNKS = 50
LARGE_TEXT_CHARS = 500000
LARGE_TEXT_MAX_CHUNKS = 20
TOKEN_LIMIT_ESTIMATE = 250000
TOKEN_LIMIT_MAX_CHUNKS = 10

FALLBACK_CHARS = 15000


@dataclass
class RelevantTextResult:
    """
    Result of relevant-text extraction.

    Attributes:
        relevant_text: Selected chunks joined by blank lines
        chunk_count: Chunks the document was split into
        processed_chunks: Chunks considered after size limits
        selected_chunks: Chunks kept in relevant_text
        original_length: Length of the input text
        relevant_length: Length of relevant_text
        fallback: True when embedding failed and the text was truncated
        error: Failure description when fallback is True
        cached_chunks: Chunks whose embedding came from the cache
    """
    relevant_text: str
    chunk_count: int
    processed_chunks: int
    selected_chunks: int
    original_length: int
    relevant_length: int
    fallback: bool = False
    error: Optional[str] = None
    cached_chunks: int = 0

    def to_dict(self) -> Dict[str, object]:
        """Convert to dictionary for serialization."""
        result = {
            "relevantText": self.relevant_text,
            "chunkCount": self.chunk_count,
            "processedChunks": self.processed_chunks,
            "selectedChunks": self.selected_chunks,
            "originalLength": self.original_length,
            "relevantLength": self.relevant_length,
            "cachedChunks": self.cached_chunks,
        }
        if self.fallback:
            result["fallback"] = True
            result["error"] = self.error
        return result


@dataclass
class _ChunkEmbeddings:
    vectors: Dict[int, List[float]] = field(default_factory=dict)
    cached: int = 0


class RelevantTextExtractor:
    """
    Selects the chunks of a document most relevant to a query.

    Example:
        >>> extractor = RelevantTextExtractor(client, cache=EmbeddingCache(backend))
        >>> result = extractor.extract(contract_text, max_chunks=5)
        >>> result.relevant_text
    """

    def __init__(
        self,
        client: EmbeddingsClient,
        cache: Optional[EmbeddingCache] = None,
        chunk_size: int = 300,
        batch_size: int = 3,
        batch_delay_seconds: float = 0.5,
        section_label: str = "document",
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize the extractor.

        Args:
            client: Embeddings client
            cache: Optional embedding cache; without it every chunk is embedded
            chunk_size: Paragraph chunk size in characters
            batch_size: Chunks per embeddings request
            batch_delay_seconds: Pause between embeddings requests
            section_label: Section label stored with cached chunks
            sleep: Sleep function used between batches
        """
        self.client = client
        self.cache = cache
        self.chunk_size = chunk_size
        self.batch_size = batch_size
        self.batch_delay_seconds = batch_delay_seconds
        self.section_label = section_label
        self._sleep = sleep

    def extract(
        self,
        text: str,
        query: str = DEFAULT_QUERY,
        max_chunks: int = 5,
        user_id: Optional[str] = None,
    ) -> RelevantTextResult:
        """
        Extract the text most relevant to a query.

        Args:
            text: Full document text
            query: What the analysis is looking for
            max_chunks: Number of chunks to keep
            user_id: Owner tag for newly cached embeddings

        Returns:
            RelevantTextResult; on embedding failure the first 15000
            characters with fallback=True

        Raises:
            ValueError: If text is empty
        """
        if not text:
            raise ValueError("text is required")

        sanitized_text = sanitize_text(text)
        sanitized_query = sanitize_text(query)
        logger.info(f"Processing text of length {len(sanitized_text)}")

        chunks = split_paragraph_chunks(sanitized_text, self.chunk_size)
        logger.info(f"Split text into {len(chunks)} chunks")

        processed = chunks[:_max_chunks_to_process(sanitized_text, len(chunks))]
        if len(processed) < len(chunks):
            logger.info(f"Limited processing to {len(processed)} of {len(chunks)} chunks")

        safe = processed[:_max_safe_chunks(sanitized_text, len(processed))]
        logger.info(
            f"Processing {len(safe)} chunks safely "
            f"(estimated tokens: ~{estimate_tokens(sanitized_text):.0f})"
        )

        try:
            query_embedding = self.client.embed(sanitized_query)
        except EmbeddingProviderError as e:
            logger.error(f"Error generating query embedding, falling back to truncation: {e}")
            return _fallback_result(text, sanitized_text, str(e))

        embedded = self._embed_chunks(safe, user_id)

        scores: List[Tuple[int, float]] = []
        for index, vector in sorted(embedded.vectors.items()):
            try:
                scores.append((index, cosine_similarity(vector, query_embedding)))
            except ValueError as e:
                logger.warning(f"Skipping chunk {index}: {e}")

        best = top_k_indices([score for _, score in scores], max_chunks)
        selected = sorted(scores[i][0] for i in best)

        relevant_text = sanitize_text("\n\n".join(safe[i] for i in selected))
        logger.info(f"Selected {len(selected)} most relevant chunks")

        return RelevantTextResult(
            relevant_text=relevant_text,
            chunk_count=len(chunks),
            processed_chunks=len(processed),
            selected_chunks=len(selected),
            original_length=len(text),
            relevant_length=len(relevant_text),
            cached_chunks=embedded.cached,
        )

    def _embed_chunks(self, texts: Sequence[str], user_id: Optional[str]) -> _ChunkEmbeddings:
        """
        Get a vector for as many chunks as possible.

        Cached vectors are reused. The rest are embedded in batches; the
        first failed batch stops embedding and the vectors obtained so far
        are kept. New vectors are written back to the cache.
        """
        items = [
            ContractChunk(text=t, section=self.section_label, importance=chunk_importance(t))
            for t in texts
        ]
        hashes = [compute_content_hash(t) for t in texts]
        known: Dict[str, List[float]] = {}
        cached_hashes = set()

        if self.cache is not None and items:
            partition = self.cache.partition(items)
            for chunk in partition.cached:
                content_hash = compute_content_hash(chunk.text)
                known[content_hash] = chunk.embedding
                cached_hashes.add(content_hash)

        pending: List[ContractChunk] = []
        queued = set()
        for chunk, content_hash in zip(items, hashes):
            if content_hash in known or content_hash in queued:
                continue
            queued.add(content_hash)
            pending.append(chunk)

        new_chunks: List[EmbeddedChunk] = []
        for start in range(0, len(pending), self.batch_size):
            batch = pending[start:start + self.batch_size]
            try:
                vectors = self.client.embed_many([chunk.text for chunk in batch])
            except EmbeddingProviderError as e:
                logger.error(f"Error processing batch {start}-{start + len(batch)}: {e}")
                break

            for chunk, vector in zip(batch, vectors):
                known[compute_content_hash(chunk.text)] = vector
                new_chunks.append(chunk.with_embedding(vector))

            if start + self.batch_size < len(pending) and self.batch_delay_seconds > 0:
                self._sleep(self.batch_delay_seconds)

        if self.cache is not None and new_chunks:
            self.cache.store(new_chunks, user_id=user_id)

        result = _ChunkEmbeddings()
        for index, content_hash in enumerate(hashes):
            if content_hash in known:
                result.vectors[index] = known[content_hash]
                if content_hash in cached_hashes:
                    result.cached += 1
        return result


def _max_chunks_to_process(text: str, chunk_count: int) -> int:
    if len(text) > LARGE_TEXT_CHARS:
        return LARGE_TEXT_MAX_CHUNKS
    return min(chunk_count, MAX_CHUNKS)


def _max_safe_chunks(text: str, processed_count: int) -> int:
    if estimate_tokens(text) > TOKEN_LIMIT_ESTIMATE:
        return TOKEN_LIMIT_MAX_CHUNKS
    return processed_count


def _fallback_result(text: str, sanitized_text: str, error: str) -> RelevantTextResult:
    truncated = sanitized_text[:FALLBACK_CHARS]
    return RelevantTextResult(
        relevant_text=truncated,
        chunk_count=1,
        processed_chunks=1,
        selected_chunks=1,
        original_length=len(text),
        relevant_length=len(truncated),
        fallback=True,
        error=error,
    )
