"""
Contract chunking - split contract text into cacheable chunks.

Implements:
- Text sanitizing for storage
- Paragraph packing for query-driven relevant-text extraction
- Section-aware chunking with overlap and importance scoring
- Hierarchical processing of contracts too large for one pass
"""

import logging
import re
from dataclasses import dataclass, field
from typing import List, Optional

from embedding_cache.contracts.models import ContractChunk


logger = logging.getLogger(__name__)

# Rough characters-per-token ratio for budget estimates
CHARS_PER_TOKEN = 3

# Sections this short are headers or noise, not content
MIN_SECTION_CHARS = 100
MIN_CHUNK_CHARS = 50

# Control characters other than tab and newline
_CONTROL_CHARS_RE = re.compile(r"[\x00-\x08\x0b-\x1f\x7f-\x9f]")

_SECTION_PATTERNS = [
    re.compile(
        r"(?:^|\n)\s*(?:ARTICLE|SECTION|PART)\s+(?:[IVXLCDM]+|\d+)[:.\s]+([^\n]+)",
        re.IGNORECASE,
    ),
    re.compile(r"(?:^|\n)\s*(\d+[.)]\s*[A-Z][^:\n]+)[:.]", re.IGNORECASE),
    re.compile(r"(?:^|\n)\s*([A-Z][A-Z\s&]{3,30})[:.\n]"),
]

IMPORTANT_KEYWORDS = [
    "purchase price", "closing date", "contingency", "inspection",
    "financing", "earnest money", "deed", "title", "warranty",
    "liability", "default", "termination", "breach", "damages",
]

IMPORTANT_SECTIONS = [
    "terms", "conditions", "price", "payment", "closing",
    "contingencies", "inspection", "financing",
]

CRITICAL_SECTIONS = [
    "purchase and sale", "terms and conditions", "closing",
    "financing", "inspection", "contingencies", "price",
]


@dataclass
class LabeledChunk(ContractChunk):
    """ContractChunk with a position label such as 'section-2-chunk-0'."""
    chunk_id: str = ""


@dataclass
class Section:
    """A titled span of a contract."""
    title: str
    content: str


@dataclass
class ChunkingStrategy:
    """
    Chunking parameters.

    Attributes:
        chunk_size: Target chunk length in characters
        overlap: Characters shared by consecutive chunks
        preserve_sections: Chunk each detected section separately
    """
    chunk_size: int = 1000
    overlap: int = 200
    preserve_sections: bool = True


@dataclass
class ChunkingResult:
    """
    Result of process_large_contract.

    Attributes:
        chunks: Chunks selected for embedding
        strategy: 'full_processing' or 'hierarchical_processing'
        coverage: Share of the estimated tokens that made it into chunks
    """
    chunks: List[LabeledChunk] = field(default_factory=list)
    strategy: str = "full_processing"
    coverage: float = 1.0


def sanitize_text(text: Optional[str]) -> str:
    """
    Remove control characters that break database storage.

    Tabs and newlines are kept because paragraph splitting depends on them.
    """
    if not text:
        return ""
    return _CONTROL_CHARS_RE.sub("", text)


def estimate_tokens(text: str) -> float:
    """Rough token estimate used for processing budgets."""
    return len(text) / CHARS_PER_TOKEN


def split_paragraph_chunks(text: str, chunk_size: int = 300) -> List[str]:
    """
    Pack paragraphs into chunks of at most roughly chunk_size characters.

    Blank lines are dropped. A paragraph longer than chunk_size is cut into
    fixed-size pieces of its own; shorter paragraphs are packed together,
    each followed by a newline.

    Args:
        text: Text to split
        chunk_size: Target chunk length in characters

    Returns:
        List of chunk strings in document order
    """
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")

    chunks: List[str] = []
    current = ""

    for paragraph in text.split("\n"):
        if not paragraph.strip():
            continue

        if len(paragraph) > chunk_size:
            if current:
                chunks.append(current)
                current = ""
            for i in range(0, len(paragraph), chunk_size):
                chunks.append(paragraph[i:i + chunk_size])
            continue

        if current and len(current) + len(paragraph) > chunk_size:
            chunks.append(current)
            current = ""
        current += paragraph + "\n"

    if current:
        chunks.append(current)

    return chunks


def chunk_with_overlap(text: str, chunk_size: int, overlap: int) -> List[str]:
    """
    Split text into overlapping windows that prefer sentence boundaries.

    A window ends just after the last '.' or newline when that boundary lies
    past 70% of the window. The next window starts `overlap` characters
    before the previous end. Chunks are stripped and those of
    MIN_CHUNK_CHARS characters or fewer are dropped.

    Args:
        text: Text to split
        chunk_size: Target window length in characters
        overlap: Characters shared by consecutive windows

    Returns:
        List of chunk strings in document order
    """
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")
    if overlap < 0:
        raise ValueError("overlap must be non-negative")

    chunks = []
    text_len = len(text)
    start = 0

    while start < text_len:
        end = min(start + chunk_size, text_len)

        if end < text_len:
            break_point = max(text.rfind(".", 0, end + 1), text.rfind("\n", 0, end + 1))
            if break_point > start + chunk_size * 0.7:
                end = break_point + 1

        chunks.append(text[start:end].strip())

        if end >= text_len:
            break

        next_start = end - overlap
        start = next_start if next_start > start else end

    return [chunk for chunk in chunks if len(chunk) > MIN_CHUNK_CHARS]


def identify_sections(text: str) -> List[Section]:
    """
    Find the major sections of a contract.

    Recognizes 'ARTICLE/SECTION/PART <n>' headers, numbered headers such as
    '3. Financing:' and short all-caps headers. Sections of
    MIN_SECTION_CHARS characters or fewer are dropped. If nothing is found
    the whole document is one section titled 'Contract'.
    """
    headers = []
    for pattern in _SECTION_PATTERNS:
        for match in pattern.finditer(text):
            headers.append((match.start(), match.group(1).strip()))

    headers.sort(key=lambda header: header[0])

    sections = []
    for i, (index, title) in enumerate(headers):
        next_index = headers[i + 1][0] if i < len(headers) - 1 else len(text)
        content = text[index:next_index].strip()
        if len(content) > MIN_SECTION_CHARS:
            sections.append(Section(title=title, content=content))

    if not sections:
        sections.append(Section(title="Contract", content=text))

    return sections


def chunk_importance(text: str, section: Optional[str] = None) -> float:
    """
    Score a chunk for analysis priority.

    Starts at 1, adds 0.5 per key contract phrase, 1 per important word in
    the section title, and 0.3 for moderate-length chunks (200-2000 chars).
    """
    importance = 1.0

    lower_text = text.lower()
    for keyword in IMPORTANT_KEYWORDS:
        if keyword in lower_text:
            importance += 0.5

    if section:
        lower_section = section.lower()
        for important in IMPORTANT_SECTIONS:
            if important in lower_section:
                importance += 1

    if 200 < len(text) < 2000:
        importance += 0.3

    return importance


def section_importance(content: str, title: str) -> float:
    """Chunk importance of a whole section plus 2 per critical title phrase."""
    importance = chunk_importance(content, title)

    lower_title = title.lower()
    for critical in CRITICAL_SECTIONS:
        if critical in lower_title:
            importance += 2

    return importance


def chunk_contract(
    text: str,
    strategy: Optional[ChunkingStrategy] = None,
) -> List[LabeledChunk]:
    """
    Chunk a contract while keeping its section structure.

    When more than one section is found and the strategy preserves
    sections, each section is chunked on its own and its title becomes the
    chunk's section label. Otherwise the whole text is chunked with the
    label 'unknown'.

    Args:
        text: Contract text
        strategy: Chunking parameters (defaults to ChunkingStrategy())

    Returns:
        List of LabeledChunk
    """
    strategy = strategy or ChunkingStrategy()
    chunks: List[LabeledChunk] = []

    sections = identify_sections(text)

    if strategy.preserve_sections and len(sections) > 1:
        for section_index, section in enumerate(sections):
            pieces = chunk_with_overlap(section.content, strategy.chunk_size, strategy.overlap)
            for chunk_index, piece in enumerate(pieces):
                chunks.append(LabeledChunk(
                    text=piece,
                    section=section.title,
                    importance=chunk_importance(piece, section.title),
                    chunk_id=f"section-{section_index}-chunk-{chunk_index}",
                ))
    else:
        pieces = chunk_with_overlap(text, strategy.chunk_size, strategy.overlap)
        for index, piece in enumerate(pieces):
            chunks.append(LabeledChunk(
                text=piece,
                section="unknown",
                importance=chunk_importance(piece),
                chunk_id=f"chunk-{index}",
            ))

    logger.debug(f"Created {len(chunks)} chunks from {len(sections)} sections")
    return chunks


def process_large_contract(text: str, max_tokens: int = 100000) -> ChunkingResult:
    """
    Chunk a contract, prioritizing key sections when it exceeds a token budget.

    Contracts within the budget are chunked in full. Larger ones are split
    into sections, ranked by section importance, and chunked in rank order
    until the budget runs out; the last section may be cut short.

    Args:
        text: Contract text
        max_tokens: Token budget (estimated at 3 characters per token)

    Returns:
        ChunkingResult with chunks, strategy name and coverage
    """
    estimated = estimate_tokens(text)
    logger.info(f"Contract text length: {len(text)}, estimated tokens: {estimated:.0f}")

    full_strategy = ChunkingStrategy(chunk_size=1500, overlap=300, preserve_sections=True)
    flat_strategy = ChunkingStrategy(chunk_size=1500, overlap=300, preserve_sections=False)

    if estimated <= max_tokens:
        return ChunkingResult(
            chunks=chunk_contract(text, full_strategy),
            strategy="full_processing",
            coverage=1.0,
        )

    logger.info("Large contract detected, using hierarchical processing")

    sections = identify_sections(text)
    logger.info(f"Identified {len(sections)} sections")

    ranked = sorted(
        sections,
        key=lambda section: section_importance(section.content, section.title),
        reverse=True,
    )

    processed_tokens = 0.0
    selected: List[LabeledChunk] = []

    for rank, section in enumerate(ranked):
        section_tokens = estimate_tokens(section.content)
        content = section.content
        exhausted = processed_tokens + section_tokens > max_tokens

        if exhausted:
            remaining = max_tokens - processed_tokens
            content = section.content[:int(remaining * CHARS_PER_TOKEN)]
            section_tokens = estimate_tokens(content)

        for chunk in chunk_contract(content, flat_strategy):
            chunk.chunk_id = f"section-{rank}-{chunk.chunk_id}"
            chunk.section = section.title
            chunk.importance = chunk_importance(chunk.text, section.title)
            selected.append(chunk)
        processed_tokens += section_tokens

        if exhausted:
            break

    return ChunkingResult(
        chunks=selected,
        strategy="hierarchical_processing",
        coverage=processed_tokens / estimated,
    )
