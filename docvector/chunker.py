"""
Document chunking.

Two strategies:
- paragraph mode (default): greedy grouping of blank-line separated paragraphs
- character mode: fixed windows that prefer to end on a space
"""
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .config import CHUNK_SIZE, CHUNK_OVERLAP, PRESERVE_PARAGRAPHS
from .errors import InvalidConfiguration

_PARAGRAPH_BREAK = re.compile(r"\n\s*\n")

# A window is only pulled back to a space that sits in its last 20%
_WORD_BOUNDARY_RATIO = 0.8


@dataclass(frozen=True)
class ChunkingOptions:
    chunk_size: int = CHUNK_SIZE
    chunk_overlap: int = CHUNK_OVERLAP
    preserve_paragraphs: bool = PRESERVE_PARAGRAPHS

    def validate(self) -> "ChunkingOptions":
        if self.chunk_size <= 0:
            raise InvalidConfiguration(f"chunk_size must be > 0, got {self.chunk_size}")
        if self.chunk_overlap < 0:
            raise InvalidConfiguration(f"chunk_overlap must be >= 0, got {self.chunk_overlap}")
        if self.chunk_overlap >= self.chunk_size:
            raise InvalidConfiguration(
                f"chunk_overlap ({self.chunk_overlap}) must be smaller than chunk_size ({self.chunk_size})"
            )
        return self


@dataclass
class RawChunk:
    chunk_index: int
    content: str
    metadata: Dict[str, Any] = field(default_factory=dict)


def chunk_text(text: str, options: Optional[ChunkingOptions] = None) -> List[RawChunk]:
    """
    Split extracted document text into ordered chunks.

    Args:
        text: Full extracted text of the document
        options: Chunk size, overlap and strategy. Defaults come from config.

    Returns:
        Chunks with indices 0..n-1. Blank text yields an empty list.

    Raises:
        InvalidConfiguration: chunk_size <= 0, chunk_overlap < 0 or
            chunk_overlap >= chunk_size
    """
    options = (options or ChunkingOptions()).validate()
    if not text or not text.strip():
        return []

    if options.preserve_paragraphs:
        return _chunk_by_paragraphs(text, options.chunk_size, options.chunk_overlap)
    return _chunk_by_characters(text, options.chunk_size, options.chunk_overlap)


def _chunk_by_paragraphs(text: str, chunk_size: int, chunk_overlap: int) -> List[RawChunk]:
    paragraphs = [p.strip() for p in _PARAGRAPH_BREAK.split(text)]
    paragraphs = [p for p in paragraphs if p]

    chunks: List[RawChunk] = []
    current = ""

    def emit(buffer: str):
        content = buffer.strip()
        chunks.append(RawChunk(
            chunk_index=len(chunks),
            content=content,
            metadata={
                "chunk_index": len(chunks),
                "type": "paragraph_grouped",
                "length": len(content),
            },
        ))

    for paragraph in paragraphs:
        if current and len(current) + len(paragraph) > chunk_size:
            emit(current)
            if chunk_overlap > 0 and len(current) > chunk_overlap:
                current = current[-chunk_overlap:] + "\n\n" + paragraph
            else:
                current = paragraph
        else:
            current = f"{current}\n\n{paragraph}" if current else paragraph

    # Oversized single paragraphs are kept whole and may exceed chunk_size
    if current.strip():
        emit(current)

    return chunks


def _chunk_by_characters(text: str, chunk_size: int, chunk_overlap: int) -> List[RawChunk]:
    chunks: List[RawChunk] = []
    n = len(text)
    start = 0

    while start < n:
        end = min(start + chunk_size, n)

        # Try to break at word boundary
        if end < n:
            last_space = text.rfind(" ", start, end + 1)
            if last_space > start + chunk_size * _WORD_BOUNDARY_RATIO:
                end = last_space

        content = text[start:end].strip()
        if content:
            chunks.append(RawChunk(
                chunk_index=len(chunks),
                content=content,
                metadata={
                    "chunk_index": len(chunks),
                    "type": "character_based",
                    "start_index": start,
                    "end_index": end,
                    "length": len(content),
                },
            ))

        # stop once a window reaches the end: no overlap-only tail chunks
        if end >= n:
            break
        start = max(end - chunk_overlap, start + 1)

    return chunks
