"""
Pydantic schemas for request validation.
"""
from typing import Literal, Optional
from pydantic import BaseModel, Field

from .chunker import ChunkingOptions
from .config import (
    CHUNK_OVERLAP,
    CHUNK_SIZE,
    ON_CHUNK_FAILURE,
    PRESERVE_PARAGRAPHS,
    SEARCH_DEFAULT_LIMIT,
    SEARCH_DEFAULT_THRESHOLD,
)

FailurePolicy = Literal["skip", "abort"]


class ProcessBody(BaseModel):
    """Chunking options for (re)processing a document."""
    chunk_size: int = Field(CHUNK_SIZE, gt=0, description="Target chunk size in characters")
    chunk_overlap: int = Field(CHUNK_OVERLAP, ge=0, description="Characters carried over between chunks")
    preserve_paragraphs: bool = Field(PRESERVE_PARAGRAPHS, description="Group paragraphs instead of fixed windows")
    on_chunk_failure: FailurePolicy = Field(
        ON_CHUNK_FAILURE, description="'skip' keeps going past per-chunk failures, 'abort' fails the run"
    )

    def to_options(self) -> ChunkingOptions:
        return ChunkingOptions(
            chunk_size=self.chunk_size,
            chunk_overlap=self.chunk_overlap,
            preserve_paragraphs=self.preserve_paragraphs,
        )


class SearchBody(BaseModel):
    """Request body for vector search."""
    query: str = Field(..., min_length=1, max_length=1000, description="Text to search for")
    limit: int = Field(SEARCH_DEFAULT_LIMIT, ge=1, le=50, description="Maximum number of chunks")
    threshold: float = Field(SEARCH_DEFAULT_THRESHOLD, ge=0.0, le=1.0, description="Minimum cosine similarity")
    product_id: Optional[str] = Field(None, description="Only search documents of this product")
    document_type: Optional[str] = Field(None, description="Only search documents of this type")
