"""
Error taxonomy for the chunk / embed / store / search pipeline.
"""
from typing import Optional


class DocVectorError(Exception):
    """Base class for every error raised by docvector."""


class InvalidConfiguration(DocVectorError, ValueError):
    """Chunk size / overlap (or another option) makes no sense."""


class EmbeddingFailed(DocVectorError):
    """The provider could not embed a single chunk."""

    def __init__(self, message: str, chunk_index: Optional[int] = None):
        super().__init__(message)
        self.chunk_index = chunk_index


class EmbeddingUnavailable(DocVectorError):
    """The query text could not be embedded, so search cannot run."""


class StorageFailure(DocVectorError):
    """A chunk could not be written to the chunk store."""

    def __init__(self, message: str, chunk_index: Optional[int] = None):
        super().__init__(message)
        self.chunk_index = chunk_index


class DocumentNotFound(DocVectorError):
    pass


class DocumentBusy(DocVectorError):
    """The document is already being processed."""


class DuplicateDocument(DocVectorError):
    def __init__(self, existing_id: str):
        super().__init__(f"Document already uploaded as {existing_id}")
        self.existing_id = existing_id
