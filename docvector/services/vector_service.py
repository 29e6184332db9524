"""
Vector pipeline service.
Chunks a document, embeds every chunk and replaces the stored chunk set.
"""
from dataclasses import dataclass, field
from time import perf_counter
from typing import List, Optional

import structlog
from sqlalchemy.exc import SQLAlchemyError

from ..chunk_store import OUTCOME_OK, ChunkOutcome, StoredChunk, replace_chunks
from ..chunker import ChunkingOptions, chunk_text
from ..config import EMBEDDING_CONCURRENCY, EMBEDDING_REQUEST_DELAY, ON_CHUNK_FAILURE
from ..db import SessionLocal
from ..embedding import Embedder, check_failure_policy, embed_chunks
from ..errors import DocumentNotFound, EmbeddingFailed, StorageFailure
from ..logging_config import logger
from ..retrieval import SearchResult, search_similar_chunks
from ..utils.helpers import estimate_token_count, short_error
from . import document_service

__all__ = [
    "ProcessResult",
    "SearchResult",
    "process_document_for_vector",
    "process_stored_document",
    "search_similar_chunks",
]


@dataclass
class ProcessResult:
    success: bool
    document_id: str
    chunks: List[StoredChunk] = field(default_factory=list)
    total_chunks: int = 0
    total_tokens: int = 0
    embedded_chunks: int = 0
    failed_chunks: int = 0
    outcomes: List[ChunkOutcome] = field(default_factory=list)
    error: Optional[str] = None


def process_document_for_vector(
    document_id: str,
    text: str,
    options: Optional[ChunkingOptions] = None,
    *,
    on_chunk_failure: str = ON_CHUNK_FAILURE,
    embedder: Embedder,
    session_factory=SessionLocal,
    delay: float = EMBEDDING_REQUEST_DELAY,
    concurrency: int = EMBEDDING_CONCURRENCY,
) -> ProcessResult:
    """
    Chunk -> embed -> store for one document.

    Per-chunk failures follow `on_chunk_failure` and are always visible in
    `outcomes`; `total_chunks` counts the chunks actually stored.

    Raises:
        InvalidConfiguration: bad chunking options or failure policy
    """
    options = (options or ChunkingOptions()).validate()
    check_failure_policy(on_chunk_failure)
    total_tokens = estimate_token_count(text)
    t = perf_counter()

    chunks = chunk_text(text, options)
    if not chunks:
        logger.warning("Empty document text", document_id=document_id)
        return ProcessResult(
            success=False,
            document_id=document_id,
            total_tokens=total_tokens,
            error="Document has no extractable text",
        )
    logger.info("Created chunks", document_id=document_id, chunk_count=len(chunks),
                preserve_paragraphs=options.preserve_paragraphs)

    try:
        embedded = embed_chunks(
            embedder,
            chunks,
            delay=delay,
            concurrency=concurrency,
            on_chunk_failure=on_chunk_failure,
        )
        stored = replace_chunks(
            document_id,
            embedded,
            on_chunk_failure=on_chunk_failure,
            embedding_model=embedder.model_id,
            session_factory=session_factory,
        )
    except (EmbeddingFailed, StorageFailure, DocumentNotFound) as e:
        logger.error("Vector processing failed", document_id=document_id, error=str(e),
                     chunk_index=getattr(e, "chunk_index", None))
        return ProcessResult(success=False, document_id=document_id, total_tokens=total_tokens, error=str(e))
    except SQLAlchemyError as e:
        logger.exception("Vector processing error", document_id=document_id)
        return ProcessResult(
            success=False,
            document_id=document_id,
            total_tokens=total_tokens,
            error=short_error("database", e),
        )

    ok = sum(1 for o in stored.outcomes if o.status == OUTCOME_OK)
    result = ProcessResult(
        success=True,
        document_id=document_id,
        chunks=stored.stored,
        total_chunks=len(stored.stored),
        total_tokens=total_tokens,
        embedded_chunks=ok,
        failed_chunks=len(stored.outcomes) - ok,
        outcomes=stored.outcomes,
    )
    logger.info(
        "Document processed for vector search",
        document_id=document_id,
        total_chunks=result.total_chunks,
        embedded_chunks=result.embedded_chunks,
        failed_chunks=result.failed_chunks,
        time_ms=round((perf_counter() - t) * 1000, 2),
    )
    return result


def process_stored_document(
    document_id: str,
    organization_id: str,
    options: Optional[ChunkingOptions] = None,
    *,
    on_chunk_failure: str = ON_CHUNK_FAILURE,
    embedder: Embedder,
    session_factory=SessionLocal,
) -> ProcessResult:
    """
    Run the pipeline on a document's stored extracted text and track its status
    (uploaded/failed/completed -> processing -> completed | failed).

    Raises:
        InvalidConfiguration: bad chunking options or failure policy
        DocumentNotFound: missing, or owned by another organization
        DocumentBusy: the document is already being processed
    """
    options = (options or ChunkingOptions()).validate()
    check_failure_policy(on_chunk_failure)

    with structlog.contextvars.bound_contextvars(document_id=document_id, organization_id=organization_id):
        return _run_tracked(document_id, organization_id, options, on_chunk_failure, embedder, session_factory)


def _run_tracked(document_id, organization_id, options, on_chunk_failure, embedder, session_factory):
    document_service.mark_processing(document_id, organization_id, session_factory=session_factory)
    try:
        doc = document_service.get_document(
            document_id, organization_id, include_text=True, session_factory=session_factory
        )
        result = process_document_for_vector(
            document_id,
            doc["extracted_text"] or "",
            options,
            on_chunk_failure=on_chunk_failure,
            embedder=embedder,
            session_factory=session_factory,
        )
    except Exception as e:
        # never leave the document stuck in "processing"
        document_service.finish_processing(
            document_id, success=False, error=short_error("pipeline", e), session_factory=session_factory
        )
        raise

    document_service.finish_processing(
        document_id, success=result.success, error=result.error, session_factory=session_factory
    )
    return result
