"""
Chunk persistence.

A document's chunk set is only ever replaced as a whole: delete + insert run in
one transaction, with the document row locked so concurrent reprocessing of the
same document is serialized.
"""
import json
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from time import perf_counter
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import text as sa_text
from sqlalchemy.exc import SQLAlchemyError

from .db import SessionLocal
from .embedding import EmbeddedChunk, check_failure_policy
from .errors import DocumentNotFound, StorageFailure
from .logging_config import logger
from .utils.helpers import short_error, to_vector_literal

OUTCOME_OK = "ok"
OUTCOME_EMBEDDING_ERROR = "embedding_error"
OUTCOME_STORAGE_ERROR = "storage_error"


@dataclass
class ChunkOutcome:
    chunk_index: int
    status: str
    error: Optional[str] = None


@dataclass
class StoredChunk:
    id: str
    document_id: str
    chunk_index: int
    content: str
    metadata: Dict[str, Any] = field(default_factory=dict)
    has_embedding: bool = False
    embedding_model: Optional[str] = None
    created_at: Optional[datetime] = None


@dataclass
class StoreResult:
    stored: List[StoredChunk]
    outcomes: List[ChunkOutcome]

    @property
    def failed(self) -> List[ChunkOutcome]:
        return [o for o in self.outcomes if o.status != OUTCOME_OK]


_INSERT_CHUNK = sa_text("""
    INSERT INTO document_chunks(
        id, document_id, chunk_index, content, metadata, embedding, embedding_model, created_at
    )
    VALUES(
        :id, :doc, :idx, :content, CAST(:metadata AS JSONB), CAST(:embedding AS vector), :model, NOW()
    )
    RETURNING created_at
""")


def replace_chunks(
    document_id: str,
    chunks: Sequence[EmbeddedChunk],
    *,
    on_chunk_failure: str = "skip",
    embedding_model: Optional[str] = None,
    session_factory=SessionLocal,
) -> StoreResult:
    """
    Replace every stored chunk of a document with `chunks`.

    Each insert runs in its own savepoint.
    - skip: a failed insert is rolled back alone, logged and reported as a
      storage_error outcome; the other chunks are committed.
    - abort: the first failed insert rolls back the whole replacement and the
      previously stored chunks remain untouched.

    Raises:
        DocumentNotFound: the parent document does not exist
        StorageFailure: an insert failed and on_chunk_failure == "abort"
    """
    check_failure_policy(on_chunk_failure)
    stored: List[StoredChunk] = []
    outcomes: List[ChunkOutcome] = []
    t = perf_counter()

    with session_factory() as db, db.begin():
        found = db.execute(
            sa_text("SELECT id FROM documents WHERE id = :id FOR UPDATE"),
            {"id": document_id},
        ).first()
        if not found:
            raise DocumentNotFound(f"Document {document_id} not found")

        db.execute(
            sa_text("DELETE FROM document_chunks WHERE document_id = :doc"),
            {"doc": document_id},
        )

        for chunk in chunks:
            chunk_id = str(uuid.uuid4())
            try:
                with db.begin_nested():
                    row = db.execute(
                        _INSERT_CHUNK,
                        {
                            "id": chunk_id,
                            "doc": document_id,
                            "idx": chunk.chunk_index,
                            "content": chunk.content,
                            "metadata": json.dumps(chunk.metadata),
                            "embedding": to_vector_literal(chunk.embedding),
                            "model": embedding_model if chunk.has_embedding else None,
                        },
                    ).first()
            except SQLAlchemyError as e:
                if on_chunk_failure == "abort":
                    raise StorageFailure(
                        short_error("store", e), chunk_index=chunk.chunk_index
                    ) from e
                logger.warning(
                    "Failed to store chunk",
                    document_id=document_id,
                    chunk_index=chunk.chunk_index,
                    error=str(e),
                )
                outcomes.append(ChunkOutcome(
                    chunk.chunk_index, OUTCOME_STORAGE_ERROR, short_error("store", e)
                ))
                continue

            stored.append(StoredChunk(
                id=chunk_id,
                document_id=document_id,
                chunk_index=chunk.chunk_index,
                content=chunk.content,
                metadata=dict(chunk.metadata),
                has_embedding=chunk.has_embedding,
                embedding_model=embedding_model if chunk.has_embedding else None,
                created_at=row[0] if row else None,
            ))
            if chunk.has_embedding:
                outcomes.append(ChunkOutcome(chunk.chunk_index, OUTCOME_OK))
            else:
                outcomes.append(ChunkOutcome(chunk.chunk_index, OUTCOME_EMBEDDING_ERROR, chunk.error))

    logger.info(
        "Replaced document chunks",
        document_id=document_id,
        stored=len(stored),
        requested=len(chunks),
        time_ms=round((perf_counter() - t) * 1000, 2),
    )
    return StoreResult(stored=stored, outcomes=outcomes)


def get_document_chunks(document_id: str, session_factory=SessionLocal) -> List[StoredChunk]:
    """Stored chunks of a document, ordered by chunk_index."""
    with session_factory() as db:
        rows = db.execute(
            sa_text("""
                SELECT id, document_id, chunk_index, content, metadata,
                       embedding IS NOT NULL AS has_embedding,
                       embedding_model, created_at
                FROM document_chunks
                WHERE document_id = :doc
                ORDER BY chunk_index
            """),
            {"doc": document_id},
        ).mappings().all()
    return [
        StoredChunk(
            id=r["id"],
            document_id=r["document_id"],
            chunk_index=r["chunk_index"],
            content=r["content"],
            metadata=r["metadata"] or {},
            has_embedding=bool(r["has_embedding"]),
            embedding_model=r["embedding_model"],
            created_at=r["created_at"],
        )
        for r in rows
    ]


def delete_chunks(document_id: str, session_factory=SessionLocal) -> int:
    """Remove every chunk of a document; returns the number deleted."""
    with session_factory() as db, db.begin():
        res = db.execute(
            sa_text("DELETE FROM document_chunks WHERE document_id = :doc"),
            {"doc": document_id},
        )
    logger.info("Deleted document chunks", document_id=document_id, deleted=res.rowcount)
    return res.rowcount
