"""
Document record management.
Handles CRUD and processing-status transitions for uploaded documents.
"""
import uuid
from typing import Any, Dict, List, Optional

from sqlalchemy import select, text

from ..db import SessionLocal
from ..errors import DocumentBusy, DocumentNotFound, DuplicateDocument
from ..logging_config import logger
from ..models import Document

_PUBLIC_FIELDS = (
    "id", "organization_id", "product_id", "title", "filename", "mime_type",
    "size_bytes", "document_type", "storage_key", "content_hash",
    "processing_status", "processing_error", "created_at", "updated_at", "processed_at",
)


def _to_dict(doc: Document, include_text: bool = False) -> Dict[str, Any]:
    data = {name: getattr(doc, name) for name in _PUBLIC_FIELDS}
    data["extracted_text_length"] = len(doc.extracted_text or "")
    if include_text:
        data["extracted_text"] = doc.extracted_text
    return data


def create_document(
    organization_id: str,
    *,
    filename: str,
    extracted_text: str,
    content_hash: str,
    mime_type: str = "",
    size_bytes: int = 0,
    title: Optional[str] = None,
    product_id: Optional[str] = None,
    document_type: str = "other",
    storage_key: Optional[str] = None,
    session_factory=SessionLocal,
) -> Dict[str, Any]:
    """
    Create a document record in the "uploaded" state.

    Raises:
        DuplicateDocument: the organization already uploaded the same bytes
    """
    with session_factory() as db, db.begin():
        existing = db.execute(
            select(Document.id).where(
                Document.organization_id == organization_id,
                Document.content_hash == content_hash,
            )
        ).scalar_one_or_none()
        if existing:
            raise DuplicateDocument(existing)

        doc = Document(
            id=str(uuid.uuid4()),
            organization_id=organization_id,
            product_id=product_id,
            title=title or filename,
            filename=filename,
            mime_type=mime_type,
            size_bytes=size_bytes,
            document_type=document_type,
            storage_key=storage_key,
            content_hash=content_hash,
            extracted_text=extracted_text,
            processing_status="uploaded",
        )
        db.add(doc)
        db.flush()
        db.refresh(doc)
        created = _to_dict(doc)

    logger.info("Document created", doc_id=created["id"], filename=filename, organization_id=organization_id)
    return created


def get_document(
    document_id: str,
    organization_id: str,
    include_text: bool = False,
    session_factory=SessionLocal,
) -> Dict[str, Any]:
    """
    Raises:
        DocumentNotFound: missing, or owned by another organization
    """
    with session_factory() as db:
        doc = db.get(Document, document_id)
        if doc is None or doc.organization_id != organization_id:
            raise DocumentNotFound(f"Document {document_id} not found")
        return _to_dict(doc, include_text=include_text)


def list_documents(
    organization_id: str,
    processing_status: Optional[str] = None,
    product_id: Optional[str] = None,
    document_type: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
    session_factory=SessionLocal,
) -> List[Dict[str, Any]]:
    """
    Returns the organization's documents with chunk counts, newest first.
    """
    conditions = ["d.organization_id = :org"]
    params: Dict[str, Any] = {"org": organization_id, "limit": limit, "offset": offset}
    if processing_status:
        conditions.append("d.processing_status = :status")
        params["status"] = processing_status
    if product_id:
        conditions.append("d.product_id = :product_id")
        params["product_id"] = product_id
    if document_type:
        conditions.append("d.document_type = :document_type")
        params["document_type"] = document_type

    with session_factory() as db:
        rows = db.execute(text(f"""
            SELECT d.id,
                   d.title,
                   d.filename,
                   d.mime_type,
                   d.size_bytes,
                   d.product_id,
                   d.document_type,
                   d.processing_status,
                   d.created_at,
                   d.processed_at,
                   COUNT(c.id) AS num_chunks,
                   COUNT(c.embedding) AS num_embedded_chunks
            FROM documents d
            LEFT JOIN document_chunks c ON c.document_id = d.id
            WHERE {" AND ".join(conditions)}
            GROUP BY d.id
            ORDER BY d.created_at DESC
            LIMIT :limit OFFSET :offset
        """), params).mappings().all()

    documents = [dict(r) for r in rows]
    logger.info("Listed documents", count=len(documents), organization_id=organization_id)
    return documents


def mark_processing(document_id: str, organization_id: str, session_factory=SessionLocal) -> None:
    """
    Move a document into "processing".

    Raises:
        DocumentNotFound: missing, or owned by another organization
        DocumentBusy: another run already holds the document
    """
    with session_factory() as db, db.begin():
        claimed = db.execute(text("""
            UPDATE documents
            SET processing_status = 'processing', processing_error = NULL, updated_at = NOW()
            WHERE id = :id AND organization_id = :org AND processing_status <> 'processing'
            RETURNING id
        """), {"id": document_id, "org": organization_id}).first()
        if claimed:
            return
        exists = db.execute(
            text("SELECT 1 FROM documents WHERE id = :id AND organization_id = :org"),
            {"id": document_id, "org": organization_id},
        ).first()

    if not exists:
        raise DocumentNotFound(f"Document {document_id} not found")
    raise DocumentBusy(f"Document {document_id} is already being processed")


def finish_processing(
    document_id: str,
    success: bool,
    error: Optional[str] = None,
    session_factory=SessionLocal,
) -> None:
    """Record the outcome of a pipeline run: "completed" or "failed"."""
    with session_factory() as db, db.begin():
        if success:
            db.execute(text("""
                UPDATE documents
                SET processing_status = 'completed', processing_error = NULL,
                    processed_at = NOW(), updated_at = NOW()
                WHERE id = :id
            """), {"id": document_id})
        else:
            db.execute(text("""
                UPDATE documents
                SET processing_status = 'failed', processing_error = :error, updated_at = NOW()
                WHERE id = :id
            """), {"id": document_id, "error": error})
    logger.info("Processing finished", doc_id=document_id, success=success)


def delete_document(document_id: str, organization_id: str, session_factory=SessionLocal) -> None:
    """
    Deletes a document and all its chunks (ON DELETE CASCADE).
    """
    with session_factory() as db, db.begin():
        res = db.execute(
            text("DELETE FROM documents WHERE id = :id AND organization_id = :org RETURNING id"),
            {"id": document_id, "org": organization_id},
        ).first()
        if not res:
            logger.warning("Document not found for deletion", doc_id=document_id)
            raise DocumentNotFound(f"Document {document_id} not found")

    logger.info("Document deleted", doc_id=document_id)
