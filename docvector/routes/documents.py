"""
Document management API routes.
Handles document upload, listing, processing and deletion.
"""
from dataclasses import asdict
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from ..chunk_store import delete_chunks, get_document_chunks
from ..config import MAX_FILE_SIZE_BYTES
from ..dependencies import (
    OrganizationContext,
    get_embedder_source,
    get_organization_context,
    get_session_factory,
)
from ..embedding import Embedder, get_embedder
from ..errors import DocumentBusy, DocumentNotFound, DuplicateDocument, InvalidConfiguration
from ..logging_config import logger
from ..models import DOCUMENT_TYPES, PROCESSING_STATUSES
from ..schemas import ProcessBody
from ..services import document_service
from ..services.vector_service import ProcessResult, process_stored_document
from ..text_extraction import read_any
from ..utils.helpers import content_hash

router = APIRouter(prefix="/api/v1", tags=["documents"])


def _process_response(result: ProcessResult) -> JSONResponse:
    status = 200 if result.success else 422
    return JSONResponse(status_code=status, content=jsonable_encoder(asdict(result)))


# ==================== Document Upload ====================

@router.post("/documents", status_code=201)
def upload_document(
    file: UploadFile = File(...),
    title: Optional[str] = Form(None),
    product_id: Optional[str] = Form(None),
    document_type: str = Form("other"),
    process: bool = Form(True),
    ctx: OrganizationContext = Depends(get_organization_context),
    embedder_source=Depends(get_embedder_source),
    session_factory=Depends(get_session_factory),
):
    """
    Upload one document and (by default) index it for vector search.

    Supported formats: PDF, DOCX, TXT

    Process:
    1. Read and size-check the upload
    2. Extract text
    3. Create the document record (duplicate uploads are rejected)
    4. Chunk, embed and store the chunks

    Returns:
        The document record and the processing result (None when process=false)
    """
    if document_type not in DOCUMENT_TYPES:
        raise HTTPException(status_code=400, detail=f"document_type must be one of {list(DOCUMENT_TYPES)}")

    data = file.file.read()
    if not data:
        raise HTTPException(status_code=400, detail="Empty file")
    if len(data) > MAX_FILE_SIZE_BYTES:
        raise HTTPException(
            status_code=400,
            detail=(
                f"File '{file.filename}' is too large. "
                f"Max size is {MAX_FILE_SIZE_BYTES // (1024 * 1024)} MB."
            ),
        )

    logger.info("Processing file", filename=file.filename, content_type=file.content_type)
    try:
        doc_text, kind = read_any(data, file.content_type or "", file.filename or "")
    except Exception as e:
        logger.error("Error extracting text", filename=file.filename, error=str(e))
        raise HTTPException(
            status_code=400,
            detail=f"Failed to extract text from {file.filename}: {str(e)}",
        )

    if not doc_text.strip():
        logger.warning("Empty document", filename=file.filename)
        raise HTTPException(status_code=400, detail="No extractable text in document")

    # resolve the provider before the record exists; process=false never needs it
    embedder = embedder_source() if process else None

    try:
        doc = document_service.create_document(
            ctx.organization_id,
            filename=file.filename or "upload",
            extracted_text=doc_text,
            content_hash=content_hash(data),
            mime_type=file.content_type or "",
            size_bytes=len(data),
            title=title,
            product_id=product_id,
            document_type=document_type,
            session_factory=session_factory,
        )
    except DuplicateDocument as e:
        raise HTTPException(status_code=409, detail=str(e))

    processing = None
    if process:
        try:
            result = process_stored_document(
                doc["id"], ctx.organization_id, embedder=embedder, session_factory=session_factory
            )
        except InvalidConfiguration as e:
            # the record stays "uploaded" and can be processed once options are fixed
            logger.error("Invalid processing configuration", doc_id=doc["id"], error=str(e))
            raise HTTPException(status_code=422, detail=str(e))
        processing = asdict(result)
        doc["processing_status"] = "completed" if result.success else "failed"

    logger.info("Document uploaded", doc_id=doc["id"], kind=kind, processed=process)
    return jsonable_encoder({"document": doc, "processing": processing})


# ==================== Document Listing ====================

@router.get("/documents")
def list_documents(
    status: Optional[str] = Query(None),
    product_id: Optional[str] = Query(None),
    document_type: Optional[str] = Query(None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    ctx: OrganizationContext = Depends(get_organization_context),
    session_factory=Depends(get_session_factory),
):
    """
    Returns the organization's documents with chunk counts.
    """
    if status and status not in PROCESSING_STATUSES:
        raise HTTPException(status_code=400, detail=f"status must be one of {list(PROCESSING_STATUSES)}")
    return document_service.list_documents(
        ctx.organization_id,
        processing_status=status,
        product_id=product_id,
        document_type=document_type,
        limit=limit,
        offset=offset,
        session_factory=session_factory,
    )


@router.get("/documents/{doc_id}")
def get_document(
    doc_id: str,
    ctx: OrganizationContext = Depends(get_organization_context),
    session_factory=Depends(get_session_factory),
):
    try:
        return document_service.get_document(doc_id, ctx.organization_id, session_factory=session_factory)
    except DocumentNotFound:
        raise HTTPException(status_code=404, detail="Document not found")


@router.get("/documents/{doc_id}/chunks")
def list_document_chunks(
    doc_id: str,
    ctx: OrganizationContext = Depends(get_organization_context),
    session_factory=Depends(get_session_factory),
):
    """Stored chunks of a document in chunk_index order (vectors omitted)."""
    try:
        document_service.get_document(doc_id, ctx.organization_id, session_factory=session_factory)
    except DocumentNotFound:
        raise HTTPException(status_code=404, detail="Document not found")

    chunks = get_document_chunks(doc_id, session_factory=session_factory)
    return jsonable_encoder({
        "document_id": doc_id,
        "total_chunks": len(chunks),
        "chunks": [asdict(c) for c in chunks],
    })


@router.delete("/documents/{doc_id}/chunks")
def clear_document_chunks(
    doc_id: str,
    ctx: OrganizationContext = Depends(get_organization_context),
    session_factory=Depends(get_session_factory),
):
    """
    Drops the document's chunks so it no longer shows up in search.
    The document itself is kept and can be processed again.
    """
    try:
        document_service.get_document(doc_id, ctx.organization_id, session_factory=session_factory)
    except DocumentNotFound:
        raise HTTPException(status_code=404, detail="Document not found")

    deleted = delete_chunks(doc_id, session_factory=session_factory)
    return {"ok": True, "document_id": doc_id, "deleted_chunks": deleted}


# ==================== Document Processing ====================

@router.post("/documents/{doc_id}/process")
def process_document(
    doc_id: str,
    body: Optional[ProcessBody] = None,
    ctx: OrganizationContext = Depends(get_organization_context),
    embedder: Embedder = Depends(get_embedder),
    session_factory=Depends(get_session_factory),
):
    """
    (Re)build the document's chunks and embeddings from its extracted text.
    Existing chunks are replaced, never appended to.
    """
    body = body or ProcessBody()
    try:
        result = process_stored_document(
            doc_id,
            ctx.organization_id,
            body.to_options(),
            on_chunk_failure=body.on_chunk_failure,
            embedder=embedder,
            session_factory=session_factory,
        )
    except InvalidConfiguration as e:
        raise HTTPException(status_code=422, detail=str(e))
    except DocumentNotFound:
        raise HTTPException(status_code=404, detail="Document not found")
    except DocumentBusy as e:
        raise HTTPException(status_code=409, detail=str(e))

    return _process_response(result)


# ==================== Document Deletion ====================

@router.delete("/documents/{doc_id}")
def delete_document(
    doc_id: str,
    ctx: OrganizationContext = Depends(get_organization_context),
    session_factory=Depends(get_session_factory),
):
    """
    Deletes a document and all its chunks (ON DELETE CASCADE).
    """
    try:
        document_service.delete_document(doc_id, ctx.organization_id, session_factory=session_factory)
    except DocumentNotFound:
        raise HTTPException(status_code=404, detail="Document not found")
    return {"ok": True, "deleted": doc_id}
