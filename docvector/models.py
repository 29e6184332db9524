from sqlalchemy import (
    Column, String, Text, Integer, ForeignKey, BigInteger, TIMESTAMP, text, UniqueConstraint
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base
from pgvector.sqlalchemy import Vector

from .config import EMBEDDING_DIMENSIONS

Base = declarative_base()

PROCESSING_STATUSES = ("uploaded", "processing", "completed", "failed")
DOCUMENT_TYPES = ("technical", "regulatory", "safety", "marketing", "certification", "other")


class Document(Base):
    __tablename__ = "documents"
    __table_args__ = (
        UniqueConstraint("organization_id", "content_hash", name="uq_documents_org_hash"),
    )
    id = Column(String, primary_key=True)
    organization_id = Column(String, nullable=False, index=True)
    product_id = Column(String, index=True)
    title = Column(Text, nullable=False)
    filename = Column(Text, nullable=False)
    mime_type = Column(Text)
    size_bytes = Column(BigInteger)
    document_type = Column(String(50), nullable=False, server_default="other")
    storage_key = Column(Text)
    content_hash = Column(String(64))
    extracted_text = Column(Text)
    processing_status = Column(String(20), nullable=False, server_default="uploaded", index=True)
    processing_error = Column(Text)
    created_at = Column(TIMESTAMP(timezone=True), server_default=text("NOW()"))
    updated_at = Column(TIMESTAMP(timezone=True), server_default=text("NOW()"))
    processed_at = Column(TIMESTAMP(timezone=True))


class DocumentChunk(Base):
    __tablename__ = "document_chunks"
    __table_args__ = (
        UniqueConstraint("document_id", "chunk_index", name="uq_document_chunks_doc_index"),
    )
    id = Column(String, primary_key=True)
    document_id = Column(
        String, ForeignKey("documents.id", ondelete="CASCADE"), nullable=False, index=True
    )
    chunk_index = Column(Integer, nullable=False)
    content = Column(Text, nullable=False)
    # "metadata" is reserved on declarative classes
    chunk_metadata = Column("metadata", JSONB, nullable=False, server_default=text("'{}'::jsonb"))
    # NULL when the provider failed for this chunk
    embedding = Column(Vector(EMBEDDING_DIMENSIONS), nullable=True)
    embedding_model = Column(String(100))
    created_at = Column(TIMESTAMP(timezone=True), server_default=text("NOW()"))
