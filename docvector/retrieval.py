from dataclasses import dataclass, field
from time import perf_counter
from typing import Any, Dict, List, Optional

from sqlalchemy import text as sa_text

from .config import SEARCH_DEFAULT_LIMIT, SEARCH_DEFAULT_THRESHOLD
from .db import SessionLocal
from .embedding import Embedder, embed_query
from .logging_config import logger
from .utils.helpers import to_vector_literal


@dataclass
class SearchResult:
    chunk_id: str
    document_id: str
    chunk_index: int
    content: str
    similarity_score: float
    metadata: Dict[str, Any] = field(default_factory=dict)
    document_title: Optional[str] = None
    filename: Optional[str] = None
    product_id: Optional[str] = None
    document_type: Optional[str] = None


def build_search_query(
    organization_id: Optional[str] = None,
    product_id: Optional[str] = None,
    document_type: Optional[str] = None,
):
    """
    Ranked nearest-neighbour query over chunks that have an embedding.
    The threshold comparison is inclusive.
    """
    conditions = [
        "c.embedding IS NOT NULL",
        "1 - (c.embedding <=> CAST(:qv AS vector)) >= :threshold",
    ]
    if organization_id:
        conditions.append("d.organization_id = :organization_id")
    if product_id:
        conditions.append("d.product_id = :product_id")
    if document_type:
        conditions.append("d.document_type = :document_type")

    return sa_text(f"""
        SELECT
            c.id AS chunk_id,
            c.document_id,
            c.chunk_index,
            c.content,
            c.metadata,
            d.title AS document_title,
            d.filename,
            d.product_id,
            d.document_type,
            1 - (c.embedding <=> CAST(:qv AS vector)) AS similarity
        FROM document_chunks c
        JOIN documents d ON d.id = c.document_id
        WHERE {" AND ".join(conditions)}
        ORDER BY similarity DESC, c.document_id, c.chunk_index
        LIMIT :k
    """)


def search_similar_chunks(
    query: str,
    k: int = SEARCH_DEFAULT_LIMIT,
    score_threshold: float = SEARCH_DEFAULT_THRESHOLD,
    organization_id: Optional[str] = None,
    product_id: Optional[str] = None,
    document_type: Optional[str] = None,
    *,
    embedder: Embedder,
    session_factory=SessionLocal,
) -> List[SearchResult]:
    """
        Search for the chunks most similar to a query.

        Parameters:
        query (str): The query string to search for.
        k (int): Maximum number of chunks to return.
        score_threshold (float): Minimum cosine similarity (inclusive).
        organization_id (str): Restrict to documents of this organization.
        product_id (str): Restrict to documents of this product.
        document_type (str): Restrict to documents of this type.

        Returns:
        List[SearchResult]: Chunks ordered by descending similarity. Empty when
        nothing clears the threshold.

        Raises:
        EmbeddingUnavailable: the query could not be embedded.
    """
    qv = embed_query(embedder, query)
    params = {"qv": to_vector_literal(qv), "threshold": score_threshold, "k": k}
    if organization_id:
        params["organization_id"] = organization_id
    if product_id:
        params["product_id"] = product_id
    if document_type:
        params["document_type"] = document_type

    t = perf_counter()
    with session_factory() as db:
        rows = db.execute(
            build_search_query(organization_id, product_id, document_type), params
        ).mappings().all()

    results = [
        SearchResult(
            chunk_id=r["chunk_id"],
            document_id=r["document_id"],
            chunk_index=r["chunk_index"],
            content=r["content"],
            similarity_score=float(r["similarity"]),
            metadata=r["metadata"] or {},
            document_title=r["document_title"] or r["filename"],
            filename=r["filename"],
            product_id=r["product_id"],
            document_type=r["document_type"],
        )
        for r in rows
    ]
    logger.info(
        "Searched similar chunks",
        results=len(results),
        threshold=score_threshold,
        k=k,
        time_ms=round((perf_counter() - t) * 1000, 2),
    )
    return results
