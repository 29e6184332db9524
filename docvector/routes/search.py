"""
Vector search API routes.
"""
from dataclasses import asdict
from time import perf_counter
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from ..config import SEARCH_DEFAULT_LIMIT, SEARCH_DEFAULT_THRESHOLD
from ..dependencies import OrganizationContext, get_organization_context, get_session_factory
from ..embedding import Embedder, get_embedder
from ..errors import EmbeddingUnavailable
from ..logging_config import logger
from ..schemas import SearchBody
from ..services.vector_service import search_similar_chunks

router = APIRouter(prefix="/api/v1", tags=["search"])


def _run_search(body: SearchBody, ctx: OrganizationContext, embedder: Embedder, session_factory):
    t = perf_counter()
    try:
        results = search_similar_chunks(
            body.query,
            body.limit,
            body.threshold,
            ctx.organization_id,
            product_id=body.product_id,
            document_type=body.document_type,
            embedder=embedder,
            session_factory=session_factory,
        )
    except EmbeddingUnavailable as e:
        logger.error("Vector search unavailable", error=str(e))
        raise HTTPException(status_code=503, detail="Vector search service unavailable")

    return {
        "query": body.query,
        "results": [asdict(r) for r in results],
        "total_results": len(results),
        "search_time_ms": round((perf_counter() - t) * 1000, 2),
        "similarity_threshold": body.threshold,
        "max_results": body.limit,
        "organization_id": ctx.organization_id,
    }


@router.post("/search/vector")
def vector_search(
    body: SearchBody,
    ctx: OrganizationContext = Depends(get_organization_context),
    embedder: Embedder = Depends(get_embedder),
    session_factory=Depends(get_session_factory),
):
    """
    Semantic search across the organization's document chunks.

    Returns chunks whose cosine similarity to the query is at least
    `threshold`, best first, at most `limit` of them. No match is an empty
    result, not an error.
    """
    return _run_search(body, ctx, embedder, session_factory)


@router.get("/search/vector")
def vector_search_get(
    query: str = Query(..., min_length=1, max_length=1000),
    limit: int = Query(SEARCH_DEFAULT_LIMIT, ge=1, le=50),
    threshold: float = Query(SEARCH_DEFAULT_THRESHOLD, ge=0.0, le=1.0),
    product_id: Optional[str] = Query(None),
    document_type: Optional[str] = Query(None),
    ctx: OrganizationContext = Depends(get_organization_context),
    embedder: Embedder = Depends(get_embedder),
    session_factory=Depends(get_session_factory),
):
    """Convenience GET endpoint for simple searches."""
    body = SearchBody(
        query=query, limit=limit, threshold=threshold, product_id=product_id, document_type=document_type
    )
    return _run_search(body, ctx, embedder, session_factory)
