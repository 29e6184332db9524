"""
Main FastAPI application entry point.
Responsibilities: App setup, router registration, startup/shutdown hooks.
"""
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .routes import documents, health, search
from .db.migrations import run_sql_migrations
from .embedding import LocalEmbedder, get_embedder
from .errors import EmbeddingUnavailable
from .logging_config import logger

# -------------------------------------------------
# App setup
# -------------------------------------------------

app = FastAPI(title="docvector", version="0.1.0")

# Register routers
app.include_router(health.router)
app.include_router(documents.router)
app.include_router(search.router)


@app.exception_handler(EmbeddingUnavailable)
async def embedding_unavailable_handler(request: Request, exc: EmbeddingUnavailable):
    logger.error("Embedding provider unavailable", path=request.url.path, error=str(exc))
    return JSONResponse(status_code=503, content={"detail": "Embedding service unavailable"})


@app.on_event("startup")
async def startup_event():
    """Initialize database schema and the embedding provider on startup."""
    try:
        logger.info("Running database migrations...")
        run_sql_migrations()
        logger.info("Database migrations completed")

        logger.info("Preparing embedding provider...")
        embedder = get_embedder()
        if isinstance(embedder, LocalEmbedder):
            embedder.preload()
        logger.info("Embedding provider ready", model=embedder.model_id)

    except Exception as e:
        logger.error("Startup initialization error", exc_info=e)
        # Continue anyway - health endpoint reports what is missing


@app.on_event("shutdown")
async def shutdown_event():
    """Cleanup on shutdown."""
    logger.info("Application shutting down")
