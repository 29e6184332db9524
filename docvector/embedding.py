"""
Embedding providers and the per-chunk embedding loop.

Every provider returns a unit-length vector of EMBEDDING_DIMENSIONS floats.
Similarity downstream is cosine (1 - cosine distance).
"""
import json
import time
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

import numpy as np

from .chunker import RawChunk
from .config import (
    BEDROCK_REGION,
    EMBEDDING_CONCURRENCY,
    EMBEDDING_DIMENSIONS,
    EMBEDDING_MODEL,
    EMBEDDING_PROVIDER,
    EMBEDDING_REQUEST_DELAY,
    EMBEDDING_TIMEOUT,
    ON_CHUNK_FAILURE,
    OPENAI_API_KEY,
)
from .errors import EmbeddingFailed, EmbeddingUnavailable, InvalidConfiguration
from .logging_config import logger

FAILURE_POLICIES = ("skip", "abort")


class Embedder:
    """Base class: subclasses implement _request() for one text."""

    default_model: str = ""

    def __init__(self, model_id: Optional[str] = None, dimensions: int = EMBEDDING_DIMENSIONS):
        self.model_id = model_id or self.default_model
        self.dimensions = dimensions

    def _request(self, text: str) -> Any:
        raise NotImplementedError

    def embed(self, text: str) -> List[float]:
        """
        Embed one text.

        Raises:
            EmbeddingFailed: provider error or malformed / wrong-sized vector
        """
        try:
            raw = self._request(text)
        except EmbeddingFailed:
            raise
        except Exception as e:
            raise EmbeddingFailed(f"{type(e).__name__}: {e}") from e
        return self._validate(raw)

    def _validate(self, raw: Any) -> List[float]:
        if raw is None or isinstance(raw, (str, bytes, dict)):
            raise EmbeddingFailed("Provider returned no embedding")
        try:
            vec = np.asarray(raw, dtype=np.float64)
        except (TypeError, ValueError) as e:
            raise EmbeddingFailed(f"Malformed embedding: {e}") from e
        if vec.ndim != 1 or vec.shape[0] != self.dimensions:
            raise EmbeddingFailed(
                f"Expected {self.dimensions} dimensions, got shape {vec.shape}"
            )
        if not np.all(np.isfinite(vec)):
            raise EmbeddingFailed("Embedding contains non-finite values")
        return vec.tolist()


class BedrockTitanEmbedder(Embedder):
    """Amazon Titan Text Embeddings V2 through the Bedrock runtime."""

    default_model = "amazon.titan-embed-text-v2:0"

    def __init__(
        self,
        model_id: Optional[str] = None,
        dimensions: int = EMBEDDING_DIMENSIONS,
        region: str = BEDROCK_REGION,
        timeout: float = EMBEDDING_TIMEOUT,
        client=None,
    ):
        super().__init__(model_id, dimensions)
        if client is None:
            import boto3
            from botocore.config import Config

            client = boto3.client(
                "bedrock-runtime",
                region_name=region,
                config=Config(
                    connect_timeout=timeout,
                    read_timeout=timeout,
                    retries={"max_attempts": 2, "mode": "standard"},
                ),
            )
        self._client = client

    def _request(self, text: str) -> Any:
        response = self._client.invoke_model(
            modelId=self.model_id,
            contentType="application/json",
            accept="application/json",
            body=json.dumps({
                "inputText": text,
                "dimensions": self.dimensions,
                "normalize": True,
            }),
        )
        body = json.loads(response["body"].read())
        return body.get("embedding")


class OpenAIEmbedder(Embedder):
    """OpenAI embeddings API; text-embedding-3 models return unit vectors."""

    default_model = "text-embedding-3-small"

    def __init__(
        self,
        model_id: Optional[str] = None,
        dimensions: int = EMBEDDING_DIMENSIONS,
        api_key: Optional[str] = OPENAI_API_KEY,
        timeout: float = EMBEDDING_TIMEOUT,
        client=None,
    ):
        super().__init__(model_id, dimensions)
        if client is None:
            if not api_key:
                raise RuntimeError("OPENAI_API_KEY is not set. Put it in env or .env (server-side only).")
            from openai import OpenAI
            client = OpenAI(api_key=api_key, timeout=timeout)
        self._client = client

    def _request(self, text: str) -> Any:
        resp = self._client.embeddings.create(
            model=self.model_id,
            input=text,
            dimensions=self.dimensions,
        )
        return resp.data[0].embedding


class LocalEmbedder(Embedder):
    """
    sentence-transformers model running in-process.
    The model output is truncated to `dimensions` and re-normalized.
    """

    default_model = "sentence-transformers/all-mpnet-base-v2"

    def __init__(self, model_id: Optional[str] = None, dimensions: int = EMBEDDING_DIMENSIONS, model=None):
        super().__init__(model_id, dimensions)
        self._model = model

    def preload(self):
        """Load the model up front to avoid first-request delay."""
        if self._model is None:
            from sentence_transformers import SentenceTransformer
            logger.info("Loading embedding model", model=self.model_id)
            self._model = SentenceTransformer(
                self.model_id,
                tokenizer_kwargs={"clean_up_tokenization_spaces": False},
            )
            logger.info("Embedding model loaded", model=self.model_id)
        return self._model

    def _request(self, text: str) -> Any:
        model = self.preload()
        vec = np.asarray(
            model.encode([text], normalize_embeddings=True, show_progress_bar=False)[0],
            dtype=np.float64,
        )
        if vec.shape[0] < self.dimensions:
            raise EmbeddingFailed(
                f"Model {self.model_id} produces {vec.shape[0]} dimensions, {self.dimensions} configured"
            )
        vec = vec[: self.dimensions]
        norm = np.linalg.norm(vec)
        if norm == 0:
            raise EmbeddingFailed("Model returned a zero vector")
        return vec / norm


_PROVIDERS = {
    "bedrock": BedrockTitanEmbedder,
    "openai": OpenAIEmbedder,
    "local": LocalEmbedder,
}

_embedder: Optional[Embedder] = None


def build_embedder(provider: str = EMBEDDING_PROVIDER, model_id: Optional[str] = EMBEDDING_MODEL) -> Embedder:
    """
    Raises:
        InvalidConfiguration: unknown provider name
        EmbeddingUnavailable: the provider client could not be set up (missing key, SDK error)
    """
    try:
        cls = _PROVIDERS[provider]
    except KeyError:
        raise InvalidConfiguration(
            f"Unknown embedding provider {provider!r}; expected one of {sorted(_PROVIDERS)}"
        ) from None
    try:
        return cls(model_id=model_id)
    except Exception as e:
        raise EmbeddingUnavailable(
            f"Cannot initialise {provider} embedder: {type(e).__name__}: {e}"
        ) from e


def get_embedder() -> Embedder:
    """
    Process-wide embedder built from configuration.

    Raises:
        EmbeddingUnavailable: the configured provider cannot be used
    """
    global _embedder
    if _embedder is None:
        try:
            _embedder = build_embedder()
        except InvalidConfiguration as e:
            raise EmbeddingUnavailable(str(e)) from e
        logger.info("Embedder ready", provider=EMBEDDING_PROVIDER, model=_embedder.model_id,
                    dimensions=_embedder.dimensions)
    return _embedder


@dataclass
class EmbeddedChunk:
    chunk_index: int
    content: str
    metadata: Dict[str, Any] = field(default_factory=dict)
    embedding: Optional[List[float]] = None
    error: Optional[str] = None

    @property
    def has_embedding(self) -> bool:
        return self.embedding is not None


def check_failure_policy(on_chunk_failure: str) -> str:
    if on_chunk_failure not in FAILURE_POLICIES:
        raise InvalidConfiguration(
            f"on_chunk_failure must be one of {FAILURE_POLICIES}, got {on_chunk_failure!r}"
        )
    return on_chunk_failure


def embed_chunks(
    embedder: Embedder,
    chunks: Sequence[RawChunk],
    *,
    delay: float = EMBEDDING_REQUEST_DELAY,
    concurrency: int = EMBEDDING_CONCURRENCY,
    on_chunk_failure: str = ON_CHUNK_FAILURE,
) -> List[EmbeddedChunk]:
    """
    Embed every chunk with one provider request each.

    Args:
        embedder: Provider to call
        chunks: Chunker output
        delay: Pause after each request, per worker, to stay under rate limits
        concurrency: 1 runs a serial loop; N > 1 keeps at most N requests in flight
        on_chunk_failure: "skip" keeps a failed chunk without a vector,
            "abort" raises on the first failure

    Returns:
        One EmbeddedChunk per input chunk, in input order.

    Raises:
        EmbeddingFailed: only when on_chunk_failure == "abort"
    """
    check_failure_policy(on_chunk_failure)
    if concurrency < 1:
        raise InvalidConfiguration(f"concurrency must be >= 1, got {concurrency}")

    def work(chunk: RawChunk) -> EmbeddedChunk:
        try:
            vector = embedder.embed(chunk.content)
            return EmbeddedChunk(chunk.chunk_index, chunk.content, dict(chunk.metadata), vector)
        except EmbeddingFailed as e:
            if on_chunk_failure == "abort":
                raise EmbeddingFailed(str(e), chunk_index=chunk.chunk_index) from e
            logger.warning("Failed to embed chunk", chunk_index=chunk.chunk_index, error=str(e))
            return EmbeddedChunk(chunk.chunk_index, chunk.content, dict(chunk.metadata), None, str(e))
        finally:
            if delay > 0:
                time.sleep(delay)

    t = time.perf_counter()
    if concurrency == 1:
        results = [work(c) for c in chunks]
    else:
        results = []
        pending = deque()
        with ThreadPoolExecutor(max_workers=concurrency) as pool:
            for chunk in chunks:
                # bounded in-flight window: wait on the oldest before submitting more
                if len(pending) >= concurrency:
                    results.append(pending.popleft().result())
                pending.append(pool.submit(work, chunk))
            while pending:
                results.append(pending.popleft().result())

    failed = sum(1 for r in results if not r.has_embedding)
    logger.info(
        "Embedded chunks",
        total=len(results),
        failed=failed,
        model=embedder.model_id,
        time_ms=round((time.perf_counter() - t) * 1000, 2),
    )
    return results


def embed_query(embedder: Embedder, text: str) -> List[float]:
    """Embed a search query; any failure makes search impossible."""
    try:
        return embedder.embed(text)
    except EmbeddingFailed as e:
        logger.error("Query embedding failed", error=str(e))
        raise EmbeddingUnavailable(f"Failed to generate query embedding: {e}") from e
