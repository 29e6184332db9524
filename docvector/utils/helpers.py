"""
Utility helper functions.
"""
import hashlib
import json
import math
from typing import Optional, Sequence


def estimate_token_count(text: str) -> int:
    """
    Rough token estimate used for reporting (~4 characters per token).

    Example:
        >>> estimate_token_count("abcdefghi")
        3
    """
    return math.ceil(len(text or "") / 4)


def to_vector_literal(vector: Optional[Sequence[float]]) -> Optional[str]:
    """
    Serialize a vector to pgvector's text input format ("[0.1,0.2,...]").
    None stays None so the column is stored as NULL.
    """
    if vector is None:
        return None
    return json.dumps([float(v) for v in vector], separators=(",", ":"))


def content_hash(data: bytes) -> str:
    """SHA-256 hex digest, used for duplicate upload detection."""
    return hashlib.sha256(data).hexdigest()


def short_error(stage: str, e: Exception, limit: int = 300) -> str:
    """
    One-line error description that is safe to store and return to clients.

    Example:
        >>> short_error("embed", ValueError("bad input"))
        'embed: ValueError: bad input'
    """
    s = f"{stage}: {type(e).__name__}: {e}"
    return (s[: limit - 3] + "...") if len(s) > limit else s
