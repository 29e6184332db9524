"""
Request-scoped dependencies shared by the routers.
"""
from dataclasses import dataclass
from typing import Callable, Optional

from fastapi import Header, HTTPException

from .db import SessionLocal
from .embedding import Embedder, get_embedder


@dataclass(frozen=True)
class OrganizationContext:
    """Tenant the current request acts for; resolved once at the request boundary."""
    organization_id: str


def get_organization_context(
    x_organization_id: Optional[str] = Header(None, alias="X-Organization-Id"),
) -> OrganizationContext:
    if not x_organization_id or not x_organization_id.strip():
        raise HTTPException(status_code=401, detail="Organization context required")
    return OrganizationContext(organization_id=x_organization_id.strip())


def get_session_factory():
    """Session factory used by services; overridden in tests."""
    return SessionLocal


def get_embedder_source() -> Callable[[], Embedder]:
    """
    Deferred embedder lookup for routes that only sometimes embed, so a
    misconfigured provider does not break requests that never need it.
    """
    return get_embedder
