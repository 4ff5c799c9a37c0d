"""Caller authentication for the scheduling API.

The engine sits behind an identity gateway. The gateway authenticates with a
single shared password (HTTP Basic, SECURITY API_PASSWORD env var) and
forwards who is acting through three headers:

    X-Organization-Id   tenant the request is scoped to
    X-Profile-Id        acting profile
    X-Profile-Role      owner | admin | agent
"""
# ruff: noqa: B008

from __future__ import annotations

import secrets
import uuid
from dataclasses import dataclass

from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPBasic, HTTPBasicCredentials

from src.config import settings
from src.models.enums import ProfileRole

security = HTTPBasic()

MANAGER_ROLES = frozenset({ProfileRole.OWNER, ProfileRole.ADMIN})


@dataclass(frozen=True)
class RequestContext:
    """Who is calling, and on behalf of which organization."""

    organization_id: uuid.UUID
    profile_id: str
    role: ProfileRole

    @property
    def is_manager(self) -> bool:
        return self.role in MANAGER_ROLES


async def verify_api_credentials(
    credentials: HTTPBasicCredentials = Depends(security),
) -> str:
    """FastAPI dependency: verify HTTP Basic credentials.

    Returns the username on success, raises 401 on failure.
    """
    expected = settings.security.api_password
    if not expected:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="API_PASSWORD not configured",
        )

    password_ok = secrets.compare_digest(
        credentials.password.encode("utf-8"),
        expected.encode("utf-8"),
    )
    if not password_ok:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid credentials",
            headers={"WWW-Authenticate": "Basic"},
        )

    return credentials.username


async def get_request_context(
    _caller: str = Depends(verify_api_credentials),
    x_organization_id: uuid.UUID = Header(),
    x_profile_id: str = Header(min_length=1, max_length=100),
    x_profile_role: ProfileRole = Header(default=ProfileRole.AGENT),
) -> RequestContext:
    """Authenticated caller plus the identity headers forwarded by the gateway."""
    return RequestContext(
        organization_id=x_organization_id,
        profile_id=x_profile_id,
        role=x_profile_role,
    )


async def require_manager(
    ctx: RequestContext = Depends(get_request_context),
) -> RequestContext:
    """Only owners and admins may manage availability configuration."""
    if not ctx.is_manager:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only owners and admins may manage availability",
        )
    return ctx
