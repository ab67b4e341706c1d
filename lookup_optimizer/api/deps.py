"""Shared API dependencies: DB session, auth, lookup components."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from typing import Annotated, Any

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from lookup_optimizer.config import Settings
from lookup_optimizer.services.auth_service import decode_access_token, is_admin_payload
from lookup_optimizer.services.container import Components

security = HTTPBearer(auto_error=False)


def get_settings(request: Request) -> Settings:
    """Get application settings from app state."""
    settings: Settings = request.app.state.settings
    return settings


def get_components(request: Request) -> Components:
    """Get the wired lookup components from app state."""
    components: Components = request.app.state.components
    return components


async def get_session(request: Request) -> AsyncGenerator[AsyncSession]:
    """Get a database session."""
    session_factory = request.app.state.session_factory
    async with session_factory() as session:
        yield session


async def get_token_payload(
    request: Request,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)] = None,
) -> dict[str, Any] | None:
    """Decoded bearer token, or None if absent or invalid."""
    if credentials is None:
        return None
    settings: Settings = request.app.state.settings
    return decode_access_token(credentials.credentials, settings.secret_key)


async def require_admin(
    payload: Annotated[dict[str, Any] | None, Depends(get_token_payload)],
) -> dict[str, Any]:
    """Require an admin access token. Raises 401 or 403."""
    if payload is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    if not is_admin_payload(payload):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )
    return payload
