"""Authentication API endpoints."""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Request, status

from lookup_optimizer.api.deps import get_settings
from lookup_optimizer.config import Settings
from lookup_optimizer.schemas.auth import TokenRequest, TokenResponse
from lookup_optimizer.services.auth_service import issue_admin_token
from lookup_optimizer.services.rate_limit_service import FailedAttemptLimiter

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])


def _get_client_ip(request: Request) -> str:
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        return forwarded_for.split(",", maxsplit=1)[0].strip()
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def _raise_if_limited(limiter: FailedAttemptLimiter, key: str) -> None:
    retry_after = limiter.retry_after(key)
    if retry_after:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many failed token requests",
            headers={"Retry-After": str(retry_after)},
        )


@router.post("/token", response_model=TokenResponse)
async def create_token(
    body: TokenRequest,
    request: Request,
    settings: Annotated[Settings, Depends(get_settings)],
) -> TokenResponse:
    """Exchange the admin API key for a short-lived access token."""
    limiter: FailedAttemptLimiter = request.app.state.rate_limiter
    client_key = f"token:{_get_client_ip(request)}"
    _raise_if_limited(limiter, client_key)

    token = issue_admin_token(body.api_key, settings)
    if token is None:
        limiter.record_failure(client_key)
        _raise_if_limited(limiter, client_key)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key",
        )

    limiter.clear(client_key)
    return TokenResponse(
        access_token=token,
        expires_in=settings.access_token_expire_minutes * 60,
    )
