"""Authentication service: admin API key exchange and JWT access tokens."""

from __future__ import annotations

import logging
import secrets
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

from jose import JWTError, jwt

if TYPE_CHECKING:
    from lookup_optimizer.config import Settings

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"
ADMIN_ROLE = "admin"
ADMIN_SUBJECT = "admin"


def create_access_token(data: dict[str, Any], secret_key: str, expires_minutes: int = 15) -> str:
    """Create a JWT access token."""
    to_encode = data.copy()
    expire = datetime.now(UTC) + timedelta(minutes=expires_minutes)
    to_encode.update({"exp": expire, "type": "access"})
    return str(jwt.encode(to_encode, secret_key, algorithm=ALGORITHM))


def decode_access_token(token: str, secret_key: str) -> dict[str, Any] | None:
    """Decode and validate a JWT access token."""
    try:
        payload: dict[str, Any] = jwt.decode(token, secret_key, algorithms=[ALGORITHM])
        if payload.get("type") != "access":
            return None
        return payload
    except JWTError:
        logger.debug("Failed to decode access token", exc_info=True)
        return None


def verify_admin_key(candidate: str, settings: Settings) -> bool:
    """Constant-time comparison against the configured admin API key."""
    return secrets.compare_digest(candidate.encode("utf-8"), settings.admin_api_key.encode("utf-8"))


def issue_admin_token(api_key: str, settings: Settings) -> str | None:
    """Exchange the admin API key for an access token, or None if it is wrong."""
    if not verify_admin_key(api_key, settings):
        logger.warning("Rejected admin token request with an invalid API key")
        return None
    return create_access_token(
        {"sub": ADMIN_SUBJECT, "role": ADMIN_ROLE},
        settings.secret_key,
        settings.access_token_expire_minutes,
    )


def is_admin_payload(payload: dict[str, Any] | None) -> bool:
    return payload is not None and payload.get("role") == ADMIN_ROLE
