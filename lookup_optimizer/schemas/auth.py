"""Authentication schemas."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field


class TokenRequest(BaseModel):
    """Exchange the admin API key for an access token."""

    api_key: str = Field(min_length=1, max_length=512)


class TokenResponse(BaseModel):
    """JWT access token response."""

    access_token: str
    token_type: Literal["bearer"] = "bearer"
    expires_in: int
