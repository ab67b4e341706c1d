"""Lookup request/response schemas."""

from __future__ import annotations

from pydantic import BaseModel, Field


class LookupResponse(BaseModel):
    """Resolution of a single path or URL."""

    query: str
    path: str
    owner_id: int | None
    found: bool
    source: str


class BatchLookupRequest(BaseModel):
    """Paths or URLs to resolve in one call."""

    items: list[str] = Field(min_length=1, max_length=1000)


class BatchLookupResponse(BaseModel):
    results: dict[str, int | None]
    found: int
    not_found: int


class OwnerUrlsResponse(BaseModel):
    owner_id: int
    urls: list[str]
