"""Path and URL lookup endpoints."""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, status

from lookup_optimizer.api.deps import get_components
from lookup_optimizer.schemas.lookup import (
    BatchLookupRequest,
    BatchLookupResponse,
    LookupResponse,
    OwnerUrlsResponse,
)
from lookup_optimizer.services.container import Components

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/lookup", tags=["lookup"])


@router.get("", response_model=LookupResponse)
async def lookup(
    components: Annotated[Components, Depends(get_components)],
    path: Annotated[str | None, Query(max_length=2048)] = None,
    url: Annotated[str | None, Query(max_length=2048)] = None,
) -> LookupResponse:
    """Resolve a file path or uploads URL to the owning attachment id."""
    if (path is None) == (url is None):
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="Provide exactly one of 'path' or 'url'",
        )
    query = path if path is not None else str(url)
    result = await components.lookup.lookup(query)
    return LookupResponse(
        query=query,
        path=components.lookup.to_path(query),
        owner_id=result.owner_id,
        found=result.owner_id is not None,
        source=result.source,
    )


@router.post("/batch", response_model=BatchLookupResponse)
async def batch_lookup(
    body: BatchLookupRequest,
    components: Annotated[Components, Depends(get_components)],
) -> BatchLookupResponse:
    """Resolve many paths or URLs at once."""
    results = await components.lookup.batch_lookup(body.items)
    found = sum(1 for owner_id in results.values() if owner_id is not None)
    return BatchLookupResponse(results=results, found=found, not_found=len(results) - found)


@router.get("/owners/{owner_id}/urls", response_model=OwnerUrlsResponse)
async def owner_urls(
    owner_id: int,
    components: Annotated[Components, Depends(get_components)],
) -> OwnerUrlsResponse:
    """Every URL at which the attachment's file may be requested."""
    urls = await components.lookup.owner_urls(owner_id)
    if urls is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Attachment not found")
    return OwnerUrlsResponse(owner_id=owner_id, urls=urls)
