"""Attachment record endpoints. Every mutation keeps the lookup index in step."""

from __future__ import annotations

import logging
from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException, status

from lookup_optimizer.api.deps import get_components, require_admin
from lookup_optimizer.schemas.attachment import (
    AttachmentCreate,
    AttachmentResponse,
    AttachmentUpdate,
)
from lookup_optimizer.services.container import Components
from lookup_optimizer.services.datetime_service import parse_datetime

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/attachments", tags=["attachments"])


@router.post("", response_model=AttachmentResponse, status_code=status.HTTP_201_CREATED)
async def create_attachment(
    body: AttachmentCreate,
    components: Annotated[Components, Depends(get_components)],
    _admin: Annotated[dict[str, Any], Depends(require_admin)],
) -> AttachmentResponse:
    attachment = await components.store.create(
        file_path=body.file_path,
        title=body.title,
        sizes=body.sizes,
        created_at=parse_datetime(body.created_at) if body.created_at else None,
    )
    return AttachmentResponse.model_validate(attachment)


@router.get("/{owner_id}", response_model=AttachmentResponse)
async def get_attachment(
    owner_id: int,
    components: Annotated[Components, Depends(get_components)],
    _admin: Annotated[dict[str, Any], Depends(require_admin)],
) -> AttachmentResponse:
    attachment = await components.store.get(owner_id)
    if attachment is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Attachment not found")
    return AttachmentResponse.model_validate(attachment)


@router.patch("/{owner_id}", response_model=AttachmentResponse)
async def update_attachment(
    owner_id: int,
    body: AttachmentUpdate,
    components: Annotated[Components, Depends(get_components)],
    _admin: Annotated[dict[str, Any], Depends(require_admin)],
) -> AttachmentResponse:
    """Change the file reference; only fields sent in the body are touched."""
    current = await components.store.get(owner_id)
    if current is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Attachment not found")
    fields = body.model_fields_set
    attachment = await components.store.update_file(
        owner_id,
        body.file_path if "file_path" in fields else current.file_path,
        sizes=body.sizes,
        title=body.title,
    )
    if attachment is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Attachment not found")
    return AttachmentResponse.model_validate(attachment)


@router.delete("/{owner_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_attachment(
    owner_id: int,
    components: Annotated[Components, Depends(get_components)],
    _admin: Annotated[dict[str, Any], Depends(require_admin)],
) -> None:
    if not await components.store.delete(owner_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Attachment not found")
