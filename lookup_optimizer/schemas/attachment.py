"""Attachment schemas."""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _reject_traversal(value: str | None) -> str | None:
    if value is None:
        return value
    if ".." in value.replace("\\", "/").split("/"):
        msg = "file_path must not contain '..' segments"
        raise ValueError(msg)
    return value


class AttachmentCreate(BaseModel):
    """Register a stored file and its derivatives."""

    file_path: str = Field(min_length=1, max_length=1024)
    title: str = Field(default="", max_length=500)
    sizes: list[str] = Field(default_factory=list, max_length=50)
    # Lax date string from an import, e.g. "2024-05-01 10:30:00"; defaults to now.
    created_at: str | None = Field(default=None, max_length=64)

    @field_validator("file_path")
    @classmethod
    def check_file_path(cls, value: str) -> str:
        _reject_traversal(value)
        return value


class AttachmentUpdate(BaseModel):
    """Change an attachment's file reference. ``file_path=None`` removes it."""

    file_path: str | None = Field(default=None, max_length=1024)
    title: str | None = Field(default=None, max_length=500)
    sizes: list[str] | None = Field(default=None, max_length=50)

    @field_validator("file_path")
    @classmethod
    def check_file_path(cls, value: str | None) -> str | None:
        return _reject_traversal(value)


class AttachmentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str
    file_path: str | None
    sizes: list[str]
    created_at: datetime
    remote_url: str | None = None
    remote_filename: str | None = None
    uploaded_at: datetime | None = None
    offloaded: bool = False
    offloaded_at: datetime | None = None
    upload_attempts: int = 0
    last_upload_status: str | None = None
    last_upload_at: datetime | None = None

    @field_validator("sizes", mode="before")
    @classmethod
    def decode_sizes(cls, value: Any) -> Any:
        if isinstance(value, str):
            return json.loads(value or "[]")
        return value
