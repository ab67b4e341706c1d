"""Attachment records: the owners of stored files."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Integer, Text
from sqlalchemy.orm import Mapped, mapped_column

from lookup_optimizer.models.base import Base


class Attachment(Base):
    """An owner record referencing a file under the uploads directory.

    ``file_path`` has no index in the model. Index maintenance adds
    ``idx_attached_file`` once per version; until then lookups against it
    are full scans.
    """

    __tablename__ = "attachments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(Text, nullable=False, default="")
    file_path: Mapped[str | None] = mapped_column(Text, nullable=True)
    # JSON list of derivative (size variant) file names, relative to the main file's directory
    sizes: Mapped[str] = mapped_column(Text, nullable=False, default="[]")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    remote_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    remote_filename: Mapped[str | None] = mapped_column(Text, nullable=True)
    uploaded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    offloaded: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    offloaded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    upload_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_upload_status: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_upload_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
