"""Secondary index: normalized file path -> owner id."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Index, Integer, Text
from sqlalchemy.orm import Mapped, mapped_column

from lookup_optimizer.models.base import Base

LOOKUP_TABLE_NAME = "attachment_lookup"


class LookupEntry(Base):
    """One live path mapping per owner and per path."""

    __tablename__ = LOOKUP_TABLE_NAME

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    owner_id: Mapped[int] = mapped_column(Integer, nullable=False, unique=True)
    path: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (Index("idx_attachment_lookup_updated_at", "updated_at"),)
