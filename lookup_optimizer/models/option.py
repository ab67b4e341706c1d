"""Durable name/value options with optional expiry."""

from __future__ import annotations

from sqlalchemy import Float, Text
from sqlalchemy.orm import Mapped, mapped_column

from lookup_optimizer.models.base import Base


class Option(Base):
    """A JSON-encoded value stored under a unique name.

    ``expires_at`` is a UNIX timestamp; expired rows are only removed when
    read or by explicit cleanup, never automatically.
    """

    __tablename__ = "options"

    name: Mapped[str] = mapped_column(Text, primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)
    expires_at: Mapped[float | None] = mapped_column(Float, nullable=True)
    updated_at: Mapped[float] = mapped_column(Float, nullable=False)
