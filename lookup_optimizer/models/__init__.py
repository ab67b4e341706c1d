"""SQLAlchemy ORM models for the lookup optimizer."""

from lookup_optimizer.models.attachment import Attachment
from lookup_optimizer.models.base import Base
from lookup_optimizer.models.lookup import LOOKUP_TABLE_NAME, LookupEntry
from lookup_optimizer.models.option import Option

__all__ = [
    "LOOKUP_TABLE_NAME",
    "Attachment",
    "Base",
    "LookupEntry",
    "Option",
]
