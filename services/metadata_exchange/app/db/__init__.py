"""Database models and repository."""

from services.metadata_exchange.app.db.models import (
    ContentModel,
    JournalModel,
    RegistrationAuditModel,
)
from services.metadata_exchange.app.db.repository import ContentRepository

__all__ = [
    "ContentModel",
    "JournalModel",
    "RegistrationAuditModel",
    "ContentRepository",
]
