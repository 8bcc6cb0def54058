"""Content schema models shared by the exchange service."""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator


class ContentStatus(str, Enum):
    """Editorial status of a content item."""

    DRAFT = "draft"
    REVIEW = "review"
    PUBLISHED = "published"
    ARCHIVED = "archived"


class ContentType(str, Enum):
    """Kind of content item."""

    ARTICLE = "ARTICLE"
    CASE_STUDY = "CASE_STUDY"
    BOOK = "BOOK"
    BOOK_CHAPTER = "BOOK_CHAPTER"
    TEACHING_NOTE = "TEACHING_NOTE"
    COLLECTION = "COLLECTION"


class RegistrationState(str, Enum):
    """DOI registration status of a content item."""

    UNSET = "unset"
    PENDING = "pending"
    REGISTERED = "registered"
    FAILED = "failed"


def ensure_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes and convert aware ones to UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class AuthorRef(BaseModel):
    """Author attached to a content item.

    Sequence position is the index in ``ContentRecord.authors``.
    """

    name: str = Field(..., description="Display name, e.g. 'Jane Q. Doe'")
    institution: Optional[str] = Field(None, description="Institutional affiliation")
    orcid: Optional[str] = Field(None, description="ORCID iD, bare or as URL")

    @property
    def family_name(self) -> str:
        """Last whitespace-delimited token of the name."""
        parts = self.name.split()
        return parts[-1] if parts else ""

    @property
    def given_name(self) -> Optional[str]:
        """Everything before the family name, or None for single-token names."""
        parts = self.name.split()
        if len(parts) < 2:
            return None
        return " ".join(parts[:-1])


class GroupingRef(BaseModel):
    """Journal (venue) a content item belongs to."""

    journal_id: str
    title: str
    issn: Optional[str] = Field(None, description="Print ISSN")
    eissn: Optional[str] = Field(None, description="Electronic ISSN")
    publisher: Optional[str] = None
    language: Optional[str] = None
    open_access: bool = False
    status: ContentStatus = ContentStatus.PUBLISHED

    @property
    def set_spec(self) -> str:
        """OAI-PMH setSpec for this journal."""
        return f"journal:{self.journal_id}"


class ContentRecord(BaseModel):
    """Unit of exchange: one content item with its authors and journal."""

    content_id: str
    title: str
    slug: str = ""
    description: Optional[str] = None
    body: Optional[str] = None
    content_type: ContentType = ContentType.ARTICLE
    status: ContentStatus = ContentStatus.DRAFT
    published_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    doi: Optional[str] = None
    journal_id: Optional[str] = None
    journal: Optional[GroupingRef] = None
    authors: list[AuthorRef] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)
    pdf_url: Optional[str] = None
    license_url: Optional[str] = None
    registration_state: RegistrationState = RegistrationState.UNSET
    registration_deposit_id: Optional[str] = None
    registration_error: Optional[str] = None

    @field_validator("published_at", "created_at")
    @classmethod
    def normalize_timestamps(cls, v: datetime | None) -> datetime | None:
        """Store every timestamp as aware UTC."""
        return ensure_utc(v)

    @property
    def is_published(self) -> bool:
        """Whether the exchange may expose this record."""
        return self.status == ContentStatus.PUBLISHED
