"""SQLAlchemy models for the content store read by the exchange."""

from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from sqlalchemy import (
    Boolean,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from shared.schemas.content import ContentStatus, ContentType, RegistrationState


def utc_now() -> datetime:
    """Return current UTC time with timezone info."""
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return uuid4().hex


def _enum_values(enum_cls) -> list[str]:
    return [e.value for e in enum_cls]


class Base(DeclarativeBase):
    """Base class for SQLAlchemy models."""

    pass


class JournalModel(Base):
    """SQLAlchemy model for journals table (OAI-PMH sets)."""

    __tablename__ = "journals"

    journal_id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    issn: Mapped[str | None] = mapped_column(String(32), nullable=True)
    eissn: Mapped[str | None] = mapped_column(String(32), nullable=True)
    publisher: Mapped[str | None] = mapped_column(String(500), nullable=True)
    language: Mapped[str | None] = mapped_column(String(16), nullable=True)
    open_access: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    status: Mapped[ContentStatus] = mapped_column(
        Enum(ContentStatus, name="content_status", values_callable=_enum_values),
        default=ContentStatus.PUBLISHED,
        nullable=False,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        nullable=False,
    )

    contents: Mapped[list["ContentModel"]] = relationship(
        "ContentModel",
        back_populates="journal",
    )


class ContentModel(Base):
    """SQLAlchemy model for contents table."""

    __tablename__ = "contents"

    content_id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    slug: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    body: Mapped[str | None] = mapped_column(Text, nullable=True)
    content_type: Mapped[ContentType] = mapped_column(
        Enum(ContentType, name="content_type", values_callable=_enum_values),
        default=ContentType.ARTICLE,
        nullable=False,
    )
    status: Mapped[ContentStatus] = mapped_column(
        Enum(ContentStatus, name="content_status", values_callable=_enum_values),
        default=ContentStatus.DRAFT,
        nullable=False,
    )
    published_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    # Ordered list of {"name", "institution", "orcid"}; list index is author sequence
    authors: Mapped[list[dict[str, Any]]] = mapped_column(JSONB, default=list, nullable=False)
    tags: Mapped[list[str]] = mapped_column(JSONB, default=list, nullable=False)
    pdf_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    license_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    journal_id: Mapped[str | None] = mapped_column(
        String(64),
        ForeignKey("journals.journal_id", ondelete="SET NULL"),
        nullable=True,
    )

    # Registration fields written back by the exchange
    doi: Mapped[str | None] = mapped_column(String(255), unique=True, nullable=True)
    registration_state: Mapped[RegistrationState] = mapped_column(
        Enum(RegistrationState, name="registration_state", values_callable=_enum_values),
        default=RegistrationState.UNSET,
        nullable=False,
    )
    registration_deposit_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    registration_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    registration_updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        onupdate=utc_now,
        nullable=False,
    )

    journal: Mapped[JournalModel | None] = relationship(
        "JournalModel",
        back_populates="contents",
        lazy="selectin",
    )
    registration_audit_records: Mapped[list["RegistrationAuditModel"]] = relationship(
        "RegistrationAuditModel",
        back_populates="content",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        Index("idx_contents_status_published_at", "status", "published_at"),
        Index("idx_contents_journal_id", "journal_id"),
        Index("idx_contents_registration_state", "registration_state"),
    )


class RegistrationAuditModel(Base):
    """SQLAlchemy model for registration_audit table."""

    __tablename__ = "registration_audit"

    # Insertion order breaks ties between rows stamped at the same instant
    audit_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    content_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("contents.content_id", ondelete="CASCADE"),
        nullable=False,
    )
    previous_state: Mapped[RegistrationState | None] = mapped_column(
        Enum(RegistrationState, name="registration_state", values_callable=_enum_values),
        nullable=True,
    )
    new_state: Mapped[RegistrationState] = mapped_column(
        Enum(RegistrationState, name="registration_state", values_callable=_enum_values),
        nullable=False,
    )
    candidate_doi: Mapped[str | None] = mapped_column(String(255), nullable=True)
    failure_cause: Mapped[str | None] = mapped_column(String(50), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        nullable=False,
    )

    content: Mapped["ContentModel"] = relationship(
        "ContentModel",
        back_populates="registration_audit_records",
    )

    __table_args__ = (
        Index("idx_registration_audit_content_id", "content_id"),
        Index("idx_registration_audit_created_at", "created_at"),
    )
