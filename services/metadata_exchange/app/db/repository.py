"""Database repository for content read by the metadata exchange."""

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from services.metadata_exchange.app.core.normalizers import normalize_doi
from services.metadata_exchange.app.core.state_machine import RegistrationStateMachine
from services.metadata_exchange.app.db.models import (
    ContentModel,
    JournalModel,
    RegistrationAuditModel,
)
from shared.schemas.content import (
    AuthorRef,
    ContentRecord,
    ContentStatus,
    GroupingRef,
    RegistrationState,
    ensure_utc,
)


def utc_now() -> datetime:
    """Return current UTC time with timezone info."""
    return datetime.now(timezone.utc)


def journal_to_ref(journal: JournalModel) -> GroupingRef:
    """Convert a journal row into its exchange schema."""
    return GroupingRef(
        journal_id=journal.journal_id,
        title=journal.title,
        issn=journal.issn,
        eissn=journal.eissn,
        publisher=journal.publisher,
        language=journal.language,
        open_access=journal.open_access,
        status=journal.status,
    )


def content_to_record(content: ContentModel) -> ContentRecord:
    """Convert a content row (journal eagerly loaded) into a ContentRecord."""
    return ContentRecord(
        content_id=content.content_id,
        title=content.title,
        slug=content.slug,
        description=content.description,
        body=content.body,
        content_type=content.content_type,
        status=content.status,
        published_at=content.published_at,
        created_at=content.created_at,
        doi=content.doi,
        journal_id=content.journal_id,
        journal=journal_to_ref(content.journal) if content.journal else None,
        authors=[AuthorRef.model_validate(author) for author in content.authors or []],
        tags=list(content.tags or []),
        pdf_url=content.pdf_url,
        license_url=content.license_url,
        registration_state=content.registration_state,
        registration_deposit_id=content.registration_deposit_id,
        registration_error=content.registration_error,
    )


class ContentRepository:
    """Repository for exchange reads and registration write-backs."""

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session."""
        self.session = session

    async def get_by_id(self, content_id: str) -> ContentModel | None:
        """Get content row by ID regardless of status."""
        query = (
            select(ContentModel)
            .where(ContentModel.content_id == content_id)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def get_record(self, content_id: str) -> ContentRecord | None:
        """Get a content record by ID regardless of status."""
        content = await self.get_by_id(content_id)
        return content_to_record(content) if content else None

    async def get_published_record(self, content_id: str) -> ContentRecord | None:
        """Get a content record only if it is published.

        Args:
            content_id: Native content identifier

        Returns:
            Content record, or None if absent or not published
        """
        query = select(ContentModel).where(
            and_(
                ContentModel.content_id == content_id,
                ContentModel.status == ContentStatus.PUBLISHED,
            )
        )
        result = await self.session.execute(query)
        content = result.scalar_one_or_none()
        return content_to_record(content) if content else None

    def _published_filters(
        self,
        from_date: datetime | None,
        until_date: datetime | None,
        journal_id: str | None,
    ) -> list[Any]:
        conditions: list[Any] = [
            ContentModel.status == ContentStatus.PUBLISHED,
            ContentModel.published_at.is_not(None),
        ]
        if from_date is not None:
            conditions.append(ContentModel.published_at >= from_date)
        if until_date is not None:
            conditions.append(ContentModel.published_at <= until_date)
        if journal_id is not None:
            conditions.append(ContentModel.journal_id == journal_id)
        return conditions

    async def list_published(
        self,
        from_date: datetime | None = None,
        until_date: datetime | None = None,
        journal_id: str | None = None,
        offset: int = 0,
        limit: int = 100,
    ) -> list[ContentRecord]:
        """List published records for harvesting.

        Records are ordered by published_at DESC, content_id DESC so that
        consecutive offset pages see a stable order.

        Args:
            from_date: Inclusive lower bound on published_at
            until_date: Inclusive upper bound on published_at
            journal_id: Only records in this journal
            offset: Number of records to skip
            limit: Maximum records to return

        Returns:
            List of content records
        """
        query = (
            select(ContentModel)
            .where(and_(*self._published_filters(from_date, until_date, journal_id)))
            .order_by(ContentModel.published_at.desc(), ContentModel.content_id.desc())
            .offset(offset)
            .limit(limit)
        )
        result = await self.session.execute(query)
        return [content_to_record(content) for content in result.scalars().all()]

    async def count_published(
        self,
        from_date: datetime | None = None,
        until_date: datetime | None = None,
        journal_id: str | None = None,
    ) -> int:
        """Count published records matching the harvest filters."""
        query = (
            select(func.count())
            .select_from(ContentModel)
            .where(and_(*self._published_filters(from_date, until_date, journal_id)))
        )
        result = await self.session.execute(query)
        return result.scalar() or 0

    async def earliest_published_at(self) -> datetime | None:
        """Publication timestamp of the oldest published record."""
        query = select(func.min(ContentModel.published_at)).where(
            ContentModel.status == ContentStatus.PUBLISHED
        )
        result = await self.session.execute(query)
        return ensure_utc(result.scalar())

    async def list_published_journals(self) -> list[GroupingRef]:
        """List published journals ordered by title."""
        query = (
            select(JournalModel)
            .where(JournalModel.status == ContentStatus.PUBLISHED)
            .order_by(JournalModel.title.asc(), JournalModel.journal_id.asc())
        )
        result = await self.session.execute(query)
        return [journal_to_ref(journal) for journal in result.scalars().all()]

    async def doi_exists(self, doi: str) -> bool:
        """Check whether any content already carries this DOI.

        DOIs are case-insensitive, so the comparison is too.
        """
        query = (
            select(ContentModel.content_id)
            .where(func.lower(ContentModel.doi) == normalize_doi(doi))
            .limit(1)
        )
        result = await self.session.execute(query)
        return result.first() is not None

    async def failed_candidates(self, content_id: str) -> set[str]:
        """DOIs that were submitted for this content and failed."""
        query = select(RegistrationAuditModel.candidate_doi).where(
            and_(
                RegistrationAuditModel.content_id == content_id,
                RegistrationAuditModel.new_state == RegistrationState.FAILED,
                RegistrationAuditModel.candidate_doi.is_not(None),
            )
        )
        result = await self.session.execute(query)
        return {doi for doi in result.scalars().all() if doi}

    async def update_registration_state(
        self,
        content_id: str,
        new_state: RegistrationState,
        expected_state: RegistrationState,
        doi: str | None = None,
        deposit_id: str | None = None,
        error_message: str | None = None,
        candidate_doi: str | None = None,
        failure_cause: str | None = None,
        clear_registration: bool = False,
        stale_before: datetime | None = None,
        now: datetime | None = None,
    ) -> bool:
        """Move a record's registration state with atomic optimistic locking.

        A single UPDATE with the expected state in its WHERE clause makes the
        transition race-free: of two concurrent callers expecting the same
        state, exactly one sees a modified row.

        Args:
            content_id: Content identifier
            new_state: Target registration state
            expected_state: State the record must currently be in
            doi: DOI to persist (registered transitions)
            deposit_id: Authority tracking id to persist
            error_message: Failure reason to persist
            candidate_doi: DOI that was attempted, recorded in the audit trail
            failure_cause: Machine-readable failure cause for the audit trail
            clear_registration: Null out DOI, deposit id and error
            stale_before: Only match if last registration update is older
            now: Transition time; defaults to the current UTC time

        Returns:
            True if the row was updated, False on lock conflict or missing row

        Raises:
            InvalidTransitionError: If the transition is not allowed
        """
        RegistrationStateMachine.validate_transition(expected_state, new_state)

        now = now or utc_now()
        values: dict[str, Any] = {
            "registration_state": new_state,
            "registration_updated_at": now,
            "updated_at": now,
        }
        if clear_registration:
            values.update(doi=None, registration_deposit_id=None, registration_error=None)
        if doi is not None:
            values["doi"] = doi
        if deposit_id is not None:
            values["registration_deposit_id"] = deposit_id
        if error_message is not None:
            values["registration_error"] = error_message
        elif new_state in (RegistrationState.PENDING, RegistrationState.REGISTERED):
            values["registration_error"] = None

        where_conditions = [
            ContentModel.content_id == content_id,
            ContentModel.registration_state == expected_state,
        ]
        if stale_before is not None:
            where_conditions.append(
                or_(
                    ContentModel.registration_updated_at.is_(None),
                    ContentModel.registration_updated_at < stale_before,
                )
            )

        stmt = (
            update(ContentModel)
            .where(and_(*where_conditions))
            .values(**values)
            .execution_options(synchronize_session="fetch")
        )
        result = await self.session.execute(stmt)
        if result.rowcount == 0:
            return False

        self.session.add(
            RegistrationAuditModel(
                content_id=content_id,
                previous_state=expected_state,
                new_state=new_state,
                candidate_doi=candidate_doi or doi,
                failure_cause=failure_cause,
                error_message=error_message,
                created_at=now,
            )
        )
        await self.session.flush()
        return True

    async def list_registration_audit(self, content_id: str) -> list[RegistrationAuditModel]:
        """Registration audit trail for a record, oldest first."""
        query = (
            select(RegistrationAuditModel)
            .where(RegistrationAuditModel.content_id == content_id)
            .order_by(
                RegistrationAuditModel.created_at.asc(), RegistrationAuditModel.audit_id.asc()
            )
        )
        result = await self.session.execute(query)
        return list(result.scalars().all())
