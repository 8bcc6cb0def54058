"""DOI registration workflow.

Drives a content record through ``unset -> pending -> registered | failed``.
The ``pending`` claim is committed before the network call so that a
concurrent attempt on the same record sees it and backs off, and so that a
crash mid-deposit leaves a queryable state behind.
"""

from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum

from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from services.metadata_exchange.app.config import Settings, get_settings
from services.metadata_exchange.app.core.clock import Clock, Entropy, SystemClock, SystemEntropy
from services.metadata_exchange.app.core.state_machine import RegistrationStateMachine
from services.metadata_exchange.app.db.repository import ContentRepository
from services.metadata_exchange.app.registration.client import RegistrationClient
from services.metadata_exchange.app.registration.errors import FailureCause
from services.metadata_exchange.app.registration.identifiers import (
    DoiGenerator,
    IdentifierCollisionError,
    format_doi_url,
)
from services.metadata_exchange.app.registration.metadata import DepositMetadataBuilder
from shared.schemas.content import RegistrationState
from shared.utils.db import get_db_session
from shared.utils.logging import get_logger
from shared.utils.metrics import create_counter

logger = get_logger(__name__)

REGISTRATION_OUTCOMES = create_counter(
    "exchange_registration_outcomes_total",
    "DOI registration outcomes by kind and failure cause",
    ["outcome", "cause"],
)

REGISTRATION_TRANSITIONS = create_counter(
    "exchange_registration_transitions_total",
    "Registration state transitions",
    ["from_state", "to_state"],
)

COLLISION_CAUSE = "identifier_collision"
ABANDONED_CAUSE = "abandoned"
UNEXPECTED_CAUSE = "unexpected_error"


class OutcomeKind(str, Enum):
    """How a registration request ended."""

    REGISTERED = "registered"
    ALREADY_REGISTERED = "already_registered"
    NOT_FOUND = "not_found"
    NOT_PUBLISHED = "not_published"
    INVALID = "invalid"
    IN_PROGRESS = "in_progress"
    COLLISION = "collision"
    FAILED = "failed"


@dataclass(frozen=True)
class RegistrationOutcome:
    """Result of ``register`` or ``retry`` for one record."""

    kind: OutcomeKind
    content_id: str
    doi: str | None = None
    tracking_id: str | None = None
    cause: FailureCause | None = None
    message: str | None = None
    reasons: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.kind in (OutcomeKind.REGISTERED, OutcomeKind.ALREADY_REGISTERED)


class RegistrationConfigStatus(BaseModel):
    """Which registration settings are present, for operator display."""

    configured: bool
    details: dict[str, bool]


def is_registration_configured(settings: Settings | None = None) -> bool:
    """Whether deposits can be attempted at all."""
    return (settings or get_settings()).crossref_configured


def get_registration_config_status(settings: Settings | None = None) -> RegistrationConfigStatus:
    """Report which registration settings are set, never their values."""
    settings = settings or get_settings()
    return RegistrationConfigStatus(
        configured=settings.crossref_configured,
        details={
            "username": bool(settings.crossref_username),
            "password": bool(settings.crossref_password),
            "prefix": settings.doi_prefix_valid,
            "journal_title": bool(settings.crossref_journal_title),
            "issn": bool(settings.crossref_issn),
            "base_url": bool(settings.base_url),
        },
    )


class RegistrationOrchestrator:
    """Registers DOIs for content records and persists every outcome."""

    def __init__(
        self,
        session: AsyncSession,
        settings: Settings,
        client: RegistrationClient,
        clock: Clock | None = None,
        entropy: Entropy | None = None,
    ):
        """Initialize orchestrator.

        Args:
            session: Database session; committed at each durable step
            settings: Service settings
            client: Deposit client
            clock: Time source for DOI years and pending timeouts
            entropy: Randomness for DOI suffixes
        """
        self.session = session
        self.settings = settings
        self.client = client
        self.clock = clock or SystemClock()
        self.repository = ContentRepository(session)
        self.builder = DepositMetadataBuilder(settings)
        self.generator = DoiGenerator(
            prefix=settings.crossref_doi_prefix,
            repository=self.repository,
            entropy=entropy or SystemEntropy(),
            clock=self.clock,
            max_attempts=settings.doi_generation_max_attempts,
        )

    async def register(self, content_id: str) -> RegistrationOutcome:
        """Mint and deposit a DOI for a published record.

        Args:
            content_id: Content identifier

        Returns:
            Registration outcome

        Raises:
            Exception: Unexpected errors after the pending claim propagate,
                after ``failed`` has been persisted
        """
        record = await self.repository.get_record(content_id)
        if record is None:
            return self._finish(OutcomeKind.NOT_FOUND, content_id, message="Content not found")
        if not record.is_published:
            return self._finish(
                OutcomeKind.NOT_PUBLISHED,
                content_id,
                message=(
                    "Content must be published to register a DOI "
                    f"(status: {record.status.value})"
                ),
            )
        if record.doi:
            return self._finish(OutcomeKind.ALREADY_REGISTERED, content_id, doi=record.doi)

        state = record.registration_state
        if not RegistrationStateMachine.can_start(state):
            return self._finish(
                OutcomeKind.IN_PROGRESS,
                content_id,
                message=f"Registration cannot start from state {state.value}",
            )

        reasons = self.builder.validate(record)
        if reasons:
            logger.info("registration_invalid", content_id=content_id, reasons=reasons)
            return self._finish(
                OutcomeKind.INVALID,
                content_id,
                message="Content is missing required fields",
                reasons=reasons,
            )

        try:
            doi = await self.generator.generate_unique(
                record, exclude=await self.repository.failed_candidates(content_id)
            )
        except IdentifierCollisionError as e:
            if RegistrationStateMachine.is_valid_transition(state, RegistrationState.FAILED):
                await self._transition(
                    content_id,
                    state,
                    RegistrationState.FAILED,
                    error_message=str(e),
                    failure_cause=COLLISION_CAUSE,
                )
                await self.session.commit()
            logger.error("registration_identifier_collision", content_id=content_id, error=str(e))
            return self._finish(OutcomeKind.COLLISION, content_id, message=str(e))

        metadata = self.builder.build(record, doi)

        claimed = await self._transition(
            content_id, state, RegistrationState.PENDING, candidate_doi=doi
        )
        if not claimed:
            await self.session.rollback()
            logger.info(
                "registration_claim_lost", content_id=content_id, expected_state=state.value
            )
            return self._finish(
                OutcomeKind.IN_PROGRESS,
                content_id,
                message="Another registration attempt is in progress",
            )
        await self.session.commit()
        logger.info("registration_pending", content_id=content_id, candidate_doi=doi)

        try:
            result = await self.client.deposit(doi, metadata)

            if not result.success:
                await self._transition(
                    content_id,
                    RegistrationState.PENDING,
                    RegistrationState.FAILED,
                    error_message=result.reason,
                    candidate_doi=doi,
                    failure_cause=result.cause.value if result.cause else None,
                )
                await self.session.commit()
                return self._finish(
                    OutcomeKind.FAILED,
                    content_id,
                    cause=result.cause,
                    message=result.reason,
                )

            await self._transition(
                content_id,
                RegistrationState.PENDING,
                RegistrationState.REGISTERED,
                doi=doi,
                deposit_id=result.tracking_id,
            )
            await self.session.commit()
        except Exception as e:
            await self.session.rollback()
            await self._persist_unexpected_failure(content_id, doi, e)
            raise

        logger.info(
            "registration_completed",
            content_id=content_id,
            doi=doi,
            doi_url=format_doi_url(doi),
            tracking_id=result.tracking_id,
        )
        return self._finish(
            OutcomeKind.REGISTERED,
            content_id,
            doi=doi,
            tracking_id=result.tracking_id,
        )

    async def retry(self, content_id: str) -> RegistrationOutcome:
        """Clear a record's registration and register it again.

        A ``pending`` record is left alone unless its claim is older than
        ``registration_pending_timeout_seconds``, in which case the earlier
        attempt is treated as abandoned.

        Args:
            content_id: Content identifier

        Returns:
            Outcome of the fresh registration
        """
        record = await self.repository.get_record(content_id)
        if record is None:
            return self._finish(OutcomeKind.NOT_FOUND, content_id, message="Content not found")

        state = record.registration_state
        if state == RegistrationState.PENDING:
            stale_before = self.clock.now() - timedelta(
                seconds=self.settings.registration_pending_timeout_seconds
            )
            abandoned = await self._transition(
                content_id,
                RegistrationState.PENDING,
                RegistrationState.FAILED,
                error_message="Registration attempt abandoned after timeout",
                failure_cause=ABANDONED_CAUSE,
                stale_before=stale_before,
            )
            if not abandoned:
                await self.session.rollback()
                return self._finish(
                    OutcomeKind.IN_PROGRESS,
                    content_id,
                    message="A registration attempt is already in progress",
                )
            logger.warning("registration_pending_abandoned", content_id=content_id)
            state = RegistrationState.FAILED

        if state != RegistrationState.UNSET:
            reset = await self._transition(
                content_id,
                state,
                RegistrationState.UNSET,
                clear_registration=True,
            )
            if not reset:
                await self.session.rollback()
                return self._finish(
                    OutcomeKind.IN_PROGRESS,
                    content_id,
                    message="Registration state changed concurrently",
                )
        await self.session.commit()
        logger.info("registration_reset", content_id=content_id, previous_state=state.value)

        return await self.register(content_id)

    async def _transition(
        self,
        content_id: str,
        from_state: RegistrationState,
        to_state: RegistrationState,
        **kwargs,
    ) -> bool:
        updated = await self.repository.update_registration_state(
            content_id, to_state, from_state, now=self.clock.now(), **kwargs
        )
        if updated:
            REGISTRATION_TRANSITIONS.labels(
                from_state=from_state.value, to_state=to_state.value
            ).inc()
        return updated

    async def _persist_unexpected_failure(
        self, content_id: str, doi: str, error: Exception
    ) -> None:
        logger.exception(
            "registration_unexpected_error",
            content_id=content_id,
            candidate_doi=doi,
            error=str(error),
            error_type=type(error).__name__,
        )
        updated = await self._transition(
            content_id,
            RegistrationState.PENDING,
            RegistrationState.FAILED,
            error_message=f"Unexpected error: {type(error).__name__}: {error}",
            candidate_doi=doi,
            failure_cause=UNEXPECTED_CAUSE,
        )
        if updated:
            await self.session.commit()
        REGISTRATION_OUTCOMES.labels(outcome=OutcomeKind.FAILED.value, cause=UNEXPECTED_CAUSE).inc()

    def _finish(self, kind: OutcomeKind, content_id: str, **kwargs) -> RegistrationOutcome:
        outcome = RegistrationOutcome(kind=kind, content_id=content_id, **kwargs)
        REGISTRATION_OUTCOMES.labels(
            outcome=kind.value,
            cause=outcome.cause.value if outcome.cause else "",
        ).inc()
        return outcome


def _build_client(settings: Settings, client: RegistrationClient | None) -> RegistrationClient:
    return client or RegistrationClient(settings)


async def register_doi_for_content(
    content_id: str,
    settings: Settings | None = None,
    client: RegistrationClient | None = None,
) -> RegistrationOutcome:
    """Register a DOI for one record using its own database session.

    Args:
        content_id: Content identifier
        settings: Settings override (defaults to environment settings)
        client: Deposit client override; created and closed here when omitted

    Returns:
        Registration outcome
    """
    settings = settings or get_settings()
    deposit_client = _build_client(settings, client)
    try:
        async with get_db_session() as session:
            orchestrator = RegistrationOrchestrator(session, settings, deposit_client)
            return await orchestrator.register(content_id)
    finally:
        if client is None:
            await deposit_client.close()


async def retry_doi_registration(
    content_id: str,
    settings: Settings | None = None,
    client: RegistrationClient | None = None,
) -> RegistrationOutcome:
    """Reset and re-run registration for one record using its own session."""
    settings = settings or get_settings()
    deposit_client = _build_client(settings, client)
    try:
        async with get_db_session() as session:
            orchestrator = RegistrationOrchestrator(session, settings, deposit_client)
            return await orchestrator.retry(content_id)
    finally:
        if client is None:
            await deposit_client.close()
