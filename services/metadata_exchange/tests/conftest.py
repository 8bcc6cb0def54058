"""Pytest fixtures for Metadata Exchange tests."""

from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import JSON
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from services.metadata_exchange.app.config import Settings, get_settings
from services.metadata_exchange.app.db.models import Base, ContentModel, JournalModel
from services.metadata_exchange.app.dependencies import get_clock, get_db
from services.metadata_exchange.app.main import app
from services.metadata_exchange.app.registration.retry import RetryPolicy
from shared.schemas.content import ContentStatus, ContentType

FIXED_NOW = datetime(2025, 6, 1, 12, 0, 0, tzinfo=timezone.utc)


# Patch JSONB to JSON for SQLite compatibility in tests
# This must happen before tables are created
def _patch_jsonb_for_sqlite():
    """Replace JSONB columns with JSON for SQLite compatibility."""
    for table in Base.metadata.tables.values():
        for column in table.columns:
            if isinstance(column.type, JSONB):
                column.type = JSON()


class FakeClock:
    """Clock frozen at a settable instant."""

    def __init__(self, now: datetime = FIXED_NOW):
        self.current = now

    def now(self) -> datetime:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += timedelta(seconds=seconds)


class FakeEntropy:
    """Deterministic byte source: returns queued values, then a counter."""

    def __init__(self, values: list[bytes] | None = None):
        self.values = list(values or [])
        self.counter = 0

    def token_bytes(self, nbytes: int) -> bytes:
        if self.values:
            return self.values.pop(0)
        self.counter += 1
        return self.counter.to_bytes(nbytes, "big")


class RecordingSleeper:
    """Async sleep replacement that records requested delays."""

    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


@pytest_asyncio.fixture
async def db_engine():
    """Create in-memory SQLite database engine for testing."""
    _patch_jsonb_for_sqlite()

    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(db_engine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the test engine."""
    return async_sessionmaker(
        bind=db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create database session for testing."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def test_settings() -> Settings:
    """Create test settings with deposit credentials configured."""
    return Settings(
        environment="test",
        database_url="sqlite+aiosqlite:///:memory:",
        base_url="https://primesp.com",
        repository_name="Prime Scientific Publishing",
        admin_email="admin@primesp.com",
        oai_page_size=100,
        crossref_username="depositor",
        crossref_password="s3cret",
        crossref_doi_prefix="10.55555",
        crossref_api_url="https://api.crossref.test/v1/deposits",
        crossref_journal_title="Prime Scientific Publishing",
        registration_max_attempts=3,
        registration_backoff_base_seconds=2.0,
        registration_backoff_max_seconds=60.0,
        registration_attempt_timeout_seconds=5.0,
        registration_pending_timeout_seconds=900,
    )


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_entropy() -> FakeEntropy:
    return FakeEntropy()


@pytest.fixture
def make_entropy():
    """Build a FakeEntropy with queued byte values."""
    return FakeEntropy


@pytest.fixture
def sleeper() -> RecordingSleeper:
    return RecordingSleeper()


@pytest.fixture
def retry_policy(test_settings, sleeper) -> RetryPolicy:
    """Retry policy that records waits instead of sleeping."""
    return RetryPolicy(
        max_attempts=test_settings.registration_max_attempts,
        backoff_base_seconds=test_settings.registration_backoff_base_seconds,
        backoff_max_seconds=test_settings.registration_backoff_max_seconds,
        attempt_timeout_seconds=test_settings.registration_attempt_timeout_seconds,
        sleep=sleeper,
    )


@pytest.fixture
def sample_content_data() -> dict:
    """Sample content row data for testing."""
    return {
        "content_id": "abc123",
        "title": "X",
        "slug": "x",
        "description": "<p>An abstract &amp; summary.</p>",
        "content_type": ContentType.ARTICLE,
        "status": ContentStatus.PUBLISHED,
        "published_at": datetime(2025, 3, 10, tzinfo=timezone.utc),
        "authors": [{"name": "Jane Q. Doe", "institution": "Test University", "orcid": None}],
        "tags": ["ethics"],
    }


@pytest_asyncio.fixture
async def journal(db_session: AsyncSession) -> JournalModel:
    """Create a published journal."""
    journal = JournalModel(
        journal_id="jrnl1",
        title="Journal of Testing",
        issn="1234-5678",
        eissn="8765-4321",
        publisher="Test Press",
        language="EN",
        open_access=True,
        status=ContentStatus.PUBLISHED,
    )
    db_session.add(journal)
    await db_session.commit()
    return journal


@pytest_asyncio.fixture
async def published_content(db_session: AsyncSession, sample_content_data: dict) -> ContentModel:
    """Create a published content item without a journal."""
    content = ContentModel(**sample_content_data)
    db_session.add(content)
    await db_session.commit()
    return content


@pytest.fixture
def make_content(db_session: AsyncSession):
    """Factory that inserts content rows with sensible defaults."""

    async def _make(**overrides) -> ContentModel:
        data = {
            "title": "Untitled",
            "slug": "untitled",
            "content_type": ContentType.ARTICLE,
            "status": ContentStatus.PUBLISHED,
            "published_at": datetime(2025, 1, 1, tzinfo=timezone.utc),
            "authors": [{"name": "Alex Author"}],
            "tags": [],
        }
        data.update(overrides)
        content = ContentModel(**data)
        db_session.add(content)
        await db_session.commit()
        return content

    return _make


@pytest_asyncio.fixture
async def test_client(
    session_factory,
    test_settings,
    fake_clock,
) -> AsyncGenerator[AsyncClient, None]:
    """Create test client with overridden database, settings and clock."""

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_settings] = lambda: test_settings
    app.dependency_overrides[get_clock] = lambda: fake_clock

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as client:
        yield client

    app.dependency_overrides.clear()
