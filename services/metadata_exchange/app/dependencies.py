"""FastAPI dependency injection."""

from typing import Annotated, AsyncGenerator

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from services.metadata_exchange.app.config import Settings, get_settings
from services.metadata_exchange.app.core.clock import Clock, SystemClock
from services.metadata_exchange.app.db.repository import ContentRepository
from shared.utils.db import get_db_session


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Get database session dependency."""
    async with get_db_session() as session:
        yield session


def get_clock() -> Clock:
    """Get the wall-clock time source."""
    return SystemClock()


def get_repository(
    db: Annotated[AsyncSession, Depends(get_db)],
) -> ContentRepository:
    """Get content repository bound to the request session."""
    return ContentRepository(db)


# Type aliases for cleaner function signatures
DBSession = Annotated[AsyncSession, Depends(get_db)]
AppSettings = Annotated[Settings, Depends(get_settings)]
AppClock = Annotated[Clock, Depends(get_clock)]
Repository = Annotated[ContentRepository, Depends(get_repository)]
