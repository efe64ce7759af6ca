"""Database engine, session factory and schema bootstrap."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from backend.models.base import Base

if TYPE_CHECKING:
    from backend.config import Settings

logger = logging.getLogger(__name__)


def sqlite_path(database_url: str) -> Path | None:
    """Return the file path of a file-backed SQLite URL, else None."""
    if not database_url.startswith("sqlite") or "///" not in database_url:
        return None
    raw = database_url.split("///", 1)[-1]
    if not raw or raw == ":memory:":
        return None
    return Path(raw)


def create_engine(
    settings: Settings,
) -> tuple[
    AsyncEngine,
    async_sessionmaker[AsyncSession],
]:
    """Create async engine and session factory.

    Creates the parent directory of a file-backed SQLite database first.
    """
    db_path = sqlite_path(settings.database_url)
    if db_path is not None:
        db_path.parent.mkdir(parents=True, exist_ok=True)

    engine = create_async_engine(
        settings.database_url,
        echo=settings.debug,
    )
    session_factory = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    return engine, session_factory


async def init_schema(engine: AsyncEngine) -> None:
    """Create any missing tables. Existing tables are left as they are."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.debug("Database schema ready")
