"""Shared test fixtures for Hub."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from backend.config import Settings
from backend.main import create_app
from backend.models.base import Base
from backend.models.user import User
from backend.services.auth_service import hash_password
from backend.services.datetime_service import now_iso
from backend.services.store import RowStore
from backend.services.sync_context import SourceLockRegistry, SyncContext

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, Awaitable, Callable
    from pathlib import Path

    from backend.services.github_client import GitHubClient

logger = logging.getLogger(__name__)

TEST_SECRET_KEY = "test-secret-key-with-at-least-32-characters"
TEST_ADMIN_PASSWORD = "admin-password-123"


@asynccontextmanager
async def create_test_client(
    settings: Settings,
    github: GitHubClient | None = None,
) -> AsyncGenerator[AsyncClient]:
    """Create an HTTP test client with a fully initialized app.

    Manually performs the work of the application lifespan (DB schema, admin
    user, GitHub client) because ASGITransport does not trigger it.
    """
    from backend.database import create_engine as create_db_engine
    from backend.database import init_schema
    from backend.services.auth_service import ensure_admin_user

    app = create_app(settings)
    settings.validate_runtime_security()

    engine, session_factory = create_db_engine(settings)
    app.state.engine = engine
    app.state.session_factory = session_factory
    app.state.settings = settings
    app.state.github_client = github

    await init_schema(engine)

    async with session_factory() as session:
        await ensure_admin_user(session, settings)

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    await engine.dispose()


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    """Create test settings with a temporary database."""
    db_path = tmp_path / "test.db"
    return Settings(
        secret_key=TEST_SECRET_KEY,
        debug=True,
        database_url=f"sqlite+aiosqlite:///{db_path}",
        admin_username="admin",
        admin_password=TEST_ADMIN_PASSWORD,
        github_fetch_delay_seconds=0,
    )


@pytest.fixture
async def db_engine(test_settings: Settings) -> AsyncGenerator[AsyncEngine]:
    """Create a test database engine with the schema in place."""
    engine = create_async_engine(
        test_settings.database_url,
        echo=False,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def db_session(
    db_engine: AsyncEngine,
) -> AsyncGenerator[AsyncSession]:
    """Create a test database session."""
    session_factory = async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    async with session_factory() as session:
        yield session


async def _insert_user(session: AsyncSession, username: str) -> int:
    """Insert a user row and return its id."""
    now = now_iso()
    user = User(
        username=username,
        password_hash=hash_password("password-for-tests"),
        display_name=username,
        is_admin=False,
        created_at=now,
        updated_at=now,
    )
    session.add(user)
    await session.commit()
    return user.id


@pytest.fixture
def user_factory(db_session: AsyncSession) -> Callable[[str], Awaitable[int]]:
    """Insert additional users by name."""

    async def _make(username: str) -> int:
        return await _insert_user(db_session, username)

    return _make


@pytest.fixture
async def user_id(db_session: AsyncSession) -> int:
    return await _insert_user(db_session, "alice")


@pytest.fixture
def store(db_session: AsyncSession, user_id: int) -> RowStore:
    """Row store scoped to the default test user."""
    return RowStore(db_session, user_id)


@pytest.fixture
def sync_ctx(store: RowStore, test_settings: Settings) -> SyncContext:
    return SyncContext(store=store, settings=test_settings, locks=SourceLockRegistry())
