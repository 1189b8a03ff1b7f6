"""Shared fixtures: a fresh SQLite database per test and fake Slack delivery."""

from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from pulse_checkin.db.models import Base
from pulse_checkin.questions.catalog import seed_default_questions
from pulse_checkin.sessions.engine import SessionEngine
from pulse_checkin.users import create_user, get_user_by_handle


@pytest_asyncio.fixture
async def db_engine(tmp_path):
    """File-backed SQLite so every session factory sees the same data.

    Each test gets a fresh database for complete isolation.
    """
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'pulse.db'}", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def seeded(session_factory):
    """Default catalog: three core questions and five rotating ones."""
    async with session_factory() as session:
        await seed_default_questions(session)


@pytest_asyncio.fixture
async def user(session_factory):
    async with session_factory() as session:
        return await create_user(session, "U001", display_name="Alice", timezone="America/New_York")


@pytest.fixture
def messenger():
    """Messenger double; every send is an AsyncMock."""
    mock = MagicMock()
    mock.send_question_prompt = AsyncMock()
    mock.send_plain_message = AsyncMock()
    mock.send_reminder = AsyncMock()
    return mock


class DatabaseDirectory:
    """User directory that resolves from the database only, never Slack."""

    def __init__(self, timezone: str = "America/New_York"):
        self.timezone = timezone

    async def resolve(self, session, user_handle):
        user = await get_user_by_handle(session, user_handle)
        if user is None:
            user = await create_user(session, user_handle, timezone=self.timezone)
        return user


@pytest.fixture
def directory():
    return DatabaseDirectory()


@pytest.fixture
def session_engine(messenger, directory, session_factory):
    return SessionEngine(messenger, directory, session_factory=session_factory)
