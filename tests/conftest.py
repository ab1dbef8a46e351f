"""Shared fixtures: in-memory SQLite database, settings and generation doubles."""
import os
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from unittest.mock import AsyncMock

# Point the application at SQLite before any debrief_service module builds its engine
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("DEBUG", "false")

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import debrief_service.models  # noqa: F401
from debrief_service.config.settings import Settings
from debrief_service.db.database import Base, enable_sqlite_savepoints
from debrief_service.models import SessionExercise, WorkoutSession
from tests.factories import USER_ID, make_context_payload


@pytest_asyncio.fixture
async def async_engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    enable_sqlite_savepoints(engine)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def async_db_session(async_engine) -> AsyncSession:
    session_maker = async_sessionmaker(async_engine, expire_on_commit=False)
    async with session_maker() as session:
        yield session
        await session.rollback()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        database_url="sqlite+aiosqlite://",
        debug=False,
        ai_debrief_model="test-debrief-model",
        openai_api_key="test-key",
    )


@pytest.fixture
def context_gatherer() -> AsyncMock:
    async def _gather(db, user_id, session_id, locale=None, timezone=None):
        return make_context_payload(session_id, locale or "en-US")

    return AsyncMock(side_effect=_gather)


@pytest.fixture
def shared_read_session(async_db_session):
    """Read-session factory that hands out the test session (gatherers are doubles)."""

    @asynccontextmanager
    async def _factory():
        yield async_db_session

    return _factory


@pytest_asyncio.fixture
async def workout_sessions(async_db_session: AsyncSession) -> dict[int, WorkoutSession]:
    """Sessions 41-46 for USER_ID, one day apart, each with a squat set."""
    base_date = datetime(2026, 10, 1, 18, 0)
    sessions = {}
    for offset, session_id in enumerate(range(41, 47)):
        workout = WorkoutSession(
            id=session_id,
            user_id=USER_ID,
            template_name="Lower A",
            workout_date=base_date + timedelta(days=offset),
        )
        workout.exercises.append(
            SessionExercise(
                user_id=USER_ID,
                exercise_name="Back Squat",
                set_order=1,
                weight=100.0 + offset * 5,
                reps=5,
                sets=3,
            )
        )
        async_db_session.add(workout)
        sessions[session_id] = workout
    await async_db_session.flush()
    return sessions
