"""Tests for fire-and-forget debrief generation."""
import pytest
import structlog
from sqlalchemy.ext.asyncio import async_sessionmaker
from structlog.testing import capture_logs

from debrief_service.repositories import SessionDebriefRepository
from debrief_service.services.debrief_trigger import trigger_debrief_generation
from tests.factories import USER_ID, content_json, make_llm_provider


@pytest.fixture
def session_factory(async_engine):
    return async_sessionmaker(async_engine, expire_on_commit=False)


@pytest.mark.asyncio
async def test_generation_commits_in_own_session(session_factory, settings, context_gatherer):
    task = trigger_debrief_generation(
        USER_ID,
        42,
        request_id="req-auto",
        session_factory=session_factory,
        llm_provider=make_llm_provider(content_json()),
        context_gatherer=context_gatherer,
        settings=settings,
    )
    await task

    async with session_factory() as session:
        active = await SessionDebriefRepository(session).get_active(USER_ID, 42)

    assert active is not None
    assert active.version == 1
    assert active.debrief_metadata["trigger"] == "auto"


@pytest.mark.asyncio
async def test_existing_debrief_is_not_regenerated(session_factory, settings, context_gatherer):
    llm = make_llm_provider(content_json())
    options = dict(
        session_factory=session_factory,
        llm_provider=llm,
        context_gatherer=context_gatherer,
        settings=settings,
    )

    await trigger_debrief_generation(USER_ID, 42, **options)
    await trigger_debrief_generation(USER_ID, 42, **options)

    llm.chat.assert_awaited_once()


@pytest.mark.asyncio
async def test_failures_are_logged_not_raised(session_factory, settings, context_gatherer):
    with capture_logs() as logs:
        task = trigger_debrief_generation(
            USER_ID,
            42,
            request_id="req-fail",
            session_factory=session_factory,
            llm_provider=make_llm_provider(RuntimeError("gateway down")),
            context_gatherer=context_gatherer,
            settings=settings,
        )
        await task

    assert task.exception() is None
    failures = [e for e in logs if e["event"] == "session_debrief.auto_generation_failed"]
    assert failures[0]["session_id"] == 42
    assert failures[0]["request_id"] == "req-fail"
    assert failures[0]["error_type"] == "RuntimeError"


@pytest.mark.asyncio
async def test_task_binds_its_own_log_context(session_factory, settings, context_gatherer):
    seen = {}

    async def gather(db, user_id, session_id, locale=None, timezone=None):
        seen.update(structlog.contextvars.get_contextvars())
        return await context_gatherer(db, user_id, session_id, locale=locale, timezone=timezone)

    structlog.contextvars.bind_contextvars(path="/workouts/save")
    try:
        await trigger_debrief_generation(
            USER_ID,
            43,
            request_id="req-ctx",
            session_factory=session_factory,
            llm_provider=make_llm_provider(content_json()),
            context_gatherer=gather,
            settings=settings,
        )
        caller_context = structlog.contextvars.get_contextvars()
    finally:
        structlog.contextvars.clear_contextvars()

    assert seen == {"request_id": "req-ctx", "user_id": USER_ID, "session_id": 43, "trigger": "auto"}
    assert caller_context == {"path": "/workouts/save"}
