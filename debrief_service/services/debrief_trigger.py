"""Fire-and-forget debrief generation after a workout is saved."""
import asyncio

from debrief_service.core.logging import add_log_context, clear_log_context, get_logger
from debrief_service.db.database import async_session_maker
from debrief_service.models.enums import DebriefTrigger
from debrief_service.services.session_debrief import SessionDebriefService

logger = get_logger(__name__)

# Strong references so pending tasks are not garbage collected mid-flight
_background_tasks: set[asyncio.Task] = set()


async def _run_generation(
    user_id: str,
    session_id: int,
    request_id: str | None,
    locale: str | None,
    session_factory=None,
    **service_options,
) -> None:
    # Runs in a copy of the caller's context; rebinding here never leaks back
    clear_log_context()
    add_log_context(request_id=request_id, user_id=user_id, session_id=session_id, trigger="auto")
    session_factory = session_factory or async_session_maker
    try:
        async with session_factory() as session:
            service = SessionDebriefService(session, **service_options)
            await service.generate_and_persist(
                user_id,
                session_id,
                locale=locale,
                skip_if_active=True,
                trigger=DebriefTrigger.AUTO,
                request_id=request_id,
            )
            await session.commit()
    except Exception as exc:
        logger.error(
            "session_debrief.auto_generation_failed",
            user_id=user_id,
            session_id=session_id,
            request_id=request_id,
            error=str(exc),
            error_type=type(exc).__name__,
        )


def trigger_debrief_generation(
    user_id: str,
    session_id: int,
    request_id: str | None = None,
    locale: str | None = None,
    **options,
) -> asyncio.Task:
    """
    Schedule debrief generation for a just-completed session and return immediately.

    Uses its own database session and commit. Failures are logged, never raised
    to the caller. Must be called from a running event loop.
    """
    task = asyncio.create_task(
        _run_generation(user_id, session_id, request_id, locale, **options)
    )
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)
    return task
