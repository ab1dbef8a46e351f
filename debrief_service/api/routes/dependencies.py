"""Shared dependencies for API routes."""
from fastapi import Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from debrief_service.config.settings import get_settings
from debrief_service.core.exceptions import AuthenticationError
from debrief_service.db.database import get_db
from debrief_service.services.session_debrief import SessionDebriefService


async def get_current_user_id(
    x_user_id: str | None = Header(None, alias="X-User-Id"),
) -> str:
    """Get the caller's user id.

    Identity is established upstream; this service trusts the ``X-User-Id``
    header and falls back to ``default_user_id`` for local use.

    Raises:
        AuthenticationError: If neither is available
    """
    user_id = (x_user_id or "").strip() or get_settings().default_user_id
    if not user_id:
        raise AuthenticationError("No user id provided")
    return user_id


def get_request_id(request: Request) -> str | None:
    return getattr(request.state, "request_id", None)


async def get_debrief_service(db: AsyncSession = Depends(get_db)) -> SessionDebriefService:
    return SessionDebriefService(db)
