"""API routes module."""
from debrief_service.api.routes.session_debriefs import router as session_debriefs_router

__all__ = [
    "session_debriefs_router",
]
