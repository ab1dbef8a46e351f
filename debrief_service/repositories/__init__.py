"""Repositories package."""
from debrief_service.repositories.session_debrief_repository import SessionDebriefRepository

__all__ = [
    "SessionDebriefRepository",
]
