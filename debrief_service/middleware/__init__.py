"""
Middleware package for the application.
"""

from debrief_service.middleware.request_id import RequestIDMiddleware

__all__ = [
    "RequestIDMiddleware",
]
