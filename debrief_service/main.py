"""Main FastAPI application."""
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from debrief_service.config.settings import get_settings
from debrief_service.core.error_handlers import domain_error_handler
from debrief_service.core.exceptions import DomainError
from debrief_service.core.logging import configure_logging, get_logger
from debrief_service.db.database import init_db
from debrief_service.middleware import RequestIDMiddleware

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    # Startup: Initialize database
    await init_db()
    logger.info("app.started")

    yield
    # Shutdown: Cleanup resources
    from debrief_service.llm import cleanup_llm_provider
    await cleanup_llm_provider()

    from debrief_service.db.database import close_all_engines
    await close_all_engines()
    logger.info("app.stopped")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()
    configure_logging()

    app = FastAPI(
        title=settings.app_name,
        description="Versioned AI debriefs for completed workout sessions",
        version="0.1.0",
        lifespan=lifespan,
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Configure appropriately for production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestIDMiddleware)

    app.add_exception_handler(DomainError, domain_error_handler)

    # Health check endpoint
    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {"status": "healthy", "app": settings.app_name}

    # LLM health check
    @app.get("/health/llm")
    async def llm_health_check():
        """Check LLM provider availability."""
        from debrief_service.llm import get_llm_provider

        provider = get_llm_provider()
        is_healthy = await provider.health_check()

        return {
            "status": "healthy" if is_healthy else "unhealthy",
            "provider": settings.llm_provider,
            "model": settings.ai_debrief_model or settings.ai_gateway_model_health,
        }

    # Import and include routers
    from debrief_service.api.routes import session_debriefs_router

    app.include_router(session_debriefs_router, prefix="/session-debriefs", tags=["Session Debriefs"])

    return app


# Create app instance
app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("debrief_service.main:app", host="0.0.0.0", port=8000, reload=True)
