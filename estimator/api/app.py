"""FastAPI application factory for the estimator.

Creates and configures the FastAPI app with CORS, error envelopes,
and all route modules registered.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse

from .core.response import register_exception_handlers

logger = logging.getLogger(__name__)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def create_app(
    db_manager,
    project_manager,
    estimate_service,
    connection_manager,
    auth_verifier,
    settings=None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        db_manager: DatabaseManager instance
        project_manager: ProjectManager instance
        estimate_service: EstimateService instance
        connection_manager: ConnectionManager for long-lived streams
        auth_verifier: TokenVerifier (anything with async ``verify``/``aclose``)
        settings: EstimatorSettings (defaults to the environment)

    Returns:
        Configured FastAPI application
    """
    if settings is None:
        from ..setting import get_settings
        settings = get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        # Tell open streams the server is going away before the loop stops
        notified = await connection_manager.close_all()
        logger.info(f"Shutdown: notified {notified} streaming connection(s)")
        await auth_verifier.aclose()

    app = FastAPI(
        title="Estimator API",
        description="AI-assisted construction estimates",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.server.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Store shared dependencies on app state
    app.state.settings = settings
    app.state.db_manager = db_manager
    app.state.project_manager = project_manager
    app.state.estimate_service = estimate_service
    app.state.connection_manager = connection_manager
    app.state.auth_verifier = auth_verifier

    register_exception_handlers(app)

    from .routes.agent import router as agent_router
    from .routes.projects import router as projects_router
    from .routes.streaming import router as streaming_router

    app.include_router(agent_router, prefix="/api")
    app.include_router(projects_router, prefix="/api")
    app.include_router(streaming_router, prefix="/api")

    @app.get("/", response_class=PlainTextResponse)
    async def root():
        return "Welcome to the Estimator API"

    @app.get("/health")
    async def health():
        return {"status": "ok", "timestamp": _now()}

    @app.get("/api/health")
    async def api_health():
        return {"status": "ok", "service": "estimator", "timestamp": _now()}

    logger.info("FastAPI app created with all routes registered")
    return app
