import argparse
import logging
import sys


def setup_logging(log_level: str = "INFO") -> None:
    """Configure application logging."""
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[
            logging.StreamHandler(sys.stdout)
        ]
    )
    # Reduce noise from third-party libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.ERROR)
    logging.getLogger("sqlalchemy.pool").setLevel(logging.WARNING)
    logging.getLogger("uvicorn").setLevel(logging.INFO)
    logging.getLogger("psycopg2").setLevel(logging.WARNING)


logger = logging.getLogger(__name__)


def build_app(settings):
    """Wire the collaborators and return the FastAPI app."""
    from .api.app import create_app
    from .core.actions import MutationEngine
    from .core.auth import TokenVerifier
    from .core.db import get_database_manager, wait_for_db
    from .core.estimate import EstimateService
    from .core.gateway import LLMGateway
    from .core.llm import LLMClient
    from .core.model import EstimatorModel
    from .core.project import ProjectManager
    from .core.streaming import ConnectionManager

    db_manager = get_database_manager()
    if not wait_for_db(db_manager):
        raise SystemExit("Database unavailable, giving up")
    db_manager.create_tables()

    project_manager = ProjectManager(db_manager)

    llm = EstimatorModel.set(setting=settings)
    llm_client = LLMClient(LLMGateway(llm))
    logger.info(f"LLM provider: {settings.llm.provider}")

    auth_verifier = TokenVerifier(
        settings.auth.supabase_url,
        settings.auth.supabase_anon_key,
        timeout=settings.auth.timeout,
    )

    estimate_service = EstimateService(
        llm_client,
        project_manager,
        engine=MutationEngine(project_manager),
    )

    return create_app(
        db_manager=db_manager,
        project_manager=project_manager,
        estimate_service=estimate_service,
        connection_manager=ConnectionManager(),
        auth_verifier=auth_verifier,
        settings=settings,
    )


def main():
    """Main entry point for the estimator API."""
    from .setting import get_settings
    settings = get_settings()

    parser = argparse.ArgumentParser(description="Estimator - AI construction estimates")
    parser.add_argument(
        "--port",
        type=int,
        default=settings.server.port,
        help="Port for the API server"
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level"
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Run in debug mode (verbose logging)"
    )
    args = parser.parse_args()

    setup_logging("DEBUG" if args.debug else args.log_level)
    logger.info("Starting estimator API")

    app = build_app(settings)

    from .api.server import build_server

    logger.info(f"Starting FastAPI server on http://0.0.0.0:{args.port}")
    server = build_server(app, port=args.port, log_level=args.log_level.lower())
    server.run()


if __name__ == "__main__":
    main()
