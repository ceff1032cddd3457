"""uvicorn server that closes long-lived streams before draining.

uvicorn waits for open connections to finish before it runs the lifespan
shutdown. Registered streams never finish on their own, so they are sent
``server_shutdown`` and ended first; otherwise SIGTERM would hang on them.
"""

import logging

import uvicorn

from ..core.constants import GRACEFUL_SHUTDOWN_SECONDS

logger = logging.getLogger(__name__)


class EstimatorServer(uvicorn.Server):
    """``uvicorn.Server`` that ends registered streams on shutdown."""

    def __init__(self, config: uvicorn.Config, connection_manager):
        super().__init__(config)
        self.connection_manager = connection_manager

    async def shutdown(self, sockets=None) -> None:
        notified = await self.connection_manager.close_all()
        logger.info(f"Shutdown: ended {notified} streaming connection(s)")
        await super().shutdown(sockets=sockets)


def build_server(
    app,
    host: str = "0.0.0.0",
    port: int = 8080,
    log_level: str = "info",
    graceful_timeout: float = GRACEFUL_SHUTDOWN_SECONDS,
) -> EstimatorServer:
    """Server for an app built by ``create_app``."""
    config = uvicorn.Config(
        app,
        host=host,
        port=port,
        log_level=log_level,
        timeout_graceful_shutdown=graceful_timeout,
    )
    return EstimatorServer(config, app.state.connection_manager)
