"""Tests for graceful shutdown of a running server.

Tests cover:
- An open ``/api/stream/connect`` stream receives ``server_shutdown`` and
  ends when the server is asked to exit (what SIGTERM does)
- The server finishes shutting down, runs the lifespan shutdown and leaves
  the connection registry empty
"""

import asyncio
import json

import httpx

from estimator.api.app import create_app
from estimator.api.server import build_server
from estimator.core.auth import AuthUser
from estimator.core.db import DatabaseManager
from estimator.core.estimate import EstimateService
from estimator.core.exceptions import AuthenticationError
from estimator.core.project import ProjectManager
from estimator.core.streaming import ConnectionManager
from estimator.setting import EstimatorSettings


# ── Fixtures ────────────────────────────────────────────────────────────


USER = AuthUser(id="user-1", email="one@example.com")
AUTH = {"Authorization": "Bearer token-1"}


class FakeVerifier:
    def __init__(self):
        self.closed = False

    async def verify(self, token):
        if token != "token-1":
            raise AuthenticationError("Invalid or expired authentication token")
        return USER

    async def aclose(self):
        self.closed = True


class IdleLLMClient:
    async def generate(self, prompt):
        return ""

    async def generate_stream(self, prompt):
        yield ""


def build_test_app(connections, verifier):
    db = DatabaseManager("sqlite://")
    db.create_tables()
    store = ProjectManager(db)
    return create_app(
        db_manager=db,
        project_manager=store,
        estimate_service=EstimateService(IdleLLMClient(), store),
        connection_manager=connections,
        auth_verifier=verifier,
        settings=EstimatorSettings(),
    )


async def open_stream_then_exit(app):
    server = build_server(app, host="127.0.0.1", port=0, log_level="warning", graceful_timeout=5)
    serving = asyncio.ensure_future(server.serve())
    while not server.started:
        await asyncio.sleep(0.01)
    port = server.servers[0].sockets[0].getsockname()[1]

    events = []
    async with httpx.AsyncClient(base_url=f"http://127.0.0.1:{port}", timeout=10) as client:
        async with client.stream("GET", "/api/stream/connect", headers=AUTH) as response:
            async for line in response.aiter_lines():
                if not line.strip():
                    continue
                events.append(json.loads(line))
                if len(events) == 1:
                    server.should_exit = True

    await asyncio.wait_for(serving, 10)
    return events


# ── Tests: shutdown ─────────────────────────────────────────────────────


class TestGracefulShutdown:
    """Exit requests while a stream is open."""

    def test_open_stream_is_notified_and_server_exits(self):
        connections = ConnectionManager(drain_timeout=2)
        verifier = FakeVerifier()
        app = build_test_app(connections, verifier)

        events = asyncio.run(open_stream_then_exit(app))

        assert events[0]["type"] == "connection"
        assert events[-1]["type"] == "server_shutdown"
        assert len(connections) == 0
        assert verifier.closed is True
