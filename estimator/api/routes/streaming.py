"""Streaming connection API routes (FastAPI).

Long-lived NDJSON connections registered with the ``ConnectionManager``,
plus stats, broadcast and close utilities scoped to the caller.
"""

import asyncio
import logging
from typing import Any, Set

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel

from ...core.auth import AuthUser
from ...core.exceptions import ConnectionLimitError, NotFoundError, ValidationError
from ...core.streaming import (
    BroadcastEvent,
    CompleteEvent,
    ConnectionEvent,
    ConnectionTestEvent,
    DataEvent,
    StartEvent,
)
from ..core.streaming import open_session
from ..deps import get_connection_manager, get_current_user, get_settings

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/stream", tags=["streaming"])

TEST_MESSAGE_COUNT = 5
ACTIVE_NOTICE_DELAY = 2.0

_tasks: Set[asyncio.Task] = set()


def _spawn(coro) -> None:
    task = asyncio.get_running_loop().create_task(coro)
    _tasks.add(task)
    task.add_done_callback(_tasks.discard)


class BroadcastRequest(BaseModel):
    message: Any = None


# ── Routes ───────────────────────────────────────────────────────────────

@router.get("/test")
async def stream_test(request: Request, interval: float = Query(1.0, ge=0, le=5)):
    """Unauthenticated smoke test: five ``data`` events, then ``complete``."""
    session = open_session(request)

    async def produce():
        session.write(StartEvent(message="HTTP streaming test started"))
        for count in range(1, TEST_MESSAGE_COUNT + 1):
            await asyncio.sleep(interval)
            if session.ended:
                logger.info("Test streaming connection closed by client")
                return
            session.write(DataEvent(message=f"Test message {count}", data={"count": count}))
        session.end(CompleteEvent(
            data={"totalMessages": TEST_MESSAGE_COUNT},
            message="Test completed successfully",
        ))

    _spawn(produce())
    return session.response()


@router.get("/connect")
async def connect(
    request: Request,
    user: AuthUser = Depends(get_current_user),
    manager=Depends(get_connection_manager),
    settings=Depends(get_settings),
):
    """Open a long-lived stream registered to the caller."""
    limit = settings.streaming.max_connections_per_user
    if manager.get_user_connection_count(user.id) >= limit:
        raise ConnectionLimitError(
            f"Maximum {limit} concurrent streaming connections allowed per user"
        )

    session = open_session(request, user.id)
    connection_id = session.connection_id
    manager.add(connection_id, session, user.id)
    session.on_close(lambda s: manager.remove(s.connection_id))

    session.write(ConnectionEvent(connection_id=connection_id, user=user.to_dict()))

    async def announce_active():
        await asyncio.sleep(ACTIVE_NOTICE_DELAY)
        if session.writable:
            session.write(ConnectionTestEvent(message="Connection is active"))

    _spawn(announce_active())
    return session.response()


@router.get("/stats")
async def stats(
    user: AuthUser = Depends(get_current_user),
    manager=Depends(get_connection_manager),
):
    """Connection stats for the caller's own connections."""
    return manager.get_stats(user.id)


@router.post("/broadcast")
async def broadcast(
    body: BroadcastRequest,
    user: AuthUser = Depends(get_current_user),
    manager=Depends(get_connection_manager),
):
    if not body.message:
        raise ValidationError("Message is required")

    delivered = manager.broadcast(BroadcastEvent(message=body.message, sender=user.email))
    return {
        "success": True,
        "connectionCount": len(manager),
        "delivered": delivered,
    }


@router.delete("/connection/{connection_id}")
async def close_connection(
    connection_id: str,
    user: AuthUser = Depends(get_current_user),
    manager=Depends(get_connection_manager),
):
    info = manager.get(connection_id)
    if info is None or info.user_id != user.id:
        raise NotFoundError("Connection not found")

    manager.remove(connection_id)
    info.session.end()
    return {"success": True, "message": "Connection closed"}
