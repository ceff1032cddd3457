"""Glue between event producers and NDJSON responses.

A producer (an async iterator of ``StreamEvent``) runs as its own task and
writes into a ``StreamingSession``; the HTTP response only drains the
session. A client disconnect therefore never cancels an in-flight LLM
call: the producer finishes and its writes become no-ops.
"""

import asyncio
import logging
import uuid
from typing import AsyncIterator, Optional, Set

from fastapi import Request
from fastapi.responses import StreamingResponse

from ...core.constants import NDJSON_MEDIA_TYPE
from ...core.streaming import StreamEvent, StreamingSession, StreamTimeout, handle_streaming_error

logger = logging.getLogger(__name__)

_producers: Set[asyncio.Task] = set()


def wants_stream(request: Request) -> bool:
    """True when the client asked for NDJSON via the Accept header."""
    return NDJSON_MEDIA_TYPE in request.headers.get("accept", "")


def new_connection_id(user_id: Optional[str]) -> str:
    return f"{user_id or 'anonymous'}-{uuid.uuid4().hex[:12]}"


def open_session(request: Request, user_id: Optional[str] = None) -> StreamingSession:
    settings = request.app.state.settings
    return StreamingSession(
        connection_id=new_connection_id(user_id),
        user_id=user_id,
        heartbeat_interval=settings.streaming.heartbeat_seconds,
    )


async def _pump(events: AsyncIterator[StreamEvent], session: StreamingSession, timeout: float) -> None:
    async with StreamTimeout(session, timeout):
        try:
            async for event in events:
                session.write(event)
        except Exception as e:
            handle_streaming_error(e, session)
    session.end()


def stream_events(
    request: Request,
    events: AsyncIterator[StreamEvent],
    user_id: Optional[str] = None,
) -> StreamingResponse:
    """Serve ``events`` as an NDJSON response."""
    session = open_session(request, user_id)
    timeout = request.app.state.settings.streaming.timeout_seconds

    task = asyncio.get_running_loop().create_task(_pump(events, session, timeout))
    _producers.add(task)
    task.add_done_callback(_producers.discard)

    logger.debug(f"Streaming {request.url.path} on {session.connection_id}")
    return session.response()
