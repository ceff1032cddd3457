"""Streaming session: one HTTP response as a chunked NDJSON channel.

Producers call ``write`` / ``write_heartbeat`` / ``end``; the HTTP layer
hands ``response()`` to FastAPI, whose transport pulls from ``body()``.
Writes are enqueued in call order and flushed as soon as the transport
asks for the next chunk.
"""

import asyncio
import json
import logging
import time
import uuid
from typing import Any, Callable, List, Optional, Union

from fastapi.responses import StreamingResponse

from ..constants import HEARTBEAT_INTERVAL_SECONDS, NDJSON_MEDIA_TYPE
from .events import StreamEvent

logger = logging.getLogger(__name__)

STREAM_HEADERS = {
    "Content-Type": NDJSON_MEDIA_TYPE,
    "Transfer-Encoding": "chunked",
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}

_EOF = object()


class StreamingSession:
    """A long-lived NDJSON response.

    After ``end()`` (or a client disconnect) every write is a no-op that
    returns 0.
    """

    def __init__(
        self,
        connection_id: Optional[str] = None,
        user_id: Optional[str] = None,
        heartbeat_interval: float = HEARTBEAT_INTERVAL_SECONDS,
    ):
        self.connection_id = connection_id or uuid.uuid4().hex
        self.user_id = user_id
        self.heartbeat_interval = heartbeat_interval
        self.created_at = time.time()
        self.last_activity = self.created_at
        self.bytes_written = 0
        self.headers_sent = False
        self.ended = False
        self.closed = False

        self._queue: asyncio.Queue = asyncio.Queue()
        self._finished = asyncio.Event()
        self._heartbeat_task: Optional[asyncio.Task] = None
        self._close_listeners: List[Callable[["StreamingSession"], Any]] = []
        self._drain_listeners: List[Callable[["StreamingSession"], Any]] = []

    @property
    def writable(self) -> bool:
        return self.headers_sent and not self.ended

    # ── Producer API ──────────────────────────────────────────────────

    def write(self, event: Union[StreamEvent, dict]) -> int:
        """Queue one event as a JSON line. Returns bytes written."""
        if self.ended:
            return 0
        if isinstance(event, StreamEvent):
            line = event.to_ndjson()
        else:
            line = json.dumps(event, default=str) + "\n"
        return self._enqueue(line)

    def write_heartbeat(self) -> int:
        """Write a bare newline to keep intermediaries from timing out."""
        if self.ended:
            return 0
        return self._enqueue("\n")

    def end(self, final_event: Union[StreamEvent, dict, None] = None) -> None:
        """Optionally write one last event, then close the stream."""
        if self.ended:
            return
        if final_event is not None:
            self.write(final_event)
        self.ended = True
        self._queue.put_nowait(_EOF)
        self._stop_heartbeat()

    def _enqueue(self, text: str) -> int:
        data = text.encode("utf-8")
        self._queue.put_nowait(data)
        self.bytes_written += len(data)
        self.last_activity = time.time()
        return len(data)

    # ── Listeners ─────────────────────────────────────────────────────

    def on_close(self, callback: Callable[["StreamingSession"], Any]) -> None:
        """Register a callback fired once the transport is gone."""
        self._close_listeners.append(callback)

    def on_drain(self, callback: Callable[["StreamingSession"], Any]) -> None:
        """Register a callback fired whenever the send queue empties."""
        self._drain_listeners.append(callback)

    def _notify(self, listeners) -> None:
        for callback in list(listeners):
            try:
                callback(self)
            except Exception as e:
                logger.error(f"Stream listener failed for {self.connection_id}: {e}")

    # ── Transport side ────────────────────────────────────────────────

    async def body(self):
        """Async iterator consumed by ``StreamingResponse``."""
        self.headers_sent = True
        self._start_heartbeat()
        try:
            while True:
                chunk = await self._queue.get()
                if chunk is _EOF:
                    break
                yield chunk
                if self._queue.empty():
                    self._notify(self._drain_listeners)
        finally:
            if not self.ended:
                logger.info(f"Client disconnected from stream {self.connection_id}")
            self.ended = True
            self.closed = True
            self._stop_heartbeat()
            self._finished.set()
            self._notify(self._close_listeners)

    def response(self, status_code: int = 200) -> StreamingResponse:
        return StreamingResponse(
            self.body(),
            status_code=status_code,
            media_type=NDJSON_MEDIA_TYPE,
            headers=STREAM_HEADERS,
        )

    async def wait_closed(self, timeout: Optional[float] = None) -> bool:
        """Wait until the transport has finished. False on timeout."""
        try:
            await asyncio.wait_for(self._finished.wait(), timeout)
            return True
        except asyncio.TimeoutError:
            return False

    # ── Heartbeat ─────────────────────────────────────────────────────

    def _start_heartbeat(self) -> None:
        if self._heartbeat_task is None and self.heartbeat_interval:
            self._heartbeat_task = asyncio.get_running_loop().create_task(self._heartbeat_loop())

    def _stop_heartbeat(self) -> None:
        if self._heartbeat_task is not None:
            self._heartbeat_task.cancel()
            self._heartbeat_task = None

    async def _heartbeat_loop(self) -> None:
        while not self.ended:
            await asyncio.sleep(self.heartbeat_interval)
            if self.ended:
                break
            self.write_heartbeat()
