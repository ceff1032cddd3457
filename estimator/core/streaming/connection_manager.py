"""Registry of open streaming sessions.

One instance is built by the composition root and shared through
``app.state``. Every mutation runs start to finish on the event loop
without awaiting, so concurrent requests never see a half-updated map.
Admission control (the per-user cap) is enforced by the HTTP handler; the
registry itself only counts.
"""

import asyncio
import logging
import time
from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, List, Optional

from ..constants import SHUTDOWN_DRAIN_SECONDS
from .events import ServerShutdownEvent, StreamEvent
from .session import StreamingSession

logger = logging.getLogger(__name__)


@dataclass
class ConnectionInfo:
    """Bookkeeping for one registered session."""

    connection_id: str
    session: StreamingSession
    user_id: str
    start_time: float

    @property
    def last_activity(self) -> float:
        return self.session.last_activity

    @property
    def bytes_written(self) -> int:
        return self.session.bytes_written

    def to_stats(self, now: float) -> dict:
        return {
            "id": self.connection_id,
            "userId": self.user_id,
            "durationMs": int((now - self.start_time) * 1000),
            "idleMs": int((now - self.last_activity) * 1000),
            "bytesWritten": self.bytes_written,
        }


class ConnectionManager:
    """Tracks sessions by connection id and owner."""

    def __init__(self, drain_timeout: float = SHUTDOWN_DRAIN_SECONDS):
        self.drain_timeout = drain_timeout
        self._connections: Dict[str, ConnectionInfo] = {}
        self._user_counts: Dict[str, int] = defaultdict(int)

    def __len__(self) -> int:
        return len(self._connections)

    def __contains__(self, connection_id: str) -> bool:
        return connection_id in self._connections

    def add(self, connection_id: str, session: StreamingSession, user_id: str) -> None:
        now = time.time()
        self._connections[connection_id] = ConnectionInfo(
            connection_id=connection_id,
            session=session,
            user_id=user_id,
            start_time=now,
        )
        self._user_counts[user_id] += 1
        logger.info(
            f"Connection added: {connection_id} user={user_id} "
            f"(user total={self._user_counts[user_id]})"
        )

    def remove(self, connection_id: str) -> bool:
        """Drop a session. Returns False when it was not registered."""
        info = self._connections.pop(connection_id, None)
        if info is None:
            return False

        count = self._user_counts.get(info.user_id, 0)
        if count <= 1:
            self._user_counts.pop(info.user_id, None)
        else:
            self._user_counts[info.user_id] = count - 1

        # A session that started streaming is closed by its own producer
        if not info.session.headers_sent:
            info.session.end()

        logger.info(f"Connection removed: {connection_id} user={info.user_id}")
        return True

    def get(self, connection_id: str) -> Optional[ConnectionInfo]:
        return self._connections.get(connection_id)

    def get_user_connections(self, user_id: str) -> List[ConnectionInfo]:
        return [c for c in self._connections.values() if c.user_id == user_id]

    def get_user_connection_count(self, user_id: str) -> int:
        return max(self._user_counts.get(user_id, 0), 0)

    def broadcast(self, event: StreamEvent) -> int:
        """Write ``event`` to every session that is already streaming.

        Returns the number of sessions written to.
        """
        delivered = 0
        for info in list(self._connections.values()):
            if not info.session.writable:
                continue
            if info.session.write(event):
                delivered += 1
        return delivered

    def get_stats(self, user_id: Optional[str] = None) -> dict:
        """Connection stats, optionally restricted to one user."""
        now = time.time()
        infos = list(self._connections.values())
        if user_id is not None:
            infos = [c for c in infos if c.user_id == user_id]
            user_counts = {user_id: len(infos)} if infos else {}
        else:
            user_counts = dict(self._user_counts)

        return {
            "totalConnections": len(infos),
            "userCounts": user_counts,
            "connections": [c.to_stats(now) for c in infos],
        }

    async def close_all(self) -> int:
        """Notify, end and deregister every session.

        Returns the number of sessions that received ``server_shutdown``.
        The registry is empty when this returns.
        """
        notified = []
        for connection_id in list(self._connections):
            info = self._connections[connection_id]
            if info.session.headers_sent:
                info.session.write(ServerShutdownEvent())
                info.session.end()
                notified.append(info.session)
            self.remove(connection_id)

        logger.info(f"Closed {len(notified)} streaming connections for shutdown")

        if notified and self.drain_timeout:
            results = await asyncio.gather(
                *(s.wait_closed(self.drain_timeout) for s in notified)
            )
            pending = results.count(False)
            if pending:
                logger.warning(f"{pending} streams did not drain before shutdown")

        return len(notified)
