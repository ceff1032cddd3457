"""Tests for streaming sessions, the connection registry and stream errors.

Tests cover:
- NDJSON framing, write ordering and no-op writes after end
- Heartbeats and close listeners
- Client disconnect handling
- ConnectionManager add/remove, per-user counts, broadcast, stats, close_all
- Error classification and in-band error reporting
- Stream timeout
"""

import asyncio
import json

from estimator.core.exceptions import (
    AuthenticationError,
    ConnectionClosedError,
    QuotaExceededError,
    RateLimitError,
    ValidationError,
)
from estimator.core.streaming import (
    BroadcastEvent,
    CompleteEvent,
    ConnectionEvent,
    ConnectionManager,
    ConnectionTestEvent,
    DataEvent,
    StartEvent,
    StreamingSession,
    StreamTimeout,
    classify_error,
    handle_streaming_error,
    stream_error,
)


# ── Fixtures ────────────────────────────────────────────────────────────


def new_session(cid="c1", user="u1", heartbeat=0):
    return StreamingSession(cid, user, heartbeat_interval=heartbeat)


async def drain(session):
    return [chunk async for chunk in session.body()]


def lines(chunks):
    return [json.loads(c) for c in b"".join(chunks).decode().splitlines() if c.strip()]


# ── Tests: StreamingSession ─────────────────────────────────────────────


class TestStreamingSession:
    """Producer / transport behaviour."""

    def test_events_in_order_then_eof(self):
        async def scenario():
            session = new_session()
            session.write(StartEvent(message="go"))
            session.write({"type": "custom", "n": 1})
            session.end(CompleteEvent(message="done"))
            return session, await drain(session)

        session, chunks = asyncio.run(scenario())
        assert [e["type"] for e in lines(chunks)] == ["start", "custom", "complete"]
        assert all(c.endswith(b"\n") for c in chunks)
        assert session.closed is True
        assert session.bytes_written == sum(len(c) for c in chunks)

    def test_connection_events_wire_types(self):
        async def scenario():
            session = new_session()
            session.write(ConnectionEvent(connection_id="c1", user={"id": "u1"}))
            session.end(ConnectionTestEvent(message="Connection is active"))
            return lines(await drain(session))

        events = asyncio.run(scenario())
        assert [e["type"] for e in events] == ["connection", "test"]
        assert events[1]["message"] == "Connection is active"

    def test_write_after_end_is_noop(self):
        async def scenario():
            session = new_session()
            session.end()
            return session.write(DataEvent(message="late")), session.write_heartbeat()

        assert asyncio.run(scenario()) == (0, 0)

    def test_end_is_idempotent(self):
        async def scenario():
            session = new_session()
            session.end(CompleteEvent(message="one"))
            session.end(CompleteEvent(message="two"))
            return await drain(session)

        assert [e["message"] for e in lines(asyncio.run(scenario()))] == ["one"]

    def test_writable_only_after_headers(self):
        async def scenario():
            session = new_session()
            before = session.writable
            session.write(StartEvent(message="go"))
            body = session.body()
            await body.__anext__()
            during = session.writable
            session.end()
            async for _ in body:
                pass
            return before, during, session.writable

        assert asyncio.run(scenario()) == (False, True, False)

    def test_heartbeat_is_bare_newline(self):
        async def scenario():
            session = new_session(heartbeat=0.01)
            session.write(StartEvent(message="go"))
            body = session.body()
            await body.__anext__()
            beat = await asyncio.wait_for(body.__anext__(), 1.0)
            session.end()
            async for _ in body:
                pass
            return beat

        assert asyncio.run(scenario()) == b"\n"

    def test_close_listener_fires_once(self):
        calls = []

        async def scenario():
            session = new_session()
            session.on_close(lambda s: calls.append(s.connection_id))
            session.end()
            await drain(session)

        asyncio.run(scenario())
        assert calls == ["c1"]

    def test_client_disconnect_closes_session(self):
        async def scenario():
            session = new_session()
            session.write(StartEvent(message="go"))
            body = session.body()
            await body.__anext__()
            await body.aclose()
            return session, session.write(DataEvent(message="after"))

        session, written = asyncio.run(scenario())
        assert session.closed is True
        assert session.ended is True
        assert written == 0

    def test_response_headers(self):
        async def scenario():
            return new_session().response()

        response = asyncio.run(scenario())
        assert response.media_type == "application/x-ndjson"
        assert response.headers["cache-control"] == "no-cache"
        assert response.headers["x-accel-buffering"] == "no"


# ── Tests: ConnectionManager ────────────────────────────────────────────


class TestConnectionManager:
    """Registry bookkeeping."""

    def test_add_remove_counts(self):
        async def scenario():
            manager = ConnectionManager(drain_timeout=0)
            manager.add("a", new_session("a"), "u1")
            manager.add("b", new_session("b"), "u1")
            manager.add("c", new_session("c", "u2"), "u2")
            counts = (manager.get_user_connection_count("u1"), manager.get_user_connection_count("u2"))
            removed = manager.remove("a")
            again = manager.remove("a")
            return manager, counts, removed, again

        manager, counts, removed, again = asyncio.run(scenario())
        assert counts == (2, 1)
        assert removed is True
        assert again is False
        assert manager.get_user_connection_count("u1") == 1
        assert len(manager) == 2
        assert "a" not in manager

    def test_remove_ends_unstarted_session(self):
        async def scenario():
            manager = ConnectionManager(drain_timeout=0)
            session = new_session("a")
            manager.add("a", session, "u1")
            manager.remove("a")
            return session

        assert asyncio.run(scenario()).ended is True

    def test_count_never_negative(self):
        manager = ConnectionManager(drain_timeout=0)
        assert manager.get_user_connection_count("nobody") == 0

    def test_broadcast_only_to_streaming_sessions(self):
        async def scenario():
            manager = ConnectionManager(drain_timeout=0)
            live = new_session("live")
            live.headers_sent = True
            idle = new_session("idle")
            manager.add("live", live, "u1")
            manager.add("idle", idle, "u2")
            delivered = manager.broadcast(BroadcastEvent(message="hello", sender="a@b.c"))
            live.end()
            return delivered, lines(await drain(live)), manager.get("live").bytes_written

        delivered, events, written = asyncio.run(scenario())
        assert delivered == 1
        assert events[0]["type"] == "broadcast"
        assert events[0]["from"] == "a@b.c"
        assert written > 0

    def test_stats_scoped_to_user(self):
        async def scenario():
            manager = ConnectionManager(drain_timeout=0)
            manager.add("a", new_session("a"), "u1")
            manager.add("b", new_session("b", "u2"), "u2")
            return manager.get_stats("u1"), manager.get_stats()

        mine, everything = asyncio.run(scenario())
        assert mine["totalConnections"] == 1
        assert mine["userCounts"] == {"u1": 1}
        assert mine["connections"][0]["id"] == "a"
        assert everything["totalConnections"] == 2

    def test_stats_count_every_write(self):
        async def scenario():
            manager = ConnectionManager(drain_timeout=0)
            session = new_session("hb", heartbeat=0.01)
            manager.add("hb", session, "u1")
            reader = asyncio.ensure_future(drain(session))
            await asyncio.sleep(0)
            event_bytes = session.write(DataEvent(message="tick"))
            await asyncio.sleep(0.1)
            stats = manager.get_stats("u1")["connections"][0]
            session.end()
            await reader
            return stats, event_bytes, session

        stats, event_bytes, session = asyncio.run(scenario())
        assert stats["bytesWritten"] > event_bytes
        assert stats["bytesWritten"] <= session.bytes_written
        assert stats["idleMs"] < 100

    def test_close_all_notifies_streaming_sessions(self):
        async def scenario():
            manager = ConnectionManager(drain_timeout=0)
            live = new_session("live")
            live.headers_sent = True
            manager.add("live", live, "u1")
            manager.add("idle", new_session("idle"), "u1")
            notified = await manager.close_all()
            return manager, notified, lines(await drain(live))

        manager, notified, events = asyncio.run(scenario())
        assert notified == 1
        assert len(manager) == 0
        assert manager.get_user_connection_count("u1") == 0
        assert [e["type"] for e in events] == ["server_shutdown"]


# ── Tests: error handling ───────────────────────────────────────────────


class TestStreamErrors:
    """Classification and in-band reporting."""

    def test_classify_domain_errors(self):
        assert classify_error(QuotaExceededError()) == "QUOTA_EXCEEDED"
        assert classify_error(RateLimitError()) == "RATE_LIMIT"
        assert classify_error(asyncio.TimeoutError()) == "TIMEOUT"
        assert classify_error(AuthenticationError()) == "AUTH_FAILED"
        assert classify_error(ConnectionClosedError()) == "CONNECTION_CLOSED"
        assert classify_error(BrokenPipeError()) == "CONNECTION_CLOSED"
        assert classify_error(ValidationError("bad")) == "VALIDATION"

    def test_classify_provider_messages(self):
        assert classify_error(Exception("429 Too Many Requests")) == "RATE_LIMIT"
        assert classify_error(Exception("RESOURCE_EXHAUSTED: quota")) == "QUOTA_EXCEEDED"
        assert classify_error(Exception("request timed out")) == "TIMEOUT"
        assert classify_error(Exception("Invalid API key")) == "AUTH_FAILED"
        assert classify_error(Exception("boom")) == "UNKNOWN"

    def test_recoverable_error_keeps_stream_open(self):
        async def scenario():
            session = new_session()
            stream_error(session, "careful", recoverable=True)
            open_after = not session.ended
            session.end()
            return open_after, lines(await drain(session))

        open_after, events = asyncio.run(scenario())
        assert open_after is True
        assert events[0] == {
            "type": "error", "error": "careful", "code": "UNKNOWN",
            "recoverable": True, "timestamp": events[0]["timestamp"],
        }

    def test_quota_error_ends_stream(self):
        async def scenario():
            session = new_session()
            handle_streaming_error(QuotaExceededError("out of quota"), session)
            return session.ended, lines(await drain(session))

        ended, events = asyncio.run(scenario())
        assert ended is True
        assert events[0]["code"] == "QUOTA_EXCEEDED"
        assert events[0]["recoverable"] is False

    def test_disconnect_writes_nothing(self):
        async def scenario():
            session = new_session()
            handle_streaming_error(ConnectionResetError(), session)
            session.end()
            return await drain(session)

        assert asyncio.run(scenario()) == []

    def test_rate_limit_message(self):
        async def scenario():
            session = new_session()
            handle_streaming_error(RateLimitError(), session)
            session.end()
            return lines(await drain(session))

        events = asyncio.run(scenario())
        assert events[0]["error"] == "Rate limit exceeded. Please try again later."
        assert events[0]["recoverable"] is True

    def test_stream_timeout_fires(self):
        async def scenario():
            session = new_session()
            async with StreamTimeout(session, 0.01) as guard:
                await asyncio.sleep(0.05)
            return guard.fired, session.ended, lines(await drain(session))

        fired, ended, events = asyncio.run(scenario())
        assert fired is True
        assert ended is True
        assert events[0]["code"] == "TIMEOUT"
        assert events[0]["recoverable"] is False

    def test_stream_timeout_cleared_on_exit(self):
        async def scenario():
            session = new_session()
            async with StreamTimeout(session, 0.05) as guard:
                pass
            await asyncio.sleep(0.1)
            return guard.fired, session.ended

        assert asyncio.run(scenario()) == (False, False)
