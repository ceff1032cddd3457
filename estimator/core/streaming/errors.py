"""Error reporting for streaming responses.

Errors are surfaced in-band as ``error`` events. Non-recoverable errors end
the stream; recoverable ones are advisory. Client disconnects are expected
and only logged at INFO.
"""

import asyncio
import logging
from typing import Awaitable, Optional

from ..constants import STREAM_TIMEOUT_SECONDS
from ..exceptions import (
    AuthenticationError,
    ConnectionClosedError,
    EstimatorError,
    ProviderAuthError,
    QuotaExceededError,
    RateLimitError,
    StreamTimeoutError,
    ValidationError,
)
from .events import ErrorEvent
from .session import StreamingSession

logger = logging.getLogger(__name__)

QUOTA_EXCEEDED = "QUOTA_EXCEEDED"
TIMEOUT = "TIMEOUT"
RATE_LIMIT = "RATE_LIMIT"
AUTH_FAILED = "AUTH_FAILED"
CONNECTION_CLOSED = "CONNECTION_CLOSED"
VALIDATION = "VALIDATION"
UNKNOWN = "UNKNOWN"

_DISCONNECT_ERRORS = (BrokenPipeError, ConnectionResetError, ConnectionAbortedError)


def classify_error(error: BaseException) -> str:
    """Map any exception onto a stream error code."""
    if isinstance(error, QuotaExceededError):
        return QUOTA_EXCEEDED
    if isinstance(error, RateLimitError):
        return RATE_LIMIT
    if isinstance(error, (StreamTimeoutError, asyncio.TimeoutError, TimeoutError)):
        return TIMEOUT
    if isinstance(error, (ProviderAuthError, AuthenticationError)):
        return AUTH_FAILED
    if isinstance(error, (ConnectionClosedError,) + _DISCONNECT_ERRORS):
        return CONNECTION_CLOSED
    if isinstance(error, ValidationError):
        return VALIDATION
    if isinstance(error, EstimatorError):
        return error.code

    status = getattr(error, "status_code", None) or getattr(error, "code", None)
    message = str(error).lower()

    if status == 429 or "rate limit" in message or "too many requests" in message:
        if "quota" in message:
            return QUOTA_EXCEEDED
        return RATE_LIMIT
    if "quota" in message or "resource_exhausted" in message or "resource exhausted" in message:
        return QUOTA_EXCEEDED
    if "timeout" in message or "timed out" in message or "deadline" in message:
        return TIMEOUT
    if status in (401, 403) or "api key" in message or "permission denied" in message or "unauthenticated" in message:
        return AUTH_FAILED
    if "epipe" in message or "econnreset" in message:
        return CONNECTION_CLOSED
    return UNKNOWN


def stream_error(
    session: StreamingSession,
    error,
    recoverable: bool = True,
    code: Optional[str] = None,
) -> int:
    """Write an ``error`` event; non-recoverable errors also end the stream."""
    message = error if isinstance(error, str) else (getattr(error, "message", None) or str(error))
    if code is None:
        code = UNKNOWN if isinstance(error, str) else classify_error(error)

    event = ErrorEvent(error=message, code=code, recoverable=recoverable)
    if recoverable:
        return session.write(event)

    written = session.write(event)
    session.end()
    return written


def handle_streaming_error(error: BaseException, session: StreamingSession) -> None:
    """Report ``error`` on ``session`` according to its classification."""
    code = classify_error(error)

    if code == CONNECTION_CLOSED:
        logger.info(f"Stream {session.connection_id} closed by client")
        return

    if code == QUOTA_EXCEEDED:
        stream_error(session, error, recoverable=False, code=code)
    elif code == TIMEOUT:
        stream_error(session, "Operation timed out", recoverable=True, code=code)
    elif code == RATE_LIMIT:
        stream_error(session, "Rate limit exceeded. Please try again later.", recoverable=True, code=code)
    elif code == AUTH_FAILED:
        stream_error(session, "Authentication failed", recoverable=False, code=code)
    else:
        logger.error(f"Streaming error on {session.connection_id}: {error}")
        recoverable = error.recoverable if isinstance(error, EstimatorError) else True
        stream_error(session, error, recoverable=recoverable, code=code)


class StreamTimeout:
    """Force-terminates a stream that is still open after ``timeout`` seconds.

    Usage:
        async with StreamTimeout(session):
            ...
    """

    def __init__(self, session: StreamingSession, timeout: float = STREAM_TIMEOUT_SECONDS):
        self.session = session
        self.timeout = timeout
        self.fired = False
        self._handle: Optional[asyncio.TimerHandle] = None

    def start(self) -> "StreamTimeout":
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(self.timeout, self._expire)
        return self

    def clear(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _expire(self) -> None:
        self._handle = None
        if self.session.ended:
            return
        self.fired = True
        logger.warning(f"Stream {self.session.connection_id} timed out after {self.timeout}s")
        stream_error(self.session, "Operation timed out", recoverable=False, code=TIMEOUT)

    async def __aenter__(self) -> "StreamTimeout":
        return self.start()

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.clear()


async def with_stream_error_handling(operation: Awaitable, session: StreamingSession):
    """Await ``operation``; on failure report it on the stream and re-raise."""
    try:
        return await operation
    except Exception as e:
        handle_streaming_error(e, session)
        raise
