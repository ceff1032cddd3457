"""
Streaming module: NDJSON sessions, typed events and the connection registry.

Exports:
- StreamingSession, STREAM_HEADERS: one chunked NDJSON response
- ConnectionManager: per-user registry with broadcast and shutdown
- stream_error / handle_streaming_error / StreamTimeout: in-band errors
"""

from .events import (
    AICompleteEvent,
    AIStartEvent,
    BroadcastEvent,
    ChunkEvent,
    CompleteEvent,
    ConnectionEvent,
    ConnectionTestEvent,
    DataEvent,
    ErrorEvent,
    InfoEvent,
    PartialEvent,
    ProgressEvent,
    ProjectCreatedEvent,
    ServerShutdownEvent,
    StartEvent,
    StreamEvent,
    WarningEvent,
)
from .session import STREAM_HEADERS, StreamingSession
from .connection_manager import ConnectionInfo, ConnectionManager
from .errors import (
    StreamTimeout,
    classify_error,
    handle_streaming_error,
    stream_error,
    with_stream_error_handling,
)

__all__ = [
    "AICompleteEvent",
    "AIStartEvent",
    "BroadcastEvent",
    "ChunkEvent",
    "CompleteEvent",
    "ConnectionEvent",
    "ConnectionTestEvent",
    "DataEvent",
    "ErrorEvent",
    "InfoEvent",
    "PartialEvent",
    "ProgressEvent",
    "ProjectCreatedEvent",
    "ServerShutdownEvent",
    "StartEvent",
    "StreamEvent",
    "WarningEvent",
    "STREAM_HEADERS",
    "StreamingSession",
    "ConnectionInfo",
    "ConnectionManager",
    "StreamTimeout",
    "classify_error",
    "handle_streaming_error",
    "stream_error",
    "with_stream_error_handling",
]
