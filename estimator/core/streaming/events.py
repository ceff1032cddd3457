"""NDJSON event types written to streaming sessions.

Each event serializes to one JSON line via ``to_ndjson()``. Field names are
snake_case in Python and camelCase on the wire; ``None`` fields are omitted.
"""

import json
from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


@dataclass
class StreamEvent:
    """Base class for all stream events."""

    type: str

    def to_dict(self) -> Dict[str, Any]:
        out = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if value is None:
                continue
            out[f.metadata.get("wire", _camel(f.name))] = value
        return out

    def to_ndjson(self) -> str:
        """Serialize to a single newline-terminated JSON line."""
        return json.dumps(self.to_dict(), default=str) + "\n"


@dataclass
class StartEvent(StreamEvent):
    type: str = "start"
    message: str = ""
    timestamp: str = field(default_factory=_now)


@dataclass
class DataEvent(StreamEvent):
    type: str = "data"
    message: Optional[str] = None
    data: Any = None
    timestamp: str = field(default_factory=_now)


@dataclass
class ProgressEvent(StreamEvent):
    """Request, streaming and application progress."""

    type: str = "progress"
    stage: str = ""
    message: Optional[str] = None
    chunk_count: Optional[int] = None
    accumulated_length: Optional[int] = None
    latest_chunk: Optional[str] = None
    total: Optional[int] = None
    processed: Optional[int] = None
    percentage: Optional[int] = None
    summary: Optional[Dict[str, Any]] = None
    timestamp: str = field(default_factory=_now)


@dataclass
class ChunkEvent(StreamEvent):
    type: str = "chunk"
    content: str = ""
    chunk_number: int = 0
    total_length: int = 0


@dataclass
class PartialEvent(StreamEvent):
    """Advisory fields recognized in the incomplete buffer."""

    type: str = "partial"
    data: Dict[str, Any] = field(default_factory=dict)


@dataclass
class AIStartEvent(StreamEvent):
    type: str = "ai_start"
    message: str = "Starting AI generation..."
    timestamp: str = field(default_factory=_now)


@dataclass
class AICompleteEvent(StreamEvent):
    type: str = "ai_complete"
    message: str = "AI generation complete"
    chunk_count: int = 0
    total_length: int = 0
    duration_ms: int = 0
    timestamp: str = field(default_factory=_now)


@dataclass
class CompleteEvent(StreamEvent):
    """Terminal success event."""

    type: str = "complete"
    data: Any = None
    message: Optional[str] = None
    timestamp: str = field(default_factory=_now)


@dataclass
class ErrorEvent(StreamEvent):
    """Recoverable errors are advisory; the rest terminate the stream."""

    type: str = "error"
    error: str = ""
    code: str = "UNKNOWN"
    recoverable: bool = True
    details: Any = None
    timestamp: str = field(default_factory=_now)


@dataclass
class ServerShutdownEvent(StreamEvent):
    type: str = "server_shutdown"
    message: str = "Server is shutting down"
    timestamp: str = field(default_factory=_now)


@dataclass
class ConnectionEvent(StreamEvent):
    type: str = "connection"
    connection_id: str = ""
    status: str = "connected"
    user: Optional[Dict[str, Any]] = None
    timestamp: str = field(default_factory=_now)


@dataclass
class ConnectionTestEvent(StreamEvent):
    type: str = "test"
    message: str = ""
    timestamp: str = field(default_factory=_now)


@dataclass
class BroadcastEvent(StreamEvent):
    type: str = "broadcast"
    message: Any = None
    sender: Optional[str] = field(default=None, metadata={"wire": "from"})
    timestamp: str = field(default_factory=_now)


@dataclass
class ProjectCreatedEvent(StreamEvent):
    type: str = "project_created"
    project_id: Optional[int] = None
    project_title: str = ""
    currency: Optional[str] = None
    items_added: int = 0
    errors: List[str] = field(default_factory=list)
    message: Optional[str] = None


@dataclass
class WarningEvent(StreamEvent):
    type: str = "warning"
    message: str = ""
    details: Any = None


@dataclass
class InfoEvent(StreamEvent):
    type: str = "info"
    message: str = ""
