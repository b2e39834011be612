"""
SSE Events
==========

Stream event definitions and client wire framing.

Every stream delivers zero or more chunk events followed by exactly one
terminal event (done or error). Both delivery modes converge on the same
framing: ``data: <fragment>`` frames, closed by ``data: [DONE]`` on success
or by a single JSON error frame on failure.
"""

from typing import Optional, Dict, Any
from datetime import datetime, timezone
from enum import Enum
import json

DONE_SENTINEL = "[DONE]"


class StreamEventType(str, Enum):
    """Stream event types."""

    CONNECTED = "connected"
    CHUNK = "chunk"
    DONE = "done"
    ERROR = "error"


class StreamEvent:
    """A single event in an agent response stream."""

    def __init__(
        self,
        event_type: StreamEventType,
        text: Optional[str] = None,
        session_id: Optional[str] = None,
    ):
        self.event_type = event_type
        self.text = text
        self.session_id = session_id
        self.timestamp = datetime.now(timezone.utc)

    @property
    def is_terminal(self) -> bool:
        return self.event_type in (StreamEventType.DONE, StreamEventType.ERROR)

    def to_dict(self) -> Dict[str, Any]:
        """Client-facing JSON shape of the event."""
        if self.event_type == StreamEventType.CONNECTED:
            return {"type": self.event_type.value, "sessionId": self.session_id}
        if self.event_type == StreamEventType.ERROR:
            return {"type": self.event_type.value, "error": self.text or ""}
        if self.event_type == StreamEventType.CHUNK:
            return {"type": self.event_type.value, "data": self.text or ""}
        return {"type": self.event_type.value}

    def format_sse(self) -> str:
        """Format event for the SSE wire."""
        if self.event_type == StreamEventType.CHUNK:
            return format_data_frame(self.text or "")
        if self.event_type == StreamEventType.DONE:
            return format_data_frame(DONE_SENTINEL)
        return format_data_frame(json.dumps(self.to_dict(), separators=(",", ":")))

    def __repr__(self) -> str:
        return f"StreamEvent({self.event_type.value!r}, text={self.text!r})"


def format_data_frame(payload: str) -> str:
    """
    Format a payload as a single SSE data frame.

    Args:
        payload: Frame content, without the ``data: `` prefix

    Returns:
        ``data: <payload>`` followed by the blank-line delimiter
    """
    return f"data: {payload}\n\n"


def create_connected_event(session_id: str) -> StreamEvent:
    """Create the event opening a detached stream."""
    return StreamEvent(StreamEventType.CONNECTED, session_id=session_id)


def create_chunk_event(text: str) -> StreamEvent:
    """Create a content chunk event."""
    return StreamEvent(StreamEventType.CHUNK, text=text)


def create_done_event() -> StreamEvent:
    """Create the successful terminal event."""
    return StreamEvent(StreamEventType.DONE)


def create_error_event(message: str) -> StreamEvent:
    """Create the failed terminal event."""
    return StreamEvent(StreamEventType.ERROR, text=message)
