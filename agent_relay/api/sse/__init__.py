"""
Server-Sent Events (SSE) Infrastructure
======================================

Streaming of agent replies to web clients.

Components:
- Events: Stream event types and wire framing
- Registry: In-process topic fan-out for detached sessions
- Reframer: Turns the agent's raw stream into reply fragments
- Agent Bridge: Runs agent exchanges and records their turns
- Responder: Per-connection lifecycle of an SSE response
"""

from .agent_bridge import AgentBridge, SessionBusyError, StreamSession, StreamStatus
from .events import StreamEvent, StreamEventType, format_data_frame
from .reframer import ReframingTransform
from .registry import TopicRegistry
from .responder import SSEResponder, sse_headers

__all__ = [
    "AgentBridge",
    "SessionBusyError",
    "StreamSession",
    "StreamStatus",
    "StreamEvent",
    "StreamEventType",
    "format_data_frame",
    "ReframingTransform",
    "TopicRegistry",
    "SSEResponder",
    "sse_headers",
]
