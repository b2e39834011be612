"""
Stream Routes
=============

Subscription side of detached exchanges.
"""

from typing import Annotated, Any, Dict

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse

from agent_relay.api.auth import verify_stream_token
from agent_relay.api.dependencies import get_app_settings, get_bridge, get_registry
from agent_relay.api.sse.agent_bridge import AgentBridge
from agent_relay.api.sse.registry import TopicRegistry
from agent_relay.api.sse.responder import SSE_MEDIA_TYPE, SSEResponder, sse_headers
from agent_relay.config.logging import get_logger
from agent_relay.config.settings import Settings

logger = get_logger(__name__)

router = APIRouter(prefix="/stream", tags=["Stream"])


@router.get("/stats")
async def stream_stats(
    registry: Annotated[TopicRegistry, Depends(get_registry)],
    bridge: Annotated[AgentBridge, Depends(get_bridge)],
) -> Dict[str, Any]:
    """Live topics, their subscriber counts and exchanges in flight."""
    subscribers = registry.stats()
    return {
        "active_topics": len(subscribers),
        "total_subscribers": sum(subscribers.values()),
        "active_streams": bridge.active_count,
        "subscribers": subscribers,
    }


@router.get("/{session_id}")
async def stream_session(
    session_id: str,
    _token: Annotated[str, Depends(verify_stream_token)],
    settings: Annotated[Settings, Depends(get_app_settings)],
    registry: Annotated[TopicRegistry, Depends(get_registry)],
) -> StreamingResponse:
    """
    Subscribe to a session's events.

    Opens with a ``connected`` frame, then relays whatever the session
    publishes from now on. Nothing published earlier is replayed.
    """
    logger.info(
        "Stream subscription requested",
        session_id=session_id,
        subscribers=registry.subscriber_count(session_id),
    )

    responder = SSEResponder(session_id, idle_timeout=settings.sse_idle_timeout_seconds)
    return StreamingResponse(
        responder.relay_topic(registry),
        media_type=SSE_MEDIA_TYPE,
        headers=sse_headers(),
    )
