"""
Health Routes
=============

FastAPI routes for health check endpoints.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Request

from agent_relay.api.dependencies import get_app_settings, get_bridge, get_registry
from agent_relay.api.sse.agent_bridge import AgentBridge
from agent_relay.api.sse.registry import TopicRegistry
from agent_relay.config.database import check_redis_health
from agent_relay.config.logging import get_logger
from agent_relay.config.settings import Settings
from agent_relay.core.storage.session_store import RedisSessionStore
from agent_relay.models.schemas import HealthStatus

logger = get_logger(__name__)

router = APIRouter(tags=["Health"])


@router.get("/health", response_model=HealthStatus)
async def health_check(
    request: Request,
    settings: Annotated[Settings, Depends(get_app_settings)],
    registry: Annotated[TopicRegistry, Depends(get_registry)],
    bridge: Annotated[AgentBridge, Depends(get_bridge)],
) -> HealthStatus:
    """
    Get application health status.

    Reports:
    - Conversation store backend and Redis connectivity when it is used
    - Whether agent credentials are configured
    - Live topics and exchanges in flight
    """
    store = request.app.state.session_store
    redis_healthy = None
    if isinstance(store, RedisSessionStore):
        redis_healthy = await check_redis_health()

    agent_configured = bool(
        settings.agent_api_key and (settings.tutor_agent_id or settings.sourcing_agent_id)
    )
    overall_status = "unhealthy" if redis_healthy is False else "healthy"

    health_status = HealthStatus(
        status=overall_status,
        version=settings.app_version,
        session_store="redis" if isinstance(store, RedisSessionStore) else "memory",
        redis=redis_healthy,
        agent_configured=agent_configured,
        active_topics=registry.topic_count(),
        active_streams=bridge.active_count,
    )

    logger.info(
        "Health check completed",
        status=overall_status,
        redis=redis_healthy,
        active_topics=health_status.active_topics,
    )
    return health_status
