"""
Chat Routes
===========

FastAPI routes that start agent exchanges.

- ``POST /chat/stream``: tutor chat, agent output piped into the response
- ``POST /chat``: tutor chat without streaming
- ``POST /chat/start-search``: sourcing search, output published to the
  session topic for ``GET /stream/{session_id}``
- ``GET /chat/session/{session_id}``: the recorded conversation
- ``GET /chat/conversations``: a user's recent tutor conversations
"""

from typing import Annotated, Optional, Tuple
import uuid

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import StreamingResponse

from agent_relay.api.auth import verify_bearer_token
from agent_relay.api.dependencies import get_app_settings, get_bridge, get_session_store
from agent_relay.api.sse.agent_bridge import AgentBridge
from agent_relay.api.sse.responder import SSE_MEDIA_TYPE, SSEResponder, sse_headers
from agent_relay.config.logging import get_logger
from agent_relay.config.settings import Settings
from agent_relay.core.agent.client import generate_session_id
from agent_relay.core.agent.prompts import search_variables, tutor_variables
from agent_relay.core.storage.session_store import DEFAULT_LIST_LIMIT, SessionStore
from agent_relay.models.schemas import (
    AgentRequest,
    AgentType,
    ChatContext,
    ChatResponse,
    ChatStreamRequest,
    ConversationListResponse,
    ConversationRecord,
    StartSearchRequest,
    StartSearchResponse,
)

logger = get_logger(__name__)

router = APIRouter(
    prefix="/chat",
    tags=["Chat"],
    responses={404: {"description": "Not found"}},
)


def _require_agent(settings: Settings, agent_id: Optional[str], kind: str) -> Tuple[str, str]:
    if not agent_id or not settings.agent_api_key:
        logger.error("Agent not configured", agent_type=kind)
        raise HTTPException(status_code=503, detail=f"{kind.capitalize()} agent is not configured")
    return agent_id, settings.agent_api_key


def _tutor_context(body: ChatStreamRequest) -> ChatContext:
    """The request context, always carrying the caller's organization."""
    context = body.context or ChatContext()
    return context.model_copy(update={"organization_id": body.organization_id})


def _tutor_request(
    body: ChatStreamRequest, settings: Settings
) -> Tuple[str, AgentRequest, ChatContext]:
    agent_id, api_key = _require_agent(settings, settings.tutor_agent_id, AgentType.TUTOR.value)
    session_id = body.session_id or generate_session_id(agent_id)
    context = _tutor_context(body)
    agent_request = AgentRequest(
        api_key=api_key,
        agent_id=agent_id,
        message=body.message,
        user_id=body.user_id,
        prompt_variables=tutor_variables(body.user_id, context),
        session_id=session_id,
        asset_ids=body.asset_ids or [],
    )
    return session_id, agent_request, context


@router.post("/stream")
async def chat_stream(
    body: ChatStreamRequest,
    settings: Annotated[Settings, Depends(get_app_settings)],
    bridge: Annotated[AgentBridge, Depends(get_bridge)],
) -> StreamingResponse:
    """
    Stream a tutor reply.

    The user turn is recorded before the agent is called; the assistant
    turn is recorded once the stream ends.

    Returns:
        Event stream of reply fragments ending in ``[DONE]`` or an error frame
    """
    session_id, agent_request, context = _tutor_request(body, settings)

    session = await bridge.open_session(
        session_id,
        agent_request,
        user_id=body.user_id,
        agent_type=AgentType.TUTOR,
        context=context,
        attachments=body.attachments,
    )

    logger.info(
        "Tutor stream requested",
        session_id=session_id,
        organization_id=body.organization_id,
        assets=len(agent_request.asset_ids),
    )

    responder = SSEResponder(session_id, idle_timeout=settings.sse_idle_timeout_seconds)
    return StreamingResponse(
        responder.relay_stream(session.events()),
        media_type=SSE_MEDIA_TYPE,
        headers=sse_headers(session_id),
    )


@router.post("", response_model=ChatResponse)
async def chat(
    body: ChatStreamRequest,
    settings: Annotated[Settings, Depends(get_app_settings)],
    bridge: Annotated[AgentBridge, Depends(get_bridge)],
) -> ChatResponse:
    """Get a complete tutor reply in one response."""
    session_id, agent_request, context = _tutor_request(body, settings)

    reply = await bridge.complete(
        session_id,
        agent_request,
        user_id=body.user_id,
        context=context,
        attachments=body.attachments,
    )

    logger.info("Tutor chat completed", session_id=session_id, characters=len(reply.response))
    return ChatResponse(response=reply.response, session_id=session_id)


@router.post("/start-search", response_model=StartSearchResponse)
async def start_search(
    body: StartSearchRequest,
    _token: Annotated[str, Depends(verify_bearer_token)],
    settings: Annotated[Settings, Depends(get_app_settings)],
    bridge: Annotated[AgentBridge, Depends(get_bridge)],
) -> StartSearchResponse:
    """
    Start a sourcing search in the background.

    The response returns as soon as the user turn is recorded; the client
    then subscribes to ``GET /stream/{sessionId}`` for the reply.
    """
    agent_id, api_key = _require_agent(
        settings, settings.sourcing_agent_id, AgentType.SOURCING.value
    )
    session_id = uuid.uuid4().hex

    agent_request = AgentRequest(
        api_key=api_key,
        agent_id=agent_id,
        message=body.query,
        user_id=body.user.id,
        prompt_variables=search_variables(body.user, body.jd_id),
        session_id=session_id,
    )

    session = await bridge.open_session(
        session_id,
        agent_request,
        user_id=body.user.id,
        agent_type=AgentType.SOURCING,
    )
    bridge.start_detached(session, delay=settings.detached_start_delay_seconds)

    logger.info("Search started", session_id=session_id, user_id=body.user.id, jd_id=body.jd_id)
    return StartSearchResponse(session_id=session_id)


@router.get("/session/{session_id}", response_model=ConversationRecord)
async def get_conversation(
    session_id: str,
    store: Annotated[SessionStore, Depends(get_session_store)],
) -> ConversationRecord:
    """Get the recorded conversation of a session."""
    record = await store.get(session_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return record


@router.get("/conversations", response_model=ConversationListResponse)
async def list_conversations(
    store: Annotated[SessionStore, Depends(get_session_store)],
    user_id: Annotated[str, Query(alias="userId", min_length=1)],
    organization_id: Annotated[str, Query(alias="organizationId", min_length=1)],
    limit: Annotated[int, Query(ge=1, le=DEFAULT_LIST_LIMIT)] = DEFAULT_LIST_LIMIT,
) -> ConversationListResponse:
    """
    List a user's active tutor conversations in an organization.

    Returns:
        Conversations sorted by last message, newest first
    """
    records = await store.list_sessions(
        user_id,
        organization_id=organization_id,
        agent_type=AgentType.TUTOR,
        limit=limit,
    )
    logger.debug(
        "Conversations listed",
        user_id=user_id,
        organization_id=organization_id,
        count=len(records),
    )
    return ConversationListResponse(conversations=records)
