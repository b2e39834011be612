"""
Pydantic Models and Schemas
===========================

Core data models for conversation records, chat API requests/responses, and
agent API payloads. All models include validation and type hints.
"""

from typing import Optional, List, Dict, Any, Literal
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# Enums
class AgentType(str, Enum):
    """Kinds of agent a conversation is held with."""
    TUTOR = "tutor"
    SOURCING = "sourcing"


class TurnRole(str, Enum):
    """Conversation turn roles."""
    USER = "user"
    ASSISTANT = "assistant"


# Base Models
class CamelModel(BaseModel):
    """Base model accepting both camelCase aliases and field names."""
    model_config = ConfigDict(populate_by_name=True)


# Conversation Models
class Attachment(CamelModel):
    """File attached to a user turn."""
    name: str = Field(..., description="File name")
    type: str = Field(..., description="MIME type")
    size: int = Field(0, ge=0, description="Size in bytes")
    asset_id: str = Field(..., alias="assetId", description="Agent platform asset id")


class ChatContext(CamelModel):
    """Where in the product the user was when asking."""
    organization_id: Optional[str] = Field(None, alias="organizationId")
    course_id: Optional[str] = Field(None, alias="courseId")
    lesson_id: Optional[str] = Field(None, alias="lessonId")
    current_page: Optional[str] = Field(None, alias="currentPage")


class ConversationTurn(BaseModel):
    """A single message in a conversation."""
    role: TurnRole = Field(..., description="Who produced the message")
    content: str = Field(..., description="Message text")
    timestamp: datetime = Field(default_factory=_utcnow, description="Message time")
    attachments: Optional[List[Attachment]] = Field(None, description="Attached files")

    model_config = ConfigDict(use_enum_values=True)


class ConversationRecord(BaseModel):
    """Durable, append-only record of one chat session."""
    session_id: str = Field(..., description="Session identifier")
    user_id: Optional[str] = Field(None, description="Caller identity")
    agent_type: AgentType = Field(AgentType.TUTOR, description="Agent kind")
    context: Optional[ChatContext] = Field(None, description="Chat context")
    messages: List[ConversationTurn] = Field(default_factory=list, description="Ordered turns")
    is_active: bool = Field(True, description="Whether the session is still in use")
    created_at: datetime = Field(default_factory=_utcnow, description="Creation time")
    last_message_at: datetime = Field(default_factory=_utcnow, description="Last append time")

    model_config = ConfigDict(use_enum_values=True)


# Chat API Request Models
class ChatStreamRequest(CamelModel):
    """Request body for tutor chat, streaming or not."""
    message: str = Field(..., description="User message")
    organization_id: str = Field(..., alias="organizationId", description="Organization id")
    user_id: str = Field(..., alias="userId", description="Agent platform user id")
    session_id: Optional[str] = Field(None, alias="sessionId", description="Existing session")
    context: Optional[ChatContext] = Field(None, description="Where the user is in the product")
    asset_ids: Optional[List[str]] = Field(None, alias="assetIds", description="Attached assets")
    attachments: Optional[List[Attachment]] = Field(None, description="Attachment metadata")

    @field_validator("message")
    @classmethod
    def validate_message(cls, v: str) -> str:
        """Validate message is not blank."""
        if not v.strip():
            raise ValueError("Message cannot be empty")
        return v


class SearchUser(BaseModel):
    """Caller identity for candidate sourcing."""
    id: str = Field(..., description="Agent platform user id")
    email: str = Field(..., description="User email")
    name: Optional[str] = Field(None, description="Display name")


class StartSearchRequest(CamelModel):
    """Request body for starting a detached candidate-sourcing exchange."""
    query: str = Field(..., description="Search query")
    jd_id: Optional[str] = Field(None, alias="jdId", description="Attached job description")
    user: SearchUser = Field(..., description="Caller identity")

    @field_validator("query")
    @classmethod
    def validate_query(cls, v: str) -> str:
        """Validate query is not blank."""
        if not v.strip():
            raise ValueError("Query is required")
        return v


# Chat API Response Models
class StartSearchResponse(CamelModel):
    """Response for a started detached exchange."""
    success: bool = True
    session_id: str = Field(..., alias="sessionId")
    message: str = "Search initiated. Connect to stream endpoint for real-time updates."


class ConversationListResponse(BaseModel):
    """A user's recent conversations."""
    success: bool = True
    conversations: List[ConversationRecord] = Field(
        default_factory=list, description="Active records, most recently used first"
    )


class ChatResponse(CamelModel):
    """Response for a non-streaming exchange."""
    response: str = Field(..., description="Agent reply")
    session_id: str = Field(..., alias="sessionId", description="Session identifier")


# Agent API Models
class AgentRequest(BaseModel):
    """One call to the agent inference API."""
    api_key: str = Field(..., description="Agent API credential")
    agent_id: str = Field(..., description="Agent identifier")
    message: str = Field(..., description="Message text")
    user_id: str = Field(..., description="Caller identity")
    prompt_variables: Dict[str, Any] = Field(default_factory=dict)
    session_id: Optional[str] = Field(None, description="Existing session id")
    asset_ids: List[str] = Field(default_factory=list, description="Attachment references")

    def to_payload(self, session_id: str) -> Dict[str, Any]:
        """Build the inference API request body."""
        payload: Dict[str, Any] = {
            "user_id": self.user_id,
            "agent_id": self.agent_id,
            "session_id": session_id,
            "message": self.message,
            "system_prompt_variables": self.prompt_variables,
            "filter_variables": {},
            "features": [],
        }
        if self.asset_ids:
            payload["assets"] = self.asset_ids
        return payload


class AgentChatResponse(BaseModel):
    """Non-streaming agent reply."""
    response: str = Field(..., description="Agent reply")
    session_id: str = Field(..., description="Session the reply belongs to")


# Health Check Models
class HealthStatus(BaseModel):
    """Health check status."""
    status: Literal["healthy", "unhealthy", "degraded"] = Field(..., description="Overall status")
    timestamp: datetime = Field(default_factory=_utcnow, description="Check timestamp")
    version: str = Field(..., description="Application version")

    session_store: str = Field(..., description="Conversation store backend")
    redis: Optional[bool] = Field(None, description="Redis connectivity when used")
    agent_configured: bool = Field(..., description="Whether agent credentials are set")

    active_topics: int = Field(0, ge=0, description="Topics with live subscribers")
    active_streams: int = Field(0, ge=0, description="Agent exchanges in flight")


# Error Models
class ErrorResponse(BaseModel):
    """Standard error response model."""
    error: str = Field(..., description="Error message")
    error_code: Optional[str] = Field(None, description="Error code")
    details: Optional[Dict[str, Any]] = Field(None, description="Additional error details")
    timestamp: datetime = Field(default_factory=_utcnow, description="Error timestamp")
    request_id: Optional[str] = Field(None, description="Request identifier for tracking")
