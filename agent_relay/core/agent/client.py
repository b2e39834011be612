"""
Agent API Client
================

HTTP client for the agent inference API.
Supports the streaming endpoint (chunked body) and the single-reply endpoint.
"""

import asyncio
import random
import string
import time
from typing import Any, AsyncIterator, Optional

import aiohttp

from agent_relay.config.logging import get_logger
from agent_relay.config.settings import Settings, get_settings
from agent_relay.models.schemas import AgentChatResponse, AgentRequest

logger = get_logger(__name__)

STREAM_PATH = "/v3/inference/stream/"
CHAT_PATH = "/v3/inference/chat/"


class AgentAPIError(Exception):
    """Raised when the agent call fails, returns non-2xx, or cannot be reached."""

    def __init__(self, message: str, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.status = status


def generate_session_id(agent_id: str) -> str:
    """Session id in the agent platform's ``<agent>-<millis>-<random>`` shape."""
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=9))
    return f"{agent_id}-{int(time.time() * 1000)}-{suffix}"


class AgentClient:
    """Client for communicating with the agent inference API."""

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self.settings = settings or get_settings()
        self.base_url = self.settings.agent_base_url.rstrip("/")
        self.logger: Any = logger.bind(component="agent_client")
        self._session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create aiohttp session."""
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(
                total=self.settings.agent_request_timeout,
                connect=self.settings.agent_connect_timeout,
            )
            self._session = aiohttp.ClientSession(timeout=timeout)
        return self._session

    async def close(self) -> None:
        """Close the HTTP session."""
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None

    async def stream_chat(self, request: AgentRequest, session_id: str) -> AsyncIterator[bytes]:
        """
        Stream a reply from the agent.

        Args:
            request: Agent call parameters
            session_id: Session the exchange belongs to

        Yields:
            Raw body chunks as they arrive

        Raises:
            AgentAPIError: On non-2xx status, network failure or timeout
        """
        url = f"{self.base_url}{STREAM_PATH}"
        self.logger.info(
            "Streaming chat request",
            agent_id=request.agent_id,
            session_id=session_id,
            assets=len(request.asset_ids),
        )

        try:
            session = await self._get_session()
            async with session.post(
                url,
                json=request.to_payload(session_id),
                headers={"x-api-key": request.api_key},
            ) as response:
                if response.status >= 400:
                    error_text = await response.text()
                    self.logger.error(
                        "Streaming chat failed",
                        status=response.status,
                        response=error_text[:500],
                        session_id=session_id,
                    )
                    raise AgentAPIError(
                        f"Failed to stream chat with agent: {response.status} {error_text}",
                        status=response.status,
                    )

                async for chunk in response.content.iter_any():
                    if chunk:
                        yield chunk
        except aiohttp.ClientError as e:
            self.logger.error("Agent stream connection error", error=str(e), session_id=session_id)
            raise AgentAPIError(f"Agent connection failed: {e}") from e
        except asyncio.TimeoutError as e:
            self.logger.error("Agent stream timed out", session_id=session_id)
            raise AgentAPIError("Agent request timed out") from e

    async def chat(self, request: AgentRequest, session_id: str) -> AgentChatResponse:
        """
        Get a complete reply from the agent in one response.

        Raises:
            AgentAPIError: On non-2xx status, malformed body, network failure or timeout
        """
        url = f"{self.base_url}{CHAT_PATH}"
        self.logger.info("Chat request", agent_id=request.agent_id, session_id=session_id)

        try:
            session = await self._get_session()
            async with session.post(
                url,
                json=request.to_payload(session_id),
                headers={"x-api-key": request.api_key},
            ) as response:
                if response.status >= 400:
                    error_text = await response.text()
                    self.logger.error(
                        "Chat request failed", status=response.status, response=error_text[:500]
                    )
                    raise AgentAPIError(
                        f"Failed to chat with agent: {response.status} {error_text}",
                        status=response.status,
                    )
                data = await response.json(content_type=None)
        except aiohttp.ClientError as e:
            self.logger.error("Agent chat connection error", error=str(e))
            raise AgentAPIError(f"Agent connection failed: {e}") from e
        except asyncio.TimeoutError as e:
            raise AgentAPIError("Agent request timed out") from e

        if not isinstance(data, dict) or "response" not in data:
            raise AgentAPIError("Agent reply is missing the response field")

        return AgentChatResponse(
            response=str(data["response"]),
            session_id=str(data.get("session_id") or session_id),
        )
