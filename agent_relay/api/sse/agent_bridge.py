"""
Agent Bridge
============

Bridge between chat requests and the agent inference API.

A ``StreamSession`` turns one agent call into an ordered sequence of
stream events (chunks, then exactly one terminal event) and records the
reply exactly once when the sequence ends, whether or not anybody was
still watching. Delivery is chosen by the caller:

- piped: the SSE response iterates ``StreamSession.events()`` directly
- detached: ``AgentBridge.start_detached`` publishes every event to the
  topic registry from a background task
"""

from contextlib import aclosing
from enum import Enum
from typing import Any, AsyncIterator, Coroutine, Dict, List, Optional, Set
import asyncio
import time

from agent_relay.config.logging import get_logger
from agent_relay.core.agent.client import AgentAPIError, AgentClient
from agent_relay.core.storage.session_store import SessionStore
from agent_relay.models.schemas import (
    AgentChatResponse,
    AgentRequest,
    AgentType,
    Attachment,
    ChatContext,
    ConversationTurn,
    TurnRole,
)

from .events import StreamEvent, create_chunk_event, create_done_event, create_error_event
from .reframer import ReframingTransform
from .registry import TopicRegistry

logger = get_logger(__name__)


class SessionBusyError(Exception):
    """Raised when an exchange is already in flight for a session id."""

    def __init__(self, session_id: str) -> None:
        super().__init__(f"An agent response is already streaming for session {session_id}")
        self.session_id = session_id


class StreamStatus(str, Enum):
    """Lifecycle of a stream session."""

    PENDING = "pending"
    STREAMING = "streaming"
    DONE = "done"
    ERROR = "error"
    ABORTED = "aborted"


class StreamSession:
    """One streamed agent exchange."""

    def __init__(
        self,
        bridge: "AgentBridge",
        session_id: str,
        agent_request: AgentRequest,
        context: Optional[ChatContext] = None,
    ) -> None:
        self.bridge = bridge
        self.session_id = session_id
        self.agent_request = agent_request
        self.context = context
        self.transform = ReframingTransform()
        self.status = StreamStatus.PENDING
        self.error: Optional[str] = None
        self.started_at = time.time()
        self._finalize_requested = False
        self._finalize_task: "Optional[asyncio.Task[None]]" = None
        self._finalize_started = False
        self._finalized = asyncio.Event()
        self.logger: Any = logger.bind(component="stream_session", session_id=session_id)

    @property
    def text(self) -> str:
        """Reply text accumulated so far."""
        return self.transform.text

    async def events(self) -> AsyncIterator[StreamEvent]:
        """
        Run the agent call and yield its stream events.

        Upstream failures become a terminal error event. After the terminal
        event the reply is persisted before the iterator finishes; if the
        consumer stops early, persistence still runs in the background.
        """
        self.status = StreamStatus.STREAMING
        try:
            try:
                upstream = self.bridge.agent_client.stream_chat(self.agent_request, self.session_id)
                async with aclosing(upstream) as chunks:
                    async for chunk in chunks:
                        for fragment in self.transform.feed(chunk):
                            yield create_chunk_event(fragment)
                        if self.transform.done_seen:
                            break
                for fragment in self.transform.flush():
                    yield create_chunk_event(fragment)
            except AgentAPIError as e:
                terminal = self._fail(str(e))
            except Exception as e:
                self.logger.exception("Unexpected upstream failure", error_type=type(e).__name__)
                terminal = self._fail(f"Agent stream failed: {e}")
            else:
                self.status = StreamStatus.DONE
                terminal = create_done_event()
                self.logger.info(
                    "Agent stream completed",
                    fragments=self.transform.fragment_count,
                    characters=len(self.text),
                    duration=round(time.time() - self.started_at, 3),
                )

            yield terminal
            task = self._schedule_finalize()
            if task is not None:
                # Shielded so a client leaving mid-write does not cancel the write
                await asyncio.shield(task)
        finally:
            if not self._finalize_requested:
                if self.status == StreamStatus.STREAMING:
                    self.status = StreamStatus.ABORTED
                    self.logger.info("Agent stream abandoned", fragments=self.transform.fragment_count)
                self._schedule_finalize()

    def _schedule_finalize(self) -> "Optional[asyncio.Task[None]]":
        if not self._finalize_requested:
            self._finalize_requested = True
            self._finalize_task = self.bridge.spawn_finalize(self)
        return self._finalize_task

    def _fail(self, message: str) -> StreamEvent:
        self.status = StreamStatus.ERROR
        self.error = message
        self.logger.error(
            "Agent stream failed",
            error=message,
            fragments=self.transform.fragment_count,
        )
        return create_error_event(message)

    async def finalize(self) -> None:
        """Record the assistant turn once and release the session id."""
        if self._finalize_started:
            await self._finalized.wait()
            return
        self._finalize_started = True
        try:
            await self._persist()
        finally:
            self.bridge.release(self)
            self._finalized.set()

    async def _persist(self) -> None:
        text = self.text
        # A failure before any output leaves only the user turn behind
        if self.status != StreamStatus.DONE and not text:
            self.logger.info("Nothing to persist", status=self.status.value)
            return

        turn = ConversationTurn(role=TurnRole.ASSISTANT, content=text)
        try:
            await self.bridge.session_store.append_turns(
                self.session_id, [turn], context=self.context
            )
            self.logger.info(
                "Assistant turn persisted", status=self.status.value, characters=len(text)
            )
        except Exception as e:
            self.logger.error(
                "Failed to persist assistant turn",
                status=self.status.value,
                error_type=type(e).__name__,
                error=str(e),
            )


class AgentBridge:
    """
    Starts agent exchanges and tracks the ones in flight.

    At most one exchange per session id runs at a time. Background tasks for
    detached exchanges and deferred persistence are held here so they are
    not garbage collected and can be cancelled on shutdown.
    """

    def __init__(
        self,
        agent_client: AgentClient,
        session_store: SessionStore,
        registry: TopicRegistry,
    ) -> None:
        self.agent_client = agent_client
        self.session_store = session_store
        self.registry = registry
        self.logger: Any = logger.bind(component="agent_bridge")
        self._active: Dict[str, StreamSession] = {}
        self._tasks: Set["asyncio.Task[Any]"] = set()

    @property
    def active_count(self) -> int:
        return len(self._active)

    def is_active(self, session_id: str) -> bool:
        return session_id in self._active

    def _reserve(self, session: StreamSession) -> None:
        if session.session_id in self._active:
            raise SessionBusyError(session.session_id)
        self._active[session.session_id] = session

    def release(self, session: StreamSession) -> None:
        """Free a session id; a no-op unless ``session`` still holds it."""
        if self._active.get(session.session_id) is session:
            del self._active[session.session_id]

    async def open_session(
        self,
        session_id: str,
        agent_request: AgentRequest,
        *,
        user_id: Optional[str] = None,
        agent_type: AgentType = AgentType.TUTOR,
        context: Optional[ChatContext] = None,
        attachments: Optional[List[Attachment]] = None,
    ) -> StreamSession:
        """
        Reserve the session id and record the user turn before any agent call.

        Raises:
            SessionBusyError: If an exchange for the session is in flight
            PersistenceError: If the user turn cannot be recorded
        """
        session = StreamSession(self, session_id, agent_request, context=context)
        self._reserve(session)
        try:
            await self.session_store.find_or_create(
                session_id, user_id=user_id, agent_type=agent_type, context=context
            )
            user_turn = ConversationTurn(
                role=TurnRole.USER, content=agent_request.message, attachments=attachments
            )
            await self.session_store.append_turns(session_id, [user_turn], context=context)
        except BaseException:
            self.release(session)
            raise

        self.logger.info(
            "Stream session opened",
            session_id=session_id,
            agent_id=agent_request.agent_id,
            agent_type=AgentType(agent_type).value,
        )
        return session

    def start_detached(self, session: StreamSession, delay: float = 0.0) -> "asyncio.Task[Any]":
        """Run a session in the background, publishing its events to the registry."""
        return self._spawn(self._publish(session, delay))

    async def _publish(self, session: StreamSession, delay: float) -> None:
        try:
            if delay > 0:
                await asyncio.sleep(delay)
        except asyncio.CancelledError:
            self.release(session)
            raise

        try:
            async with aclosing(session.events()) as events:
                async for event in events:
                    self.registry.publish(session.session_id, event)
        except Exception as e:
            self.logger.exception("Detached stream crashed", session_id=session.session_id)
            self.registry.publish(session.session_id, create_error_event(str(e)))

    async def complete(
        self,
        session_id: str,
        agent_request: AgentRequest,
        *,
        user_id: Optional[str] = None,
        context: Optional[ChatContext] = None,
        attachments: Optional[List[Attachment]] = None,
    ) -> AgentChatResponse:
        """
        Run a non-streaming exchange and record both turns together.

        Raises:
            SessionBusyError: If an exchange for the session is in flight
            AgentAPIError: If the agent call fails; nothing is recorded
            PersistenceError: If the turns cannot be recorded
        """
        session = StreamSession(self, session_id, agent_request, context=context)
        self._reserve(session)
        try:
            await self.session_store.find_or_create(
                session_id, user_id=user_id, agent_type=AgentType.TUTOR, context=context
            )
            reply = await self.agent_client.chat(agent_request, session_id)
            await self.session_store.append_turns(
                session_id,
                [
                    ConversationTurn(
                        role=TurnRole.USER, content=agent_request.message, attachments=attachments
                    ),
                    ConversationTurn(role=TurnRole.ASSISTANT, content=reply.response),
                ],
                context=context,
            )
            return reply
        finally:
            self.release(session)

    def spawn_finalize(self, session: StreamSession) -> "Optional[asyncio.Task[Any]]":
        """Persist a session in a task owned by the bridge, off the delivery path."""
        try:
            return self._spawn(session.finalize())
        except RuntimeError:
            # No running loop left to persist on
            self.release(session)
            self.logger.error("Could not schedule persistence", session_id=session.session_id)
            return None

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> "asyncio.Task[Any]":
        try:
            task = asyncio.get_running_loop().create_task(coro)
        except RuntimeError:
            coro.close()
            raise
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def wait_idle(self) -> None:
        """Wait for every background task, including ones they spawn."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        """Cancel background work on shutdown."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self.logger.info("Agent bridge closed", cancelled=len(tasks))
