"""
SSE Responder
=============

Per-connection SSE lifecycle: open, forward, terminal close, idle timeout
and client abort.

Every way a connection can end goes through ``close``, which runs its
cleanup exactly once no matter how many terminal triggers race.
"""

from typing import Any, AsyncIterator, Dict, Optional, Set
import asyncio
import time

from agent_relay.config.logging import get_logger

from .events import StreamEvent, StreamEventType, create_connected_event
from .registry import TopicRegistry, Unsubscribe

logger = get_logger(__name__)

SSE_MEDIA_TYPE = "text/event-stream"

# Upstream closes scheduled after a client left, held until they finish
_pending_closes: Set["asyncio.Task[Any]"] = set()


def sse_headers(session_id: Optional[str] = None) -> Dict[str, str]:
    """Response headers for an event stream that proxies must not buffer."""
    headers = {
        "Cache-Control": "no-cache, no-transform",
        "Connection": "keep-alive",
        "X-Accel-Buffering": "no",  # Disable Nginx buffering
    }
    if session_id:
        headers["X-Session-Id"] = session_id
    return headers


class SSEResponder:
    """
    Relays one session's stream events to one client connection.

    Handles:
    - Detached delivery through a registry subscription
    - Piped delivery straight from a stream session
    - Idempotent close on done, error, idle timeout or client abort
    """

    def __init__(self, session_id: str, idle_timeout: float = 300.0) -> None:
        self.session_id = session_id
        self.idle_timeout = idle_timeout
        self.close_reason: Optional[str] = None
        self.frames_sent = 0
        self.opened_at = time.time()
        self._unsubscribe: Optional[Unsubscribe] = None
        self.logger: Any = logger.bind(component="sse_responder", session_id=session_id)

    @property
    def closed(self) -> bool:
        return self.close_reason is not None

    def close(self, reason: str) -> bool:
        """
        Release the connection's resources.

        Args:
            reason: Why the connection ended

        Returns:
            True on the first call, False on every repeat
        """
        if self.close_reason is not None:
            return False
        self.close_reason = reason

        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

        self.logger.info(
            "SSE connection closed",
            reason=reason,
            frames_sent=self.frames_sent,
            duration=round(time.time() - self.opened_at, 3),
        )
        return True

    def _frame(self, event: StreamEvent) -> str:
        self.frames_sent += 1
        return event.format_sse()

    async def relay_topic(self, registry: TopicRegistry) -> AsyncIterator[str]:
        """
        Detached delivery: subscribe to the session's topic and forward events.

        Yields:
            SSE frames, starting with the connected frame
        """
        queue: "asyncio.Queue[StreamEvent]" = asyncio.Queue()
        self._unsubscribe = registry.subscribe(self.session_id, queue.put_nowait)
        self.logger.info("SSE connection established")

        try:
            yield self._frame(create_connected_event(self.session_id))

            while not self.closed:
                try:
                    event = await asyncio.wait_for(queue.get(), timeout=self.idle_timeout)
                except asyncio.TimeoutError:
                    self.logger.warning("SSE connection idle timeout", timeout=self.idle_timeout)
                    self.close("timeout")
                    return

                if event.event_type == StreamEventType.CONNECTED:
                    continue

                frame = self._frame(event)
                if event.is_terminal:
                    self.close(event.event_type.value)
                yield frame
        finally:
            # Transport gone: no further frames, only cleanup
            self.close("client_disconnected")

    async def relay_stream(self, events: AsyncIterator[StreamEvent]) -> AsyncIterator[str]:
        """
        Piped delivery: forward a stream session's events as they are produced.

        After the terminal frame the session is drained without emitting, so
        its persistence step completes before the response ends. Idle timeout
        or client abort stops the session, which cancels the upstream call.

        Yields:
            SSE frames
        """
        iterator = events.__aiter__()
        exhausted = False
        self.logger.info("SSE piped stream started")

        try:
            while True:
                try:
                    event = await asyncio.wait_for(
                        iterator.__anext__(), timeout=self.idle_timeout
                    )
                except StopAsyncIteration:
                    exhausted = True
                    self.close("completed")
                    return
                except asyncio.TimeoutError:
                    # wait_for cancelled the pending step, which ends the session
                    exhausted = True
                    self.logger.warning("SSE stream idle timeout", timeout=self.idle_timeout)
                    self.close("timeout")
                    return

                if self.closed:
                    continue

                frame = self._frame(event)
                if event.is_terminal:
                    self.close(event.event_type.value)
                yield frame
        finally:
            self.close("client_disconnected")
            if not exhausted:
                self._close_later(iterator)

    def _close_later(self, iterator: AsyncIterator[StreamEvent]) -> None:
        aclose = getattr(iterator, "aclose", None)
        if aclose is None:
            return
        closing = aclose()
        try:
            task = asyncio.get_running_loop().create_task(closing)
        except RuntimeError:
            closing.close()
            self.logger.warning("No event loop to close the upstream stream")
            return
        _pending_closes.add(task)
        task.add_done_callback(_pending_closes.discard)
