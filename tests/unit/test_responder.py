"""
Unit Tests for SSE Responder
============================

Connection lifecycle: terminal close, idle timeout, client abort and
idempotent cleanup in both delivery modes.
"""

import asyncio
import json

import pytest

from agent_relay.api.sse.agent_bridge import AgentBridge, StreamStatus
from agent_relay.api.sse.events import create_chunk_event, create_done_event, create_error_event
from agent_relay.api.sse import responder as responder_module
from agent_relay.api.sse.responder import SSEResponder, sse_headers
from agent_relay.core.storage.session_store import InMemorySessionStore

from tests.utils.helpers import collect, scenario_a_chunks, wait_for_condition
from tests.utils.mocks import FakeAgentClient, SlowSessionStore


@pytest.mark.unit
class TestSSEHeaders:
    """Test response headers."""

    def test_headers_disable_buffering(self):
        headers = sse_headers()

        assert headers["Cache-Control"] == "no-cache, no-transform"
        assert headers["Connection"] == "keep-alive"
        assert headers["X-Accel-Buffering"] == "no"
        assert "X-Session-Id" not in headers

    def test_piped_headers_carry_session_id(self):
        assert sse_headers("abc")["X-Session-Id"] == "abc"


@pytest.mark.unit
@pytest.mark.sse
class TestTopicRelay:
    """Test detached delivery through the registry."""

    @pytest.mark.asyncio
    async def test_connected_frame_then_events_until_done(self, registry):
        responder = SSEResponder("s1", idle_timeout=1)
        stream = responder.relay_topic(registry)

        connected = await stream.__anext__()
        assert json.loads(connected[len("data: "):]) == {"type": "connected", "sessionId": "s1"}
        assert registry.subscriber_count("s1") == 1

        registry.publish("s1", create_chunk_event("hello"))
        registry.publish("s1", create_done_event())
        registry.publish("s1", create_chunk_event("after close"))

        rest = await collect(stream)

        assert rest == ["data: hello\n\n", "data: [DONE]\n\n"]
        assert responder.close_reason == "done"
        assert registry.topic_count() == 0

    @pytest.mark.asyncio
    async def test_error_event_closes_connection(self, registry):
        responder = SSEResponder("s1", idle_timeout=1)
        stream = responder.relay_topic(registry)
        await stream.__anext__()

        registry.publish("s1", create_error_event("agent down"))
        rest = await collect(stream)

        assert rest == ['data: {"type":"error","error":"agent down"}\n\n']
        assert responder.close_reason == "error"
        assert not registry.has_subscribers("s1")

    @pytest.mark.asyncio
    async def test_idle_timeout_unsubscribes(self, registry):
        responder = SSEResponder("s1", idle_timeout=0.05)
        stream = responder.relay_topic(registry)

        frames = await collect(stream)

        assert len(frames) == 1  # connected only
        assert responder.close_reason == "timeout"
        assert registry.topic_count() == 0

    @pytest.mark.asyncio
    async def test_client_abort_unsubscribes_silently(self, registry):
        responder = SSEResponder("s1", idle_timeout=1)
        stream = responder.relay_topic(registry)
        await stream.__anext__()

        await stream.aclose()

        assert responder.close_reason == "client_disconnected"
        assert registry.topic_count() == 0
        # Publishing after the abort reaches nobody
        assert registry.publish("s1", create_chunk_event("x")) == 0

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self, registry):
        responder = SSEResponder("s1", idle_timeout=1)
        stream = responder.relay_topic(registry)
        await stream.__anext__()

        assert responder.close("done") is True
        assert responder.close("timeout") is False
        assert responder.close("client_disconnected") is False
        assert responder.close_reason == "done"
        assert registry.topic_count() == 0

        await stream.aclose()
        assert responder.close_reason == "done"

    @pytest.mark.asyncio
    async def test_multiple_viewers_share_a_topic(self, registry):
        first = SSEResponder("s1", idle_timeout=1)
        second = SSEResponder("s1", idle_timeout=1)
        first_stream = first.relay_topic(registry)
        second_stream = second.relay_topic(registry)
        await first_stream.__anext__()
        await second_stream.__anext__()

        registry.publish("s1", create_chunk_event("both"))
        registry.publish("s1", create_done_event())

        assert await collect(first_stream) == ["data: both\n\n", "data: [DONE]\n\n"]
        assert await collect(second_stream) == ["data: both\n\n", "data: [DONE]\n\n"]
        assert registry.topic_count() == 0


@pytest.mark.unit
@pytest.mark.sse
class TestPipedRelay:
    """Test piped delivery from a stream session."""

    @pytest.mark.asyncio
    async def test_relays_all_frames_and_persists_before_finishing(
        self, bridge, session_store, agent_request
    ):
        session = await bridge.open_session("s1", agent_request)
        responder = SSEResponder("s1", idle_timeout=1)

        frames = await collect(responder.relay_stream(session.events()))

        assert frames == [
            "data: Vari\n\n",
            "data: ables are\n\n",
            "data:  containers.\n\n",
            "data: [DONE]\n\n",
        ]
        assert responder.close_reason == "done"
        record = await session_store.get("s1")
        assert record.messages[-1].content == "Variables are containers."

    @pytest.mark.asyncio
    async def test_idle_timeout_cancels_upstream(self, session_store, registry, agent_request):
        client = FakeAgentClient([b"data: Vari\n\n"], hang=True)
        bridge = AgentBridge(client, session_store, registry)
        session = await bridge.open_session("s1", agent_request)
        responder = SSEResponder("s1", idle_timeout=0.05)

        frames = await collect(responder.relay_stream(session.events()))
        await bridge.wait_idle()

        assert frames == ["data: Vari\n\n"]
        assert responder.close_reason == "timeout"
        assert session.status == StreamStatus.ABORTED
        assert client.streams_closed == 1
        record = await session_store.get("s1")
        assert [turn.content for turn in record.messages] == ["Explain variables", "Vari"]

    @pytest.mark.asyncio
    async def test_client_abort_cancels_upstream_once(
        self, session_store, registry, agent_request
    ):
        client = FakeAgentClient([b"data: Vari\n\n"], hang=True)
        bridge = AgentBridge(client, session_store, registry)
        session = await bridge.open_session("s1", agent_request)
        responder = SSEResponder("s1", idle_timeout=5)

        stream = responder.relay_stream(session.events())
        assert await stream.__anext__() == "data: Vari\n\n"
        before = set(responder_module._pending_closes)
        await stream.aclose()
        # The session is closed from a separate task, held until it finishes
        held = responder_module._pending_closes - before
        assert len(held) == 1
        assert await wait_for_condition(lambda: session.status == StreamStatus.ABORTED)
        assert await wait_for_condition(lambda: not held & responder_module._pending_closes)
        await bridge.wait_idle()

        assert responder.close_reason == "client_disconnected"
        assert client.streams_closed == 1
        assert session.status == StreamStatus.ABORTED
        record = await session_store.get("s1")
        # User turn plus exactly one assistant turn
        assert len(record.messages) == 2
        assert not bridge.is_active("s1")

    @staticmethod
    def _record_closes(responder):
        calls = []
        close = responder.close

        def recording_close(reason):
            first = close(reason)
            calls.append((reason, first))
            return first

        responder.close = recording_close
        return calls

    async def _read_until_done(self, registry, agent_request):
        store = SlowSessionStore(InMemorySessionStore(), delay=0.05)
        client = FakeAgentClient(scenario_a_chunks())
        bridge = AgentBridge(client, store, registry)
        session = await bridge.open_session("s1", agent_request)
        responder = SSEResponder("s1", idle_timeout=5)
        closes = self._record_closes(responder)

        stream = responder.relay_stream(session.events())
        frames = [await stream.__anext__() for _ in range(4)]
        assert frames[-1] == "data: [DONE]\n\n"
        return store, client, bridge, responder, closes, stream

    @pytest.mark.asyncio
    async def test_disconnect_while_persisting_after_done_writes_once(
        self, registry, agent_request
    ):
        store, client, bridge, responder, closes, stream = await self._read_until_done(
            registry, agent_request
        )

        # Client leaves while the assistant turn is being written
        pending = asyncio.create_task(stream.__anext__())
        assert await wait_for_condition(lambda: store.appends_started == 2)
        pending.cancel()
        with pytest.raises(asyncio.CancelledError):
            await pending
        await stream.aclose()
        await bridge.wait_idle()

        assert store.appends_started == 2
        assert store.appended == ["Explain variables", "Variables are containers."]
        assert [reason for reason, first in closes if first] == ["done"]
        assert responder.close_reason == "done"
        assert client.streams_closed == 1
        assert not bridge.is_active("s1")

    @pytest.mark.asyncio
    async def test_close_after_done_writes_once(self, registry, agent_request):
        store, client, bridge, responder, closes, stream = await self._read_until_done(
            registry, agent_request
        )

        await stream.aclose()
        assert await wait_for_condition(lambda: store.appends_started == 2)
        await bridge.wait_idle()

        assert store.appended == ["Explain variables", "Variables are containers."]
        assert [reason for reason, first in closes if first] == ["done"]
        assert not bridge.is_active("s1")
