"""
Unit Tests for Agent Client
===========================

HTTP behavior of the agent client against an in-process aiohttp server.
"""

import json

import pytest
from aiohttp import web
from aiohttp import test_utils

from agent_relay.core.agent.client import AgentAPIError, AgentClient, generate_session_id
from agent_relay.models.schemas import AgentRequest

from tests.utils.helpers import collect


class AgentAPIStub:
    """Records requests and replays canned agent responses."""

    def __init__(self):
        self.requests = []
        self.stream_chunks = [b"data: Vari\n\n", b"data: ables\n\n", b"data: [DONE]\n\n"]
        self.status = 200

    async def stream(self, request: web.Request) -> web.StreamResponse:
        self.requests.append((request.headers.copy(), await request.json()))
        if self.status != 200:
            return web.Response(status=self.status, text="agent unavailable")

        response = web.StreamResponse(headers={"Content-Type": "text/event-stream"})
        await response.prepare(request)
        for chunk in self.stream_chunks:
            await response.write(chunk)
        await response.write_eof()
        return response

    async def chat(self, request: web.Request) -> web.Response:
        body = await request.json()
        self.requests.append((request.headers.copy(), body))
        if self.status != 200:
            return web.Response(status=self.status, text="bad request")
        return web.json_response({"response": "Variables are containers.", "session_id": body["session_id"]})


@pytest.fixture
def stub():
    return AgentAPIStub()


@pytest.fixture
async def agent_api(stub):
    app = web.Application()
    app.router.add_post("/v3/inference/stream/", stub.stream)
    app.router.add_post("/v3/inference/chat/", stub.chat)
    server = test_utils.TestServer(app)
    await server.start_server()
    yield server
    await server.close()


@pytest.fixture
async def client(agent_api, test_settings):
    settings = test_settings.model_copy(
        update={"agent_base_url": str(agent_api.make_url("/"))}
    )
    client = AgentClient(settings)
    yield client
    await client.close()


@pytest.fixture
def request_with_assets():
    return AgentRequest(
        api_key="secret-key",
        agent_id="tutor-agent",
        message="Explain variables",
        user_id="user-1",
        prompt_variables={"prompt": "You are a tutor."},
        asset_ids=["asset-1"],
    )


@pytest.mark.unit
class TestGenerateSessionId:
    """Test session id generation."""

    def test_shape(self):
        session_id = generate_session_id("agent-x")
        prefix, millis, suffix = session_id.rsplit("-", 2)

        assert prefix == "agent-x"
        assert millis.isdigit()
        assert len(suffix) == 9

    def test_unique(self):
        assert generate_session_id("a") != generate_session_id("a")


@pytest.mark.unit
class TestAgentRequestPayload:
    """Test the JSON body sent to the agent."""

    def test_payload_fields(self, request_with_assets):
        payload = request_with_assets.to_payload("s1")

        assert payload["user_id"] == "user-1"
        assert payload["agent_id"] == "tutor-agent"
        assert payload["session_id"] == "s1"
        assert payload["message"] == "Explain variables"
        assert payload["system_prompt_variables"] == {"prompt": "You are a tutor."}
        assert payload["filter_variables"] == {}
        assert payload["features"] == []
        assert payload["assets"] == ["asset-1"]
        assert "api_key" not in json.dumps(payload)

    def test_assets_omitted_when_empty(self, request_with_assets):
        request = request_with_assets.model_copy(update={"asset_ids": []})

        assert "assets" not in request.to_payload("s1")


@pytest.mark.unit
class TestAgentClient:
    """Test HTTP calls to the agent API."""

    @pytest.mark.asyncio
    async def test_stream_chat_yields_body(self, client, stub, request_with_assets):
        chunks = await collect(client.stream_chat(request_with_assets, "s1"))

        assert b"".join(chunks) == b"".join(stub.stream_chunks)
        headers, body = stub.requests[0]
        assert headers["x-api-key"] == "secret-key"
        assert body["session_id"] == "s1"

    @pytest.mark.asyncio
    async def test_stream_chat_error_status(self, client, stub, request_with_assets):
        stub.status = 503

        with pytest.raises(AgentAPIError) as exc_info:
            await collect(client.stream_chat(request_with_assets, "s1"))

        assert exc_info.value.status == 503
        assert "agent unavailable" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_stream_chat_connection_failure(self, test_settings, request_with_assets):
        settings = test_settings.model_copy(update={"agent_base_url": "http://127.0.0.1:1"})
        client = AgentClient(settings)
        try:
            with pytest.raises(AgentAPIError):
                await collect(client.stream_chat(request_with_assets, "s1"))
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_chat_returns_reply(self, client, request_with_assets):
        reply = await client.chat(request_with_assets, "s1")

        assert reply.response == "Variables are containers."
        assert reply.session_id == "s1"

    @pytest.mark.asyncio
    async def test_chat_error_status(self, client, stub, request_with_assets):
        stub.status = 400

        with pytest.raises(AgentAPIError) as exc_info:
            await client.chat(request_with_assets, "s1")

        assert exc_info.value.status == 400

    @pytest.mark.asyncio
    async def test_close_is_safe_to_repeat(self, client):
        await client.close()
        await client.close()
