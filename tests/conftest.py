"""
Test Configuration
==================

Pytest configuration with fixtures for all test types.
Provides isolated registries, stores, scripted agent clients and apps.
"""

import os

os.environ.setdefault("AGENT_RELAY_ENVIRONMENT", "testing")

import pytest
from typing import Any, Callable, Generator, Optional
from pydantic_settings import SettingsConfigDict
from fastapi import FastAPI
from fastapi.testclient import TestClient

from agent_relay.api.main import create_app
from agent_relay.api.sse.agent_bridge import AgentBridge
from agent_relay.api.sse.registry import TopicRegistry
from agent_relay.config.settings import Settings
from agent_relay.core.storage.session_store import InMemorySessionStore
from agent_relay.models.schemas import AgentRequest

from tests.utils.helpers import API_TOKEN, scenario_a_chunks
from tests.utils.mocks import FakeAgentClient


# Test settings override
class TestSettings(Settings):
    """Test-specific settings."""

    environment: str = "testing"
    debug: bool = True
    redis_url: str = "redis://localhost:6379/15"  # Use test database
    agent_base_url: str = "http://agent.invalid"
    agent_api_key: Optional[str] = "test-api-key"
    tutor_agent_id: Optional[str] = "tutor-agent"
    sourcing_agent_id: Optional[str] = "sourcing-agent"
    api_auth_token: Optional[str] = API_TOKEN
    sse_idle_timeout_seconds: float = 2.0
    detached_start_delay_seconds: float = 0.0
    log_level: str = "DEBUG"

    model_config = SettingsConfigDict(env_file=".env.test")


@pytest.fixture
def test_settings() -> TestSettings:
    """Test settings fixture."""
    return TestSettings()


@pytest.fixture
def registry() -> TopicRegistry:
    """Fresh topic registry per test."""
    return TopicRegistry()


@pytest.fixture
def session_store() -> InMemorySessionStore:
    return InMemorySessionStore()


@pytest.fixture
def agent_client() -> FakeAgentClient:
    """Agent that replies 'Variables are containers.' in three fragments."""
    return FakeAgentClient(scenario_a_chunks())


@pytest.fixture
async def bridge(agent_client, session_store, registry):
    """Agent bridge over the scripted agent."""
    bridge = AgentBridge(agent_client, session_store, registry)
    yield bridge
    await bridge.close()


@pytest.fixture
def agent_request() -> AgentRequest:
    return AgentRequest(
        api_key="test-api-key",
        agent_id="tutor-agent",
        message="Explain variables",
        user_id="user-1",
        prompt_variables={"prompt": "You are a tutor."},
    )


@pytest.fixture
def make_app(test_settings, registry, session_store) -> Callable[..., FastAPI]:
    """Build an app around a given agent client and optional settings overrides."""

    def factory(agent_client: Any, **overrides: Any) -> FastAPI:
        settings = test_settings.model_copy(update=overrides) if overrides else test_settings
        return create_app(
            settings=settings,
            registry=registry,
            session_store=session_store,
            agent_client=agent_client,
        )

    return factory


@pytest.fixture
def fastapi_client(make_app, agent_client) -> Generator[TestClient, None, None]:
    """FastAPI test client."""
    with TestClient(make_app(agent_client)) as client:
        yield client


@pytest.fixture
def auth_headers() -> dict:
    return {"Authorization": f"Bearer {API_TOKEN}"}
