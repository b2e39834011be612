"""
API Dependencies
================

FastAPI dependencies resolving the components ``create_app`` wired onto
``app.state``.
"""

from fastapi import Request

from agent_relay.api.sse.agent_bridge import AgentBridge
from agent_relay.api.sse.registry import TopicRegistry
from agent_relay.config.settings import Settings
from agent_relay.core.storage.session_store import SessionStore


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_registry(request: Request) -> TopicRegistry:
    return request.app.state.registry


def get_session_store(request: Request) -> SessionStore:
    return request.app.state.session_store


def get_bridge(request: Request) -> AgentBridge:
    return request.app.state.bridge
