"""
Agent API
=========

Client for the external agent inference API.
"""

from .client import AgentAPIError, AgentClient, generate_session_id

__all__ = ["AgentAPIError", "AgentClient", "generate_session_id"]
