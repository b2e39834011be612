"""
Conversation Storage
====================

Append-only conversation records, in memory or in Redis.
"""

from .session_store import (
    InMemorySessionStore,
    PersistenceError,
    RedisSessionStore,
    SessionStore,
)

__all__ = ["InMemorySessionStore", "PersistenceError", "RedisSessionStore", "SessionStore"]
