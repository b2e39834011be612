"""
Conversation Session Store
==========================

Durable, append-only conversation records keyed by session id.

The store performs no deduplication: appending the same turns twice
records them twice. Callers guarantee each exchange's terminal write runs
at most once.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional
import asyncio
import json

from agent_relay.config.logging import get_logger
from agent_relay.models.schemas import (
    AgentType,
    ChatContext,
    ConversationRecord,
    ConversationTurn,
)

logger = get_logger(__name__)

DEFAULT_LIST_LIMIT = 50


def _select_sessions(
    records: Iterable[ConversationRecord],
    organization_id: Optional[str],
    agent_type: Optional[AgentType],
    limit: int,
) -> List[ConversationRecord]:
    """Active records matching the filters, most recently used first."""
    matches = [
        record
        for record in records
        if record.is_active
        and (agent_type is None or record.agent_type == AgentType(agent_type).value)
        and (
            organization_id is None
            or (record.context is not None and record.context.organization_id == organization_id)
        )
    ]
    matches.sort(key=lambda record: record.last_message_at, reverse=True)
    return matches[:limit]


class PersistenceError(Exception):
    """Raised when a conversation record cannot be read or written."""

    pass


class SessionStore(ABC):
    """Interface of the conversation store."""

    @abstractmethod
    async def find_or_create(
        self,
        session_id: str,
        *,
        user_id: Optional[str] = None,
        agent_type: AgentType = AgentType.TUTOR,
        context: Optional[ChatContext] = None,
    ) -> ConversationRecord:
        """Return the record for a session, creating an empty one if absent."""

    @abstractmethod
    async def append_turns(
        self,
        session_id: str,
        turns: List[ConversationTurn],
        *,
        context: Optional[ChatContext] = None,
    ) -> None:
        """Append turns in one update, creating the record if absent."""

    @abstractmethod
    async def get(self, session_id: str) -> Optional[ConversationRecord]:
        """Return the record for a session, or None."""

    @abstractmethod
    async def list_sessions(
        self,
        user_id: str,
        *,
        organization_id: Optional[str] = None,
        agent_type: Optional[AgentType] = None,
        limit: int = DEFAULT_LIST_LIMIT,
    ) -> List[ConversationRecord]:
        """Return a user's active records, most recently used first."""


class InMemorySessionStore(SessionStore):
    """Process-local store for development and tests."""

    def __init__(self) -> None:
        self._records: Dict[str, ConversationRecord] = {}
        self._lock = asyncio.Lock()

    async def find_or_create(
        self,
        session_id: str,
        *,
        user_id: Optional[str] = None,
        agent_type: AgentType = AgentType.TUTOR,
        context: Optional[ChatContext] = None,
    ) -> ConversationRecord:
        async with self._lock:
            record = self._records.get(session_id)
            if record is None:
                record = ConversationRecord(
                    session_id=session_id,
                    user_id=user_id,
                    agent_type=agent_type,
                    context=context,
                )
                self._records[session_id] = record
                logger.debug("Created conversation record", session_id=session_id)
            return record.model_copy(deep=True)

    async def append_turns(
        self,
        session_id: str,
        turns: List[ConversationTurn],
        *,
        context: Optional[ChatContext] = None,
    ) -> None:
        async with self._lock:
            record = self._records.get(session_id)
            if record is None:
                record = ConversationRecord(session_id=session_id, context=context)
                self._records[session_id] = record
            record.messages.extend(turn.model_copy(deep=True) for turn in turns)
            record.last_message_at = datetime.now(timezone.utc)
            if context is not None:
                record.context = context

    async def get(self, session_id: str) -> Optional[ConversationRecord]:
        async with self._lock:
            record = self._records.get(session_id)
            return record.model_copy(deep=True) if record else None

    async def list_sessions(
        self,
        user_id: str,
        *,
        organization_id: Optional[str] = None,
        agent_type: Optional[AgentType] = None,
        limit: int = DEFAULT_LIST_LIMIT,
    ) -> List[ConversationRecord]:
        async with self._lock:
            owned = [record for record in self._records.values() if record.user_id == user_id]
            selected = _select_sessions(owned, organization_id, agent_type, limit)
            return [record.model_copy(deep=True) for record in selected]


class RedisSessionStore(SessionStore):
    """
    Redis-backed store.

    Record metadata lives in a JSON string key and turns in a list, so an
    append is a single RPUSH regardless of concurrent writers. A set per
    user indexes the session ids created on that user's behalf.
    """

    def __init__(self, redis_client: Any, key_prefix: str = "agent_relay:session") -> None:
        self.redis = redis_client
        self.key_prefix = key_prefix
        self.logger: Any = logger.bind(component="redis_session_store")

    def _meta_key(self, session_id: str) -> str:
        return f"{self.key_prefix}:{session_id}"

    def _turns_key(self, session_id: str) -> str:
        return f"{self.key_prefix}:{session_id}:messages"

    def _user_key(self, user_id: str) -> str:
        return f"{self.key_prefix}:user:{user_id}"

    @staticmethod
    def _decode(value: Any) -> str:
        if isinstance(value, bytes):
            return value.decode()
        return str(value)

    def _new_meta(
        self,
        session_id: str,
        user_id: Optional[str],
        agent_type: AgentType,
        context: Optional[ChatContext],
    ) -> str:
        record = ConversationRecord(
            session_id=session_id, user_id=user_id, agent_type=agent_type, context=context
        )
        return record.model_dump_json(exclude={"messages"})

    async def _load(self, session_id: str) -> Optional[ConversationRecord]:
        raw_meta = await self.redis.get(self._meta_key(session_id))
        if raw_meta is None:
            return None
        meta = json.loads(self._decode(raw_meta))
        raw_turns = await self.redis.lrange(self._turns_key(session_id), 0, -1)
        meta["messages"] = [json.loads(self._decode(turn)) for turn in raw_turns]
        return ConversationRecord.model_validate(meta)

    async def find_or_create(
        self,
        session_id: str,
        *,
        user_id: Optional[str] = None,
        agent_type: AgentType = AgentType.TUTOR,
        context: Optional[ChatContext] = None,
    ) -> ConversationRecord:
        try:
            await self.redis.set(
                self._meta_key(session_id),
                self._new_meta(session_id, user_id, agent_type, context),
                nx=True,
            )
            record = await self._load(session_id)
            if record is not None and record.user_id:
                await self.redis.sadd(self._user_key(record.user_id), session_id)
        except PersistenceError:
            raise
        except Exception as e:
            self.logger.error("Failed to load conversation", session_id=session_id, error=str(e))
            raise PersistenceError(f"Failed to load conversation {session_id}: {e}") from e

        if record is None:
            raise PersistenceError(f"Conversation {session_id} vanished during creation")
        return record

    async def append_turns(
        self,
        session_id: str,
        turns: List[ConversationTurn],
        *,
        context: Optional[ChatContext] = None,
    ) -> None:
        if not turns:
            return
        meta_key = self._meta_key(session_id)
        try:
            await self.redis.set(
                meta_key, self._new_meta(session_id, None, AgentType.TUTOR, context), nx=True
            )
            await self.redis.rpush(
                self._turns_key(session_id), *[turn.model_dump_json() for turn in turns]
            )

            raw_meta = await self.redis.get(meta_key)
            if raw_meta is not None:
                meta = json.loads(self._decode(raw_meta))
                meta["last_message_at"] = datetime.now(timezone.utc).isoformat()
                if context is not None:
                    meta["context"] = context.model_dump(mode="json")
                await self.redis.set(meta_key, json.dumps(meta))
        except Exception as e:
            self.logger.error("Failed to append turns", session_id=session_id, error=str(e))
            raise PersistenceError(f"Failed to append to conversation {session_id}: {e}") from e

    async def get(self, session_id: str) -> Optional[ConversationRecord]:
        try:
            return await self._load(session_id)
        except Exception as e:
            self.logger.error("Failed to load conversation", session_id=session_id, error=str(e))
            raise PersistenceError(f"Failed to load conversation {session_id}: {e}") from e

    async def list_sessions(
        self,
        user_id: str,
        *,
        organization_id: Optional[str] = None,
        agent_type: Optional[AgentType] = None,
        limit: int = DEFAULT_LIST_LIMIT,
    ) -> List[ConversationRecord]:
        try:
            members = await self.redis.smembers(self._user_key(user_id))
            records = []
            for member in members:
                record = await self._load(self._decode(member))
                if record is not None and record.user_id == user_id:
                    records.append(record)
        except Exception as e:
            self.logger.error("Failed to list conversations", user_id=user_id, error=str(e))
            raise PersistenceError(f"Failed to list conversations for {user_id}: {e}") from e
        return _select_sessions(records, organization_id, agent_type, limit)
