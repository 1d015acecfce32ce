"""
Per-(room, agent) memory of the humans an agent has talked to.

Each record is loaded lazily on first use, kept in memory for the life of
the process, and written back in full after every mutating call. Write
failures are logged and swallowed: losing one remembered interaction must
never block a reply from being delivered.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

from .logging_utils import log_error, log_info
from .persistence import JsonFileBackend, MemoryBackend, PersistenceError
from .schemas import (
    ConversationRecord,
    MemoryRecord,
    RelationshipInfo,
    UserProfile,
    utc_now,
)

MAX_CONVERSATIONS = 50


def memory_key(room_id: str, agent_id: str) -> str:
    return f"{room_id}_{agent_id}"


class MemoryStore:
    """Append-only conversation log plus user profiles, bounded per agent."""

    def __init__(
        self,
        backend: Optional[MemoryBackend] = None,
        *,
        max_conversations: int = MAX_CONVERSATIONS,
        now: Callable[[], datetime] = utc_now,
    ) -> None:
        self.backend = backend or JsonFileBackend()
        self.max_conversations = max_conversations
        self._now = now
        self._records: Dict[Tuple[str, str], MemoryRecord] = {}

    async def get_record(self, room_id: str, agent_id: str) -> MemoryRecord:
        """Return the live record, loading it from the backend the first time."""
        cache_key = (room_id, agent_id)
        record = self._records.get(cache_key)
        if record is not None:
            return record

        try:
            record = await self.backend.load(memory_key(room_id, agent_id))
        except PersistenceError as exc:
            log_error(f"[Memory] {exc}; starting with an empty record")
            record = None
        if record is None:
            log_info(f"[Memory] Creating new memory for {agent_id} in {room_id}")
            record = MemoryRecord()

        # Another caller may have loaded the same pair while this one was suspended.
        return self._records.setdefault(cache_key, record)

    async def _persist(self, room_id: str, agent_id: str, record: MemoryRecord) -> bool:
        try:
            await self.backend.save(memory_key(room_id, agent_id), record)
        except PersistenceError as exc:
            log_error(f"[Memory] {exc}; interaction will not be remembered on disk")
            return False
        return True

    def _merge_profile(self, record: MemoryRecord, user_id: str, fields: Dict[str, Any]) -> UserProfile:
        existing = record.user_profiles.get(user_id)
        merged = existing.model_dump() if existing is not None else {}
        merged.update({key: value for key, value in fields.items() if value is not None})
        merged["last_seen_at"] = self._now()
        profile = UserProfile.model_validate(merged)
        record.user_profiles[user_id] = profile
        return profile

    def _append_conversation(
        self,
        record: MemoryRecord,
        user_id: str,
        message: str,
        context: Optional[Dict[str, Any]],
        summary: Optional[str],
    ) -> ConversationRecord:
        conversation = ConversationRecord(
            user_id=user_id,
            message=message,
            context=context or {},
            summary=summary,
            timestamp=self._now(),
        )
        record.conversations.append(conversation)
        # Oldest entries are evicted first.
        if len(record.conversations) > self.max_conversations:
            del record.conversations[: len(record.conversations) - self.max_conversations]
        record.interaction_counts[user_id] = record.interaction_counts.get(user_id, 0) + 1
        return conversation

    async def remember_user(
        self, room_id: str, agent_id: str, user_id: str, **fields: Any
    ) -> UserProfile:
        """Merge ``fields`` into the user's profile and stamp ``last_seen_at``."""
        record = await self.get_record(room_id, agent_id)
        profile = self._merge_profile(record, user_id, fields)
        await self._persist(room_id, agent_id, record)
        return profile

    async def remember_conversation(
        self,
        room_id: str,
        agent_id: str,
        user_id: str,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        *,
        summary: Optional[str] = None,
    ) -> ConversationRecord:
        record = await self.get_record(room_id, agent_id)
        conversation = self._append_conversation(record, user_id, message, context, summary)
        await self._persist(room_id, agent_id, record)
        return conversation

    async def remember_interaction(
        self,
        room_id: str,
        agent_id: str,
        user_id: str,
        message: str,
        *,
        display_name: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> MemoryRecord:
        """Record one processed human message: profile upsert + conversation, one write."""
        record = await self.get_record(room_id, agent_id)
        self._merge_profile(
            record, user_id, {"display_name": display_name, "last_message": message}
        )
        self._append_conversation(record, user_id, message, context, None)
        await self._persist(room_id, agent_id, record)
        return record

    async def set_relationship(
        self,
        room_id: str,
        agent_id: str,
        user_id: str,
        *,
        relationship_type: str = "new",
        trust_level: float = 0.5,
    ) -> RelationshipInfo:
        record = await self.get_record(room_id, agent_id)
        info = RelationshipInfo(relationship_type=relationship_type, trust_level=trust_level)
        record.relationships[user_id] = info
        await self._persist(room_id, agent_id, record)
        return info

    async def get_user_context(
        self, room_id: str, agent_id: str, user_id: str, limit: int = 10
    ) -> Dict[str, Any]:
        record = await self.get_record(room_id, agent_id)
        profile = record.user_profiles.get(user_id)
        recent: List[ConversationRecord] = [
            c for c in record.conversations if c.user_id == user_id
        ][-limit:]
        return {
            "profile": profile.model_dump(mode="json") if profile else {},
            "recent_conversations": [c.model_dump(mode="json") for c in recent],
        }

    async def forget_agent(self, room_id: str, agent_id: str) -> bool:
        """Drop the agent's record from memory and from the backend."""
        self._records.pop((room_id, agent_id), None)
        try:
            return await self.backend.delete(memory_key(room_id, agent_id))
        except PersistenceError as exc:
            log_error(f"[Memory] {exc}")
            return False
