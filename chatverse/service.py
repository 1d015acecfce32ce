"""
ChatService: the one object an HTTP or UI layer talks to.

Owns the rooms, the shared provider lane, cache, memory store and delivery
queue, and wires them into an AgentOrchestrator. Bad requests (unknown room,
empty message, duplicate personality) raise ``KeyError``/``ValueError``;
everything that goes wrong after a message has been accepted degrades to
fallback text inside the pipeline.

Usage:
    async with ChatService() as service:
        await service.submit_message("late-night-coders", "u1", "Sam", "hi all")
        await service.drain()
        print(service.get_history("late-night-coders"))
"""

from __future__ import annotations

import asyncio
import random
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Tuple

from .cache import ResponseCache
from .community import (
    build_default_community,
    load_agent_config_files,
    slugify_agent_name,
    validate_agent_config,
)
from .config import Config
from .delivery import DeliveryQueue
from .fallback import welcome_message
from .logging_utils import log_error, log_info, log_success
from .memory import MemoryStore
from .orchestrator import AgentOrchestrator, OrchestrationResult, wall_clock_ms
from .provider import ProviderClient
from .responder import AgentResponder, Reply
from .room import HISTORY_PAGE_SIZE, RoomSession
from .schemas import AgentConfig, Message, MessageKind, Room, utc_now

DEFAULT_BACKSTORY = "A mysterious AI with an unknown past."
DEFAULT_RESPONSE_STYLE = "Friendly and helpful, adapts to the conversation style."


class ChatService:
    """Rooms, direct-message threads and the shared reply pipeline."""

    def __init__(
        self,
        rooms: Optional[Iterable[RoomSession]] = None,
        *,
        provider: Optional[ProviderClient] = None,
        cache: Optional[ResponseCache] = None,
        memory: Optional[MemoryStore] = None,
        delivery: Optional[DeliveryQueue] = None,
        rng: Optional[random.Random] = None,
        clock_ms: Callable[[], float] = wall_clock_ms,
        sweep_interval_seconds: Optional[float] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.rng = rng or random.Random()
        self.provider = provider or ProviderClient()
        self.cache = cache or ResponseCache(Config.CACHE_TTL_SECONDS)
        self.memory = memory or MemoryStore()
        self.delivery = delivery or DeliveryQueue()
        self.responder = AgentResponder(self.provider, self.cache, rng=self.rng)
        self.orchestrator = AgentOrchestrator(
            self.responder, self.memory, self.delivery, rng=self.rng, clock_ms=clock_ms
        )
        self.sweep_interval_seconds = (
            Config.CACHE_SWEEP_INTERVAL_SECONDS
            if sweep_interval_seconds is None
            else sweep_interval_seconds
        )
        self._sleep = sleep
        self._maintenance_task: Optional[asyncio.Task] = None

        if rooms is None:
            rooms = [build_default_community(load_agent_config_files())]
        self.rooms: Dict[str, RoomSession] = {}
        for session in rooms:
            self.add_room(session)

        self.direct_threads: Dict[Tuple[str, str], List[Message]] = {}

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Open the memory backend and start the periodic cache sweep."""
        await self.memory.backend.initialize()
        if self._maintenance_task is None or self._maintenance_task.done():
            self._maintenance_task = asyncio.create_task(self._maintenance_loop())
        log_success(f"[Service] Started with {len(self.rooms)} room(s)")

    async def close(self) -> None:
        if self._maintenance_task is not None and not self._maintenance_task.done():
            self._maintenance_task.cancel()
            try:
                await self._maintenance_task
            except asyncio.CancelledError:
                pass
        self._maintenance_task = None
        await self.delivery.close()
        await self.provider.close()
        await self.memory.backend.close()

    async def __aenter__(self) -> "ChatService":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    def run_maintenance(self) -> int:
        """One sweep: evict expired cache entries and log generation stats."""
        evicted = self.cache.evict_expired()
        if evicted:
            log_info(f"[Cache] Cleaned {evicted} expired entries")
        self.responder.log_stats()
        return evicted

    async def _maintenance_loop(self) -> None:
        while True:
            await self._sleep(self.sweep_interval_seconds)
            try:
                self.run_maintenance()
            except Exception as exc:
                log_error(f"[Service] Maintenance sweep failed: {exc}")

    async def drain(self) -> None:
        """Wait until every scheduled reply has been delivered."""
        await self.delivery.drain()

    # ------------------------------------------------------------------
    # Rooms
    # ------------------------------------------------------------------

    def add_room(self, session: RoomSession) -> RoomSession:
        if session.id in self.rooms:
            raise ValueError(f"Room '{session.id}' already exists")
        self.rooms[session.id] = session
        return session

    def get_room(self, room_id: str) -> RoomSession:
        try:
            return self.rooms[room_id]
        except KeyError:
            raise KeyError(f"Unknown room '{room_id}'") from None

    def list_rooms(self) -> List[Room]:
        return [session.room for session in self.rooms.values()]

    def get_history(self, room_id: str, limit: int = HISTORY_PAGE_SIZE) -> List[Message]:
        return self.get_room(room_id).recent_messages(limit)

    async def submit_message(
        self, room_id: str, user_id: str, display_name: str, text: str
    ) -> OrchestrationResult:
        """Accept a human message and schedule whatever agent replies it earns.

        Raises:
            KeyError: Unknown room
            ValueError: Empty message text
        """
        session = self.get_room(room_id)
        text = (text or "").strip()
        if not text:
            raise ValueError("Message text must not be empty")

        session.append(Message(author=display_name or user_id, content=text, kind=MessageKind.HUMAN))
        log_info(f"[{session.name}] {display_name or user_id}: {text[:80]}")
        return await self.orchestrator.handle_message(
            session, text, user_id=user_id, display_name=display_name
        )

    # ------------------------------------------------------------------
    # Personalities
    # ------------------------------------------------------------------

    def list_personalities(self, room_id: str) -> List[AgentConfig]:
        return self.get_room(room_id).members()

    def debug_agents(self, room_id: str) -> List[Dict[str, Any]]:
        session = self.get_room(room_id)
        return [
            {
                "id": agent.id,
                "name": agent.name,
                "avatar": agent.avatar,
                "response_probability": agent.behavior_config.response_probability,
                "last_response_at": session.last_response_at.get(agent.id),
            }
            for agent in session.members()
        ]

    def create_personality(
        self,
        room_id: str,
        name: str,
        personality: str,
        *,
        avatar: Optional[str] = None,
        backstory: Optional[str] = None,
        response_style: Optional[str] = None,
        response_frequency: int = 50,
        response_speed: int = 5,
        chattiness: int = 5,
        empathy: int = 7,
        created_by: Optional[str] = None,
    ) -> AgentConfig:
        """Add a user-designed personality to a room and post its introduction.

        ``response_frequency`` is a percentage; ``response_speed`` runs from 1
        (slow) to 10 (fast). A room that does not exist yet is created.

        Raises:
            ValueError: Missing name or personality, a duplicate id, or
                parameters outside their ranges (ConfigError)
        """
        if not name or not name.strip() or not personality or not personality.strip():
            raise ValueError("Missing required fields: name, personality")

        session = self.rooms.get(room_id)
        if session is None:
            title = " ".join(part.capitalize() for part in room_id.split("-"))
            session = self.add_room(RoomSession(Room(id=room_id, name=title)))

        agent_id = slugify_agent_name(name)
        if agent_id in session.agents:
            raise ValueError(f"AI personality '{agent_id}' already exists in room '{room_id}'")

        min_delay_ms = (11 - response_speed) * 500
        agent = validate_agent_config(
            {
                "id": agent_id,
                "name": name,
                "avatar": avatar or "🤖",
                "personality": personality,
                "backstory": backstory or DEFAULT_BACKSTORY,
                "response_style": response_style or DEFAULT_RESPONSE_STYLE,
                "llm_config": {
                    "model": Config.LLM_MODEL,
                    "temperature": 0.8,
                    "max_output_tokens": 150,
                },
                "behavior_config": {
                    "response_probability": response_frequency / 100,
                    "min_delay_ms": min_delay_ms,
                    "max_delay_ms": min_delay_ms * 3,
                    "chattiness_level": chattiness,
                    "empathy_level": empathy,
                },
                "created_by": created_by or "user",
                "created_at": utc_now(),
            }
        )
        session.add_agent(agent)
        session.append(
            Message(author=agent.id, content=welcome_message(agent, self.rng), kind=MessageKind.AGENT)
        )
        log_success(f"[{session.name}] Created personality {agent.name} ({agent.id})")
        return agent

    async def delete_personality(self, room_id: str, agent_id: str) -> AgentConfig:
        """Remove an agent from a room and delete its memory, DM threads included.

        Raises:
            KeyError: Unknown room or agent
        """
        session = self.get_room(room_id)
        if agent_id not in session.agents:
            raise KeyError(f"Unknown agent '{agent_id}' in room '{room_id}'")
        agent = session.remove_agent(agent_id)
        await self.memory.forget_agent(room_id, agent_id)
        for user_id, thread_agent_id in list(self.direct_threads):
            if thread_agent_id == agent_id:
                del self.direct_threads[(user_id, thread_agent_id)]
                await self.memory.forget_agent(f"dm_{user_id}", agent_id)
        log_info(f"[{session.name}] Deleted personality {agent.name}")
        return agent

    # ------------------------------------------------------------------
    # Direct messages
    # ------------------------------------------------------------------

    def find_agent(self, agent_id: str) -> AgentConfig:
        for session in self.rooms.values():
            agent = session.agents.get(agent_id)
            if agent is not None:
                return agent
        raise KeyError(f"Unknown agent '{agent_id}'")

    def get_direct_messages(self, user_id: str, agent_id: str) -> List[Message]:
        return list(self.direct_threads.get((user_id, agent_id), []))

    async def send_direct_message(
        self, user_id: str, display_name: str, agent_id: str, text: str
    ) -> Reply:
        """Private message to one agent; it always answers, after its usual delay."""
        agent = self.find_agent(agent_id)
        text = (text or "").strip()
        if not text:
            raise ValueError("Message text must not be empty")

        thread = self.direct_threads.setdefault((user_id, agent_id), [])
        thread.append(Message(author=display_name or user_id, content=text, kind=MessageKind.HUMAN))
        return await self.orchestrator.reply_directly(
            agent,
            text,
            thread_key=f"dm_{user_id}",
            thread_messages=thread,
            sink=thread.append,
            user_id=user_id,
            display_name=display_name,
        )

    # ------------------------------------------------------------------
    # Stats and cache
    # ------------------------------------------------------------------

    def stats(self) -> Dict[str, Any]:
        data = self.responder.stats.as_dict()
        data["cache_size"] = len(self.cache)
        data["queue_depth"] = self.provider.queue_depth
        data["pending_deliveries"] = len(self.delivery)
        data["provider"] = self.provider.provider
        data["provider_available"] = self.provider.is_available()
        return data

    def clear_cache(self) -> None:
        self.cache.clear()
        log_info("[Cache] Cleared")
