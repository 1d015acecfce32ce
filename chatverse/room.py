"""Explicit per-room state: members, history and response bookkeeping."""

from __future__ import annotations

from typing import Dict, Iterable, List, Optional

from .schemas import AgentConfig, Message, MessageKind, Room

HISTORY_PAGE_SIZE = 50
RECENT_RESPONDER_WINDOW = 3


class RoomSession:
    """Everything the orchestrator needs to know about one room.

    History is append-only and never truncated on write; readers page over
    a suffix. ``last_response_at`` holds the scheduled delivery time (ms) of
    each agent's latest selected reply and drives the cooldown gate.
    """

    def __init__(
        self,
        room: Room,
        agents: Iterable[AgentConfig] = (),
        *,
        history: Optional[List[Message]] = None,
    ) -> None:
        self.room = room
        self.agents: Dict[str, AgentConfig] = {}
        self.history: List[Message] = list(history or [])
        self.last_response_at: Dict[str, float] = {}
        for agent in agents:
            self.add_agent(agent)

    @property
    def id(self) -> str:
        return self.room.id

    @property
    def name(self) -> str:
        return self.room.name

    def add_agent(self, agent: AgentConfig) -> None:
        if agent.id in self.agents:
            raise ValueError(f"Agent '{agent.id}' is already a member of room '{self.id}'")
        self.agents[agent.id] = agent
        if agent.id not in self.room.members:
            self.room.members.append(agent.id)

    def remove_agent(self, agent_id: str) -> AgentConfig:
        agent = self.agents.pop(agent_id)
        self.room.members = [member for member in self.room.members if member != agent_id]
        self.last_response_at.pop(agent_id, None)
        return agent

    def members(self) -> List[AgentConfig]:
        """Member configs in room order."""
        return [self.agents[agent_id] for agent_id in self.room.members if agent_id in self.agents]

    def append(self, message: Message) -> Message:
        self.history.append(message)
        return message

    def recent_messages(self, limit: int = HISTORY_PAGE_SIZE) -> List[Message]:
        if limit <= 0:
            return []
        return self.history[-limit:]

    def recent_agent_authors(self, count: int = RECENT_RESPONDER_WINDOW) -> List[str]:
        """Authors of the last ``count`` agent-written messages."""
        agent_messages = [msg for msg in self.history if msg.kind == MessageKind.AGENT]
        return [msg.author for msg in agent_messages[-count:]]

    def record_response(self, agent_id: str, at_ms: float) -> None:
        self.last_response_at[agent_id] = at_ms
