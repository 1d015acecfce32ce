"""
Agent response orchestration.

For one incoming human message in one room:
1. Gate every member agent on its cooldown (hard exclusion)
2. Compose a response probability (base + mention boost - recent-responder
   penalty, clamped to [0, 0.95]) and draw against it
3. Compute a typing delay for each selected agent, compressed by urgency
4. Keep the four fastest, stagger them 1.5s apart, record cooldowns
5. Resolve each agent's text independently (cache/LLM/fallback), update its
   memory, then hand the replies to the delivery queue in delay order

All randomness comes from an injected ``random.Random`` and all time from an
injected clock so selection and delays are reproducible in tests.
"""

from __future__ import annotations

import asyncio
import random
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence

from .delivery import DeliveryQueue, MessageSink
from .logging_utils import log_deterministic, log_error, log_info
from .memory import MemoryStore
from .prompts import mentions
from .responder import AgentResponder, Reply, ReplySource
from .room import RECENT_RESPONDER_WINDOW, RoomSession
from .schemas import AgentConfig, Message

MENTION_BOOST = 0.3
RECENT_RESPONDER_PENALTY = 0.2
MAX_RESPONSE_PROBABILITY = 0.95
MAX_RESPONDERS = 4
STAGGER_MS = 1500
URGENT_KEYWORDS = ("help", "urgent", "please", "need", "how", "?")
URGENCY_KEYWORDS_FOR_MAX = 3
URGENCY_DELAY_COMPRESSION = 0.7
PROMPT_HISTORY_LIMIT = 5


def wall_clock_ms() -> float:
    return time.time() * 1000


def analyze_urgency(message: str) -> float:
    """Urgency in [0, 1]: distinct urgent keywords present, saturating at three."""
    lowered = message.lower()
    hits = sum(1 for keyword in URGENT_KEYWORDS if keyword in lowered)
    return min(1.0, hits / URGENCY_KEYWORDS_FOR_MAX)


def compose_probability(
    agent: AgentConfig, message: str, recent_authors: List[str]
) -> float:
    """Selection probability before the random draw, clamped to [0, 0.95]."""
    boost = MENTION_BOOST if mentions(message, [agent.name]) else 0.0
    penalty = RECENT_RESPONDER_PENALTY if agent.id in recent_authors else 0.0
    probability = agent.behavior_config.response_probability + boost - penalty
    return max(0.0, min(MAX_RESPONSE_PROBABILITY, probability))


def compute_delay(agent: AgentConfig, urgency: float, jitter_draw: float) -> float:
    """Typing delay in ms.

    ``jitter_draw`` is U[0, 1); the ``0.5 + draw`` factor spreads the delay
    +/-50% around the midpoint of the agent's range, and urgency shrinks the
    variable part by up to 70%.
    """
    behavior = agent.behavior_config
    variance = behavior.max_delay_ms - behavior.min_delay_ms
    urgency_multiplier = 1 - URGENCY_DELAY_COMPRESSION * urgency
    return behavior.min_delay_ms + variance * (0.5 + jitter_draw) * urgency_multiplier


@dataclass
class ResponderPlan:
    agent: AgentConfig
    probability: float
    raw_delay_ms: float
    delay_ms: float = 0.0


@dataclass
class OrchestrationResult:
    urgency: float
    responders: List[ResponderPlan] = field(default_factory=list)
    replies: Dict[str, Reply] = field(default_factory=dict)

    @property
    def agent_ids(self) -> List[str]:
        return [plan.agent.id for plan in self.responders]


class AgentOrchestrator:
    """Decides who answers a human message and drives their replies to delivery."""

    def __init__(
        self,
        responder: AgentResponder,
        memory: MemoryStore,
        delivery: DeliveryQueue,
        *,
        rng: Optional[random.Random] = None,
        clock_ms: Callable[[], float] = wall_clock_ms,
        max_responders: int = MAX_RESPONDERS,
        stagger_ms: float = STAGGER_MS,
    ) -> None:
        self.responder = responder
        self.memory = memory
        self.delivery = delivery
        self.rng = rng or random.Random()
        self._clock_ms = clock_ms
        self.max_responders = max_responders
        self.stagger_ms = stagger_ms

    @staticmethod
    def is_on_cooldown(session: RoomSession, agent: AgentConfig, now_ms: float) -> bool:
        last = session.last_response_at.get(agent.id)
        if last is None:
            return False
        return now_ms - last < agent.behavior_config.recent_response_cooldown_ms

    def select_responders(
        self, session: RoomSession, message: str, now_ms: Optional[float] = None
    ) -> List[ResponderPlan]:
        """Run the cooldown/probability/delay/cap/stagger steps for one message.

        Cooldown timestamps are written here, at selection time, as the
        scheduled delivery time of each selected reply.
        """
        now_ms = self._clock_ms() if now_ms is None else now_ms
        urgency = analyze_urgency(message)
        recent_authors = session.recent_agent_authors(RECENT_RESPONDER_WINDOW)

        candidates: List[ResponderPlan] = []
        for agent in session.members():
            if self.is_on_cooldown(session, agent, now_ms):
                log_deterministic(f"[{agent.name}] On cooldown")
                continue

            probability = compose_probability(agent, message, recent_authors)
            selected = self.rng.random() < probability
            log_deterministic(
                f"[{agent.name}] probability {probability:.2f} -> {'RESPOND' if selected else 'SKIP'}"
            )
            if not selected:
                continue

            delay = compute_delay(agent, urgency, self.rng.random())
            log_deterministic(f"[{agent.name}] delay {round(delay)}ms")
            candidates.append(ResponderPlan(agent=agent, probability=probability, raw_delay_ms=delay))

        candidates.sort(key=lambda plan: plan.raw_delay_ms)
        chosen = candidates[: self.max_responders]

        for index, plan in enumerate(chosen):
            plan.delay_ms = plan.raw_delay_ms + index * self.stagger_ms
            session.record_response(plan.agent.id, now_ms + plan.delay_ms)

        if chosen:
            log_info(
                f"[{session.name}] {len(chosen)} agents will respond: "
                + ", ".join(plan.agent.name for plan in chosen)
            )
        else:
            log_info(f"[{session.name}] No agents chose to respond")
        return chosen

    async def _resolve(
        self,
        session: RoomSession,
        plan: ResponderPlan,
        message: str,
        user_id: str,
        display_name: Optional[str],
    ) -> Reply:
        agent = plan.agent
        try:
            record = await self.memory.get_record(session.id, agent.id)
            reply = await self.responder.respond(
                agent,
                message,
                community_name=session.name,
                recent_messages=session.recent_messages(PROMPT_HISTORY_LIMIT),
                memory=record,
                user_id=user_id,
            )
        except Exception as exc:
            log_error(f"[{agent.name}] Reply pipeline failed: {exc}")
            reply = self.responder.fallback(agent)

        try:
            await self.memory.remember_interaction(
                session.id,
                agent.id,
                user_id,
                message,
                display_name=display_name,
                context={"room_id": session.id, "reply_source": reply.source.value},
            )
        except Exception as exc:
            log_error(f"[{agent.name}] Memory update failed: {exc}")
        return reply

    async def handle_message(
        self,
        session: RoomSession,
        message: str,
        *,
        user_id: str,
        display_name: Optional[str] = None,
    ) -> OrchestrationResult:
        """Select responders for ``message`` and schedule their replies.

        The human message is expected to be in ``session.history`` already.
        Returns once every reply has been resolved and queued; delivery itself
        happens later on the delivery queue.
        """
        now_ms = self._clock_ms()
        enqueued_at = self.delivery.now()
        result = OrchestrationResult(urgency=analyze_urgency(message))
        result.responders = self.select_responders(session, message, now_ms)
        if not result.responders:
            return result

        replies = await asyncio.gather(
            *[
                self._resolve(session, plan, message, user_id, display_name)
                for plan in result.responders
            ]
        )

        for plan, reply in zip(result.responders, replies):
            result.replies[plan.agent.id] = reply
            self.delivery.enqueue(
                plan.agent.id,
                reply.text,
                plan.delay_ms,
                session.append,
                enqueued_at=enqueued_at,
            )
        return result

    async def reply_directly(
        self,
        agent: AgentConfig,
        message: str,
        *,
        thread_key: str,
        thread_messages: Sequence[Message],
        sink: MessageSink,
        user_id: str,
        display_name: Optional[str] = None,
    ) -> Reply:
        """One-to-one reply: no probability gate and no cooldown, same pipeline."""
        delay = compute_delay(agent, analyze_urgency(message), self.rng.random())
        enqueued_at = self.delivery.now()
        try:
            record = await self.memory.get_record(thread_key, agent.id)
            reply = await self.responder.respond(
                agent,
                message,
                community_name=f"private chat with {display_name or user_id}",
                recent_messages=list(thread_messages)[-PROMPT_HISTORY_LIMIT:],
                memory=record,
                user_id=user_id,
            )
        except Exception as exc:
            log_error(f"[{agent.name}] DM pipeline failed: {exc}")
            reply = self.responder.fallback(agent)

        try:
            await self.memory.remember_interaction(
                thread_key, agent.id, user_id, message, display_name=display_name,
                context={"direct": True, "reply_source": reply.source.value},
            )
        except Exception as exc:
            log_error(f"[{agent.name}] Memory update failed: {exc}")

        self.delivery.enqueue(agent.id, reply.text, delay, sink, enqueued_at=enqueued_at)
        return reply


__all__ = [
    "AgentOrchestrator",
    "OrchestrationResult",
    "ResponderPlan",
    "ReplySource",
    "analyze_urgency",
    "compose_probability",
    "compute_delay",
]
