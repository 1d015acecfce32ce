"""Tests covering responder selection and the orchestration flow."""

import asyncio
import contextlib
import io
import random
from unittest.mock import AsyncMock, MagicMock

import pytest

from chatverse.cache import ResponseCache
from chatverse.delivery import DeliveryQueue
from chatverse.fallback import GENERIC_FALLBACKS
from chatverse.memory import MemoryStore
from chatverse.orchestrator import (
    MAX_RESPONDERS,
    STAGGER_MS,
    AgentOrchestrator,
    analyze_urgency,
    compose_probability,
    compute_delay,
)
from chatverse.persistence import InMemoryBackend
from chatverse.responder import AgentResponder, Reply, ReplySource
from chatverse.room import RoomSession
from chatverse.schemas import AgentConfig, Message, MessageKind, Room

NOW_MS = 1_000_000.0


class ScriptedRandom(random.Random):
    """Returns queued values from ``random()`` and records how many were drawn."""

    def __init__(self, values) -> None:
        super().__init__(0)
        self.values = list(values)
        self.draws = 0

    def random(self) -> float:
        self.draws += 1
        return self.values.pop(0)


class FakeTime:
    def __init__(self) -> None:
        self.now = 0.0

    def clock(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.now += seconds
        await asyncio.sleep(0)


def make_agent(agent_id, name, probability=0.5, *, cooldown_ms=30_000, min_delay=1000, max_delay=3000, **extra):
    return AgentConfig.model_validate(
        {
            "id": agent_id,
            "name": name,
            "personality": "Test persona.",
            "llm_config": {"model": "gemini-2.5-flash", "temperature": 0.8, "max_output_tokens": 150},
            "behavior_config": {
                "response_probability": probability,
                "min_delay_ms": min_delay,
                "max_delay_ms": max_delay,
                "recent_response_cooldown_ms": cooldown_ms,
            },
            **extra,
        }
    )


def make_session(*agents) -> RoomSession:
    return RoomSession(Room(id="test-room", name="Test Room"), agents)


def make_orchestrator(rng, *, provider_available=False, fake_time=None):
    provider = MagicMock()
    provider.is_available.return_value = provider_available
    provider.generate = AsyncMock(return_value="A perfectly reasonable reply.")
    fake_time = fake_time or FakeTime()
    responder = AgentResponder(provider, ResponseCache(), rng=random.Random(7))
    return AgentOrchestrator(
        responder,
        MemoryStore(InMemoryBackend()),
        DeliveryQueue(clock=fake_time.clock, sleep=fake_time.sleep),
        rng=rng,
        clock_ms=lambda: NOW_MS,
    )


# ---------------------------------------------------------------------------
# Pure scoring helpers
# ---------------------------------------------------------------------------


def test_mention_adds_exactly_the_boost_before_clamping():
    agent = make_agent("xavier", "Xavier_Bot", 0.4)
    plain = compose_probability(agent, "anyone around tonight?", [])
    mentioned = compose_probability(agent, "xavier_bot, are you around tonight?", [])
    assert plain == pytest.approx(0.4)
    assert mentioned - plain == pytest.approx(0.3)


def test_probability_is_clamped_to_ceiling_and_floor():
    eager = make_agent("eager", "Eager_Bot", 0.9)
    shy = make_agent("shy", "Shy_Bot", 0.1)
    assert compose_probability(eager, "Eager_Bot help!", []) == 0.95
    assert compose_probability(shy, "hello", ["shy"]) == 0.0


def test_recent_responder_penalty():
    agent = make_agent("xavier", "Xavier_Bot", 0.6)
    assert compose_probability(agent, "hi", ["xavier"]) == pytest.approx(0.4)
    assert compose_probability(agent, "hi", ["someone_else"]) == pytest.approx(0.6)


def test_urgency_counts_distinct_keywords_and_saturates():
    assert analyze_urgency("just chilling") == 0.0
    assert analyze_urgency("I need a hand") == pytest.approx(1 / 3)
    # please, help, how and "?" are all present.
    assert analyze_urgency("please help, how do I do this?") == 1.0


def test_delay_formula_with_full_urgency():
    agent = make_agent("xavier", "Xavier_Bot", min_delay=2000, max_delay=8000)
    urgency = analyze_urgency("please help, how do I do this?")
    # min + variance * (0.5 + draw) * (1 - 0.7 * urgency)
    assert compute_delay(agent, urgency, 0.5) == pytest.approx(2000 + 6000 * 1.0 * 0.3)
    assert compute_delay(agent, 0.0, 0.0) == pytest.approx(2000 + 6000 * 0.5)
    assert compute_delay(agent, 0.0, 0.999) == pytest.approx(2000 + 6000 * 1.499)


# ---------------------------------------------------------------------------
# Selection
# ---------------------------------------------------------------------------


def test_scenario_cooldown_excludes_recent_responder():
    x = make_agent("x", "Xavier_Bot", 0.75)
    y = make_agent("y", "Yolanda_Bot", 0.10)
    session = make_session(x, y)
    session.record_response("y", NOW_MS - 5_000)
    rng = ScriptedRandom([0.5, 0.25])
    orchestrator = make_orchestrator(rng)

    plans = orchestrator.select_responders(session, "evening all", NOW_MS)

    assert [plan.agent.id for plan in plans] == ["x"]
    assert plans[0].probability == pytest.approx(0.75)
    assert plans[0].raw_delay_ms == pytest.approx(1000 + 2000 * 0.75)
    # One decision draw and one delay draw for X; Y never reaches the dice.
    assert rng.draws == 2


def test_scenario_draw_above_probability_skips_agent():
    x = make_agent("x", "Xavier_Bot", 0.75)
    rng = ScriptedRandom([0.8])
    orchestrator = make_orchestrator(rng)

    assert orchestrator.select_responders(make_session(x), "evening all", NOW_MS) == []
    assert rng.draws == 1


def test_cooldown_beats_mention_and_high_probability():
    y = make_agent("y", "Yolanda_Bot", 1.0, cooldown_ms=30_000)
    session = make_session(y)
    session.record_response("y", NOW_MS - 29_999)
    orchestrator = make_orchestrator(ScriptedRandom([]))

    assert orchestrator.select_responders(session, "Yolanda_Bot please help?", NOW_MS) == []


def test_cooldown_expires_after_window():
    y = make_agent("y", "Yolanda_Bot", 0.5, cooldown_ms=30_000)
    session = make_session(y)
    session.record_response("y", NOW_MS - 30_000)
    orchestrator = make_orchestrator(ScriptedRandom([0.1, 0.5]))

    assert [plan.agent.id for plan in orchestrator.select_responders(session, "hey", NOW_MS)] == ["y"]


def test_cap_stagger_and_cooldown_bookkeeping():
    agents = [
        make_agent(f"a{index}", f"Agent_{index}", 1.0, min_delay=1000 * (6 - index), max_delay=1000 * (6 - index) + 100)
        for index in range(6)
    ]
    session = make_session(*agents)
    # Every agent passes its draw; jitter draw 0 everywhere.
    orchestrator = make_orchestrator(ScriptedRandom([0.0] * 12))

    plans = orchestrator.select_responders(session, "hello", NOW_MS)

    assert len(plans) == MAX_RESPONDERS == 4
    # Fastest four by raw delay, in ascending order.
    assert [plan.agent.id for plan in plans] == ["a5", "a4", "a3", "a2"]
    raw = [plan.raw_delay_ms for plan in plans]
    assert raw == sorted(raw)
    for earlier, later in zip(plans, plans[1:]):
        assert later.delay_ms - earlier.delay_ms >= STAGGER_MS
    for index, plan in enumerate(plans):
        assert plan.delay_ms == pytest.approx(plan.raw_delay_ms + index * STAGGER_MS)
        assert session.last_response_at[plan.agent.id] == pytest.approx(NOW_MS + plan.delay_ms)
    assert "a0" not in session.last_response_at
    assert "a1" not in session.last_response_at


def test_selection_is_reproducible_with_seeded_rng():
    agents = [make_agent(f"a{index}", f"Agent_{index}", 0.6) for index in range(6)]
    first = make_orchestrator(random.Random(42)).select_responders(make_session(*agents), "hi", NOW_MS)
    second = make_orchestrator(random.Random(42)).select_responders(make_session(*agents), "hi", NOW_MS)
    assert [(p.agent.id, p.delay_ms) for p in first] == [(p.agent.id, p.delay_ms) for p in second]


def test_recent_agent_messages_reduce_probability():
    x = make_agent("x", "Xavier_Bot", 0.5)
    session = make_session(x)
    session.append(Message(author="x", content="earlier reply here", kind=MessageKind.AGENT))
    orchestrator = make_orchestrator(ScriptedRandom([0.35]))

    # 0.5 - 0.2 = 0.3, so a 0.35 draw skips.
    assert orchestrator.select_responders(session, "hi", NOW_MS) == []


def test_decisions_are_logged_with_agent_names():
    x = make_agent("x", "Xavier_Bot", 0.75)
    y = make_agent("y", "Yolanda_Bot", 0.5)
    session = make_session(x, y)
    session.record_response("y", NOW_MS - 1000)
    orchestrator = make_orchestrator(ScriptedRandom([0.1, 0.5]))

    buf = io.StringIO()
    with contextlib.redirect_stdout(buf):
        orchestrator.select_responders(session, "hi", NOW_MS)
    out = buf.getvalue()

    assert "[•] [Yolanda_Bot] On cooldown" in out
    assert "[•] [Xavier_Bot] probability 0.75 -> RESPOND" in out
    assert "[•] [Xavier_Bot] delay" in out


# ---------------------------------------------------------------------------
# End to end
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_unavailable_provider_still_delivers_fallbacks_in_order():
    agents = [make_agent(f"a{index}", f"Agent_{index}", 1.0) for index in range(3)]
    session = make_session(*agents)
    session.append(Message(author="Sam", content="anyone here?"))
    fake_time = FakeTime()
    orchestrator = make_orchestrator(ScriptedRandom([0.0, 0.1, 0.0, 0.2, 0.0, 0.3]), fake_time=fake_time)

    result = await orchestrator.handle_message(session, "anyone here?", user_id="u1", display_name="Sam")
    await orchestrator.delivery.drain()

    assert len(result.responders) == 3
    assert all(reply.source == ReplySource.FALLBACK for reply in result.replies.values())
    delivered = [m for m in session.history if m.kind == MessageKind.AGENT]
    assert [m.author for m in delivered] == result.agent_ids
    assert all(m.content in GENERIC_FALLBACKS for m in delivered)
    assert fake_time.now * 1000 >= result.responders[-1].delay_ms - 1e-6


@pytest.mark.asyncio
async def test_replies_reach_history_only_after_their_delay():
    x = make_agent("x", "Xavier_Bot", 1.0, min_delay=2000, max_delay=2000)
    session = make_session(x)
    fake_time = FakeTime()
    orchestrator = make_orchestrator(ScriptedRandom([0.0, 0.5]), provider_available=True, fake_time=fake_time)

    await orchestrator.handle_message(session, "hello", user_id="u1")
    assert [m for m in session.history if m.kind == MessageKind.AGENT] == []

    await orchestrator.delivery.drain()
    assert session.history[-1].content == "A perfectly reasonable reply."
    assert fake_time.now == pytest.approx(2.0)


@pytest.mark.asyncio
async def test_one_agent_failure_does_not_block_siblings(monkeypatch):
    good = make_agent("good", "Good_Bot", 1.0)
    bad = make_agent("bad", "Bad_Bot", 1.0)
    session = make_session(good, bad)
    orchestrator = make_orchestrator(ScriptedRandom([0.0, 0.5, 0.0, 0.5]), provider_available=True)

    original_respond = orchestrator.responder.respond

    async def flaky_respond(agent, message, **kwargs):
        if agent.id == "bad":
            raise RuntimeError("prompt template exploded")
        return await original_respond(agent, message, **kwargs)

    monkeypatch.setattr(orchestrator.responder, "respond", flaky_respond)

    result = await orchestrator.handle_message(session, "hi all", user_id="u1")
    await orchestrator.delivery.drain()

    assert result.replies["good"] == Reply("A perfectly reasonable reply.", ReplySource.LLM)
    assert result.replies["bad"].source == ReplySource.FALLBACK
    assert {m.author for m in session.history} == {"good", "bad"}


@pytest.mark.asyncio
async def test_memory_updated_for_each_responder():
    x = make_agent("x", "Xavier_Bot", 1.0)
    session = make_session(x)
    orchestrator = make_orchestrator(ScriptedRandom([0.0, 0.5]), provider_available=True)

    await orchestrator.handle_message(session, "I love hiking", user_id="u1", display_name="Sam")
    await orchestrator.delivery.drain()

    record = await orchestrator.memory.get_record("test-room", "x")
    assert record.user_profiles["u1"].display_name == "Sam"
    assert record.conversations[-1].message == "I love hiking"
    assert record.conversations[-1].context["reply_source"] == "llm"


@pytest.mark.asyncio
async def test_memory_failure_does_not_block_delivery(monkeypatch):
    x = make_agent("x", "Xavier_Bot", 1.0)
    session = make_session(x)
    orchestrator = make_orchestrator(ScriptedRandom([0.0, 0.5]), provider_available=True)
    monkeypatch.setattr(
        orchestrator.memory, "remember_interaction", AsyncMock(side_effect=RuntimeError("boom"))
    )

    await orchestrator.handle_message(session, "hello", user_id="u1")
    await orchestrator.delivery.drain()

    assert session.history[-1].author == "x"


@pytest.mark.asyncio
async def test_direct_reply_skips_probability_and_cooldown():
    x = make_agent("x", "Xavier_Bot", 0.0)
    orchestrator = make_orchestrator(ScriptedRandom([0.5]), provider_available=True)
    thread = [Message(author="Sam", content="can we talk privately?")]

    reply = await orchestrator.reply_directly(
        x,
        "can we talk privately?",
        thread_key="dm_u1",
        thread_messages=thread,
        sink=thread.append,
        user_id="u1",
        display_name="Sam",
    )
    await orchestrator.delivery.drain()

    assert reply.source == ReplySource.LLM
    assert thread[-1].author == "x"
    record = await orchestrator.memory.get_record("dm_u1", "x")
    assert record.interaction_counts == {"u1": 1}
