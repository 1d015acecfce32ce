"""Tests for the delayed FIFO delivery queue."""

import asyncio

import pytest

from chatverse.delivery import DeliveryQueue, PendingDelivery
from chatverse.schemas import MessageKind


class FakeTime:
    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def clock(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        await asyncio.sleep(0)


def test_due_at_is_enqueue_time_plus_delay():
    pending = PendingDelivery("will", "hey there buddy", 2500, enqueued_at=10.0, sink=print)
    assert pending.due_at == 12.5


@pytest.mark.asyncio
async def test_items_released_in_fifo_order_at_due_time():
    fake_time = FakeTime()
    queue = DeliveryQueue(clock=fake_time.clock, sleep=fake_time.sleep)
    delivered: list[tuple[str, float]] = []

    def sink(message):
        delivered.append((message.author, fake_time.now))

    queue.enqueue("will", "first reply text", 1000, sink, enqueued_at=0.0)
    queue.enqueue("sam", "second reply text", 2500, sink, enqueued_at=0.0)
    queue.enqueue("rick", "third reply text", 4000, sink, enqueued_at=0.0)
    await queue.drain()

    assert delivered == [("will", 1.0), ("sam", 2.5), ("rick", 4.0)]
    assert queue.delivered_count == 3
    assert len(queue) == 0


@pytest.mark.asyncio
async def test_queue_never_reorders_even_when_later_item_is_due_sooner():
    fake_time = FakeTime()
    queue = DeliveryQueue(clock=fake_time.clock, sleep=fake_time.sleep)
    order: list[str] = []

    queue.enqueue("slow", "slow reply text", 3000, lambda m: order.append(m.author), enqueued_at=0.0)
    queue.enqueue("fast", "fast reply text", 500, lambda m: order.append(m.author), enqueued_at=0.0)
    await queue.drain()

    assert order == ["slow", "fast"]
    # The second item was already overdue, so no extra wait happened.
    assert fake_time.sleeps == [3.0]


@pytest.mark.asyncio
async def test_released_messages_are_agent_messages_and_notify_listeners():
    fake_time = FakeTime()
    seen = []
    queue = DeliveryQueue(clock=fake_time.clock, sleep=fake_time.sleep, listeners=[seen.append])
    history = []

    queue.enqueue("will", "welcome to the chat", 0, history.append)
    await queue.drain()

    assert history[0].author == "will"
    assert history[0].content == "welcome to the chat"
    assert history[0].kind == MessageKind.AGENT
    assert seen == history


@pytest.mark.asyncio
async def test_failing_sink_does_not_stop_later_deliveries():
    fake_time = FakeTime()
    queue = DeliveryQueue(clock=fake_time.clock, sleep=fake_time.sleep)
    history = []

    def broken(message):
        raise RuntimeError("room is gone")

    queue.enqueue("will", "this one fails", 0, broken)
    queue.enqueue("sam", "this one lands", 0, history.append)
    await queue.drain()

    assert [m.author for m in history] == ["sam"]
    assert queue.delivered_count == 1


@pytest.mark.asyncio
async def test_close_discards_pending_items():
    fake_time = FakeTime()
    queue = DeliveryQueue(clock=fake_time.clock, sleep=lambda s: asyncio.sleep(3600))
    history = []

    queue.enqueue("will", "never shown here", 10_000, history.append)
    await asyncio.sleep(0)
    await queue.close()

    assert history == []
    assert len(queue) == 0
