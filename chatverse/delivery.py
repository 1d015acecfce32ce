"""Delayed, FIFO release of generated replies into visible chat history.

Replies are held back to mimic people typing at different speeds. The queue
never reorders: items are released in enqueue order, each no earlier than
``enqueued_at + scheduled_delay_ms``. Callers that want staggered output must
enqueue in ascending delay order.
"""

from __future__ import annotations

import asyncio
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Deque, List, Optional

from .logging_utils import log_error, log_success
from .schemas import Message, MessageKind

MessageSink = Callable[[Message], Any]
DeliveryListener = Callable[[Message], Any]


@dataclass
class PendingDelivery:
    agent_id: str
    response_text: str
    scheduled_delay_ms: float
    enqueued_at: float
    sink: MessageSink = field(repr=False)

    @property
    def due_at(self) -> float:
        return self.enqueued_at + self.scheduled_delay_ms / 1000


class DeliveryQueue:
    """Single-lane scheduler: one consumer, strict FIFO."""

    def __init__(
        self,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        listeners: Optional[List[DeliveryListener]] = None,
    ) -> None:
        self._clock = clock
        self._sleep = sleep
        self.listeners: List[DeliveryListener] = listeners or []
        self._queue: Deque[PendingDelivery] = deque()
        self._task: Optional[asyncio.Task] = None
        self.delivered_count = 0

    def __len__(self) -> int:
        return len(self._queue)

    def now(self) -> float:
        return self._clock()

    def enqueue(
        self,
        agent_id: str,
        response_text: str,
        delay_ms: float,
        sink: MessageSink,
        *,
        enqueued_at: Optional[float] = None,
    ) -> PendingDelivery:
        """Schedule a reply. Must be called from inside the running event loop."""
        pending = PendingDelivery(
            agent_id=agent_id,
            response_text=response_text,
            scheduled_delay_ms=delay_ms,
            enqueued_at=self._clock() if enqueued_at is None else enqueued_at,
            sink=sink,
        )
        self._queue.append(pending)
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._process())
        return pending

    async def _process(self) -> None:
        while self._queue:
            pending = self._queue[0]
            wait = pending.due_at - self._clock()
            if wait > 0:
                await self._sleep(wait)
            self._queue.popleft()
            self._release(pending)

    def _release(self, pending: PendingDelivery) -> None:
        message = Message(
            author=pending.agent_id,
            content=pending.response_text,
            kind=MessageKind.AGENT,
        )
        try:
            pending.sink(message)
        except Exception as exc:
            log_error(f"[Delivery] Could not append reply from {pending.agent_id}: {exc}")
            return
        self.delivered_count += 1
        log_success(f"[Delivery] {pending.agent_id}: {pending.response_text[:50]}")
        for listener in self.listeners:
            try:
                listener(message)
            except Exception as exc:  # pragma: no cover - diagnostic hook
                log_error(f"[Delivery] Listener failed: {exc}")

    async def drain(self) -> None:
        """Wait until every queued reply has been released."""
        while self._task is not None and not self._task.done():
            await self._task

    async def close(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._queue.clear()
