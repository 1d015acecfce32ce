"""
Provider client: one serialized request lane per text-generation backend.

Every agent in every room shares the lane of its provider instance, so the
lane is the system's single global bottleneck. Guarantees:

1. Requests are issued strictly FIFO by a single drain loop.
2. A request never starts sooner than ``min_request_interval_ms`` after the
   previous one completed.
3. Each request is wrapped in bounded exponential-backoff retry for transient
   failures; backoff sleeps hold the lane, which keeps the spacing guarantee.

A client whose credential is missing reports itself unavailable instead of
failing at construction time; callers are expected to check
``is_available()`` and fall back.
"""

from __future__ import annotations

import asyncio
import time
from collections import deque
from typing import Any, Awaitable, Callable, Deque, Optional, Tuple

from .config import Config
from .llm_utils import GenerationError, call_with_backoff, generate_text
from .logging_utils import log_error, log_info
from .schemas import LLMConfig

Backend = Callable[..., Awaitable[str]]
_Job = Callable[[], Awaitable[str]]


class ProviderClient:
    """Uniform ``generate(system_prompt, user_message, sampling) -> str`` contract."""

    def __init__(
        self,
        provider: Optional[str] = None,
        *,
        api_key: Optional[str] = None,
        default_model: Optional[str] = None,
        min_request_interval_ms: Optional[int] = None,
        max_attempts: Optional[int] = None,
        timeout_seconds: Optional[float] = None,
        backend: Optional[Backend] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.provider = (provider or Config.LLM_PROVIDER).lower()
        self.api_key = api_key if api_key is not None else Config.api_key_for(self.provider)
        self.default_model = default_model or Config.LLM_MODEL
        self.min_request_interval_ms = (
            Config.PROVIDER_MIN_INTERVAL_MS if min_request_interval_ms is None else min_request_interval_ms
        )
        self.max_attempts = max_attempts or Config.PROVIDER_MAX_ATTEMPTS
        self.timeout_seconds = timeout_seconds or Config.PROVIDER_TIMEOUT_SECONDS
        self._backend: Backend = backend or generate_text
        self._clock = clock
        self._sleep = sleep

        self._pending: Deque[Tuple[_Job, asyncio.Future]] = deque()
        self._drain_task: Optional[asyncio.Task] = None
        self._last_completed: Optional[float] = None
        self.requests_completed = 0

        if not self.api_key:
            log_error(f"No API key configured for provider '{self.provider}'; live replies disabled")

    def is_available(self) -> bool:
        return bool(self.api_key)

    @property
    def queue_depth(self) -> int:
        return len(self._pending)

    async def generate(
        self,
        system_prompt: str,
        user_message: str,
        sampling: Optional[LLMConfig] = None,
    ) -> str:
        """Queue one generation and wait for its text.

        Raises:
            GenerationError: client unavailable, non-transient backend failure,
                or transient failures that exhausted the retry budget.
        """
        if not self.is_available():
            raise GenerationError(
                f"{self.provider} client not initialized - check API key", transient=False
            )

        sampling = sampling or LLMConfig(model=self.default_model)

        async def _request() -> str:
            return await self._backend(
                system_prompt=system_prompt,
                user_prompt=user_message,
                llm_provider=self.provider,
                sampling=sampling,
                timeout=self.timeout_seconds,
            )

        async def _job() -> str:
            return await call_with_backoff(
                _request,
                max_attempts=self.max_attempts,
                sleep=self._sleep,
                label=f"{self.provider}/{sampling.model}",
            )

        return await self._submit(_job)

    async def _submit(self, job: _Job) -> str:
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pending.append((job, future))
        if self._drain_task is None or self._drain_task.done():
            self._drain_task = asyncio.create_task(self._drain())
        return await future

    async def _drain(self) -> None:
        # Single consumer; exits when the lane is empty and restarts on demand.
        while self._pending:
            job, future = self._pending.popleft()
            if future.cancelled():
                continue

            try:
                await self._wait_for_spacing()
                result = await job()
            except asyncio.CancelledError:
                if not future.done():
                    future.set_exception(GenerationError("Provider client closed", transient=False))
                raise
            except Exception as exc:
                if not future.done():
                    future.set_exception(exc)
            else:
                if not future.done():
                    future.set_result(result)
            finally:
                self._last_completed = self._clock()
                self.requests_completed += 1

    async def _wait_for_spacing(self) -> None:
        if self._last_completed is None:
            return
        elapsed_ms = (self._clock() - self._last_completed) * 1000
        if elapsed_ms < self.min_request_interval_ms:
            await self._sleep((self.min_request_interval_ms - elapsed_ms) / 1000)

    async def close(self) -> None:
        """Stop the drain loop and fail anything still waiting in the lane."""
        if self._drain_task is not None and not self._drain_task.done():
            self._drain_task.cancel()
            try:
                await self._drain_task
            except asyncio.CancelledError:
                pass
        while self._pending:
            _, future = self._pending.popleft()
            if not future.done():
                future.set_exception(GenerationError("Provider client closed", transient=False))
        if self.requests_completed:
            log_info(f"[{self.provider}] Lane closed after {self.requests_completed} requests")


__all__ = ["ProviderClient", "GenerationError"]
