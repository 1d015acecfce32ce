"""
Per-agent reply resolution.

Turns (agent, human message, room context) into text through the pipeline:

    cache lookup -> prompt assembly -> provider lane -> validation
                 -> one more attempt on failure -> canned fallback

The pipeline never raises: whatever goes wrong, the caller receives some
non-empty text plus a note of where it came from.
"""

from __future__ import annotations

import math
import random
import time
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Callable, Optional, Sequence

from .cache import ResponseCache
from .fallback import pick_fallback
from .logging_utils import log_error, log_info, log_llm, log_success
from .prompts import build_system_prompt, build_user_turn
from .provider import ProviderClient
from .schemas import AgentConfig, MemoryRecord, Message
from .validation import ResponseValidationError, ensure_valid_response

MAX_GENERATION_ATTEMPTS = 2


class ReplySource(str, Enum):
    CACHE = "cache"
    LLM = "llm"
    FALLBACK = "fallback"


@dataclass(frozen=True)
class Reply:
    text: str
    source: ReplySource


@dataclass
class GenerationStats:
    total_requests: int = 0
    cache_hits: int = 0
    errors: int = 0
    fallbacks: int = 0
    average_response_time_ms: float = 0.0
    total_tokens: int = 0
    _timed_responses: int = 0

    @property
    def cache_hit_rate(self) -> int:
        if self.total_requests == 0:
            return 0
        return round(self.cache_hits / self.total_requests * 100)

    def record_response(self, elapsed_ms: float, response_length: int) -> None:
        self._timed_responses += 1
        n = self._timed_responses
        self.average_response_time_ms = (self.average_response_time_ms * (n - 1) + elapsed_ms) / n
        # Rough token estimate: four characters per token.
        self.total_tokens += math.ceil(response_length / 4)

    def as_dict(self) -> dict:
        data = asdict(self)
        data.pop("_timed_responses")
        data["cache_hit_rate"] = self.cache_hit_rate
        return data


class AgentResponder:
    """Resolves the text of one agent's reply. Shared by every room."""

    def __init__(
        self,
        provider: ProviderClient,
        cache: Optional[ResponseCache] = None,
        *,
        rng: Optional[random.Random] = None,
        max_attempts: int = MAX_GENERATION_ATTEMPTS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.provider = provider
        self.cache = cache if cache is not None else ResponseCache()
        self.rng = rng or random.Random()
        self.max_attempts = max_attempts
        self._clock = clock
        self.stats = GenerationStats()

    def fallback(self, agent: AgentConfig) -> Reply:
        self.stats.fallbacks += 1
        text = pick_fallback(agent, self.rng)
        log_error(f"[{agent.name}] Using fallback response: {text}")
        return Reply(text=text, source=ReplySource.FALLBACK)

    async def respond(
        self,
        agent: AgentConfig,
        message: str,
        *,
        community_name: str,
        recent_messages: Sequence[Message] = (),
        memory: Optional[MemoryRecord] = None,
        user_id: Optional[str] = None,
    ) -> Reply:
        started = self._clock()
        self.stats.total_requests += 1

        cached = self.cache.get(agent.id, message)
        if cached is not None:
            self.stats.cache_hits += 1
            log_info(f"[{agent.name}] Cache hit ({self.stats.cache_hit_rate}% hit rate)")
            return Reply(text=cached, source=ReplySource.CACHE)

        if not self.provider.is_available():
            return self.fallback(agent)

        try:
            system_prompt = build_system_prompt(agent, community_name, recent_messages)
            user_turn = build_user_turn(message, memory, user_id)
        except Exception as exc:
            self.stats.errors += 1
            log_error(f"[{agent.name}] Prompt assembly failed: {exc}")
            return self.fallback(agent)

        last_error: Optional[Exception] = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                log_llm(f"[{agent.name}] Generating reply (attempt {attempt}/{self.max_attempts})...")
                text = ensure_valid_response(
                    await self.provider.generate(system_prompt, user_turn, agent.llm_config)
                )
            except ResponseValidationError as exc:
                last_error = exc
                log_error(f"[{agent.name}] {exc} (attempt {attempt}/{self.max_attempts})")
                continue
            except Exception as exc:
                last_error = exc
                log_error(f"[{agent.name}] Generation attempt {attempt}/{self.max_attempts} failed: {exc}")
                continue

            self.cache.set(agent.id, message, text)
            elapsed_ms = (self._clock() - started) * 1000
            self.stats.record_response(elapsed_ms, len(text))
            log_success(f"[{agent.name}] Responded ({int(elapsed_ms)}ms): {text[:50]}")
            return Reply(text=text, source=ReplySource.LLM)

        self.stats.errors += 1
        log_error(f"[{agent.name}] Giving up after {self.max_attempts} attempts: {last_error}")
        return self.fallback(agent)

    def log_stats(self) -> None:
        stats = self.stats
        log_info(
            "[Stats] "
            f"requests={stats.total_requests} "
            f"cache_hits={stats.cache_hits}/{stats.total_requests} ({stats.cache_hit_rate}%) "
            f"avg_response={round(stats.average_response_time_ms)}ms "
            f"errors={stats.errors} fallbacks={stats.fallbacks} "
            f"est_tokens={stats.total_tokens} cache_size={len(self.cache)}"
        )
