"""Time-boxed memoization of agent replies keyed by normalized message text."""

from __future__ import annotations

import re
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

DEFAULT_TTL_SECONDS = 5 * 60
NORMALIZED_PREFIX_CHARS = 50

_NON_ALNUM = re.compile(r"[^a-z0-9\s]")


@dataclass(slots=True)
class CacheEntry:
    response: str
    created_at: float


def normalize_message(message: str) -> str:
    """Lowercase, drop punctuation, trim, and keep the first 50 characters."""
    return _NON_ALNUM.sub("", message.lower()).strip()[:NORMALIZED_PREFIX_CHARS]


def rolling_hash(text: str) -> int:
    """Cheap 32-bit ``hash * 31 + char`` string hash (not cryptographic)."""
    value = 0
    for char in text:
        value = ((value << 5) - value + ord(char)) & 0xFFFFFFFF
    # Reinterpret as signed 32-bit, then drop the sign.
    if value >= 0x80000000:
        value -= 0x100000000
    return abs(value)


def make_cache_key(agent_id: str, message: str) -> str:
    return f"{agent_id}_{rolling_hash(normalize_message(message))}"


class ResponseCache:
    """Maps ``(agent_id, message)`` to a previously generated reply.

    Entries expire ``ttl_seconds`` after creation. Expiry is checked lazily on
    lookup; ``evict_expired`` is the proactive sweep run by the service's
    maintenance task.
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def _is_fresh(self, entry: CacheEntry, now: float) -> bool:
        return now - entry.created_at < self.ttl_seconds

    def get(self, agent_id: str, message: str) -> Optional[str]:
        key = make_cache_key(agent_id, message)
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._is_fresh(entry, self._clock()):
            return entry.response
        del self._entries[key]
        return None

    def set(self, agent_id: str, message: str, response: str) -> None:
        self._entries[make_cache_key(agent_id, message)] = CacheEntry(
            response=response, created_at=self._clock()
        )

    def evict_expired(self) -> int:
        """Drop every expired entry and return how many were removed."""
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if not self._is_fresh(entry, now)]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def clear(self) -> None:
        self._entries.clear()
