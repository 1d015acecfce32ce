"""
Keyed blob storage for agent memory records.

The memory store only needs ``load(key)``, ``save(key, record)`` and
``delete(key)``; this module defines that contract and two implementations:

1. InMemoryBackend - dict-based storage, data lost on exit (tests, demos)
2. JsonFileBackend - one pretty-printed JSON file per key (the default)

There is no transactional guarantee across keys. Writes are whole-record
replacements, so the last writer wins when two writes race on the same key.

Usage pattern:
    backend = JsonFileBackend("memory-store")
    await backend.initialize()
    record = await backend.load("late-night-coders_wingman_will")
    await backend.save("late-night-coders_wingman_will", record)
"""

import asyncio
import json
import re
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Optional

from pydantic import ValidationError

from .config import Config
from .schemas import MemoryRecord

_UNSAFE_KEY_CHARS = re.compile(r"[^A-Za-z0-9_.-]")


class PersistenceError(RuntimeError):
    """Raised when a memory record cannot be read or written."""

    def __init__(self, key: str, reason: str) -> None:
        self.key = key
        self.reason = reason
        super().__init__(f"Memory persistence failed for '{key}': {reason}")


class MemoryBackend(ABC):
    """Abstract keyed blob store for MemoryRecord objects.

    All methods are async so file or network backends never block the event
    loop; for InMemoryBackend they are effectively synchronous.
    """

    @abstractmethod
    async def initialize(self) -> None:
        """Prepare the backend (create directories, open connections)."""
        pass

    @abstractmethod
    async def close(self) -> None:
        pass

    @abstractmethod
    async def load(self, key: str) -> Optional[MemoryRecord]:
        """
        Load the record stored under ``key``.

        Returns:
            The record, or None if nothing has been stored yet

        Raises:
            PersistenceError: If the stored blob exists but cannot be read
        """
        pass

    @abstractmethod
    async def save(self, key: str, record: MemoryRecord) -> None:
        """
        Replace the record stored under ``key``.

        Raises:
            PersistenceError: If the write fails
        """
        pass

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Remove ``key``. Returns True if something was deleted."""
        pass


class InMemoryBackend(MemoryBackend):
    """Dict-based backend. Stores deep copies so callers cannot alias records."""

    def __init__(self) -> None:
        self.records: Dict[str, MemoryRecord] = {}

    async def initialize(self) -> None:
        return None

    async def close(self) -> None:
        return None

    async def load(self, key: str) -> Optional[MemoryRecord]:
        record = self.records.get(key)
        return record.model_copy(deep=True) if record is not None else None

    async def save(self, key: str, record: MemoryRecord) -> None:
        self.records[key] = record.model_copy(deep=True)

    async def delete(self, key: str) -> bool:
        return self.records.pop(key, None) is not None


class JsonFileBackend(MemoryBackend):
    """File-based backend: ``{base_path}/{key}.json``, indent=2 for readability.

    File I/O runs in a worker thread (asyncio.to_thread). Not suitable for
    concurrent writers across processes: there is no locking.
    """

    def __init__(self, base_path: Path | str | None = None):
        self.base_path = Path(base_path) if base_path is not None else Config.MEMORY_STORE_DIR

    def _path(self, key: str) -> Path:
        return self.base_path / f"{_UNSAFE_KEY_CHARS.sub('_', key)}.json"

    async def initialize(self) -> None:
        await asyncio.to_thread(self.base_path.mkdir, parents=True, exist_ok=True)

    async def close(self) -> None:
        # Nothing to clean up for JSON persistence
        return None

    async def load(self, key: str) -> Optional[MemoryRecord]:
        path = self._path(key)
        if not path.exists():
            return None
        try:
            raw = await asyncio.to_thread(path.read_text, "utf-8")
            return MemoryRecord.model_validate(json.loads(raw))
        except (OSError, json.JSONDecodeError, ValidationError) as exc:
            raise PersistenceError(key, str(exc)) from exc

    async def save(self, key: str, record: MemoryRecord) -> None:
        path = self._path(key)
        payload = json.dumps(record.model_dump(mode="json"), indent=2)

        def _write() -> None:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(payload, "utf-8")

        try:
            await asyncio.to_thread(_write)
        except OSError as exc:
            raise PersistenceError(key, str(exc)) from exc

    async def delete(self, key: str) -> bool:
        path = self._path(key)
        if not path.exists():
            return False
        try:
            await asyncio.to_thread(path.unlink)
        except OSError as exc:
            raise PersistenceError(key, str(exc)) from exc
        return True
