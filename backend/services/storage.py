"""
Persistent Store - Async key-value storage for settings and per-tab state

No transactions: callers that read-modify-write accept last-writer-wins.
"""

from __future__ import annotations

import asyncio
import copy
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Protocol

logger = logging.getLogger(__name__)


class KeyValueStore(Protocol):
    async def get(self, key: str, default: Any = None) -> Any: ...

    async def set(self, key: str, value: Any) -> None: ...

    async def remove(self, *keys: str) -> None: ...


class MemoryStore:
    """In-process store. Values are deep-copied in and out."""

    def __init__(self, initial: dict[str, Any] | None = None):
        self._data: dict[str, Any] = copy.deepcopy(initial or {})

    async def get(self, key: str, default: Any = None) -> Any:
        if key not in self._data:
            return default
        return copy.deepcopy(self._data[key])

    async def set(self, key: str, value: Any) -> None:
        self._data[key] = copy.deepcopy(value)

    async def remove(self, *keys: str) -> None:
        for key in keys:
            self._data.pop(key, None)


class JsonFileStore(MemoryStore):
    """Store backed by a single JSON file, rewritten atomically on each change"""

    def __init__(self, path: Path):
        self._path = Path(path)
        self._flush_lock = asyncio.Lock()
        super().__init__(self._load())

    @property
    def path(self) -> Path:
        return self._path

    def _load(self) -> dict[str, Any]:
        if not self._path.exists():
            return {}
        try:
            with open(self._path, encoding="utf-8") as f:
                data = json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            logger.error("[Store] Error loading %s: %s", self._path, e)
            return {}
        if not isinstance(data, dict):
            logger.error("[Store] Ignoring %s: top level is not an object", self._path)
            return {}
        return data

    def _write(self, snapshot: dict[str, Any]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self._path.parent, prefix=".store-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(snapshot, f, indent=2)
            os.replace(tmp_name, self._path)
        except OSError as e:
            Path(tmp_name).unlink(missing_ok=True)
            raise RuntimeError(f"Failed to save store: {e}") from e

    async def _flush(self) -> None:
        # Flushes are serialized so an older snapshot never lands last.
        async with self._flush_lock:
            snapshot = copy.deepcopy(self._data)
            await asyncio.to_thread(self._write, snapshot)

    async def set(self, key: str, value: Any) -> None:
        await super().set(key, value)
        await self._flush()

    async def remove(self, *keys: str) -> None:
        if not any(key in self._data for key in keys):
            return
        await super().remove(*keys)
        await self._flush()
