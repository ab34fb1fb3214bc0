"""Process-local key/value cache with per-entry expiry."""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from contextlib import suppress
from dataclasses import dataclass
from typing import Any, Callable

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class CacheEntry:
    """Stored value and the monotonic instant after which it is stale."""

    value: Any
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


class TTLCache:
    """Thread-safe TTL cache shared by every upstream-calling component.

    Reads always re-check expiry, so the background sweep only reclaims
    memory and never affects correctness.
    """

    def __init__(
        self,
        *,
        sweep_interval: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._store: dict[str, CacheEntry] = {}
        self._lock = threading.Lock()
        self._clock = clock
        self._sweep_interval = sweep_interval
        self._sweep_task: asyncio.Task[None] | None = None

    def get(self, key: str) -> tuple[Any, bool]:
        """Return ``(value, True)`` for a live entry, ``(None, False)`` otherwise."""

        entry = self._store.get(key)
        if entry is None or entry.is_expired(self._clock()):
            return None, False
        return entry.value, True

    def set(self, key: str, value: Any, ttl: float) -> None:
        entry = CacheEntry(value=value, expires_at=self._clock() + ttl)
        with self._lock:
            self._store[key] = entry

    def delete(self, key: str) -> None:
        with self._lock:
            self._store.pop(key, None)

    def sweep(self) -> int:
        """Evict expired entries and return how many were removed."""

        now = self._clock()
        with self._lock:
            expired = [key for key, entry in self._store.items() if entry.is_expired(now)]
            for key in expired:
                del self._store[key]
        return len(expired)

    def __len__(self) -> int:
        return len(self._store)

    async def start(self) -> None:
        """Launch the periodic sweep loop."""

        if self._sweep_task is None:
            self._sweep_task = asyncio.create_task(self._sweep_loop())

    async def stop(self) -> None:
        if self._sweep_task is None:
            return
        self._sweep_task.cancel()
        with suppress(asyncio.CancelledError):
            await self._sweep_task
        self._sweep_task = None

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self._sweep_interval)
            try:
                removed = self.sweep()
            except Exception as exc:  # pragma: no cover - background safety net
                logger.exception("Cache sweep failed: %s", exc)
                continue
            if removed:
                logger.debug("Cache sweep evicted %s expired entries", removed)
