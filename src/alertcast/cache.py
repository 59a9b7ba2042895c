"""In-memory response cache with per-entry time-to-live."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Callable, Generic, Protocol, TypeVar

T = TypeVar("T")


class AlertCache(Protocol):
    def get(self, key: str) -> Any | None: ...

    def set(self, key: str, value: Any, ttl: float) -> None: ...


@dataclass(slots=True)
class CacheEntry(Generic[T]):
    value: T
    inserted_at: float
    ttl: float

    def expired(self, now: float) -> bool:
        return now - self.inserted_at >= self.ttl


class TTLCache:
    """Process-local cache of computed responses.

    Entries expire ``ttl`` seconds after insertion; expired entries are
    dropped on read and by a periodic sweep that runs on writes. The clock is
    injectable so tests can advance time without sleeping. There is no
    locking: writes for one key are idempotent and a race only costs a
    redundant upstream fetch.
    """

    def __init__(
        self,
        sweep_interval: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.sweep_interval = sweep_interval
        self._clock = clock
        self._entries: dict[str, CacheEntry[Any]] = {}
        self._last_sweep = clock()

    def get(self, key: str) -> Any | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.expired(self._clock()):
            self._entries.pop(key, None)
            return None
        return entry.value

    def set(self, key: str, value: Any, ttl: float) -> None:
        now = self._clock()
        self._entries[key] = CacheEntry(value=value, inserted_at=now, ttl=ttl)
        if now - self._last_sweep >= self.sweep_interval:
            self.sweep()

    def sweep(self) -> int:
        now = self._clock()
        stale = [key for key, entry in self._entries.items() if entry.expired(now)]
        for key in stale:
            del self._entries[key]
        self._last_sweep = now
        return len(stale)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and self.get(key) is not None
