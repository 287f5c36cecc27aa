from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import datetime
from threading import Lock
from typing import Any, Callable, Dict, Generic, Optional, TypeVar

V = TypeVar("V")


@dataclass
class _Entry(Generic[V]):
    value: V
    stored_at: float
    modified_at: Optional[datetime]


class TTLCache(Generic[V]):
    """Small thread-safe cache with a TTL and a staleness check.

    ``get`` misses when the entry is older than ``ttl_seconds`` or when the
    caller passes a ``modified_at`` newer than the one recorded at ``set``.
    Mutators of the cached entity call ``invalidate`` explicitly.
    """

    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._lock = Lock()
        self._entries: Dict[Any, _Entry[V]] = {}

    def get(self, key: Any, modified_at: Optional[datetime] = None) -> Optional[V]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if self._clock() - entry.stored_at > self.ttl_seconds:
                del self._entries[key]
                return None
            if modified_at is not None and (entry.modified_at is None or modified_at > entry.modified_at):
                del self._entries[key]
                return None
            return entry.value

    def set(self, key: Any, value: V, modified_at: Optional[datetime] = None) -> None:
        with self._lock:
            self._entries[key] = _Entry(value=value, stored_at=self._clock(), modified_at=modified_at)

    def invalidate(self, key: Any) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
