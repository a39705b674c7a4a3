"""Short-lived cache for per-user accessible project sets."""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from typing import Protocol, runtime_checkable


@runtime_checkable
class AccessCache(Protocol):
    """Interface for the membership cache.

    The in-process ``TTLCache`` is the default; a shared cache can be
    dropped in for multi-process deployments as long as it honors
    ``invalidate`` and ``clear``.
    """

    def get(self, key: str) -> frozenset[str] | None: ...

    def set(self, key: str, value: frozenset[str]) -> None: ...

    def invalidate(self, key: str) -> None: ...

    def clear(self) -> None: ...


class TTLCache:
    """Thread-safe in-memory cache whose entries expire after ``ttl`` seconds."""

    def __init__(self, ttl: float = 30.0, clock: Callable[[], float] = time.monotonic):
        self._ttl = ttl
        self._clock = clock
        self._entries: dict[str, tuple[float, frozenset[str]]] = {}
        self._lock = threading.Lock()

    @property
    def ttl(self) -> float:
        return self._ttl

    def get(self, key: str) -> frozenset[str] | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, value = entry
            if self._clock() >= expires_at:
                del self._entries[key]
                return None
            return value

    def set(self, key: str, value: frozenset[str]) -> None:
        if self._ttl <= 0:
            return
        with self._lock:
            self._entries[key] = (self._clock() + self._ttl, value)

    def invalidate(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
