"""
Time-boxed in-memory cache.

Entries expire after a fixed TTL and are dropped lazily: on read, and in a
periodic sweep triggered by writes. Not authoritative; safe to lose.
"""

import threading
import time
from typing import Callable, Dict, Generic, Optional, Tuple, TypeVar

V = TypeVar("V")


class TTLCache(Generic[V]):
    """Key -> (value, expiry) mapping with explicit TTL."""

    def __init__(
        self,
        ttl_seconds: float,
        sweep_every: int = 100,
        clock: Callable[[], float] = time.monotonic,
    ):
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be > 0")
        self.ttl_seconds = ttl_seconds
        self.sweep_every = sweep_every
        self._clock = clock
        self._entries: Dict[str, Tuple[V, float]] = {}
        self._writes = 0
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[V]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            value, expires = entry
            if expires <= self._clock():
                del self._entries[key]
                return None
            return value

    def set(self, key: str, value: V) -> None:
        with self._lock:
            self._entries[key] = (value, self._clock() + self.ttl_seconds)
            self._writes += 1
            if self._writes % self.sweep_every == 0:
                self._sweep()

    def cleanup(self) -> int:
        """Drop every expired entry. Returns how many were removed."""
        with self._lock:
            return self._sweep()

    def _sweep(self) -> int:
        now = self._clock()
        expired = [key for key, (_, expires) in self._entries.items() if expires <= now]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
