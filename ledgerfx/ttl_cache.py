from __future__ import annotations

from dataclasses import dataclass
import threading
import time
from typing import Callable, Generic, TypeVar

V = TypeVar("V")

_MISSING = object()


@dataclass(frozen=True)
class CacheEntry(Generic[V]):
    value: V
    expiry: float


class TTLCache(Generic[V]):
    """Thread-safe keyed store with per-entry expiry and a hard size limit.

    Expired entries are dropped lazily when read. When a new key arrives at
    capacity the oldest inserted entry is evicted, regardless of how recently it
    was read.
    """

    def __init__(self, max_size: int = 200, clock: Callable[[], float] = time.monotonic) -> None:
        if max_size < 1:
            raise ValueError("Cache capacity must be at least 1.")
        self.max_size = max_size
        self._clock = clock
        self._entries: dict[str, CacheEntry[V]] = {}
        self._lock = threading.Lock()

    def set(self, key: str, value: V, ttl_seconds: float) -> None:
        entry = CacheEntry(value=value, expiry=self._clock() + ttl_seconds)
        with self._lock:
            if key in self._entries:
                del self._entries[key]
            elif len(self._entries) >= self.max_size:
                oldest = next(iter(self._entries))
                del self._entries[oldest]
            self._entries[key] = entry

    def get(self, key: str, default: V | None = None) -> V | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return default
            if self._clock() > entry.expiry:
                del self._entries[key]
                return default
            return entry.value

    def has(self, key: str) -> bool:
        return self.get(key, _MISSING) is not _MISSING

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
