"""In-process cache transport with per-key expiry."""

from __future__ import annotations

import threading
import time


class MemoryCacheAdapter:
    """Dict-backed CacheAdapter for a single process.

    Expired entries are dropped lazily on load.
    """

    def __init__(self) -> None:
        self._entries: dict[str, tuple[str, float]] = {}
        self._lock = threading.Lock()

    def load(self, key: str) -> str | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if expires_at <= time.monotonic():
                del self._entries[key]
                return None
            return value

    def save(self, key: str, value: str, ttl: int) -> bool:
        with self._lock:
            self._entries[key] = (value, time.monotonic() + ttl)
        return True

    def purge(self, key: str) -> bool:
        with self._lock:
            self._entries.pop(key, None)
        return True

    def purge_prefix(self, prefix: str) -> int:
        with self._lock:
            matching = [k for k in self._entries if k.startswith(prefix)]
            for key in matching:
                del self._entries[key]
            return len(matching)

    def flush(self) -> bool:
        with self._lock:
            self._entries.clear()
        return True

    def __len__(self) -> int:
        return len(self._entries)
