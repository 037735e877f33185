"""
Short-lived memoization of sanitized hotspot sets.

Entries are keyed by page URL, device, parity flag and the inference
prompt signature, so changing the prompt invalidates old entries.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from threading import Lock
from typing import Any, Callable, Dict, List, Optional

from heatlens.common.types import CacheEntry, Hotspot


@dataclass
class CacheConfig:
    """Configuration for the hotspot cache."""

    # Entry lifetime
    ttl_s: float = 600.0

    # Sweep expired entries once the table grows past this size
    capacity: int = 100


class HotspotCache:
    """
    TTL cache for detector results, safe for concurrent use.

    Expiry is checked lazily on `get`; a sweep of expired entries runs after
    any `set` that leaves the table above `capacity`.

    Example:
        >>> cache = HotspotCache()
        >>> k = cache.key("https://example.com", "desktop", False, "ab12")
        >>> cache.set(k, hotspots, {"engine": "model"})
        >>> cache.get(k).hotspots
    """

    def __init__(self, config: Optional[CacheConfig] = None, *, clock: Callable[[], float] = time.monotonic):
        self.config = config or CacheConfig()
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = Lock()
        self.hits = 0
        self.misses = 0

    @staticmethod
    def key(url: str, device: str, parity: bool, prompt_hash: str) -> str:
        return f"{url}:{device}:{str(bool(parity)).lower()}:{prompt_hash}"

    def get(self, key: str) -> Optional[CacheEntry]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self.misses += 1
                return None

            if self._expired(entry, self._clock()):
                del self._entries[key]
                self.misses += 1
                return None

            self.hits += 1
            return entry

    def set(self, key: str, hotspots: List[Hotspot], meta: Dict[str, Any]) -> None:
        with self._lock:
            self._entries[key] = CacheEntry(timestamp=self._clock(), hotspots=list(hotspots), meta=dict(meta))
            if len(self._entries) > self.config.capacity:
                self._sweep()

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def stats(self) -> Dict[str, int]:
        with self._lock:
            return {"size": len(self._entries), "hits": self.hits, "misses": self.misses}

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _expired(self, entry: CacheEntry, now: float) -> bool:
        return (now - entry.timestamp) >= self.config.ttl_s

    def _sweep(self) -> None:
        """Remove expired entries. Caller holds the lock."""
        now = self._clock()
        stale = [k for k, v in self._entries.items() if self._expired(v, now)]
        for k in stale:
            del self._entries[k]
