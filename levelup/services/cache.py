"""
Bounded in-memory TTL cache.

Injected into the services that need it (the task classifier) instead of
living as a module-level dict, so size and expiry are explicit and tests
can pass their own timer.
"""

import json
import time
import hashlib
import logging
import threading
from collections import OrderedDict
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger(__name__)


class TTLCache:
    """LRU-ordered cache whose entries expire after ``ttl_seconds``."""

    def __init__(self, maxsize: int = 512, ttl_seconds: float = 3600,
                 timer: Callable[[], float] = time.monotonic):
        if maxsize <= 0:
            raise ValueError("maxsize must be > 0")
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be > 0")
        self.maxsize = maxsize
        self.ttl_seconds = ttl_seconds
        self._timer = timer
        self._data: "OrderedDict[str, tuple]" = OrderedDict()
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0
        self.evictions = 0

    @staticmethod
    def make_key(params: Any) -> str:
        """Generate cache key from parameters."""
        params_str = json.dumps(params, sort_keys=True, default=str)
        return hashlib.md5(params_str.encode()).hexdigest()[:16]

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._data.get(key)
            if entry is None:
                self.misses += 1
                return None

            expires_at, value = entry
            if self._timer() >= expires_at:
                del self._data[key]
                self.evictions += 1
                self.misses += 1
                return None

            self._data.move_to_end(key)
            self.hits += 1
            return value

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._data[key] = (self._timer() + self.ttl_seconds, value)
            self._data.move_to_end(key)
            while len(self._data) > self.maxsize:
                self._data.popitem(last=False)
                self.evictions += 1

    def invalidate(self, key: str = None) -> int:
        """Drop one key, or everything when no key is given."""
        with self._lock:
            if key is None:
                count = len(self._data)
                self._data.clear()
            else:
                count = 1 if self._data.pop(key, None) is not None else 0
        if count:
            logger.info(f"Invalidated {count} cache entries")
        return count

    def purge_expired(self) -> int:
        with self._lock:
            now = self._timer()
            expired = [k for k, (expires_at, _) in self._data.items() if now >= expires_at]
            for key in expired:
                del self._data[key]
            self.evictions += len(expired)
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)

    def stats(self) -> Dict[str, Any]:
        """Get current cache status."""
        with self._lock:
            lookups = self.hits + self.misses
            return {
                'entries': len(self._data),
                'maxsize': self.maxsize,
                'ttl_seconds': self.ttl_seconds,
                'hits': self.hits,
                'misses': self.misses,
                'evictions': self.evictions,
                'hit_rate': round(self.hits / lookups, 3) if lookups else 0.0
            }
