import threading
import time
from collections import deque
from typing import Callable, Hashable


class SlidingWindowLimiter:
    """At most `limit` hits per key within any rolling `window_seconds`."""

    def __init__(self, limit: int, window_seconds: float = 60.0, clock: Callable[[], float] = time.monotonic):
        self.limit = limit
        self.window_seconds = window_seconds
        self._clock = clock
        self._hits = {}
        self._last_sweep = clock()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        """Number of keys currently tracked."""
        return len(self._hits)

    def _evict(self, key: Hashable, now: float) -> deque:
        hits = self._hits.get(key)
        if hits is None:
            return deque()
        while hits and now - hits[0] >= self.window_seconds:
            hits.popleft()
        if not hits:
            del self._hits[key]
        return hits

    def _sweep(self, now: float):
        # keys that stopped calling would otherwise stay forever
        for key in list(self._hits):
            self._evict(key, now)
        self._last_sweep = now

    def hit(self, key: Hashable) -> bool:
        now = self._clock()
        with self._lock:
            if now - self._last_sweep >= self.window_seconds:
                self._sweep(now)
            hits = self._evict(key, now)
            if len(hits) >= self.limit:
                return False
            hits.append(now)
            self._hits[key] = hits
            return True
