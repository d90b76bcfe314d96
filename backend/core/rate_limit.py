import threading
import time
from typing import Callable, Dict, Tuple

from fastapi import Request


class InMemoryRateLimiter:
    """
    Fixed-window attempt counter keyed by an arbitrary string (client IP).

    Process-local: every worker keeps its own counters.
    """

    def __init__(self, max_attempts: int, window_seconds: float, clock: Callable[[], float] = time.monotonic):
        self.max_attempts = max_attempts
        self.window_seconds = window_seconds
        self._clock = clock
        self._lock = threading.Lock()
        # key -> (count, window start)
        self._attempts: Dict[str, Tuple[int, float]] = {}
        self._last_prune = clock()

    def _prune(self, now: float) -> None:
        """Drop keys whose window has closed. Caller holds the lock."""
        if now - self._last_prune < self.window_seconds:
            return
        self._attempts = {
            key: (count, first) for key, (count, first) in self._attempts.items() if now - first < self.window_seconds
        }
        self._last_prune = now

    def hit(self, key: str) -> bool:
        """Count one attempt. Returns False when the key is over the limit."""
        now = self._clock()
        with self._lock:
            self._prune(now)
            count, first = self._attempts.get(key, (0, now))
            if now - first < self.window_seconds:
                if count >= self.max_attempts:
                    return False
                self._attempts[key] = (count + 1, first)
            else:
                self._attempts[key] = (1, now)
            return True

    def __len__(self) -> int:
        with self._lock:
            return len(self._attempts)

    def remaining(self, key: str) -> int:
        now = self._clock()
        with self._lock:
            count, first = self._attempts.get(key, (0, now))
            if now - first >= self.window_seconds:
                return self.max_attempts
            return max(0, self.max_attempts - count)

    def reset(self, key: str = None) -> None:
        with self._lock:
            if key is None:
                self._attempts.clear()
            else:
                self._attempts.pop(key, None)


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    if request.client and request.client.host:
        return request.client.host
    return "local"
