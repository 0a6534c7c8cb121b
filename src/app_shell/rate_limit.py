"""
Per-IP sliding-window rate limiting for the collect endpoint.
"""

from collections import deque
from datetime import datetime, timedelta
from threading import Lock

from src.adapters.clock import SystemClock
from src.core.ports.time import TimePort
from src.rules.models import RateLimitWindow


class RateLimiter:
    """
    Sliding-window admission control keyed by client IP.

    Process-local: each API worker enforces its own window. Keys that
    stop sending are swept at most once per window, so memory tracks
    recent clients only.
    """

    def __init__(
        self,
        rules: RateLimitWindow,
        time_port: TimePort | None = None,
    ):
        self.rules = rules
        self._time = time_port if time_port is not None else SystemClock()
        self._history: dict[str, deque[datetime]] = {}
        self._windows: dict[str, int] = {}
        self._last_sweep: datetime | None = None
        self._lock = Lock()

    def _cleanup(self, key: str, window: int, now: datetime) -> None:
        cutoff = now - timedelta(seconds=window)
        hits = self._history.get(key)
        if hits is None:
            return
        while hits and hits[0] <= cutoff:
            hits.popleft()
        if not hits:
            del self._history[key]
            self._windows.pop(key, None)

    def _sweep(self, window: int, now: datetime) -> None:
        if self._last_sweep is None:
            self._last_sweep = now
            return
        if now - self._last_sweep < timedelta(seconds=window):
            return
        for key in list(self._history):
            self._cleanup(key, self._windows.get(key, window), now)
        self._last_sweep = now

    def tracked_keys(self) -> int:
        with self._lock:
            return len(self._history)

    def allow_request(self, key: str, window: int, limit: int) -> bool:
        """
        Check if request is allowed.
        If allowed, records the attempt and returns True.
        If denied, returns False.
        """
        if limit <= 0:
            return False

        with self._lock:
            now = self._time.now_utc()
            self._sweep(window, now)
            self._cleanup(key, window, now)
            current_count = len(self._history.get(key, ()))

            if current_count >= limit:
                return False

            self._history.setdefault(key, deque()).append(now)
            self._windows[key] = window
            return True

    def check_collect(self, ip: str) -> bool:
        return self.allow_request(
            f"collect:{ip}",
            self.rules.window_seconds,
            self.rules.max_requests,
        )
