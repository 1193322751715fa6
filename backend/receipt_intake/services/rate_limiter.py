"""Fixed-window rate limiting for inbound senders.

Counts admissions per normalized sender inside windows aligned to
``window_seconds``.  State is in-process; with several API workers each
one enforces its own budget.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Dict, Tuple

logger = logging.getLogger(__name__)


class SenderRateLimiter:
    """Allow at most ``limit`` hits per key in each fixed window."""

    def __init__(self, limit: int, window_seconds: int, clock: Callable[[], float] = time.time) -> None:
        if limit < 1:
            raise ValueError("limit must be >= 1")
        if window_seconds < 1:
            raise ValueError("window_seconds must be >= 1")
        self.limit = limit
        self.window_seconds = window_seconds
        self._clock = clock
        # key -> (window id, count)
        self._windows: Dict[str, Tuple[int, int]] = {}

    def _window_id(self) -> int:
        return int(self._clock()) // self.window_seconds

    def hit(self, key: str, cost: int = 1) -> bool:
        """Record ``cost`` hits for ``key``; return False when over the limit.

        Rejected hits are not counted.
        """
        window_id = self._window_id()
        current_window, count = self._windows.get(key, (window_id, 0))
        if current_window != window_id:
            count = 0
        if count + cost > self.limit:
            logger.info("[rate-limit] exceeded key=%s count=%d limit=%d", key, count, self.limit)
            self._windows[key] = (window_id, count)
            return False
        self._windows[key] = (window_id, count + cost)
        self._prune(window_id)
        return True

    def release(self, key: str, cost: int = 1) -> None:
        """Give back hits recorded for ``key`` in the current window."""
        window_id = self._window_id()
        current_window, count = self._windows.get(key, (window_id, 0))
        if current_window == window_id and count:
            self._windows[key] = (window_id, max(0, count - cost))

    def retry_after(self) -> int:
        """Seconds until the current window rolls over."""
        now = self._clock()
        return max(1, int(self.window_seconds - (now % self.window_seconds)))

    def reset(self) -> None:
        self._windows.clear()

    def _prune(self, window_id: int) -> None:
        stale = [k for k, (w, _) in self._windows.items() if w != window_id]
        for k in stale:
            del self._windows[k]
