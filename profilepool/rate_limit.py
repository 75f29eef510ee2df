from __future__ import annotations

import logging
import threading
import time
from typing import Callable

from profilepool.models import RateBudgetStatus

logger = logging.getLogger(__name__)

# Neynar free tier allowance
DEFAULT_REQUEST_LIMIT = 100
DEFAULT_WINDOW_S = 60 * 60


class RateBudget:
    """
    Fixed-window request budget for one provider.

    Callers take a slot with try_acquire() right before sending a request, so
    attempts that time out still count. can_make_request() and
    record_request() are the same two steps taken separately. There is no
    queue: once the budget is spent callers fail fast.
    """

    def __init__(
        self,
        limit: int = DEFAULT_REQUEST_LIMIT,
        window_s: float = DEFAULT_WINDOW_S,
        clock: Callable[[], float] = time.monotonic,
    ):
        if limit < 0:
            raise ValueError("limit must be >= 0")
        if window_s <= 0:
            raise ValueError("window_s must be > 0")
        self.limit = limit
        self.window_s = window_s
        self._clock = clock
        self._lock = threading.Lock()
        self._count = 0
        self._window_start = clock()
        self._blocked = False

    def _roll_window(self, now: float) -> None:
        if now - self._window_start > self.window_s:
            self._count = 0
            self._window_start = now
            self._blocked = False

    def _exhausted_locked(self) -> bool:
        if self._count >= self.limit:
            if not self._blocked:
                logger.warning("Rate budget exhausted (%s/%s)", self._count, self.limit)
            self._blocked = True
            return True
        return False

    def can_make_request(self) -> bool:
        with self._lock:
            self._roll_window(self._clock())
            return not self._exhausted_locked()

    def record_request(self) -> None:
        with self._lock:
            self._roll_window(self._clock())
            self._count += 1

    def try_acquire(self) -> bool:
        """Check and record one request in a single step; False when the budget is spent."""
        with self._lock:
            self._roll_window(self._clock())
            if self._exhausted_locked():
                return False
            self._count += 1
            return True

    def get_status(self) -> RateBudgetStatus:
        with self._lock:
            now = self._clock()
            self._roll_window(now)
            remaining = self.window_s - (now - self._window_start)
            return RateBudgetStatus(
                count=self._count,
                limit=self.limit,
                window_remaining_s=max(0.0, remaining),
                is_blocked=self._blocked,
            )
