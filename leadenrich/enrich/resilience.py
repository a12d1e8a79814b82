"""Per-provider throttling and per-vendor circuit breaking."""

from __future__ import annotations

import logging
import time
from collections import deque
from typing import Callable

from leadenrich.errors import RateLimitExceeded

logger = logging.getLogger(__name__)

WINDOW_SECONDS = 60.0


class RateLimiter:
    """Sliding-window limiter: at most ``limit`` calls in any 60 s window."""

    def __init__(self, limit: int, name: str = "provider", clock: Callable[[], float] = time.monotonic) -> None:
        self.limit = max(1, int(limit))
        self.name = name
        self._clock = clock
        self._calls: deque[float] = deque()

    def _prune(self, now: float) -> None:
        while self._calls and now - self._calls[0] >= WINDOW_SECONDS:
            self._calls.popleft()

    def check_limit(self) -> None:
        now = self._clock()
        self._prune(now)
        if len(self._calls) >= self.limit:
            logger.warning("rate_limit.exceeded", extra={"provider": self.name, "limit": self.limit})
            raise RateLimitExceeded(self.name, self.limit)
        self._calls.append(now)

    def remaining(self) -> int:
        self._prune(self._clock())
        return max(0, self.limit - len(self._calls))


class CircuitBreaker:
    """Opens after ``failure_threshold`` consecutive failures, half-opens after ``reset_seconds``.

    Half-open admits one trial call; the breaker stays shut to everyone else
    until that call is recorded, released, or outlives ``reset_seconds``.
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        reset_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.name = name
        self.failure_threshold = max(1, int(failure_threshold))
        self.reset_seconds = reset_seconds
        self._clock = clock
        self.failures = 0
        self.opened_at: float | None = None
        self.trial_started_at: float | None = None

    @property
    def state(self) -> str:
        if self.opened_at is None:
            return "closed"
        if self._clock() - self.opened_at >= self.reset_seconds:
            return "half_open"
        return "open"

    def allow(self) -> bool:
        state = self.state
        if state == "closed":
            return True
        if state == "open":
            return False
        now = self._clock()
        if self.trial_started_at is not None and now - self.trial_started_at < self.reset_seconds:
            return False
        self.trial_started_at = now
        return True

    def release(self) -> None:
        """End a trial call without judging the vendor."""
        self.trial_started_at = None

    def record_success(self) -> None:
        self.failures = 0
        self.opened_at = None
        self.trial_started_at = None

    def record_failure(self) -> None:
        self.failures += 1
        if self.state == "half_open" or self.failures >= self.failure_threshold:
            if self.opened_at is None or self.state == "half_open":
                logger.warning("circuit.opened", extra={"vendor": self.name, "failures": self.failures})
            self.opened_at = self._clock()
        self.trial_started_at = None
