"""In-memory, per-caller analysis quota.

Each analysis costs one model call, so shared deployments cap how many
analyses a caller may start per window (5 per day by default). Counters
live in process memory and reset on restart.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass

DEFAULT_LIMIT = 5
DEFAULT_WINDOW_SECONDS = 24 * 60 * 60


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    remaining: int
    reset_at: float  # epoch seconds


@dataclass
class _Window:
    count: int
    reset_at: float


class RateLimiter:
    """Fixed-window counter keyed by client id.

    ``check`` never awaits, so it is safe to share one limiter across
    coroutines on a single event loop.
    """

    def __init__(
        self,
        limit: int = DEFAULT_LIMIT,
        window_seconds: float = DEFAULT_WINDOW_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if limit < 1:
            raise ValueError("limit must be at least 1")
        self.limit = limit
        self.window_seconds = window_seconds
        self._clock = clock
        self._windows: dict[str, _Window] = {}

    def check(self, client_id: str) -> RateLimitDecision:
        """Consume one request for *client_id* if the quota allows it."""
        now = self._clock()
        window = self._windows.get(client_id)

        if window is None or now > window.reset_at:
            reset_at = now + self.window_seconds
            self._windows[client_id] = _Window(count=1, reset_at=reset_at)
            return RateLimitDecision(True, self.limit - 1, reset_at)

        if window.count >= self.limit:
            return RateLimitDecision(False, 0, window.reset_at)

        window.count += 1
        return RateLimitDecision(True, self.limit - window.count, window.reset_at)
