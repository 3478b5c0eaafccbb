"""
Fixed-window rate limiter for outbound data provider calls.
"""

import math
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from shared.errors import RateLimited
from shared.logging import get_logger
from shared.metrics import MetricsCollector


@dataclass
class RateWindow:
    window_start_epoch_ms: int
    count: int = 0


class FixedWindowRateLimiter:
    """In-process fixed-window counter. Denied calls are shed, never queued."""

    def __init__(self,
                 limit: int = 50,
                 window_size_ms: int = 60_000,
                 clock: Callable[[], float] = time.time,
                 metrics: Optional[MetricsCollector] = None):
        if limit < 1:
            raise ValueError("limit must be >= 1")
        self.limit = limit
        self.window_size_ms = window_size_ms
        self.logger = get_logger("gateway.rate_limiter")
        self._clock = clock
        self._metrics = metrics
        self._lock = threading.Lock()
        self._window = RateWindow(window_start_epoch_ms=self._now_ms())

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def _roll_window(self, now_ms: int) -> None:
        if now_ms - self._window.window_start_epoch_ms > self.window_size_ms:
            self._window = RateWindow(window_start_epoch_ms=now_ms)

    def try_acquire(self) -> bool:
        """Take one slot from the current window; False once the limit is reached."""
        with self._lock:
            self._roll_window(self._now_ms())
            if self._window.count >= self.limit:
                return False
            self._window.count += 1
            return True

    def acquire(self) -> None:
        """Take one slot or raise RateLimited immediately."""
        if self.try_acquire():
            return

        status = self.status()
        self.logger.warning(
            "Rate limit exceeded",
            limit=self.limit,
            reset_in_seconds=status["reset_in_seconds"],
        )
        if self._metrics is not None:
            self._metrics.increment_counter("rate_limit_rejections_total")
        raise RateLimited(
            "Data provider rate limit exceeded. Please try again later.",
            details={
                "limit": self.limit,
                "window_seconds": self.window_size_ms / 1000,
                "retry_after_seconds": status["reset_in_seconds"],
            },
        )

    def status(self) -> Dict[str, Any]:
        with self._lock:
            now_ms = self._now_ms()
            self._roll_window(now_ms)
            elapsed = now_ms - self._window.window_start_epoch_ms
            reset_ms = max(0, self.window_size_ms - elapsed)
            return {
                "limit": self.limit,
                "current_count": self._window.count,
                "remaining": max(0, self.limit - self._window.count),
                "reset_in_seconds": int(math.ceil(reset_ms / 1000)),
            }
