"""
Retry mechanism for resilient upstream calls.

``RetryOrchestrator`` drives any zero-argument awaitable factory with
exponential backoff and jitter. It is deadline aware: a retry whose start would
land past the caller's deadline is never scheduled, ``DeadlineExceeded`` is
raised instead.
"""

import asyncio
import functools
import random
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Tuple, TypeVar

from shared.errors import DeadlineExceeded, is_retryable
from shared.logging import get_logger

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Configuration for retry behavior."""

    max_attempts: int = 3
    base_delay_ms: int = 1000
    backoff_factor: float = 2.0
    jitter_ms: int = 500

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.base_delay_ms < 0 or self.jitter_ms < 0:
            raise ValueError("delays must be non-negative")

    def delay_seconds(self, attempt: int, rng: Callable[[], float] = random.random) -> float:
        """Delay to wait after failed attempt ``attempt`` (1-based)."""
        backoff_ms = self.base_delay_ms * (self.backoff_factor ** (attempt - 1))
        jitter = rng() * self.jitter_ms
        return (backoff_ms + jitter) / 1000.0


class Deadline:
    """Wall-clock budget for a single inbound request."""

    def __init__(self, seconds: float, clock: Callable[[], float] = time.monotonic):
        self.seconds = seconds
        self._clock = clock
        self._started = clock()

    def elapsed(self) -> float:
        return self._clock() - self._started

    def remaining(self) -> float:
        return max(0.0, self.seconds - self.elapsed())

    def expired(self) -> bool:
        return self.remaining() <= 0.0


class RetryOrchestrator:
    """Exponential-backoff-with-jitter driver for upstream calls."""

    def __init__(self,
                 name: str = "upstream",
                 sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
                 rng: Callable[[], float] = random.random,
                 on_retry: Optional[Callable[[str, int, BaseException], None]] = None):
        self.name = name
        self._sleep = sleep
        self._rng = rng
        self._on_retry = on_retry
        self.logger = get_logger(f"retry.{name}")

    async def execute(self,
                      operation: Callable[[], Awaitable[T]],
                      policy: RetryPolicy,
                      *,
                      deadline: Optional[Deadline] = None,
                      should_retry: Callable[[BaseException], bool] = is_retryable,
                      label: Optional[str] = None) -> T:
        """Run ``operation`` until it succeeds, fails permanently or runs out of attempts."""
        label = label or self.name

        for attempt in range(1, policy.max_attempts + 1):
            if deadline is not None and deadline.expired():
                raise DeadlineExceeded(
                    "No time left for upstream attempt",
                    details={"operation": label, "attempt": attempt},
                )

            try:
                self.logger.debug(
                    "Retry attempt",
                    operation=label,
                    attempt=attempt,
                    max_attempts=policy.max_attempts,
                )
                result = await operation()

                if attempt > 1:
                    self.logger.info("Retry succeeded", operation=label, attempt=attempt)

                return result

            except Exception as exc:
                if not should_retry(exc):
                    raise

                if attempt == policy.max_attempts:
                    self.logger.error(
                        "All retry attempts exhausted",
                        operation=label,
                        attempt=attempt,
                        max_attempts=policy.max_attempts,
                        error=str(exc),
                    )
                    raise

                delay = policy.delay_seconds(attempt, self._rng)

                if deadline is not None and delay >= deadline.remaining():
                    self.logger.warning(
                        "Retry would pass request deadline",
                        operation=label,
                        attempt=attempt,
                        delay=round(delay, 3),
                        remaining=round(deadline.remaining(), 3),
                    )
                    raise DeadlineExceeded(
                        "Retry would exceed request deadline",
                        details={"operation": label, "attempt": attempt, "last_error": str(exc)},
                    ) from exc

                self.logger.warning(
                    "Retry attempt failed, waiting before next attempt",
                    operation=label,
                    attempt=attempt,
                    delay=round(delay, 3),
                    error=str(exc),
                )
                if self._on_retry is not None:
                    self._on_retry(label, attempt, exc)

                await self._sleep(delay)

        # max_attempts >= 1 guarantees the loop returned or raised
        raise AssertionError("unreachable")


def retry_on_exception(policy: Optional[RetryPolicy] = None,
                       should_retry: Callable[[BaseException], bool] = is_retryable,
                       exceptions: Tuple[type, ...] = (Exception,)) -> Callable:
    """Decorator for retrying async functions on transient exceptions."""

    if policy is None:
        policy = RetryPolicy()

    def decorator(func: Callable[..., Awaitable[Any]]) -> Callable[..., Awaitable[Any]]:
        orchestrator = RetryOrchestrator(name=func.__name__)

        def _should_retry(exc: BaseException) -> bool:
            return isinstance(exc, exceptions) and should_retry(exc)

        @functools.wraps(func)
        async def wrapper(*args, **kwargs) -> Any:
            return await orchestrator.execute(
                lambda: func(*args, **kwargs),
                policy,
                should_retry=_should_retry,
            )

        return wrapper

    return decorator
