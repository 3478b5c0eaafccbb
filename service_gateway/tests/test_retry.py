"""
Unit tests for the retry orchestrator.
"""

import pytest

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from shared.errors import DeadlineExceeded, UpstreamAuthError, UpstreamServerError, UpstreamTimeout
from shared.retry import Deadline, RetryOrchestrator, RetryPolicy, retry_on_exception


class FakeTime:
    """Clock and sleep pair where sleeping advances the clock."""

    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def clock(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class Flaky:
    """Awaitable factory failing with the given errors before succeeding."""

    def __init__(self, *errors, result="ok"):
        self.errors = list(errors)
        self.result = result
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.result


class TestRetryPolicy:
    """Test cases for RetryPolicy."""

    def test_delay_formula(self):
        """Test delay = base * factor^(n-1) + jitter."""
        policy = RetryPolicy(max_attempts=3, base_delay_ms=1000, backoff_factor=2.0, jitter_ms=500)

        assert policy.delay_seconds(1, rng=lambda: 0.0) == 1.0
        assert policy.delay_seconds(2, rng=lambda: 0.0) == 2.0
        assert policy.delay_seconds(2, rng=lambda: 1.0) == 2.5

    def test_max_attempts_must_be_positive(self):
        """Test max_attempts below one is rejected at construction."""
        with pytest.raises(ValueError):
            RetryPolicy(max_attempts=0)


class TestRetryOrchestrator:
    """Test cases for RetryOrchestrator."""

    @pytest.fixture
    def fake_time(self):
        return FakeTime()

    @pytest.fixture
    def policy(self):
        return RetryPolicy(max_attempts=3, base_delay_ms=1000, backoff_factor=2.0, jitter_ms=0)

    @pytest.mark.asyncio
    async def test_backoff_then_reraise_unchanged(self, fake_time, policy):
        """Test sleeps of 1s then 2s and the final error re-raised as-is."""
        final = UpstreamTimeout("together")
        operation = Flaky(UpstreamTimeout("together"), UpstreamTimeout("together"), final)
        orchestrator = RetryOrchestrator(sleep=fake_time.sleep)

        with pytest.raises(UpstreamTimeout) as exc_info:
            await orchestrator.execute(operation, policy)

        assert exc_info.value is final
        assert operation.calls == 3
        assert fake_time.sleeps == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_sleeps_stay_within_jitter_bounds(self, fake_time):
        """Test jittered delays fall within [base, base + jitter]."""
        policy = RetryPolicy(max_attempts=3, base_delay_ms=1000, backoff_factor=2.0, jitter_ms=500)
        operation = Flaky(UpstreamServerError("together"), UpstreamServerError("together"))
        orchestrator = RetryOrchestrator(sleep=fake_time.sleep)

        assert await orchestrator.execute(operation, policy) == "ok"

        first, second = fake_time.sleeps
        assert 1.0 <= first <= 1.5
        assert 2.0 <= second <= 2.5

    @pytest.mark.asyncio
    async def test_non_retryable_error_raised_immediately(self, fake_time, policy):
        """Test permanent errors skip retries."""
        operation = Flaky(UpstreamAuthError("together"))
        orchestrator = RetryOrchestrator(sleep=fake_time.sleep)

        with pytest.raises(UpstreamAuthError):
            await orchestrator.execute(operation, policy)

        assert operation.calls == 1
        assert fake_time.sleeps == []

    @pytest.mark.asyncio
    async def test_plain_exceptions_are_not_retried(self, fake_time, policy):
        """Test the default predicate only retries retryable gateway errors."""
        operation = Flaky(RuntimeError("bug"))
        orchestrator = RetryOrchestrator(sleep=fake_time.sleep)

        with pytest.raises(RuntimeError):
            await orchestrator.execute(operation, policy)
        assert operation.calls == 1

    @pytest.mark.asyncio
    async def test_retry_past_deadline_fails_fast(self, fake_time, policy):
        """Test a retry that would start after the deadline raises DeadlineExceeded."""
        deadline = Deadline(2.5, clock=fake_time.clock)
        last = UpstreamTimeout("together")
        operation = Flaky(UpstreamTimeout("together"), last)
        orchestrator = RetryOrchestrator(sleep=fake_time.sleep)

        with pytest.raises(DeadlineExceeded) as exc_info:
            await orchestrator.execute(operation, policy, deadline=deadline)

        assert exc_info.value.__cause__ is last
        assert fake_time.sleeps == [1.0]
        assert operation.calls == 2

    @pytest.mark.asyncio
    async def test_expired_deadline_prevents_attempt(self, fake_time, policy):
        """Test no attempt starts once the deadline is spent."""
        deadline = Deadline(1.0, clock=fake_time.clock)
        fake_time.now = 5.0
        operation = Flaky()
        orchestrator = RetryOrchestrator(sleep=fake_time.sleep)

        with pytest.raises(DeadlineExceeded):
            await orchestrator.execute(operation, policy, deadline=deadline)
        assert operation.calls == 0

    @pytest.mark.asyncio
    async def test_custom_predicate_and_retry_hook(self, fake_time, policy):
        """Test should_retry and on_retry are honored."""
        seen = []
        operation = Flaky(KeyError("x"))
        orchestrator = RetryOrchestrator(
            sleep=fake_time.sleep,
            on_retry=lambda label, attempt, exc: seen.append((label, attempt)),
        )

        result = await orchestrator.execute(
            operation,
            policy,
            should_retry=lambda exc: isinstance(exc, KeyError),
            label="lookup",
        )

        assert result == "ok"
        assert seen == [("lookup", 1)]


class TestRetryDecorator:
    """Test cases for retry_on_exception."""

    @pytest.mark.asyncio
    async def test_decorated_coroutine_is_retried(self):
        """Test the decorator retries transient failures."""
        operation = Flaky(UpstreamServerError("prokerala"))

        @retry_on_exception(policy=RetryPolicy(max_attempts=2, base_delay_ms=1, jitter_ms=0))
        async def fetch():
            return await operation()

        assert await fetch() == "ok"
        assert operation.calls == 2

    @pytest.mark.asyncio
    async def test_decorator_respects_exception_filter(self):
        """Test errors outside the exception tuple are not retried."""
        operation = Flaky(UpstreamServerError("prokerala"))

        @retry_on_exception(
            policy=RetryPolicy(max_attempts=3, base_delay_ms=1, jitter_ms=0),
            exceptions=(UpstreamTimeout,),
        )
        async def fetch():
            return await operation()

        with pytest.raises(UpstreamServerError):
            await fetch()
        assert operation.calls == 1
