"""Tests for the deposit retry policy."""

import asyncio

import pytest

from services.metadata_exchange.app.registration.errors import FailureCause, TransientDepositError
from services.metadata_exchange.app.registration.retry import (
    RetryPolicy,
    parse_retry_after,
    wait_retry_after_or_backoff,
)


class TestBackoff:
    """Tests for backoff computation."""

    def test_doubles_per_attempt(self):
        wait = wait_retry_after_or_backoff(2.0, 60.0)
        assert [wait.backoff(n) for n in (1, 2, 3, 4)] == [2.0, 4.0, 8.0, 16.0]

    def test_capped_at_maximum(self):
        wait = wait_retry_after_or_backoff(2.0, 60.0)
        assert wait.backoff(7) == 60.0


class TestParseRetryAfter:
    """Tests for Retry-After header parsing."""

    def test_delta_seconds(self, fake_clock):
        assert parse_retry_after("120", fake_clock.now()) == 120.0

    def test_http_date(self, fake_clock):
        """Test an HTTP date 30 seconds after the frozen clock."""
        assert parse_retry_after("Sun, 01 Jun 2025 12:00:30 GMT", fake_clock.now()) == 30.0

    def test_past_date_is_zero(self, fake_clock):
        assert parse_retry_after("Sat, 31 May 2025 12:00:00 GMT", fake_clock.now()) == 0.0

    @pytest.mark.parametrize("value", [None, "", "soon"])
    def test_missing_or_unparseable(self, fake_clock, value):
        assert parse_retry_after(value, fake_clock.now()) is None


class TestRetryPolicy:
    """Tests for RetryPolicy.run."""

    @pytest.mark.asyncio
    async def test_first_attempt_success(self, retry_policy, sleeper):
        async def operation(attempt):
            return attempt

        assert await retry_policy.run(operation) == 1
        assert sleeper.delays == []

    @pytest.mark.asyncio
    async def test_retries_transient_then_succeeds(self, retry_policy, sleeper):
        """Test that backoff waits are requested between attempts."""
        calls = []

        async def operation(attempt):
            calls.append(attempt)
            if attempt < 3:
                raise TransientDepositError(FailureCause.SERVER_ERROR, "Crossref server error: 503")
            return "done"

        assert await retry_policy.run(operation) == "done"
        assert calls == [1, 2, 3]
        assert sleeper.delays == [2.0, 4.0]

    @pytest.mark.asyncio
    async def test_exhaustion_reraises_with_attempts(self, retry_policy, sleeper):
        async def operation(attempt):
            raise TransientDepositError(FailureCause.SERVER_ERROR, "Crossref server error: 502")

        with pytest.raises(TransientDepositError) as exc_info:
            await retry_policy.run(operation)

        assert exc_info.value.cause == FailureCause.SERVER_ERROR
        assert exc_info.value.attempts == 3
        # No wait after the final attempt
        assert sleeper.delays == [2.0, 4.0]

    @pytest.mark.asyncio
    async def test_retry_after_overrides_backoff(self, retry_policy, sleeper):
        async def operation(attempt):
            if attempt == 1:
                raise TransientDepositError(
                    FailureCause.RATE_LIMITED, "Crossref rate limit exceeded", retry_after=7.0
                )
            return "done"

        assert await retry_policy.run(operation) == "done"
        assert sleeper.delays == [7.0]

    @pytest.mark.asyncio
    async def test_other_errors_are_not_retried(self, retry_policy, sleeper):
        calls = []

        async def operation(attempt):
            calls.append(attempt)
            raise ValueError("bad payload")

        with pytest.raises(ValueError):
            await retry_policy.run(operation)

        assert calls == [1]
        assert sleeper.delays == []

    @pytest.mark.asyncio
    async def test_attempt_timeout_is_network_error(self, sleeper):
        policy = RetryPolicy(max_attempts=1, attempt_timeout_seconds=0.01, sleep=sleeper)

        async def operation(attempt):
            await asyncio.sleep(1)

        with pytest.raises(TransientDepositError) as exc_info:
            await policy.run(operation)

        assert exc_info.value.cause == FailureCause.NETWORK_ERROR
        assert exc_info.value.attempts == 1
