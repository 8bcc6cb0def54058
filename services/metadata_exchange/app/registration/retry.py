"""Retry policy for deposit submissions, built on tenacity.

Only ``TransientDepositError`` is retried. Waits come from the server's
``Retry-After`` guidance when an attempt carried one, otherwise from an
exponential backoff keyed to the attempt number.
"""

import asyncio
import email.utils
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from typing import Optional, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
)
from tenacity.wait import wait_base

from services.metadata_exchange.app.registration.errors import FailureCause, TransientDepositError
from shared.utils.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")
Sleeper = Callable[[float], Awaitable[None]]


def parse_retry_after(value: Optional[str], now: datetime) -> Optional[float]:
    """Convert a Retry-After header (delta seconds or HTTP date) to seconds.

    Args:
        value: Raw header value
        now: Current time, used to resolve HTTP-date values

    Returns:
        Non-negative delay, or None when the header is absent or unparseable
    """
    if not value:
        return None

    value = value.strip()
    try:
        delay = float(int(value))
    except ValueError:
        try:
            dt = email.utils.parsedate_to_datetime(value)
        except (TypeError, ValueError):
            return None
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        delay = (dt - now).total_seconds()

    return max(0.0, delay)


class wait_retry_after_or_backoff(wait_base):
    """Honour an error's ``retry_after`` before falling back to backoff."""

    def __init__(self, base_seconds: float, max_seconds: float) -> None:
        self.base_seconds = base_seconds
        self.max_seconds = max_seconds

    def backoff(self, attempt_number: int) -> float:
        """Delay after the given failed attempt (1-based)."""
        return min(self.base_seconds * 2 ** (attempt_number - 1), self.max_seconds)

    def __call__(self, retry_state: RetryCallState) -> float:
        outcome = retry_state.outcome
        exc = outcome.exception() if outcome is not None else None
        retry_after = getattr(exc, "retry_after", None)
        if retry_after is not None:
            return float(retry_after)
        return self.backoff(retry_state.attempt_number)


class RetryPolicy:
    """Bounded retry loop with per-attempt timeout and injectable sleep."""

    def __init__(
        self,
        max_attempts: int = 3,
        backoff_base_seconds: float = 2.0,
        backoff_max_seconds: float = 60.0,
        attempt_timeout_seconds: float | None = 30.0,
        sleep: Sleeper = asyncio.sleep,
    ):
        """Initialize policy.

        Args:
            max_attempts: Total attempts including the first
            backoff_base_seconds: Delay after the first failed attempt
            backoff_max_seconds: Cap on computed backoff delays
            attempt_timeout_seconds: Timeout applied to each attempt alone
            sleep: Coroutine used between attempts
        """
        self.max_attempts = max_attempts
        self.attempt_timeout_seconds = attempt_timeout_seconds
        self.sleep = sleep
        self.wait = wait_retry_after_or_backoff(backoff_base_seconds, backoff_max_seconds)

    async def run(self, operation: Callable[[int], Awaitable[T]]) -> T:
        """Run ``operation`` until it succeeds, fails terminally or runs out of attempts.

        Args:
            operation: Coroutine factory receiving the 1-based attempt number

        Returns:
            The operation's result

        Raises:
            TransientDepositError: Last transient failure, with ``attempts`` set
        """
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=self.wait,
            retry=retry_if_exception_type(TransientDepositError),
            sleep=self.sleep,
            before_sleep=self._log_retry,
            reraise=True,
        )

        attempt_number = 0
        try:
            async for attempt in retrying:
                with attempt:
                    attempt_number = attempt.retry_state.attempt_number
                    return await self._attempt(operation, attempt_number)
        except TransientDepositError as e:
            e.attempts = attempt_number
            raise

    async def _attempt(self, operation: Callable[[int], Awaitable[T]], attempt_number: int) -> T:
        try:
            return await asyncio.wait_for(
                operation(attempt_number),
                timeout=self.attempt_timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            raise TransientDepositError(
                FailureCause.NETWORK_ERROR,
                f"Attempt timed out after {self.attempt_timeout_seconds}s",
            ) from e

    @staticmethod
    def _log_retry(retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        logger.warning(
            "deposit_attempt_retrying",
            attempt=retry_state.attempt_number,
            cause=getattr(getattr(exc, "cause", None), "value", None),
            reason=str(exc) if exc else None,
            wait_seconds=retry_state.next_action.sleep if retry_state.next_action else None,
        )
