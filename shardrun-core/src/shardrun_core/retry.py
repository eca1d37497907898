"""Bounded exponential backoff for transient failures.

Only reads that may be affected by store eventual consistency are retried;
nothing in shardrun retries launches or re-runs shards. Backoff is driven by
tenacity; RetryPolicy is the configuration object that builds it.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Callback receiving (attempt number starting at 1, error, delay in seconds)
RetryCallback = Callable[[int, BaseException, float], None]
SleepFunction = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class RetryPolicy:
    """Retry parameters.

    Attributes:
        max_attempts: Total attempts including the first one.
        base_delay: Delay before the first retry, in seconds.
        max_delay: Upper bound of every delay, in seconds.
        jitter: Random extra delay of up to ``jitter * base_delay`` seconds.
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    jitter: float = 0.25

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("delays must be non-negative")
        if not 0 <= self.jitter < 1:
            raise ValueError("jitter must be in [0, 1)")

    def wait(self) -> wait_exponential_jitter:
        """Return the tenacity wait strategy for this policy."""
        return wait_exponential_jitter(
            initial=self.base_delay, max=self.max_delay, jitter=self.base_delay * self.jitter
        )

    def retrying(
        self,
        retry_on: type[BaseException] | tuple[type[BaseException], ...] = Exception,
        on_retry: RetryCallback | None = None,
        sleep: SleepFunction = asyncio.sleep,
    ) -> AsyncRetrying:
        """Build an AsyncRetrying controller.

        Args:
            retry_on: Exception types that are retried; anything else propagates at once.
            on_retry: Optional callback invoked before each backoff sleep.
            sleep: Sleep coroutine; replaced in tests.

        Returns:
            A controller that re-raises the last error once attempts are exhausted.
        """

        def before_sleep(state: RetryCallState) -> None:
            error = state.outcome.exception() if state.outcome else None
            delay = state.next_action.sleep if state.next_action else 0.0
            logger.debug(
                "Attempt %d failed (%s), retrying in %.2fs", state.attempt_number, error, delay
            )
            if on_retry is not None and error is not None:
                on_retry(state.attempt_number, error, delay)

        return AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=self.wait(),
            retry=retry_if_exception_type(retry_on),
            before_sleep=before_sleep,
            sleep=sleep,
            reraise=True,
        )


async def with_retry(
    fn: Callable[[], Awaitable[T]],
    policy: RetryPolicy | None = None,
    *,
    retry_on: tuple[type[BaseException], ...] = (Exception,),
    on_retry: RetryCallback | None = None,
    sleep: SleepFunction = asyncio.sleep,
) -> T:
    """Call fn until it succeeds or the attempts are exhausted.

    Returns:
        The result of the first successful call.

    Raises:
        The last exception raised by fn once attempts are exhausted.
    """
    policy = policy or RetryPolicy()
    return await policy.retrying(retry_on, on_retry, sleep)(fn)


def error_message(err: BaseException) -> str:
    """Return a printable message for an exception."""
    return str(err) or type(err).__name__
