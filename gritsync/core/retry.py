import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from gritsync.core.classifier import classify_error, is_retryable_error

logger = logging.getLogger("gritsync.retry")

T = TypeVar("T")


def _log_retry(retry_state: RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "retrying attempt=%s type=%s sleep=%.2fs error=%s",
        retry_state.attempt_number,
        classify_error(exc).type.value,
        retry_state.next_action.sleep if retry_state.next_action else 0.0,
        exc,
    )


async def retry_with_backoff(
    operation: Callable[[], Awaitable[T]],
    max_retries: int = 3,
    initial_delay_ms: int = 1000,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """
    Run `operation`, retrying only failures the classifier marks retryable.

    `max_retries` is the total number of attempts. Delay before retry n
    (zero-indexed) is initial_delay_ms * 2**n, no jitter. A non-retryable
    error is raised straight away; when attempts run out the last error
    is raised.
    """
    retrying = AsyncRetrying(
        stop=stop_after_attempt(max(1, max_retries)),
        wait=wait_exponential(multiplier=initial_delay_ms / 1000, exp_base=2, min=0),
        retry=retry_if_exception(is_retryable_error),
        before_sleep=_log_retry,
        sleep=sleep,
        reraise=True,
    )
    async for attempt in retrying:
        with attempt:
            return await operation()
    raise AssertionError("unreachable")
