from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, TypeVar

from tenacity import AsyncRetrying, RetryCallState, stop_after_attempt, wait_exponential

from src.core.exceptions import StepTimeoutError

T = TypeVar("T")


async def with_retry(
    fn: Callable[[], Awaitable[T]],
    max_retries: int,
    base_delay: float,
    on_retry: Callable[[int, BaseException], None] | None = None,
) -> T:
    """Call fn up to max_retries times, sleeping base_delay * 2**(attempt-1) seconds between attempts.

    on_retry(attempt, error) runs before each sleep. The last error is re-raised.
    """

    def _before_sleep(state: RetryCallState) -> None:
        if on_retry is not None and state.outcome is not None:
            on_retry(state.attempt_number, state.outcome.exception())

    retrying = AsyncRetrying(
        stop=stop_after_attempt(max(1, max_retries)),
        wait=wait_exponential(multiplier=base_delay, exp_base=2, min=0),
        before_sleep=_before_sleep,
        reraise=True,
    )
    return await retrying(fn)


async def with_timeout(awaitable: Awaitable[T], seconds: float, message: str | None = None) -> T:
    """Await with a hard deadline; a late result is discarded."""
    try:
        return await asyncio.wait_for(awaitable, timeout=seconds)
    except asyncio.TimeoutError as e:
        raise StepTimeoutError(message or f"Operation timed out after {seconds:g}s") from e
