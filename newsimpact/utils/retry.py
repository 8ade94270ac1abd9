"""Retry-with-backoff and deadline wrappers for async tasks.

Both wrappers are generic over an abstract fallible task; they know nothing
about the I/O clients they wrap.
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, TypeVar

from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt

from newsimpact.errors import TaskTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def backoff_delay(attempt: int, base_delay: float, max_delay: float) -> float:
    """Delay after failed attempt ``attempt`` (1-based): min(max, base*2^(n-1) + U[0, base))."""
    exponential = base_delay * (2 ** (attempt - 1))
    jitter = random.uniform(0, base_delay)
    return min(max_delay, exponential + jitter)


def _always(_: BaseException) -> bool:
    return True


async def retry_with_backoff(
    task: Callable[[], Awaitable[T]],
    *,
    attempts: int,
    base_delay: float,
    max_delay: float,
    is_retryable: Optional[Callable[[BaseException], bool]] = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    label: str = "task",
) -> T:
    """Run ``task`` up to ``attempts`` times; re-raise the last error.

    Delays are in seconds. A non-retryable error is raised immediately.
    """

    def _wait(state: RetryCallState) -> float:
        return backoff_delay(state.attempt_number, base_delay, max_delay)

    def _before_sleep(state: RetryCallState) -> None:
        exc = state.outcome.exception() if state.outcome else None
        delay = state.next_action.sleep if state.next_action else 0.0
        logger.warning(f"{label} attempt {state.attempt_number} failed: {exc}. Retrying in {delay:.2f}s")

    retrying = AsyncRetrying(
        stop=stop_after_attempt(max(1, attempts)),
        wait=_wait,
        retry=retry_if_exception(is_retryable or _always),
        sleep=sleep,
        before_sleep=_before_sleep,
        reraise=True,
    )

    # tenacity only awaits coroutine functions; callers pass lambdas returning awaitables.
    async def _attempt() -> T:
        return await task()

    return await retrying(_attempt)


def _discard_result(fut: "asyncio.Future[Any]") -> None:
    if not fut.cancelled():
        fut.exception()


async def with_timeout(awaitable: Awaitable[T], timeout: float, message: str) -> T:
    """Race ``awaitable`` against a timer of ``timeout`` seconds.

    On timeout raises TaskTimeoutError. The task is abandoned, not cancelled;
    callers release whatever resource it holds.
    """
    task = asyncio.ensure_future(awaitable)
    done, _ = await asyncio.wait({task}, timeout=timeout)
    if task in done:
        return task.result()
    task.add_done_callback(_discard_result)
    raise TaskTimeoutError(message)


@dataclass(frozen=True)
class RetryPolicy:
    attempts: int = 3
    base_delay: float = 0.3
    max_delay: float = 3.0

    async def run(
        self,
        task: Callable[[], Awaitable[T]],
        *,
        is_retryable: Optional[Callable[[BaseException], bool]] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        label: str = "task",
    ) -> T:
        return await retry_with_backoff(
            task,
            attempts=self.attempts,
            base_delay=self.base_delay,
            max_delay=self.max_delay,
            is_retryable=is_retryable,
            sleep=sleep,
            label=label,
        )
