"""
Shared retry utility with exponential backoff and jitter.

The Fetcher and the Batch Loader both funnel their retry loops through
``retry_async``. Callers supply a ``classify`` function that converts raw
library exceptions (httpx, SQLAlchemy) into the engine's taxonomy and an
``is_retryable`` predicate deciding what happens next:

- retryable errors are retried after ``policy.backoff(attempt)`` seconds,
  or after the error's ``retry_after`` hint (capped at ``policy.max_delay``)
  when the server sent one;
- non-retryable errors propagate immediately;
- once ``policy.max_retries`` retries have failed (``max_retries + 1``
  attempts in total) ``on_exhausted`` builds the fatal error that is raised.
"""

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from core.exceptions import ETLException, RetryableError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    """Retry ceiling and backoff curve for one call site."""

    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    jitter: float = 0.25

    def backoff(self, attempt: int) -> float:
        """Delay before retry number ``attempt + 1`` (attempt is 0-based)."""
        delay = min(self.max_delay, self.base_delay * (2 ** attempt))
        if self.jitter:
            delay += random.uniform(0, self.jitter)
        return delay


def is_retryable_error(error: BaseException) -> bool:
    return isinstance(error, RetryableError)


async def retry_async(
    operation: Callable[[], Awaitable[Any]],
    *,
    policy: RetryPolicy,
    classify: Callable[[Exception], Exception],
    on_exhausted: Callable[[Exception, int], ETLException],
    is_retryable: Callable[[Exception], bool] = is_retryable_error,
    label: str = "operation",
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> Any:
    """
    Run ``operation`` until it succeeds, fails permanently or exhausts retries.

    Args:
        operation: Zero-argument coroutine factory; called once per attempt
        policy: Retry ceiling and backoff parameters
        classify: Maps a raised exception onto the engine's error taxonomy
        on_exhausted: Builds the fatal error from the last error and attempt count
        is_retryable: Predicate applied to the classified error
        label: Name used in log messages
        sleep: Awaitable sleep, replaceable in tests

    Returns:
        Whatever ``operation`` returns on its first successful attempt.
    """
    attempt = 0

    while True:
        try:
            return await operation()
        except Exception as exc:
            error = classify(exc)

            if not is_retryable(error):
                if error is exc:
                    raise
                raise error from exc

            if attempt >= policy.max_retries:
                logger.error(f"[retry] {label}: giving up after {attempt + 1} attempts: {exc}")
                raise on_exhausted(error, attempt + 1) from exc

            retry_after: Optional[float] = getattr(error, "retry_after", None)
            if retry_after is not None:
                delay = min(retry_after, policy.max_delay)
            else:
                delay = policy.backoff(attempt)
            attempt += 1

            logger.warning(
                f"[retry] {label}: {type(exc).__name__}: {exc}. "
                f"Retry {attempt}/{policy.max_retries} in {delay:.2f}s"
            )
            await sleep(delay)
