"""
Retry with bounded exponential backoff.

Wraps any awaitable-producing operation. The executor only times and
delegates; it knows nothing about what it wraps. Callers that have
failures retrying cannot fix pass a `retry_on` predicate. On exhaustion
the last failure is re-raised as-is so callers can tell what went wrong.
"""

import asyncio
from typing import Awaitable, Callable, Optional, TypeVar

from .logging_config import get_logger
from .types import RetryOptions

T = TypeVar("T")

RetryPredicate = Callable[[Exception], bool]


def retry_all(error: Exception) -> bool:
    return True


def compute_delay(options: RetryOptions, attempt: int) -> float:
    """Delay in seconds before retry number `attempt` (1-based)"""
    if attempt < 1:
        raise ValueError(f"attempt must be >= 1, got {attempt}")
    return min(
        options.base_delay * options.backoff_multiplier ** (attempt - 1),
        options.max_delay,
    )


class RetryExecutor:
    """Runs an operation up to max_retries + 1 times"""

    def __init__(
        self,
        options: RetryOptions,
        component: str = "Retry",
        retry_on: Optional[RetryPredicate] = None
    ):
        self.options = options
        self.component = component
        self.retry_on = retry_on or retry_all
        self.logger = get_logger(component)

    async def run(self, operation: Callable[[], Awaitable[T]]) -> T:
        total_attempts = self.options.max_retries + 1

        for attempt in range(1, total_attempts + 1):
            try:
                return await operation()
            except Exception as e:
                if not self.retry_on(e):
                    raise

                if attempt == total_attempts:
                    self.logger.error(
                        f"All {total_attempts} attempts failed",
                        context={"error": str(e), "attempts": total_attempts},
                    )
                    raise

                delay = compute_delay(self.options, attempt)
                self.logger.warning(
                    f"Attempt {attempt} failed, retrying in {delay:.3f}s",
                    context={
                        "error": str(e),
                        "attempt": attempt,
                        "next_delay_seconds": delay,
                    },
                )
                await asyncio.sleep(delay)


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    options: RetryOptions,
    component: Optional[str] = None,
    retry_on: Optional[RetryPredicate] = None,
) -> T:
    """Run `operation` through a one-off RetryExecutor"""
    return await RetryExecutor(options, component or "Retry", retry_on).run(operation)
