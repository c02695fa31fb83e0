"""
Retry with exponential backoff

RetryPolicy is pure (attempt -> delay). run_with_retry applies it to an async
operation, retrying only TransientLedgerError.
"""

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Iterator, Optional, TypeVar

from loguru import logger

from .clock import Clock
from .errors import CancelledByShutdown, TransientLedgerError

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded exponential backoff"""
    max_attempts: int = 5
    base_delay: float = 1.0
    multiplier: float = 2.0
    max_delay: float = 30.0

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("delays must be non-negative")

    def delay_for(self, attempt: int) -> float:
        """
        Delay to wait after failed attempt number `attempt` (1-based)

        1s, 2s, 4s, ... capped at max_delay with the defaults.
        """
        return min(self.base_delay * (self.multiplier ** (attempt - 1)), self.max_delay)

    def delays(self) -> Iterator[float]:
        """Delays between consecutive attempts (max_attempts - 1 values)"""
        for attempt in range(1, self.max_attempts):
            yield self.delay_for(attempt)


async def run_with_retry(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    clock: Clock,
    stop_event: Optional[asyncio.Event] = None,
    description: str = "operation"
) -> T:
    """
    Run an async operation, retrying transient ledger failures

    Args:
        operation: Zero-argument coroutine factory
        policy: Backoff parameters
        clock: Clock used for the backoff sleeps
        stop_event: Aborts the backoff when set
        description: Label for log lines

    Returns:
        Result of the first successful call

    Raises:
        PermanentLedgerError: immediately, without retry
        TransientLedgerError: the last one, after max_attempts calls
        CancelledByShutdown: stop requested while backing off
    """
    for attempt in range(1, policy.max_attempts + 1):
        try:
            return await operation()
        except TransientLedgerError as e:
            if attempt >= policy.max_attempts:
                logger.warning(f"✗ {description} failed after {attempt} attempts: {e}")
                raise

            wait_time = policy.delay_for(attempt)
            logger.warning(
                f"Retryable error during {description} "
                f"(attempt {attempt}/{policy.max_attempts}): {str(e)[:200]}"
            )
            logger.debug(f"Waiting {wait_time}s before retry...")
            if await clock.sleep(wait_time, stop_event):
                raise CancelledByShutdown(f"{description} cancelled during backoff") from e

    raise AssertionError("unreachable")
