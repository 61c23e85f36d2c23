"""Retry utilities with pluggable delay strategies."""

import asyncio
import random
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar('T')

# Maps a 1-based attempt number to the delay (seconds) before the next attempt
DelayStrategy = Callable[[int], float]


def fixed_delay(seconds: float) -> DelayStrategy:
    """Same delay after every failed attempt."""
    def _delay(attempt: int) -> float:
        return seconds
    return _delay


def exponential_delay(
    initial_delay: float = 1.0,
    backoff_factor: float = 2.0,
    max_delay: float = 60.0,
    jitter: bool = True
) -> DelayStrategy:
    """
    Exponentially growing delay, optionally with ±25% jitter.

    Jitter spreads retries of many concurrent items so they do not hit the
    upstream at the same instant.
    """
    def _delay(attempt: int) -> float:
        delay = initial_delay * (backoff_factor ** (attempt - 1))
        if jitter:
            jitter_range = delay * 0.25
            delay += random.uniform(-jitter_range, jitter_range)
        return max(0.0, min(delay, max_delay))
    return _delay


@dataclass
class RetryPolicy:
    """Number of attempts plus the strategy deciding the wait between them."""
    attempts: int = 3
    delay_strategy: DelayStrategy = field(default_factory=lambda: fixed_delay(5.0))

    @classmethod
    def from_config(cls, sync_config) -> 'RetryPolicy':
        """Build a policy from the sync section of the settings."""
        delay_seconds = sync_config.retry_delay_ms / 1000.0
        if sync_config.retry_strategy == 'exponential':
            strategy = exponential_delay(initial_delay=delay_seconds, max_delay=delay_seconds * 8)
        else:
            strategy = fixed_delay(delay_seconds)
        return cls(attempts=sync_config.retry_attempts, delay_strategy=strategy)


async def retry_async(
    func: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    on_retry: Optional[Callable[[int, Exception], None]] = None,
    exceptions: tuple = (Exception,)
) -> T:
    """
    Await ``func`` until it succeeds or the policy's attempts are exhausted.

    Args:
        func: Zero-argument coroutine function to execute
        policy: Attempt count and delay strategy
        on_retry: Called with (attempt, error) after each failed attempt
        exceptions: Tuple of exceptions to catch and retry on

    Returns:
        Result of the function call

    Raises:
        The last exception encountered if all attempts fail
    """
    attempts = max(1, policy.attempts)

    for attempt in range(1, attempts + 1):
        try:
            return await func()
        except exceptions as e:
            if on_retry:
                on_retry(attempt, e)

            if attempt == attempts:
                logger.error(f"Function failed after {attempts} attempts: {e}")
                raise

            delay = policy.delay_strategy(attempt)
            if not on_retry:
                logger.warning(
                    f"Attempt {attempt}/{attempts} failed: {e}. "
                    f"Retrying in {delay:.2f} seconds..."
                )
            await asyncio.sleep(delay)

    raise RuntimeError("retry_async exhausted without an attempt")
