"""
Backoff / retry policy.

compute_delay() is a pure function of the attempt number and config;
with_retry() wraps an async operation and sleeps between retryable failures.
The first attempt never sleeps.
"""

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

from . import config
from .errors import is_transient

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class BackoffConfig:
    initial_delay: float = config.BACKOFF_INITIAL_DELAY
    multiplier: float = config.BACKOFF_MULTIPLIER
    max_delay: float = config.BACKOFF_MAX_DELAY
    jitter: float = config.BACKOFF_JITTER

    def __post_init__(self):
        if self.initial_delay < 0 or self.max_delay < 0:
            raise ValueError("Backoff delays must be non-negative")
        if self.multiplier < 1:
            raise ValueError("Backoff multiplier must be >= 1")
        if not 0 <= self.jitter <= 1:
            raise ValueError("Backoff jitter must be a fraction between 0 and 1")


def compute_delay(attempt: int, backoff: BackoffConfig, rng: Optional[random.Random] = None) -> float:
    """Delay before retry number `attempt` (0-based).

    min(initial_delay * multiplier ** attempt, max_delay), perturbed by up to
    +/- jitter of itself.
    """
    if attempt < 0:
        raise ValueError("attempt must be >= 0")
    # Cap the exponent's effect before it overflows on large attempt counts
    try:
        raw = backoff.initial_delay * (backoff.multiplier ** attempt)
    except OverflowError:
        raw = backoff.max_delay
    delay = min(raw, backoff.max_delay)

    if backoff.jitter:
        rng = rng or random
        delay *= 1 + rng.uniform(-backoff.jitter, backoff.jitter)

    return max(delay, 0.0)


def delay_schedule(retries: int, backoff: BackoffConfig) -> list[float]:
    """The delays a caller would sleep through for `retries` retries."""
    return [compute_delay(attempt, backoff) for attempt in range(retries)]


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    is_retryable: Callable[[BaseException], bool] = is_transient,
    retry_count: int = config.RETRY_COUNT,
    backoff: Optional[BackoffConfig] = None,
    *,
    label: str = "operation",
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Run `operation`, retrying up to `retry_count` extra times on retryable failures.

    Non-retryable failures propagate immediately. When retries are exhausted
    the last failure propagates unchanged.
    """
    backoff = backoff or BackoffConfig()
    attempt = 0
    while True:
        try:
            return await operation()
        except Exception as e:
            if attempt >= retry_count or not is_retryable(e):
                if attempt:
                    logger.error(f"[retry] {label} failed after {attempt + 1} attempts: {e}")
                raise
            delay = compute_delay(attempt, backoff)
            logger.warning(
                f"[retry] {label} failed (attempt {attempt + 1}/{retry_count + 1}): {e}. "
                f"Retrying in {delay:.2f}s"
            )
            await sleep(delay)
            attempt += 1
