from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from typing import Final, TypeVar

from .errors import RateLimitError, is_rate_limit_error

log: Final = logging.getLogger("startgg-client")

T = TypeVar("T")

DEFAULT_MAX_RETRIES: Final = 3
DEFAULT_BASE_DELAY: Final = 1.0
DEFAULT_MAX_DELAY: Final = 30.0
JITTER_RATIO: Final = 0.3


def compute_backoff_delay(
    attempt: int,
    base_delay: float = DEFAULT_BASE_DELAY,
    max_delay: float = DEFAULT_MAX_DELAY,
    *,
    rng: Callable[[], float] = random.random,
) -> float:
    """Return the sleep before retry number ``attempt`` (1-based)."""
    exponential = base_delay * (2 ** (attempt - 1))
    jitter = 1 + rng() * JITTER_RATIO
    return min(max_delay, exponential * jitter)


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    *,
    max_retries: int = DEFAULT_MAX_RETRIES,
    base_delay: float = DEFAULT_BASE_DELAY,
    max_delay: float = DEFAULT_MAX_DELAY,
    sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
    rng: Callable[[], float] = random.random,
    description: str = "start.gg request",
) -> T:
    """Run ``operation``, retrying only rate-limited failures.

    Any other exception propagates on the first attempt. Once the retry
    budget is spent the last rate-limit failure is re-raised as
    :class:`RateLimitError`.
    """
    attempt = 0
    while True:
        attempt += 1
        try:
            return await operation()
        except Exception as exc:
            if not is_rate_limit_error(exc):
                raise
            if attempt > max_retries:
                log.error(
                    "%s still rate limited after %d retries: %s",
                    description,
                    max_retries,
                    exc,
                )
                if isinstance(exc, RateLimitError):
                    raise
                raise RateLimitError(
                    f"Rate limit exceeded after {max_retries} retries: {exc}"
                ) from exc
            delay = compute_backoff_delay(attempt, base_delay, max_delay, rng=rng)
            log.warning(
                "%s rate limited (attempt %d/%d), retrying in %.2fs",
                description,
                attempt,
                max_retries + 1,
                delay,
            )
            await sleep(delay)


__all__ = [
    "compute_backoff_delay",
    "with_retry",
    "DEFAULT_MAX_RETRIES",
    "DEFAULT_BASE_DELAY",
    "DEFAULT_MAX_DELAY",
]
