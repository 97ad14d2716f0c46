"""Opt-in retry for callers of the dispatch façades.

Dispatchers never retry on their own beyond the bounded rate-limit wait.
``retry_with_backoff`` retries a call while it keeps failing with a
``ProviderError`` marked ``retryable``, sleeping for the vendor's
``retry_after`` when one was given and an exponential backoff otherwise.
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import TYPE_CHECKING, TypeVar

from tamma.core.errors import ProviderError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class RetryConfig:
    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 60.0
    multiplier: float = 2.0
    jitter: bool = True


def is_retryable(error: BaseException) -> bool:
    return isinstance(error, ProviderError) and error.retryable


def backoff_delay(attempt: int, config: RetryConfig, error: ProviderError) -> float:
    """Seconds to sleep before retry number ``attempt + 1``."""
    if error.retry_after is not None:
        return min(float(error.retry_after), config.max_delay)
    delay = min(config.base_delay * config.multiplier**attempt, config.max_delay)
    if config.jitter:
        delay *= random.uniform(0.5, 1.5)
    return delay


async def retry_with_backoff(
    fn: Callable[[], Awaitable[T]],
    config: RetryConfig | None = None,
    on_retry: Callable[[int, float, ProviderError], None] | None = None,
    *,
    sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
) -> T:
    """Await ``fn()`` until it succeeds or retries run out.

    Args:
        fn: Zero-arg callable returning a fresh awaitable per attempt.
        config: Defaults to ``RetryConfig()``.
        on_retry: Called as ``(retry_number, delay, error)`` before each
            sleep.
        sleep: Awaited between attempts.

    Raises:
        The last error once ``max_retries`` is spent; non-retryable
        errors immediately.
    """
    cfg = config or RetryConfig()
    attempt = 0
    while True:
        try:
            return await fn()
        except ProviderError as e:
            if not e.retryable or attempt >= cfg.max_retries:
                raise
            delay = backoff_delay(attempt, cfg, e)
            logger.info(
                "Retrying after %s from %s in %.2fs (%d/%d)",
                e.code,
                e.provider_id,
                delay,
                attempt + 1,
                cfg.max_retries,
            )
            if on_retry is not None:
                on_retry(attempt + 1, delay, e)
        attempt += 1
        await sleep(delay)
