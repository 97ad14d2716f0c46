"""Token-bucket admission control per (provider, credential).

Buckets refill continuously and lazily: every access computes the tokens
earned since the last refill from the injected clock, capped at capacity.
There is no background timer.

Each bucket owns its own lock, held only for the check-and-decrement, so
unrelated providers never contend and no caller can draw a bucket below
zero. Waiting happens outside the lock with ``asyncio.sleep`` for the
exact computed deficit; the limiter never spins.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, NamedTuple

from tamma.core.errors import (
    InvalidConfigError,
    InvalidRequestError,
    RateLimitedError,
)

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)

REQUESTS = "requests"
TOKENS = "tokens"

# Float slack so a sleep of exactly the computed deficit always suffices
_EPSILON = 1e-9


class BucketKey(NamedTuple):
    """Identifies one bucket: provider name, credential fingerprint, dimension."""

    provider: str
    credential: str
    dimension: str = REQUESTS

    def __str__(self) -> str:
        return f"{self.provider}/{self.credential}/{self.dimension}"


@dataclass(frozen=True, slots=True)
class BucketPolicy:
    """Capacity and refill rate (tokens per second) of a bucket."""

    capacity: float
    refill_rate: float

    def __post_init__(self) -> None:
        if self.capacity <= 0:
            msg = f"Bucket capacity must be positive, got {self.capacity}"
            raise InvalidConfigError("ratelimit", msg)
        if self.refill_rate <= 0:
            msg = f"Bucket refill rate must be positive, got {self.refill_rate}"
            raise InvalidConfigError("ratelimit", msg)

    @classmethod
    def per_minute(cls, limit: int) -> BucketPolicy:
        """Burst of ``limit`` refilled evenly over one minute."""
        return cls(capacity=float(limit), refill_rate=limit / 60.0)


class _ClockUnavailable(Exception):
    pass


class TokenBucket:
    """A single token bucket. Only ``RateLimiter`` touches these."""

    __slots__ = ("_clock", "_last_refill", "_lock", "_tokens", "policy")

    def __init__(self, policy: BucketPolicy, clock: Callable[[], float]) -> None:
        self.policy = policy
        self._clock = clock
        self._lock = threading.Lock()
        self._tokens = policy.capacity
        self._last_refill = self._now()

    def _now(self) -> float:
        try:
            return float(self._clock())
        except Exception as e:
            raise _ClockUnavailable(str(e)) from e

    def _refill(self, now: float) -> None:
        elapsed = now - self._last_refill
        if elapsed > 0:
            self._tokens = min(
                self.policy.capacity,
                self._tokens + elapsed * self.policy.refill_rate,
            )
            self._last_refill = now

    def take(self, cost: float) -> float:
        """Take ``cost`` tokens if available.

        Returns 0.0 when granted, otherwise the seconds until enough tokens
        will have accrued. Nothing is taken on a miss.
        """
        with self._lock:
            self._refill(self._now())
            if self._tokens + _EPSILON >= cost:
                self._tokens = max(0.0, self._tokens - cost)
                return 0.0
            return (cost - self._tokens) / self.policy.refill_rate

    def available(self) -> float:
        with self._lock:
            self._refill(self._now())
            return self._tokens


class RateLimiter:
    """Per-key token buckets shared by all concurrent callers.

    Args:
        clock: Monotonic clock in seconds. If it raises, every acquisition
            is denied (fail closed).
        sleep: Coroutine used to wait; injectable for tests.
    """

    def __init__(
        self,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
    ) -> None:
        self._clock = clock
        self._sleep = sleep
        self._buckets: dict[BucketKey, TokenBucket] = {}
        self._policies: dict[BucketKey, BucketPolicy] = {}
        self._lock = threading.Lock()

    def configure(self, key: BucketKey, policy: BucketPolicy) -> None:
        """Pin the policy for ``key``. Takes effect when the bucket is created."""
        with self._lock:
            self._policies[key] = policy

    def _bucket(self, key: BucketKey, policy: BucketPolicy | None) -> TokenBucket:
        bucket = self._buckets.get(key)
        if bucket is not None:
            return bucket
        with self._lock:
            bucket = self._buckets.get(key)
            if bucket is None:
                effective = self._policies.get(key, policy)
                if effective is None:
                    msg = f"No rate-limit policy for bucket {key}"
                    raise InvalidConfigError(key.provider, msg)
                try:
                    bucket = TokenBucket(effective, self._clock)
                except _ClockUnavailable as e:
                    raise _deny(key, e) from e
                self._buckets[key] = bucket
                logger.debug(
                    "Created bucket %s (capacity=%s, refill=%s/s)",
                    key,
                    effective.capacity,
                    effective.refill_rate,
                )
            return bucket

    def capacity(self, key: BucketKey, policy: BucketPolicy) -> float:
        """Capacity ``key`` would enforce for a caller offering ``policy``.

        An existing bucket keeps the policy it was created with, and a
        pinned policy beats the caller's.
        """
        bucket = self._buckets.get(key)
        if bucket is not None:
            return bucket.policy.capacity
        with self._lock:
            return self._policies.get(key, policy).capacity

    @staticmethod
    def _check_cost(key: BucketKey, cost: float, bucket: TokenBucket) -> None:
        if cost <= 0:
            msg = f"Rate-limit cost must be positive, got {cost}"
            raise InvalidRequestError(key.provider, msg)
        if cost > bucket.policy.capacity:
            msg = (
                f"Rate-limit cost {cost} exceeds bucket capacity "
                f"{bucket.policy.capacity}"
            )
            raise InvalidRequestError(key.provider, msg)

    def try_acquire(
        self,
        key: BucketKey,
        cost: float = 1,
        *,
        policy: BucketPolicy | None = None,
    ) -> None:
        """Take ``cost`` tokens now or fail.

        Raises:
            RateLimitedError: With the computed ``retry_after`` when the
                bucket can't cover ``cost``.
            InvalidRequestError: If ``cost`` is not positive or exceeds
                the bucket capacity.
        """
        bucket = self._bucket(key, policy)
        self._check_cost(key, cost, bucket)
        try:
            wait = bucket.take(cost)
        except _ClockUnavailable as e:
            raise _deny(key, e) from e
        if wait > 0:
            raise RateLimitedError(key.provider, retry_after=wait)

    async def acquire(
        self,
        key: BucketKey,
        cost: float = 1,
        *,
        policy: BucketPolicy | None = None,
        max_waits: int | None = None,
    ) -> float:
        """Wait until ``cost`` tokens are available, then take them.

        Args:
            key: Bucket to draw from; created lazily.
            cost: Tokens to take.
            policy: Policy used if the bucket doesn't exist yet and none
                was pinned with ``configure``.
            max_waits: Give up with ``RateLimitedError`` instead of
                sleeping more than this many times. ``None`` = unbounded.

        Returns:
            Total seconds spent waiting.
        """
        bucket = self._bucket(key, policy)
        self._check_cost(key, cost, bucket)

        waited = 0.0
        waits = 0
        while True:
            try:
                wait = bucket.take(cost)
            except _ClockUnavailable as e:
                raise _deny(key, e) from e
            if wait <= 0:
                if waited:
                    logger.debug("Bucket %s granted %s after %.3fs", key, cost, waited)
                return waited
            if max_waits is not None and waits >= max_waits:
                raise RateLimitedError(key.provider, retry_after=wait)
            waits += 1
            await self._sleep(wait)
            waited += wait

    def available(self, key: BucketKey) -> float | None:
        """Tokens currently in the bucket, or None if it doesn't exist yet."""
        bucket = self._buckets.get(key)
        if bucket is None:
            return None
        try:
            return bucket.available()
        except _ClockUnavailable as e:
            raise _deny(key, e) from e


def _deny(key: BucketKey, cause: Exception) -> RateLimitedError:
    logger.error("Rate limiter clock unavailable for %s; denying: %s", key, cause)
    return RateLimitedError(
        key.provider,
        message="Rate limiter clock unavailable; request denied",
    )
