"""Tests for the caller-side retry helper."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from tamma.core.errors import (
    AuthFailedError,
    ContextOverflowError,
    ProviderTimeoutError,
    RateLimitedError,
    UpstreamError,
)
from tamma.core.retry import (
    RetryConfig,
    backoff_delay,
    is_retryable,
    retry_with_backoff,
)


@pytest.fixture
def sleep() -> AsyncMock:
    return AsyncMock()


class TestIsRetryable:
    @pytest.mark.parametrize(
        "error",
        [
            RateLimitedError("test"),
            ProviderTimeoutError("test", "timeout"),
            UpstreamError("test", "502"),
        ],
    )
    def test_transient_errors(self, error):
        assert is_retryable(error) is True

    @pytest.mark.parametrize(
        "error",
        [
            AuthFailedError("test", "bad key"),
            ContextOverflowError("test", "too long"),
            ValueError("oops"),
        ],
    )
    def test_permanent_errors(self, error):
        assert is_retryable(error) is False


class TestBackoffDelay:
    def test_exponential_then_capped(self):
        cfg = RetryConfig(base_delay=10.0, max_delay=15.0, jitter=False)
        err = ProviderTimeoutError("test", "timeout")
        assert [backoff_delay(i, cfg, err) for i in range(3)] == [10.0, 15.0, 15.0]

    def test_multiplier(self):
        cfg = RetryConfig(base_delay=1.0, multiplier=3.0, jitter=False)
        err = UpstreamError("test", "502")
        assert backoff_delay(2, cfg, err) == 9.0

    def test_retry_after_wins(self):
        cfg = RetryConfig(base_delay=1.0, jitter=False)
        err = RateLimitedError("test", retry_after=30.0)
        assert backoff_delay(0, cfg, err) == 30.0
        assert backoff_delay(5, cfg, err) == 30.0

    def test_retry_after_capped_by_max_delay(self):
        cfg = RetryConfig(max_delay=10.0, jitter=False)
        err = RateLimitedError("test", retry_after=30.0)
        assert backoff_delay(0, cfg, err) == 10.0

    def test_jitter(self):
        cfg = RetryConfig(base_delay=10.0, jitter=True)
        err = UpstreamError("test", "502")
        with patch("tamma.core.retry.random.uniform", return_value=0.8):
            assert backoff_delay(0, cfg, err) == pytest.approx(8.0)


class TestRetryWithBackoff:
    async def test_succeeds_on_first_try(self, sleep):
        fn = AsyncMock(return_value="ok")
        assert await retry_with_backoff(fn, sleep=sleep) == "ok"
        assert fn.call_count == 1
        sleep.assert_not_awaited()

    async def test_retries_transient_error(self, sleep):
        fn = AsyncMock(side_effect=[UpstreamError("test", "reset"), "ok"])
        assert await retry_with_backoff(fn, sleep=sleep) == "ok"
        assert fn.call_count == 2

    async def test_fails_fast_on_auth_error(self, sleep):
        fn = AsyncMock(side_effect=AuthFailedError("test", "bad key"))
        with pytest.raises(AuthFailedError):
            await retry_with_backoff(fn, sleep=sleep)
        assert fn.call_count == 1

    async def test_foreign_errors_propagate(self, sleep):
        fn = AsyncMock(side_effect=KeyError("choices"))
        with pytest.raises(KeyError):
            await retry_with_backoff(fn, sleep=sleep)
        sleep.assert_not_awaited()

    async def test_exhausts_retries_then_raises(self, sleep):
        cfg = RetryConfig(max_retries=2, jitter=False)
        fn = AsyncMock(side_effect=RateLimitedError("test"))
        with pytest.raises(RateLimitedError):
            await retry_with_backoff(fn, config=cfg, sleep=sleep)
        assert fn.call_count == 3
        assert [c.args[0] for c in sleep.await_args_list] == [1.0, 2.0]

    async def test_on_retry_callback(self, sleep):
        cfg = RetryConfig(max_retries=2, jitter=False)
        fn = AsyncMock(
            side_effect=[
                RateLimitedError("test", retry_after=42.0),
                ProviderTimeoutError("test", "t"),
                "ok",
            ],
        )
        callback = MagicMock()
        result = await retry_with_backoff(
            fn, config=cfg, on_retry=callback, sleep=sleep
        )
        assert result == "ok"
        assert [c.args[:2] for c in callback.call_args_list] == [(1, 42.0), (2, 2.0)]
        assert [c.args[0] for c in sleep.await_args_list] == [42.0, 2.0]

    async def test_zero_retries_tries_once(self, sleep):
        fn = AsyncMock(side_effect=RateLimitedError("test"))
        with pytest.raises(RateLimitedError):
            await retry_with_backoff(fn, config=RetryConfig(max_retries=0), sleep=sleep)
        assert fn.call_count == 1
