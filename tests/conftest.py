"""Shared test fixtures for tamma."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import pytest

from tamma.models import (
    Message,
    MessageRequest,
    ModelCapability,
    ModelInfo,
    TokenUsage,
)
from tamma.ratelimit import RateLimiter
from tamma.registry import CapabilityRegistry

if TYPE_CHECKING:
    from tests.fixtures.platforms import FakePlatform as FakePlatformType
    from tests.fixtures.providers import FakeProvider as FakeProviderType


class FakeClock:
    """Manually advanced monotonic clock with a matching sleep."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def limiter(clock: FakeClock) -> RateLimiter:
    """Rate limiter driven by the fake clock; waits never really sleep."""
    return RateLimiter(clock=clock, sleep=clock.sleep)


@pytest.fixture
def provider_registry() -> CapabilityRegistry[Any]:
    return CapabilityRegistry("provider")


@pytest.fixture
def platform_registry() -> CapabilityRegistry[Any]:
    return CapabilityRegistry("platform")


@pytest.fixture
def make_request() -> Any:
    """Factory fixture for a one-message MessageRequest."""

    def _make(prompt: str = "Hello", **overrides: Any) -> MessageRequest:
        return MessageRequest(
            messages=(Message(role="user", content=prompt),), **overrides
        )

    return _make


@pytest.fixture
def make_model_info() -> Any:
    """Factory fixture for ModelInfo with sensible defaults."""

    def _make(**overrides: Any) -> ModelInfo:
        defaults: dict[str, Any] = {
            "provider_id": "test",
            "model_id": "test-model",
            "display_name": "Test Model",
            "capabilities": ModelCapability.TEXT | ModelCapability.STREAMING,
            "context_window": 128_000,
            "max_output_tokens": 4096,
            "input_cost_per_mtok": 3.0,
            "output_cost_per_mtok": 15.0,
        }
        defaults.update(overrides)
        return ModelInfo(**defaults)

    return _make


@pytest.fixture
def make_usage() -> Any:
    """Factory fixture for TokenUsage with sensible defaults."""

    def _make(**overrides: Any) -> TokenUsage:
        defaults: dict[str, Any] = {"input_tokens": 100, "output_tokens": 50}
        defaults.update(overrides)
        return TokenUsage(**defaults)

    return _make


@pytest.fixture
def fake_provider() -> FakeProviderType:
    from tests.fixtures.providers import FakeProvider

    return FakeProvider()


@pytest.fixture
def fake_platform() -> FakePlatformType:
    from tests.fixtures.platforms import FakePlatform

    return FakePlatform()
