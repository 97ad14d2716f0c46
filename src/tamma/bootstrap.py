"""Build ready-to-use dispatchers from a ``TammaConfig``.

Enabled entries with a credential are created through the factories,
initialized and registered. Entries without a credential are skipped.
Rate-limit overrides in config replace the published limits on the
descriptor and pin the matching bucket policies on the limiter.
"""

from __future__ import annotations

import dataclasses
import logging
from typing import TYPE_CHECKING

from tamma.dispatch.ai import AIDispatcher
from tamma.dispatch.git import GitDispatcher
from tamma.git.factory import PlatformFactory
from tamma.providers.factory import ProviderFactory
from tamma.ratelimit import REQUESTS, TOKENS, BucketKey, BucketPolicy, RateLimiter
from tamma.registry import CapabilityRegistry

if TYPE_CHECKING:
    from tamma.capabilities import CapabilityDescriptor
    from tamma.config.schema import RateLimitConfig, TammaConfig
    from tamma.dispatch.calls import CallObserver
    from tamma.git.base import GitPlatform
    from tamma.providers.base import AIProvider

logger = logging.getLogger(__name__)


def apply_rate_limit(
    name: str,
    credential: str,
    descriptor: CapabilityDescriptor,
    override: RateLimitConfig | None,
    limiter: RateLimiter,
) -> CapabilityDescriptor:
    """Return ``descriptor`` with configured limits applied.

    Overridden limits are also pinned on ``limiter`` so they survive a
    later descriptor refresh.
    """
    if override is None:
        return descriptor
    changes: dict[str, int] = {}
    if override.requests_per_minute is not None:
        changes["requests_per_minute"] = override.requests_per_minute
        limiter.configure(
            BucketKey(name, credential, REQUESTS),
            BucketPolicy.per_minute(override.requests_per_minute),
        )
    if override.tokens_per_minute is not None:
        changes["tokens_per_minute"] = override.tokens_per_minute
        limiter.configure(
            BucketKey(name, credential, TOKENS),
            BucketPolicy.per_minute(override.tokens_per_minute),
        )
    return dataclasses.replace(descriptor, **changes)


async def build_ai_dispatcher(
    config: TammaConfig,
    *,
    limiter: RateLimiter | None = None,
    factory: ProviderFactory | None = None,
    observer: CallObserver | None = None,
) -> AIDispatcher:
    """Create, initialize and register every configured AI provider.

    Raises:
        InvalidConfigError: An entry has a credential but its type is
            unknown or the adapter rejects its config.
    """
    limiter = limiter or RateLimiter()
    factory = factory or ProviderFactory()
    registry: CapabilityRegistry[AIProvider] = CapabilityRegistry("provider")

    for name, entry in config.providers.items():
        if not entry.enabled:
            continue
        if not entry.api_key:
            logger.info("Skipping provider %s: no credential configured", name)
            continue
        provider = await factory.create_provider(entry.type or name, entry)
        descriptor = apply_rate_limit(
            name,
            provider.credential_id,
            provider.get_capabilities(),
            entry.rate_limit,
            limiter,
        )
        registry.register(name, provider, descriptor)

    return AIDispatcher(
        registry,
        limiter,
        max_rate_limit_waits=config.dispatch.max_rate_limit_waits,
        default_timeout=config.dispatch.default_timeout,
        observer=observer,
    )


async def build_git_dispatcher(
    config: TammaConfig,
    *,
    limiter: RateLimiter | None = None,
    factory: PlatformFactory | None = None,
    observer: CallObserver | None = None,
) -> GitDispatcher:
    """Create, initialize and register every configured Git platform."""
    limiter = limiter or RateLimiter()
    factory = factory or PlatformFactory()
    registry: CapabilityRegistry[GitPlatform] = CapabilityRegistry("platform")

    for name, entry in config.platforms.items():
        if not entry.enabled:
            continue
        if not entry.api_key:
            logger.info("Skipping platform %s: no credential configured", name)
            continue
        platform = await factory.create_platform(entry.type or name, entry)
        descriptor = apply_rate_limit(
            name,
            platform.credential_id,
            platform.get_capabilities(),
            entry.rate_limit,
            limiter,
        )
        registry.register(name, platform, descriptor)

    return GitDispatcher(
        registry,
        limiter,
        default_platform=config.dispatch.default_platform,
        max_rate_limit_waits=config.dispatch.max_rate_limit_waits,
        default_timeout=config.dispatch.default_timeout,
        observer=observer,
    )
