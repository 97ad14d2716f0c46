"""Configuration loading and validation."""

from tamma.config.loader import load_config
from tamma.config.schema import (
    DispatchConfig,
    LoggingConfig,
    PlatformConfig,
    ProviderConfig,
    RateLimitConfig,
    TammaConfig,
)

__all__ = [
    "DispatchConfig",
    "LoggingConfig",
    "PlatformConfig",
    "ProviderConfig",
    "RateLimitConfig",
    "TammaConfig",
    "load_config",
]
