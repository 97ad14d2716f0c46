"""Core errors, redaction, token estimation and shared utilities."""

from tamma.core.errors import (
    AuthFailedError,
    ConfigError,
    ContentBlockedError,
    ContextOverflowError,
    DuplicateRegistrationError,
    ErrorCode,
    InvalidConfigError,
    InvalidRequestError,
    NoCapableProviderError,
    NoMorePagesError,
    NotFoundError,
    NotRegisteredError,
    ProviderError,
    ProviderTimeoutError,
    RateLimitedError,
    Severity,
    TammaError,
    UpstreamError,
)
from tamma.core.retry import RetryConfig, is_retryable, retry_with_backoff

__all__ = [
    "AuthFailedError",
    "ConfigError",
    "ContentBlockedError",
    "ContextOverflowError",
    "DuplicateRegistrationError",
    "ErrorCode",
    "InvalidConfigError",
    "InvalidRequestError",
    "NoCapableProviderError",
    "NoMorePagesError",
    "NotFoundError",
    "NotRegisteredError",
    "ProviderError",
    "ProviderTimeoutError",
    "RateLimitedError",
    "RetryConfig",
    "Severity",
    "TammaError",
    "UpstreamError",
    "is_retryable",
    "retry_with_backoff",
]
