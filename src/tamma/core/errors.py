"""Exception hierarchy for tamma.

Every module imports from here. Callers handle one taxonomy of stable
codes no matter which vendor sits behind an adapter:

    TammaError
    ├── ProviderError(provider_id, code, retryable, retry_after, severity)
    │   ├── InvalidConfigError
    │   ├── InvalidRequestError
    │   ├── AuthFailedError
    │   ├── RateLimitedError(retry_after)
    │   ├── ContextOverflowError
    │   ├── ProviderTimeoutError
    │   ├── UpstreamError
    │   ├── ContentBlockedError
    │   ├── NotFoundError
    │   ├── NotRegisteredError
    │   ├── NoCapableProviderError
    │   ├── NoMorePagesError
    │   └── DuplicateRegistrationError
    └── ConfigError
"""

from __future__ import annotations

import enum
from typing import Any, ClassVar

from tamma.core.redact import redact_secrets


class ErrorCode(enum.StrEnum):
    """Stable machine-readable error codes."""

    INVALID_CONFIG = "InvalidConfig"
    INVALID_REQUEST = "InvalidRequest"
    AUTH_FAILED = "AuthFailed"
    RATE_LIMITED = "RateLimited"
    CONTEXT_OVERFLOW = "ContextOverflow"
    TIMEOUT = "Timeout"
    UPSTREAM_ERROR = "UpstreamError"
    CONTENT_BLOCKED = "ContentBlocked"
    NOT_FOUND = "NotFound"
    NOT_REGISTERED = "NotRegistered"
    NO_CAPABLE_PROVIDER = "NoCapableProvider"
    NO_MORE_PAGES = "NoMorePages"
    DUPLICATE_REGISTRATION = "DuplicateRegistration"


class Severity(enum.StrEnum):
    """How urgently a human should look at an error."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class TammaError(Exception):
    """Base exception for all tamma errors."""


# ─── Provider Errors ──────────────────────────────────────────


class ProviderError(TammaError):
    """Base for normalized provider and platform errors.

    Subclasses pin ``code``, ``retryable`` and ``severity``. The message
    is passed through secret redaction before it is stored, so ``str(err)``
    is always safe to display.
    """

    code: ClassVar[ErrorCode] = ErrorCode.UPSTREAM_ERROR
    retryable: ClassVar[bool] = False
    severity: ClassVar[Severity] = Severity.MEDIUM

    def __init__(
        self,
        provider_id: str,
        message: str,
        *,
        retry_after: float | None = None,
    ) -> None:
        self.provider_id = provider_id
        self.message = redact_secrets(message)
        self.retry_after = retry_after
        super().__init__(f"[{provider_id}] {self.message}")

    def to_dict(self) -> dict[str, Any]:
        """Display-safe representation (no secrets, no stack details)."""
        return {
            "provider_id": self.provider_id,
            "code": str(self.code),
            "message": self.message,
            "retryable": self.retryable,
            "retry_after": self.retry_after,
            "severity": str(self.severity),
        }


class InvalidConfigError(ProviderError):
    """Missing or malformed adapter configuration."""

    code = ErrorCode.INVALID_CONFIG
    severity = Severity.HIGH


class InvalidRequestError(ProviderError):
    """Request rejected by validation before any network call."""

    code = ErrorCode.INVALID_REQUEST
    severity = Severity.LOW


class AuthFailedError(ProviderError):
    """Invalid, missing or insufficient credentials."""

    code = ErrorCode.AUTH_FAILED
    severity = Severity.HIGH


class RateLimitedError(ProviderError):
    """Rate limit exceeded. Includes retry_after if available."""

    code = ErrorCode.RATE_LIMITED
    retryable = True
    severity = Severity.LOW

    def __init__(
        self,
        provider_id: str,
        retry_after: float | None = None,
        message: str = "Rate limited",
    ) -> None:
        if retry_after is not None:
            message += f" (retry after {retry_after:g}s)"
        super().__init__(provider_id, message, retry_after=retry_after)


class ContextOverflowError(ProviderError):
    """Prompt does not fit the model's context window."""

    code = ErrorCode.CONTEXT_OVERFLOW


class ProviderTimeoutError(ProviderError):
    """Call exceeded its deadline; the connection was released."""

    code = ErrorCode.TIMEOUT
    retryable = True


class UpstreamError(ProviderError):
    """Vendor 5xx, dropped connection, or an unmapped vendor failure."""

    code = ErrorCode.UPSTREAM_ERROR
    retryable = True


class ContentBlockedError(ProviderError):
    """Vendor refused the content on policy grounds."""

    code = ErrorCode.CONTENT_BLOCKED


class NotFoundError(ProviderError):
    """Model, repository or other remote resource does not exist."""

    code = ErrorCode.NOT_FOUND
    severity = Severity.LOW


class NotRegisteredError(ProviderError):
    """No adapter registered under the requested name."""

    code = ErrorCode.NOT_REGISTERED
    severity = Severity.HIGH


class NoCapableProviderError(ProviderError):
    """No registered adapter satisfies the request's requirements."""

    code = ErrorCode.NO_CAPABLE_PROVIDER
    severity = Severity.HIGH


class NoMorePagesError(ProviderError):
    """The previous page was the last one."""

    code = ErrorCode.NO_MORE_PAGES
    severity = Severity.LOW


class DuplicateRegistrationError(ProviderError):
    """An adapter is already registered under this name."""

    code = ErrorCode.DUPLICATE_REGISTRATION
    severity = Severity.HIGH


# ─── Configuration Errors ─────────────────────────────────────


class ConfigError(TammaError):
    """Invalid configuration file or values."""
