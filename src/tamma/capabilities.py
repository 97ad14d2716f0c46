"""Capability descriptors for providers and platforms.

A ``CapabilityDescriptor`` is an immutable, validated snapshot of what one
AI provider or Git platform supports. Descriptors are checked when they are
built, never discovered ad hoc per call.
"""

from __future__ import annotations

import enum
import re
from dataclasses import dataclass, fields
from typing import TYPE_CHECKING, Any

from tamma.core.errors import InvalidConfigError

if TYPE_CHECKING:
    from collections.abc import Mapping


class CapabilityFlag(enum.StrEnum):
    """Boolean capabilities a provider or platform may have."""

    STREAMING = "supports_streaming"
    TOOLS = "supports_tools"
    MULTIMODAL = "supports_multimodal"
    WEBHOOKS = "supports_webhooks"
    CI = "supports_ci"
    PROMPT_CACHING = "supports_prompt_caching"


_LIMIT_FIELDS = (
    "max_input_tokens",
    "max_output_tokens",
    "requests_per_minute",
    "tokens_per_minute",
)

# Names used by the platform documents that don't follow the field names
_ALIASES: dict[str, str] = {
    "supports_images": "supports_multimodal",
    "supports_function_calling": "supports_tools",
    "supports_ci_integration": "supports_ci",
    "supported_versions": "versions",
}

_CAMEL = re.compile(r"(?<!^)(?=[A-Z])")


def _snake(name: str) -> str:
    snake = _CAMEL.sub("_", name).lower()
    return _ALIASES.get(snake, snake)


def parse_flag(flag: CapabilityFlag | str) -> CapabilityFlag:
    """Resolve an enum member, snake_case or camelCase name to a flag.

    Raises:
        InvalidConfigError: If the name is not a known capability.
    """
    if isinstance(flag, CapabilityFlag):
        return flag
    try:
        return CapabilityFlag(_snake(flag))
    except ValueError:
        msg = f"Unknown capability flag: {flag!r}"
        raise InvalidConfigError("capabilities", msg) from None


@dataclass(frozen=True, slots=True)
class CapabilityDescriptor:
    """What one provider or platform supports.

    Limits are ``None`` when the vendor publishes none.
    """

    supports_streaming: bool = False
    supports_tools: bool = False
    supports_multimodal: bool = False
    supports_webhooks: bool = False
    supports_ci: bool = False
    supports_prompt_caching: bool = False
    max_input_tokens: int | None = None
    max_output_tokens: int | None = None
    requests_per_minute: int | None = None
    tokens_per_minute: int | None = None
    versions: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        for flag in CapabilityFlag:
            if not isinstance(getattr(self, flag.value), bool):
                msg = f"{flag.value} must be a bool"
                raise InvalidConfigError("capabilities", msg)

        for name in _LIMIT_FIELDS:
            value = getattr(self, name)
            if value is None:
                continue
            if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
                msg = f"{name} must be a positive integer, got {value!r}"
                raise InvalidConfigError("capabilities", msg)

        if (
            self.max_input_tokens is not None
            and self.max_output_tokens is not None
            and self.max_output_tokens > self.max_input_tokens
        ):
            msg = "max_output_tokens cannot exceed max_input_tokens"
            raise InvalidConfigError("capabilities", msg)

        # Accept any iterable of versions but always store a tuple
        versions = tuple(self.versions)
        if not all(isinstance(v, str) and v for v in versions):
            msg = "versions must be non-empty strings"
            raise InvalidConfigError("capabilities", msg)
        object.__setattr__(self, "versions", versions)

    def has(self, flag: CapabilityFlag | str) -> bool:
        """True if the capability ``flag`` is set."""
        return bool(getattr(self, parse_flag(flag).value))

    @property
    def flags(self) -> frozenset[CapabilityFlag]:
        """All capability flags that are set."""
        return frozenset(f for f in CapabilityFlag if getattr(self, f.value))

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> CapabilityDescriptor:
        """Build a descriptor from snake_case or camelCase keys.

        Raises:
            InvalidConfigError: On unknown keys or invalid values.
        """
        known = {f.name for f in fields(cls)}
        kwargs: dict[str, Any] = {}
        for key, value in data.items():
            name = _snake(key)
            if name not in known:
                msg = f"Unknown capability field: {key!r}"
                raise InvalidConfigError("capabilities", msg)
            kwargs[name] = tuple(value) if name == "versions" else value
        return cls(**kwargs)

    def to_dict(self) -> dict[str, Any]:
        """Plain dict copy with snake_case keys."""
        return {f.name: getattr(self, f.name) for f in fields(self)}


def snapshot(
    descriptor: CapabilityDescriptor | Mapping[str, Any],
) -> CapabilityDescriptor:
    """Return a private, validated copy of ``descriptor``.

    Callers may keep mutating the mapping they passed in; the snapshot
    never changes.
    """
    if isinstance(descriptor, CapabilityDescriptor):
        return CapabilityDescriptor.from_mapping(descriptor.to_dict())
    return CapabilityDescriptor.from_mapping(descriptor)
