"""HTTP header helpers shared by the transport adapters."""

from __future__ import annotations

import contextlib
import time
from email.utils import parsedate_to_datetime
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Mapping


def parse_retry_after(value: Any, *, now: float | None = None) -> float | None:
    """Parse a ``Retry-After`` value (delta-seconds or HTTP-date).

    Returns seconds to wait, never negative, or None if unparseable.
    """
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    with contextlib.suppress(ValueError):
        return max(0.0, float(text))
    try:
        when = parsedate_to_datetime(text)
    except (TypeError, ValueError):
        return None
    current = time.time() if now is None else now
    return max(0.0, when.timestamp() - current)


def header(headers: Mapping[str, Any] | None, name: str) -> str | None:
    """Case-insensitive header lookup that tolerates plain dicts and None."""
    if not headers:
        return None
    value = headers.get(name)
    if value is None:
        value = headers.get(name.lower())
    if value is None:
        lowered = name.lower()
        for key, candidate in headers.items():
            if isinstance(key, str) and key.lower() == lowered:
                value = candidate
                break
    return None if value is None else str(value)


def retry_after_from_headers(
    headers: Mapping[str, Any] | None,
    *,
    now: float | None = None,
) -> float | None:
    """Retry delay from ``Retry-After``, falling back to reset-epoch headers.

    GitHub reports ``X-RateLimit-Reset`` and GitLab ``RateLimit-Reset`` as
    epoch seconds.
    """
    retry_after = parse_retry_after(header(headers, "retry-after"), now=now)
    if retry_after is not None:
        return retry_after
    for name in ("x-ratelimit-reset", "ratelimit-reset"):
        raw = header(headers, name)
        if raw is None:
            continue
        with contextlib.suppress(ValueError):
            reset = float(raw)
            current = time.time() if now is None else now
            return max(0.0, reset - current)
    return None
