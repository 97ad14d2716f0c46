"""Secret redaction and credential fingerprints."""

from __future__ import annotations

import hashlib
import re

REDACTED = "[REDACTED]"

_PATTERNS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"sk-(?:ant-|proj-|or-)?[A-Za-z0-9_\-]{8,}"), REDACTED),
    (re.compile(r"AIza[0-9A-Za-z_\-]{20,}"), REDACTED),
    (re.compile(r"gh[pousr]_[A-Za-z0-9]{20,}"), REDACTED),
    (re.compile(r"github_pat_[A-Za-z0-9_]{20,}"), REDACTED),
    (re.compile(r"glpat-[A-Za-z0-9_\-]{20,}"), REDACTED),
    (re.compile(r"(?i)\b(bearer)(\s+)[A-Za-z0-9._\-]{8,}"), rf"\1\2{REDACTED}"),
    (
        re.compile(r"(?i)\b(api[_-]?key|private[_-]token|access_token)(=)[^&\s]+"),
        rf"\1\2{REDACTED}",
    ),
)


def redact_secrets(text: str) -> str:
    """Replace anything that looks like a credential with a marker."""
    for pattern, replacement in _PATTERNS:
        text = pattern.sub(replacement, text)
    return text


def credential_fingerprint(secret: str | None) -> str:
    """Stable, non-reversible identifier for a credential.

    Used as the rate-limit bucket key and in log lines; the secret itself
    never leaves the adapter.
    """
    if not secret:
        return "anonymous"
    return hashlib.sha256(secret.encode()).hexdigest()[:12]
