"""Unified Git entity set.

Every platform adapter maps its REST payloads into these records. For the
same logical entity, only the fields in ``PLATFORM_SPECIFIC_FIELDS`` may
differ between platforms; everything else compares equal.
"""

from __future__ import annotations

import dataclasses
import enum
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Mapping

PLATFORM_SPECIFIC_FIELDS = frozenset(
    {"platform", "id", "web_url", "clone_url", "metadata"}
)


class PRState(enum.StrEnum):
    OPEN = "open"
    CLOSED = "closed"
    MERGED = "merged"


class IssueState(enum.StrEnum):
    OPEN = "open"
    CLOSED = "closed"


class CIState(enum.StrEnum):
    """Normalized pipeline / check state."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    FAILURE = "failure"
    CANCELLED = "cancelled"
    UNKNOWN = "unknown"


class MergeMethod(enum.StrEnum):
    MERGE = "merge"
    SQUASH = "squash"
    REBASE = "rebase"


class WebhookEvent(enum.StrEnum):
    """Platform-neutral webhook event names."""

    PUSH = "push"
    TAG = "tag"
    PULL_REQUEST = "pull_request"
    ISSUES = "issues"
    COMMENT = "comment"
    CI = "ci"


def _freeze(entity: Any) -> None:
    object.__setattr__(entity, "metadata", MappingProxyType(dict(entity.metadata)))


@dataclass(frozen=True, slots=True)
class Repository:
    platform: str
    id: str
    owner: str
    name: str
    default_branch: str
    private: bool = False
    description: str = ""
    web_url: str = ""
    clone_url: str = ""
    metadata: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        _freeze(self)

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"


@dataclass(frozen=True, slots=True)
class Branch:
    platform: str
    name: str
    sha: str
    protected: bool = False
    web_url: str = ""
    metadata: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        _freeze(self)


@dataclass(frozen=True, slots=True)
class PullRequest:
    """A pull request, or a GitLab merge request.

    ``number`` is the per-repository number (GitLab ``iid``), ``head`` the
    source branch and ``base`` the target branch.
    """

    platform: str
    id: str
    number: int
    title: str
    state: PRState
    head: str
    base: str
    body: str = ""
    author: str = ""
    draft: bool = False
    web_url: str = ""
    metadata: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        _freeze(self)


@dataclass(frozen=True, slots=True)
class Issue:
    platform: str
    id: str
    number: int
    title: str
    state: IssueState
    body: str = ""
    author: str = ""
    labels: tuple[str, ...] = ()
    web_url: str = ""
    metadata: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "labels", tuple(self.labels))
        _freeze(self)


@dataclass(frozen=True, slots=True)
class Comment:
    platform: str
    id: str
    body: str
    author: str = ""
    web_url: str = ""
    metadata: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        _freeze(self)


@dataclass(frozen=True, slots=True)
class CIStatus:
    """Aggregate CI state for a ref."""

    platform: str
    ref: str
    state: CIState
    id: str = ""
    web_url: str = ""
    metadata: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        _freeze(self)


@dataclass(frozen=True, slots=True)
class Webhook:
    platform: str
    id: str
    url: str
    events: tuple[str, ...] = ()
    active: bool = True
    metadata: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "events", tuple(self.events))
        _freeze(self)


@dataclass(frozen=True, slots=True)
class MergeResult:
    platform: str
    merged: bool
    sha: str | None = None
    message: str = ""
    metadata: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        _freeze(self)


def portable_fields(entity: Any) -> dict[str, Any]:
    """The fields of ``entity`` that must match across platforms."""
    return {
        f.name: getattr(entity, f.name)
        for f in dataclasses.fields(entity)
        if f.name not in PLATFORM_SPECIFIC_FIELDS
    }
