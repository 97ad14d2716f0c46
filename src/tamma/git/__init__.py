"""Git platform adapters, unified entities and pagination."""

from tamma.git.base import GitPlatform
from tamma.git.factory import PlatformFactory
from tamma.git.gitea import GiteaPlatform
from tamma.git.github import GitHubPlatform
from tamma.git.gitlab import GitLabPlatform
from tamma.git.models import (
    PLATFORM_SPECIFIC_FIELDS,
    Branch,
    CIState,
    CIStatus,
    Comment,
    Issue,
    IssueState,
    MergeMethod,
    MergeResult,
    PRState,
    PullRequest,
    Repository,
    Webhook,
    WebhookEvent,
)
from tamma.git.pagination import (
    Page,
    PageInfo,
    PageRequest,
    PaginationStrategy,
    RawPage,
    TotalAccuracy,
    next_page_request,
    normalize,
)

__all__ = [
    "PLATFORM_SPECIFIC_FIELDS",
    "Branch",
    "CIState",
    "CIStatus",
    "Comment",
    "GitHubPlatform",
    "GitLabPlatform",
    "GitPlatform",
    "GiteaPlatform",
    "Issue",
    "IssueState",
    "MergeMethod",
    "MergeResult",
    "PRState",
    "Page",
    "PageInfo",
    "PageRequest",
    "PaginationStrategy",
    "PlatformFactory",
    "PullRequest",
    "RawPage",
    "Repository",
    "TotalAccuracy",
    "Webhook",
    "WebhookEvent",
    "next_page_request",
    "normalize",
]
