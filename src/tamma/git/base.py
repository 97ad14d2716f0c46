"""Git platform adapter interface.

Every adapter addresses repositories by ``(owner, repo)``; platforms that
key projects differently (GitLab's URL-encoded path) translate internally.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from tamma.capabilities import CapabilityDescriptor
    from tamma.config.schema import PlatformConfig
    from tamma.git.models import (
        Branch,
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
    from tamma.git.pagination import Page, PageRequest


@runtime_checkable
class GitPlatform(Protocol):
    """Protocol that all Git platform adapters must satisfy.

    Failures surface as ``tamma.core.errors.ProviderError`` subclasses.
    """

    @property
    def platform_id(self) -> str: ...

    @property
    def credential_id(self) -> str: ...

    async def initialize(self, config: PlatformConfig) -> None: ...

    def get_capabilities(self) -> CapabilityDescriptor: ...

    async def dispose(self) -> None: ...

    # ── Repositories & branches ──────────────────────────────────

    async def get_repository(self, owner: str, repo: str) -> Repository: ...

    async def create_branch(
        self, owner: str, repo: str, name: str, from_ref: str
    ) -> Branch: ...

    async def get_branch(self, owner: str, repo: str, name: str) -> Branch: ...

    async def delete_branch(self, owner: str, repo: str, name: str) -> None: ...

    # ── Pull requests ────────────────────────────────────────────

    async def create_pr(
        self,
        owner: str,
        repo: str,
        *,
        title: str,
        head: str,
        base: str,
        body: str = "",
        draft: bool = False,
    ) -> PullRequest: ...

    async def get_pr(self, owner: str, repo: str, number: int) -> PullRequest: ...

    async def list_prs(
        self,
        owner: str,
        repo: str,
        *,
        state: PRState | None = None,
        page: PageRequest | None = None,
    ) -> Page[PullRequest]: ...

    async def merge_pr(
        self,
        owner: str,
        repo: str,
        number: int,
        *,
        method: MergeMethod = ...,
        commit_message: str | None = None,
    ) -> MergeResult: ...

    async def comment_on_pr(
        self, owner: str, repo: str, number: int, body: str
    ) -> Comment: ...

    # ── Issues ───────────────────────────────────────────────────

    async def get_issue(self, owner: str, repo: str, number: int) -> Issue: ...

    async def list_issues(
        self,
        owner: str,
        repo: str,
        *,
        state: IssueState | None = None,
        labels: Sequence[str] = (),
        page: PageRequest | None = None,
    ) -> Page[Issue]: ...

    async def create_issue(
        self,
        owner: str,
        repo: str,
        *,
        title: str,
        body: str = "",
        labels: Sequence[str] = (),
    ) -> Issue: ...

    async def comment_on_issue(
        self, owner: str, repo: str, number: int, body: str
    ) -> Comment: ...

    # ── CI ───────────────────────────────────────────────────────

    async def trigger_ci(
        self,
        owner: str,
        repo: str,
        *,
        ref: str,
        workflow: str | None = None,
        inputs: Mapping[str, str] | None = None,
    ) -> CIStatus: ...

    async def get_ci_status(self, owner: str, repo: str, ref: str) -> CIStatus: ...

    # ── Webhooks ─────────────────────────────────────────────────

    async def create_webhook(
        self,
        owner: str,
        repo: str,
        *,
        url: str,
        events: Sequence[WebhookEvent | str],
        secret: str | None = None,
    ) -> Webhook: ...

    async def list_webhooks(self, owner: str, repo: str) -> list[Webhook]: ...

    async def delete_webhook(self, owner: str, repo: str, hook_id: str) -> None: ...
