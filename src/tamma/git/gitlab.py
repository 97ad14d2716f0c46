"""GitLab REST API (v4) adapter.

GitLab keys projects by numeric id or URL-encoded path; callers still pass
``(owner, repo)`` and the adapter encodes ``owner/repo`` itself. Merge
requests are normalized to pull requests (``iid`` is the number).
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any
from urllib.parse import quote

import httpx

from tamma.capabilities import CapabilityDescriptor
from tamma.core.errors import InvalidConfigError, InvalidRequestError
from tamma.core.redact import credential_fingerprint
from tamma.git.models import (
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
from tamma.git.pagination import PageRequest, PaginationStrategy, RawPage, normalize
from tamma.git.transport import RestTransport, build_client

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from tamma.config.schema import PlatformConfig
    from tamma.git.pagination import Page

logger = logging.getLogger(__name__)

PLATFORM_ID = "gitlab"
DEFAULT_BASE_URL = "https://gitlab.com/api/v4"
DRAFT_PREFIX = "Draft: "

CAPABILITIES = CapabilityDescriptor(
    supports_webhooks=True,
    supports_ci=True,
    requests_per_minute=2000,
    versions=("v4",),
)

_EVENTS: dict[WebhookEvent, str] = {
    WebhookEvent.PUSH: "push_events",
    WebhookEvent.TAG: "tag_push_events",
    WebhookEvent.PULL_REQUEST: "merge_requests_events",
    WebhookEvent.ISSUES: "issues_events",
    WebhookEvent.COMMENT: "note_events",
    WebhookEvent.CI: "pipeline_events",
}

_MR_STATES: dict[str, PRState] = {
    "opened": PRState.OPEN,
    "closed": PRState.CLOSED,
    "locked": PRState.CLOSED,
    "merged": PRState.MERGED,
}
_MR_STATE_FILTERS: dict[PRState, str] = {
    PRState.OPEN: "opened",
    PRState.CLOSED: "closed",
    PRState.MERGED: "merged",
}

_PIPELINE_STATES: dict[str, CIState] = {
    "created": CIState.PENDING,
    "waiting_for_resource": CIState.PENDING,
    "preparing": CIState.PENDING,
    "pending": CIState.PENDING,
    "scheduled": CIState.PENDING,
    "manual": CIState.PENDING,
    "running": CIState.RUNNING,
    "success": CIState.SUCCESS,
    "failed": CIState.FAILURE,
    "canceled": CIState.CANCELLED,
    "canceling": CIState.CANCELLED,
}


def project_path(owner: str, repo: str) -> str:
    """URL-encoded ``owner/repo`` as GitLab expects in ``/projects/:id``."""
    return quote(f"{owner}/{repo}", safe="")


def _project(owner: str, repo: str) -> str:
    return f"/projects/{project_path(owner, repo)}"


def _username(user: Any) -> str:
    return user.get("username", "") if isinstance(user, dict) else ""


def _repository(data: dict[str, Any]) -> Repository:
    namespace = data.get("namespace") or {}
    return Repository(
        platform=PLATFORM_ID,
        id=str(data["id"]),
        owner=namespace.get("full_path") or namespace.get("path", ""),
        name=data["path"],
        default_branch=data.get("default_branch") or "main",
        private=data.get("visibility", "private") != "public",
        description=data.get("description") or "",
        web_url=data.get("web_url", ""),
        clone_url=data.get("http_url_to_repo", ""),
        metadata={
            "path_with_namespace": data.get("path_with_namespace"),
            "visibility": data.get("visibility"),
        },
    )


def _branch(data: dict[str, Any]) -> Branch:
    return Branch(
        platform=PLATFORM_ID,
        name=data["name"],
        sha=data["commit"]["id"],
        protected=bool(data.get("protected", False)),
        web_url=data.get("web_url", ""),
    )


def _pull_request(data: dict[str, Any]) -> PullRequest:
    draft = bool(data.get("draft", data.get("work_in_progress", False)))
    title = data.get("title", "")
    if draft and title.startswith(DRAFT_PREFIX):
        title = title[len(DRAFT_PREFIX) :]
    return PullRequest(
        platform=PLATFORM_ID,
        id=str(data["id"]),
        number=data["iid"],
        title=title,
        state=_MR_STATES.get(data.get("state", ""), PRState.OPEN),
        head=data["source_branch"],
        base=data["target_branch"],
        body=data.get("description") or "",
        author=_username(data.get("author")),
        draft=draft,
        web_url=data.get("web_url", ""),
        metadata={
            "project_id": data.get("project_id"),
            "sha": data.get("sha"),
            "merge_commit_sha": data.get("merge_commit_sha"),
            "merge_status": data.get("merge_status"),
        },
    )


def _issue(data: dict[str, Any]) -> Issue:
    return Issue(
        platform=PLATFORM_ID,
        id=str(data["id"]),
        number=data["iid"],
        title=data.get("title", ""),
        state=IssueState.CLOSED if data.get("state") == "closed" else IssueState.OPEN,
        body=data.get("description") or "",
        author=_username(data.get("author")),
        labels=tuple(data.get("labels", [])),
        web_url=data.get("web_url", ""),
        metadata={"project_id": data.get("project_id")},
    )


def _comment(data: dict[str, Any]) -> Comment:
    return Comment(
        platform=PLATFORM_ID,
        id=str(data["id"]),
        body=data.get("body") or "",
        author=_username(data.get("author")),
        metadata={"noteable_type": data.get("noteable_type")},
    )


def _pipeline_status(ref: str, data: dict[str, Any]) -> CIStatus:
    status = data.get("status", "")
    return CIStatus(
        platform=PLATFORM_ID,
        ref=data.get("ref") or ref,
        state=_PIPELINE_STATES.get(status, CIState.UNKNOWN),
        id=str(data.get("id", "")),
        web_url=data.get("web_url", ""),
        metadata={"status": status, "sha": data.get("sha")},
    )


def _webhook(data: dict[str, Any]) -> Webhook:
    return Webhook(
        platform=PLATFORM_ID,
        id=str(data["id"]),
        url=data.get("url", ""),
        events=tuple(str(event) for event, flag in _EVENTS.items() if data.get(flag)),
        # GitLab has no enabled flag; disabled hooks carry disabled_until
        active=not data.get("disabled_until"),
    )


class GitLabPlatform:
    """Adapter for gitlab.com and self-managed GitLab."""

    def __init__(
        self,
        token: str | None = None,
        *,
        client: httpx.AsyncClient | None = None,
        base_url: str = DEFAULT_BASE_URL,
        capabilities: CapabilityDescriptor = CAPABILITIES,
    ) -> None:
        self._token = token
        self._base_url = base_url
        self._capabilities = capabilities
        self._http: RestTransport | None = None
        if client is not None:
            self._http = RestTransport(PLATFORM_ID, client)
        elif token is not None:
            client = self._build_client(token, base_url, 30.0)
            self._http = RestTransport(PLATFORM_ID, client)

    @staticmethod
    def _build_client(token: str, base_url: str, timeout: float) -> httpx.AsyncClient:
        return build_client(base_url, {"PRIVATE-TOKEN": token}, timeout)

    @property
    def platform_id(self) -> str:
        return PLATFORM_ID

    @property
    def credential_id(self) -> str:
        return credential_fingerprint(self._token)

    async def initialize(self, config: PlatformConfig) -> None:
        if not config.api_key:
            raise InvalidConfigError(PLATFORM_ID, "api_key (token) is required")
        base_url = config.base_url or self._base_url
        if not base_url.startswith(("http://", "https://")):
            raise InvalidConfigError(PLATFORM_ID, "base_url must be an http(s) URL")

        await self.dispose()
        self._token = config.api_key
        self._base_url = base_url
        self._http = RestTransport(
            PLATFORM_ID, self._build_client(config.api_key, base_url, config.timeout)
        )
        logger.debug("Initialized %s (credential %s)", PLATFORM_ID, self.credential_id)

    def get_capabilities(self) -> CapabilityDescriptor:
        return self._capabilities

    async def dispose(self) -> None:
        http, self._http = self._http, None
        if http is not None:
            await http.aclose()

    def _require_http(self) -> RestTransport:
        if self._http is None:
            raise InvalidConfigError(PLATFORM_ID, "Platform is not initialized")
        return self._http

    # ── Repositories & branches ──────────────────────────────────

    async def get_repository(self, owner: str, repo: str) -> Repository:
        http = self._require_http()
        data = await http.get_json(_project(owner, repo))
        return _repository(data)

    async def create_branch(
        self, owner: str, repo: str, name: str, from_ref: str
    ) -> Branch:
        data = await self._require_http().send_json(
            "POST",
            f"{_project(owner, repo)}/repository/branches",
            params={"branch": name, "ref": from_ref},
        )
        return _branch(data)

    async def get_branch(self, owner: str, repo: str, name: str) -> Branch:
        data = await self._require_http().get_json(
            f"{_project(owner, repo)}/repository/branches/{quote(name, safe='')}"
        )
        return _branch(data)

    async def delete_branch(self, owner: str, repo: str, name: str) -> None:
        await self._require_http().request(
            "DELETE",
            f"{_project(owner, repo)}/repository/branches/{quote(name, safe='')}",
        )

    # ── Merge requests ───────────────────────────────────────────

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
    ) -> PullRequest:
        data = await self._require_http().send_json(
            "POST",
            f"{_project(owner, repo)}/merge_requests",
            json={
                "title": f"{DRAFT_PREFIX}{title}" if draft else title,
                "source_branch": head,
                "target_branch": base,
                "description": body,
            },
        )
        return _pull_request(data)

    async def get_pr(self, owner: str, repo: str, number: int) -> PullRequest:
        data = await self._require_http().get_json(
            f"{_project(owner, repo)}/merge_requests/{number}"
        )
        return _pull_request(data)

    async def list_prs(
        self,
        owner: str,
        repo: str,
        *,
        state: PRState | None = None,
        page: PageRequest | None = None,
    ) -> Page[PullRequest]:
        request = page or PageRequest()
        params: dict[str, Any] = {
            "state": _MR_STATE_FILTERS[state] if state is not None else "all",
            "per_page": request.page_size,
            "page": request.page,
        }
        response = await self._require_http().request(
            "GET", f"{_project(owner, repo)}/merge_requests", params=params
        )
        items = [_pull_request(d) for d in response.json()]
        raw = RawPage(items=items, request=request, headers=response.headers)
        return normalize(raw, PaginationStrategy.OFFSET)

    async def merge_pr(
        self,
        owner: str,
        repo: str,
        number: int,
        *,
        method: MergeMethod = MergeMethod.MERGE,
        commit_message: str | None = None,
    ) -> MergeResult:
        if method is MergeMethod.REBASE:
            # Fast-forward merges are a project setting on GitLab
            msg = "GitLab cannot rebase-merge per request"
            raise InvalidRequestError(PLATFORM_ID, msg)
        params: dict[str, Any] = {}
        if method is MergeMethod.SQUASH:
            params["squash"] = True
        if commit_message:
            if method is MergeMethod.SQUASH:
                params["squash_commit_message"] = commit_message
            else:
                params["merge_commit_message"] = commit_message
        data = await self._require_http().send_json(
            "PUT",
            f"{_project(owner, repo)}/merge_requests/{number}/merge",
            params=params,
        )
        merged = data.get("state") == "merged"
        return MergeResult(
            platform=PLATFORM_ID,
            merged=merged,
            sha=data.get("merge_commit_sha") or data.get("squash_commit_sha"),
            message="Pull Request successfully merged" if merged else "",
            metadata={"merge_status": data.get("merge_status")},
        )

    async def comment_on_pr(
        self, owner: str, repo: str, number: int, body: str
    ) -> Comment:
        data = await self._require_http().send_json(
            "POST",
            f"{_project(owner, repo)}/merge_requests/{number}/notes",
            json={"body": body},
        )
        return _comment(data)

    # ── Issues ───────────────────────────────────────────────────

    async def get_issue(self, owner: str, repo: str, number: int) -> Issue:
        data = await self._require_http().get_json(
            f"{_project(owner, repo)}/issues/{number}"
        )
        return _issue(data)

    async def list_issues(
        self,
        owner: str,
        repo: str,
        *,
        state: IssueState | None = None,
        labels: Sequence[str] = (),
        page: PageRequest | None = None,
    ) -> Page[Issue]:
        request = page or PageRequest()
        params: dict[str, Any] = {"per_page": request.page_size, "page": request.page}
        if state is not None:
            params["state"] = "opened" if state is IssueState.OPEN else "closed"
        if labels:
            params["labels"] = ",".join(labels)
        response = await self._require_http().request(
            "GET", f"{_project(owner, repo)}/issues", params=params
        )
        items = [_issue(d) for d in response.json()]
        raw = RawPage(items=items, request=request, headers=response.headers)
        return normalize(raw, PaginationStrategy.OFFSET)

    async def create_issue(
        self,
        owner: str,
        repo: str,
        *,
        title: str,
        body: str = "",
        labels: Sequence[str] = (),
    ) -> Issue:
        payload: dict[str, Any] = {"title": title, "description": body}
        if labels:
            payload["labels"] = ",".join(labels)
        data = await self._require_http().send_json(
            "POST", f"{_project(owner, repo)}/issues", json=payload
        )
        return _issue(data)

    async def comment_on_issue(
        self, owner: str, repo: str, number: int, body: str
    ) -> Comment:
        data = await self._require_http().send_json(
            "POST",
            f"{_project(owner, repo)}/issues/{number}/notes",
            json={"body": body},
        )
        return _comment(data)

    # ── Pipelines ────────────────────────────────────────────────

    async def trigger_ci(
        self,
        owner: str,
        repo: str,
        *,
        ref: str,
        workflow: str | None = None,
        inputs: Mapping[str, str] | None = None,
    ) -> CIStatus:
        """Create a pipeline for ``ref``; ``inputs`` become CI variables."""
        payload: dict[str, Any] = {"ref": ref}
        if inputs:
            payload["variables"] = [{"key": k, "value": v} for k, v in inputs.items()]
        data = await self._require_http().send_json(
            "POST", f"{_project(owner, repo)}/pipeline", json=payload
        )
        return _pipeline_status(ref, data)

    async def get_ci_status(self, owner: str, repo: str, ref: str) -> CIStatus:
        data = await self._require_http().get_json(
            f"{_project(owner, repo)}/pipelines",
            params={"ref": ref, "per_page": 1, "order_by": "id", "sort": "desc"},
        )
        if not data:
            return CIStatus(platform=PLATFORM_ID, ref=ref, state=CIState.UNKNOWN)
        return _pipeline_status(ref, data[0])

    # ── Webhooks ─────────────────────────────────────────────────

    async def create_webhook(
        self,
        owner: str,
        repo: str,
        *,
        url: str,
        events: Sequence[WebhookEvent | str],
        secret: str | None = None,
    ) -> Webhook:
        try:
            wanted = {WebhookEvent(e) for e in events}
        except ValueError as e:
            raise InvalidRequestError(PLATFORM_ID, f"Unknown webhook event: {e}") from e
        payload: dict[str, Any] = {"url": url}
        payload.update({flag: event in wanted for event, flag in _EVENTS.items()})
        if secret:
            payload["token"] = secret
        data = await self._require_http().send_json(
            "POST", f"{_project(owner, repo)}/hooks", json=payload
        )
        return _webhook(data)

    async def list_webhooks(self, owner: str, repo: str) -> list[Webhook]:
        http = self._require_http()
        data = await http.get_json(f"{_project(owner, repo)}/hooks")
        return [_webhook(d) for d in data]

    async def delete_webhook(self, owner: str, repo: str, hook_id: str) -> None:
        await self._require_http().request(
            "DELETE", f"{_project(owner, repo)}/hooks/{hook_id}"
        )
