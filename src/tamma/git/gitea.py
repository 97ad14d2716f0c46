"""Gitea REST API (v1) adapter. Forgejo speaks the same API."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

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

PLATFORM_ID = "gitea"
DEFAULT_BASE_URL = "https://gitea.com/api/v1"
DRAFT_PREFIX = "WIP: "

# Self-hosted instances publish no fixed rate limit
CAPABILITIES = CapabilityDescriptor(
    supports_webhooks=True,
    supports_ci=True,
    versions=("v1",),
)

_EVENTS: dict[WebhookEvent, str] = {
    WebhookEvent.PUSH: "push",
    WebhookEvent.TAG: "create",
    WebhookEvent.PULL_REQUEST: "pull_request",
    WebhookEvent.ISSUES: "issues",
    WebhookEvent.COMMENT: "issue_comment",
    WebhookEvent.CI: "status",
}
_EVENTS_BACK = {v: k for k, v in _EVENTS.items()}

_COMBINED_STATES: dict[str, CIState] = {
    "pending": CIState.PENDING,
    "success": CIState.SUCCESS,
    "error": CIState.FAILURE,
    "failure": CIState.FAILURE,
}


def _login(user: Any) -> str:
    return user.get("login", "") if isinstance(user, dict) else ""


def _repository(platform: str, data: dict[str, Any]) -> Repository:
    return Repository(
        platform=platform,
        id=str(data["id"]),
        owner=_login(data.get("owner")),
        name=data["name"],
        default_branch=data.get("default_branch") or "main",
        private=bool(data.get("private", False)),
        description=data.get("description") or "",
        web_url=data.get("html_url", ""),
        clone_url=data.get("clone_url", ""),
        metadata={"fork": data.get("fork", False), "mirror": data.get("mirror", False)},
    )


def _branch(platform: str, data: dict[str, Any]) -> Branch:
    return Branch(
        platform=platform,
        name=data["name"],
        sha=data["commit"]["id"],
        protected=bool(data.get("protected", False)),
    )


def _pull_request(platform: str, data: dict[str, Any]) -> PullRequest:
    if data.get("merged"):
        state = PRState.MERGED
    else:
        state = PRState.CLOSED if data.get("state") == "closed" else PRState.OPEN
    title = data.get("title", "")
    draft = title.startswith(DRAFT_PREFIX)
    if draft:
        title = title[len(DRAFT_PREFIX) :]
    return PullRequest(
        platform=platform,
        id=str(data["id"]),
        number=data["number"],
        title=title,
        state=state,
        head=data["head"]["ref"],
        base=data["base"]["ref"],
        body=data.get("body") or "",
        author=_login(data.get("user")),
        draft=draft,
        web_url=data.get("html_url", ""),
        metadata={
            "head_sha": data["head"].get("sha"),
            "merge_commit_sha": data.get("merge_commit_sha"),
            "mergeable": data.get("mergeable"),
        },
    )


def _issue(platform: str, data: dict[str, Any]) -> Issue:
    return Issue(
        platform=platform,
        id=str(data["id"]),
        number=data["number"],
        title=data.get("title", ""),
        state=IssueState.CLOSED if data.get("state") == "closed" else IssueState.OPEN,
        body=data.get("body") or "",
        author=_login(data.get("user")),
        labels=tuple(label["name"] for label in data.get("labels") or []),
        web_url=data.get("html_url", ""),
    )


def _comment(platform: str, data: dict[str, Any]) -> Comment:
    return Comment(
        platform=platform,
        id=str(data["id"]),
        body=data.get("body") or "",
        author=_login(data.get("user")),
        web_url=data.get("html_url", ""),
    )


def _webhook(platform: str, data: dict[str, Any]) -> Webhook:
    raw_events = data.get("events") or []
    return Webhook(
        platform=platform,
        id=str(data["id"]),
        url=data.get("config", {}).get("url", ""),
        events=tuple(str(_EVENTS_BACK[e]) for e in raw_events if e in _EVENTS_BACK),
        active=bool(data.get("active", True)),
        metadata={"type": data.get("type"), "events": tuple(raw_events)},
    )


def _state_filter(state: PRState | None) -> str:
    if state is None:
        return "all"
    return "open" if state is PRState.OPEN else "closed"


class GiteaPlatform:
    """Adapter for Gitea and Forgejo instances."""

    def __init__(
        self,
        token: str | None = None,
        *,
        client: httpx.AsyncClient | None = None,
        base_url: str = DEFAULT_BASE_URL,
        platform_id: str = PLATFORM_ID,
        capabilities: CapabilityDescriptor = CAPABILITIES,
    ) -> None:
        self._platform_id = platform_id
        self._token = token
        self._base_url = base_url
        self._capabilities = capabilities
        self._http: RestTransport | None = None
        if client is not None:
            self._http = RestTransport(platform_id, client)
        elif token is not None:
            client = self._build_client(token, base_url, 30.0)
            self._http = RestTransport(platform_id, client)

    @staticmethod
    def _build_client(token: str, base_url: str, timeout: float) -> httpx.AsyncClient:
        return build_client(base_url, {"Authorization": f"token {token}"}, timeout)

    @property
    def platform_id(self) -> str:
        return self._platform_id

    @property
    def credential_id(self) -> str:
        return credential_fingerprint(self._token)

    async def initialize(self, config: PlatformConfig) -> None:
        if not config.api_key:
            raise InvalidConfigError(self._platform_id, "api_key (token) is required")
        base_url = config.base_url or self._base_url
        if not base_url.startswith(("http://", "https://")):
            msg = "base_url must be an http(s) URL"
            raise InvalidConfigError(self._platform_id, msg)

        await self.dispose()
        self._token = config.api_key
        self._base_url = base_url
        client = self._build_client(config.api_key, base_url, config.timeout)
        self._http = RestTransport(self._platform_id, client)
        logger.debug(
            "Initialized %s (credential %s)", self._platform_id, self.credential_id
        )

    def get_capabilities(self) -> CapabilityDescriptor:
        return self._capabilities

    async def dispose(self) -> None:
        http, self._http = self._http, None
        if http is not None:
            await http.aclose()

    def _require_http(self) -> RestTransport:
        if self._http is None:
            raise InvalidConfigError(self._platform_id, "Platform is not initialized")
        return self._http

    # ── Repositories & branches ──────────────────────────────────

    async def get_repository(self, owner: str, repo: str) -> Repository:
        http = self._require_http()
        data = await http.get_json(f"/repos/{owner}/{repo}")
        return _repository(self._platform_id, data)

    async def create_branch(
        self, owner: str, repo: str, name: str, from_ref: str
    ) -> Branch:
        data = await self._require_http().send_json(
            "POST",
            f"/repos/{owner}/{repo}/branches",
            json={"new_branch_name": name, "old_ref_name": from_ref},
        )
        return _branch(self._platform_id, data)

    async def get_branch(self, owner: str, repo: str, name: str) -> Branch:
        http = self._require_http()
        data = await http.get_json(f"/repos/{owner}/{repo}/branches/{name}")
        return _branch(self._platform_id, data)

    async def delete_branch(self, owner: str, repo: str, name: str) -> None:
        http = self._require_http()
        await http.request("DELETE", f"/repos/{owner}/{repo}/branches/{name}")

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
    ) -> PullRequest:
        data = await self._require_http().send_json(
            "POST",
            f"/repos/{owner}/{repo}/pulls",
            json={
                "title": f"{DRAFT_PREFIX}{title}" if draft else title,
                "head": head,
                "base": base,
                "body": body,
            },
        )
        return _pull_request(self._platform_id, data)

    async def get_pr(self, owner: str, repo: str, number: int) -> PullRequest:
        http = self._require_http()
        data = await http.get_json(f"/repos/{owner}/{repo}/pulls/{number}")
        return _pull_request(self._platform_id, data)

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
            "state": _state_filter(state),
            "limit": request.page_size,
            "page": request.page,
        }
        response = await self._require_http().request(
            "GET", f"/repos/{owner}/{repo}/pulls", params=params
        )
        items = [_pull_request(self._platform_id, d) for d in response.json()]
        fetched = None
        if state in (PRState.CLOSED, PRState.MERGED):
            # "closed" on the wire covers both
            fetched = len(items)
            items = [pr for pr in items if pr.state is state]
        raw = RawPage(
            items=items, request=request, headers=response.headers, fetched=fetched
        )
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
        http = self._require_http()
        payload: dict[str, Any] = {"Do": str(method)}
        if commit_message:
            payload["MergeMessageField"] = commit_message
        await http.send_json(
            "POST", f"/repos/{owner}/{repo}/pulls/{number}/merge", json=payload
        )
        # The merge endpoint returns an empty body; read back the commit
        pr = await self.get_pr(owner, repo, number)
        return MergeResult(
            platform=self._platform_id,
            merged=pr.state is PRState.MERGED,
            sha=pr.metadata.get("merge_commit_sha"),
            message="Pull Request successfully merged",
        )

    async def comment_on_pr(
        self, owner: str, repo: str, number: int, body: str
    ) -> Comment:
        return await self.comment_on_issue(owner, repo, number, body)

    # ── Issues ───────────────────────────────────────────────────

    async def get_issue(self, owner: str, repo: str, number: int) -> Issue:
        http = self._require_http()
        data = await http.get_json(f"/repos/{owner}/{repo}/issues/{number}")
        return _issue(self._platform_id, data)

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
        params: dict[str, Any] = {
            "type": "issues",
            "state": str(state) if state is not None else "all",
            "limit": request.page_size,
            "page": request.page,
        }
        if labels:
            params["labels"] = ",".join(labels)
        response = await self._require_http().request(
            "GET", f"/repos/{owner}/{repo}/issues", params=params
        )
        items = [_issue(self._platform_id, d) for d in response.json()]
        raw = RawPage(items=items, request=request, headers=response.headers)
        return normalize(raw, PaginationStrategy.OFFSET)

    async def _label_ids(
        self, owner: str, repo: str, labels: Sequence[str]
    ) -> list[int]:
        """Gitea takes label ids on issue creation, not names."""
        data = await self._require_http().get_json(
            f"/repos/{owner}/{repo}/labels", params={"limit": 100}
        )
        by_name = {label["name"]: label["id"] for label in data}
        missing = [name for name in labels if name not in by_name]
        if missing:
            msg = f"Unknown labels: {', '.join(missing)}"
            raise InvalidRequestError(self._platform_id, msg)
        return [by_name[name] for name in labels]

    async def create_issue(
        self,
        owner: str,
        repo: str,
        *,
        title: str,
        body: str = "",
        labels: Sequence[str] = (),
    ) -> Issue:
        payload: dict[str, Any] = {"title": title, "body": body}
        if labels:
            payload["labels"] = await self._label_ids(owner, repo, labels)
        data = await self._require_http().send_json(
            "POST", f"/repos/{owner}/{repo}/issues", json=payload
        )
        return _issue(self._platform_id, data)

    async def comment_on_issue(
        self, owner: str, repo: str, number: int, body: str
    ) -> Comment:
        data = await self._require_http().send_json(
            "POST",
            f"/repos/{owner}/{repo}/issues/{number}/comments",
            json={"body": body},
        )
        return _comment(self._platform_id, data)

    # ── CI ───────────────────────────────────────────────────────

    async def trigger_ci(
        self,
        owner: str,
        repo: str,
        *,
        ref: str,
        workflow: str | None = None,
        inputs: Mapping[str, str] | None = None,
    ) -> CIStatus:
        """Dispatch a Gitea Actions workflow on ``ref``."""
        if not workflow:
            msg = "Gitea Actions needs a workflow file name"
            raise InvalidRequestError(self._platform_id, msg)
        await self._require_http().request(
            "POST",
            f"/repos/{owner}/{repo}/actions/workflows/{workflow}/dispatches",
            json={"ref": ref, "inputs": dict(inputs or {})},
        )
        return CIStatus(
            platform=self._platform_id,
            ref=ref,
            state=CIState.PENDING,
            metadata={"workflow": workflow},
        )

    async def get_ci_status(self, owner: str, repo: str, ref: str) -> CIStatus:
        http = self._require_http()
        data = await http.get_json(f"/repos/{owner}/{repo}/commits/{ref}/status")
        if not data.get("statuses"):
            state = CIState.UNKNOWN
        else:
            state = _COMBINED_STATES.get(data.get("state", ""), CIState.UNKNOWN)
        return CIStatus(
            platform=self._platform_id,
            ref=ref,
            state=state,
            metadata={"sha": data.get("sha"), "total_count": data.get("total_count")},
        )

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
            vendor_events = [_EVENTS[WebhookEvent(e)] for e in events]
        except ValueError as e:
            msg = f"Unknown webhook event: {e}"
            raise InvalidRequestError(self._platform_id, msg) from e
        config: dict[str, Any] = {"url": url, "content_type": "json"}
        if secret:
            config["secret"] = secret
        data = await self._require_http().send_json(
            "POST",
            f"/repos/{owner}/{repo}/hooks",
            json={
                "type": "gitea",
                "active": True,
                "events": vendor_events,
                "config": config,
            },
        )
        return _webhook(self._platform_id, data)

    async def list_webhooks(self, owner: str, repo: str) -> list[Webhook]:
        http = self._require_http()
        data = await http.get_json(f"/repos/{owner}/{repo}/hooks")
        return [_webhook(self._platform_id, d) for d in data]

    async def delete_webhook(self, owner: str, repo: str, hook_id: str) -> None:
        http = self._require_http()
        await http.request("DELETE", f"/repos/{owner}/{repo}/hooks/{hook_id}")
