"""GitHub REST API adapter."""

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

PLATFORM_ID = "github"
DEFAULT_BASE_URL = "https://api.github.com"
API_VERSION = "2022-11-28"

CAPABILITIES = CapabilityDescriptor(
    supports_webhooks=True,
    supports_ci=True,
    # 5000 requests/hour for authenticated users
    requests_per_minute=83,
    versions=(API_VERSION,),
)

_EVENTS: dict[WebhookEvent, str] = {
    WebhookEvent.PUSH: "push",
    WebhookEvent.TAG: "create",
    WebhookEvent.PULL_REQUEST: "pull_request",
    WebhookEvent.ISSUES: "issues",
    WebhookEvent.COMMENT: "issue_comment",
    WebhookEvent.CI: "workflow_run",
}
_EVENTS_BACK = {v: k for k, v in _EVENTS.items()}

_PENDING_STATUSES = frozenset({"queued", "pending", "waiting", "requested"})
_FAILED_CONCLUSIONS = frozenset(
    {"failure", "timed_out", "action_required", "startup_failure", "stale"}
)


def _login(user: Any) -> str:
    return user.get("login", "") if isinstance(user, dict) else ""


def _repository(data: dict[str, Any]) -> Repository:
    return Repository(
        platform=PLATFORM_ID,
        id=str(data["id"]),
        owner=_login(data.get("owner")),
        name=data["name"],
        default_branch=data.get("default_branch") or "main",
        private=bool(data.get("private", False)),
        description=data.get("description") or "",
        web_url=data.get("html_url", ""),
        clone_url=data.get("clone_url", ""),
        metadata={"node_id": data.get("node_id"), "fork": data.get("fork", False)},
    )


def _pull_request(data: dict[str, Any]) -> PullRequest:
    if data.get("merged") or data.get("merged_at"):
        state = PRState.MERGED
    else:
        state = PRState.CLOSED if data.get("state") == "closed" else PRState.OPEN
    return PullRequest(
        platform=PLATFORM_ID,
        id=str(data["id"]),
        number=data["number"],
        title=data.get("title", ""),
        state=state,
        head=data["head"]["ref"],
        base=data["base"]["ref"],
        body=data.get("body") or "",
        author=_login(data.get("user")),
        draft=bool(data.get("draft", False)),
        web_url=data.get("html_url", ""),
        metadata={
            "node_id": data.get("node_id"),
            "head_sha": data["head"].get("sha"),
            "merge_commit_sha": data.get("merge_commit_sha"),
        },
    )


def _issue(data: dict[str, Any]) -> Issue:
    return Issue(
        platform=PLATFORM_ID,
        id=str(data["id"]),
        number=data["number"],
        title=data.get("title", ""),
        state=IssueState.CLOSED if data.get("state") == "closed" else IssueState.OPEN,
        body=data.get("body") or "",
        author=_login(data.get("user")),
        labels=tuple(label["name"] for label in data.get("labels", [])),
        web_url=data.get("html_url", ""),
        metadata={"node_id": data.get("node_id")},
    )


def _comment(data: dict[str, Any]) -> Comment:
    return Comment(
        platform=PLATFORM_ID,
        id=str(data["id"]),
        body=data.get("body") or "",
        author=_login(data.get("user")),
        web_url=data.get("html_url", ""),
    )


def _webhook(data: dict[str, Any]) -> Webhook:
    raw_events = data.get("events", [])
    return Webhook(
        platform=PLATFORM_ID,
        id=str(data["id"]),
        url=data.get("config", {}).get("url", ""),
        events=tuple(str(_EVENTS_BACK[e]) for e in raw_events if e in _EVENTS_BACK),
        active=bool(data.get("active", True)),
        metadata={"events": tuple(raw_events)},
    )


def _aggregate_check_runs(runs: list[dict[str, Any]]) -> CIState:
    """Fold individual check runs into one state."""
    if not runs:
        return CIState.UNKNOWN
    statuses = {r.get("status") for r in runs}
    if "in_progress" in statuses:
        return CIState.RUNNING
    if statuses & _PENDING_STATUSES:
        return CIState.PENDING
    conclusions = {r.get("conclusion") for r in runs}
    if conclusions & _FAILED_CONCLUSIONS:
        return CIState.FAILURE
    if "cancelled" in conclusions:
        return CIState.CANCELLED
    return CIState.SUCCESS


def _state_filter(state: PRState | None) -> str:
    # No merged filter; merged PRs are closed PRs
    if state is None:
        return "all"
    return "open" if state is PRState.OPEN else "closed"


def _vendor_events(events: Sequence[WebhookEvent | str]) -> list[str]:
    try:
        return [_EVENTS[WebhookEvent(e)] for e in events]
    except ValueError as e:
        raise InvalidRequestError(PLATFORM_ID, f"Unknown webhook event: {e}") from e


class GitHubPlatform:
    """Adapter for github.com and GitHub Enterprise Server."""

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
        return build_client(
            base_url,
            {
                "Authorization": f"Bearer {token}",
                "Accept": "application/vnd.github+json",
                "X-GitHub-Api-Version": API_VERSION,
            },
            timeout,
        )

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
        data = await http.get_json(f"/repos/{owner}/{repo}")
        return _repository(data)

    async def create_branch(
        self, owner: str, repo: str, name: str, from_ref: str
    ) -> Branch:
        http = self._require_http()
        commit = await http.get_json(f"/repos/{owner}/{repo}/commits/{from_ref}")
        data = await http.send_json(
            "POST",
            f"/repos/{owner}/{repo}/git/refs",
            json={"ref": f"refs/heads/{name}", "sha": commit["sha"]},
        )
        return Branch(
            platform=PLATFORM_ID,
            name=name,
            sha=data["object"]["sha"],
            metadata={"ref": data.get("ref")},
        )

    async def get_branch(self, owner: str, repo: str, name: str) -> Branch:
        http = self._require_http()
        data = await http.get_json(f"/repos/{owner}/{repo}/branches/{name}")
        return Branch(
            platform=PLATFORM_ID,
            name=data["name"],
            sha=data["commit"]["sha"],
            protected=bool(data.get("protected", False)),
            web_url=data.get("_links", {}).get("html", ""),
        )

    async def delete_branch(self, owner: str, repo: str, name: str) -> None:
        await self._require_http().request(
            "DELETE", f"/repos/{owner}/{repo}/git/refs/heads/{name}"
        )

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
                "title": title,
                "head": head,
                "base": base,
                "body": body,
                "draft": draft,
            },
        )
        return _pull_request(data)

    async def get_pr(self, owner: str, repo: str, number: int) -> PullRequest:
        http = self._require_http()
        data = await http.get_json(f"/repos/{owner}/{repo}/pulls/{number}")
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
            "state": _state_filter(state),
            "per_page": request.page_size,
            "page": request.page,
        }
        response = await self._require_http().request(
            "GET", f"/repos/{owner}/{repo}/pulls", params=params
        )
        items = [_pull_request(d) for d in response.json()]
        fetched = None
        if state in (PRState.CLOSED, PRState.MERGED):
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
        payload: dict[str, Any] = {"merge_method": str(method)}
        if commit_message:
            payload["commit_message"] = commit_message
        data = await self._require_http().send_json(
            "PUT", f"/repos/{owner}/{repo}/pulls/{number}/merge", json=payload
        )
        return MergeResult(
            platform=PLATFORM_ID,
            merged=bool(data.get("merged", False)),
            sha=data.get("sha"),
            message=data.get("message", ""),
        )

    async def comment_on_pr(
        self, owner: str, repo: str, number: int, body: str
    ) -> Comment:
        # PR conversation comments live on the issue endpoint
        return await self.comment_on_issue(owner, repo, number, body)

    # ── Issues ───────────────────────────────────────────────────

    async def get_issue(self, owner: str, repo: str, number: int) -> Issue:
        http = self._require_http()
        data = await http.get_json(f"/repos/{owner}/{repo}/issues/{number}")
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
        params: dict[str, Any] = {
            "state": str(state) if state is not None else "all",
            "per_page": request.page_size,
            "page": request.page,
        }
        if labels:
            params["labels"] = ",".join(labels)
        response = await self._require_http().request(
            "GET", f"/repos/{owner}/{repo}/issues", params=params
        )
        # The issues endpoint also returns pull requests
        data = response.json()
        items = [_issue(d) for d in data if "pull_request" not in d]
        raw = RawPage(
            items=items, request=request, headers=response.headers, fetched=len(data)
        )
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
        data = await self._require_http().send_json(
            "POST",
            f"/repos/{owner}/{repo}/issues",
            json={"title": title, "body": body, "labels": list(labels)},
        )
        return _issue(data)

    async def comment_on_issue(
        self, owner: str, repo: str, number: int, body: str
    ) -> Comment:
        data = await self._require_http().send_json(
            "POST",
            f"/repos/{owner}/{repo}/issues/{number}/comments",
            json={"body": body},
        )
        return _comment(data)

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
        """Dispatch a ``workflow_dispatch`` run of ``workflow`` on ``ref``."""
        if not workflow:
            msg = "GitHub Actions needs a workflow file name"
            raise InvalidRequestError(PLATFORM_ID, msg)
        await self._require_http().request(
            "POST",
            f"/repos/{owner}/{repo}/actions/workflows/{workflow}/dispatches",
            json={"ref": ref, "inputs": dict(inputs or {})},
        )
        # The dispatch endpoint returns 204 without a run id
        return CIStatus(
            platform=PLATFORM_ID,
            ref=ref,
            state=CIState.PENDING,
            metadata={"workflow": workflow},
        )

    async def get_ci_status(self, owner: str, repo: str, ref: str) -> CIStatus:
        data = await self._require_http().get_json(
            f"/repos/{owner}/{repo}/commits/{ref}/check-runs", params={"per_page": 100}
        )
        runs = data.get("check_runs", [])
        return CIStatus(
            platform=PLATFORM_ID,
            ref=ref,
            state=_aggregate_check_runs(runs),
            metadata={"total_count": data.get("total_count", len(runs))},
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
        config: dict[str, Any] = {"url": url, "content_type": "json"}
        if secret:
            config["secret"] = secret
        data = await self._require_http().send_json(
            "POST",
            f"/repos/{owner}/{repo}/hooks",
            json={
                "name": "web",
                "active": True,
                "events": _vendor_events(events),
                "config": config,
            },
        )
        return _webhook(data)

    async def list_webhooks(self, owner: str, repo: str) -> list[Webhook]:
        http = self._require_http()
        data = await http.get_json(f"/repos/{owner}/{repo}/hooks")
        return [_webhook(d) for d in data]

    async def delete_webhook(self, owner: str, repo: str, hook_id: str) -> None:
        http = self._require_http()
        await http.request("DELETE", f"/repos/{owner}/{repo}/hooks/{hook_id}")
