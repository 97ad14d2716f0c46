"""Tests for the GitHub adapter against a mocked REST API."""

from __future__ import annotations

import pytest

from tamma.config.schema import PlatformConfig
from tamma.core.errors import (
    AuthFailedError,
    InvalidConfigError,
    InvalidRequestError,
    NotFoundError,
    RateLimitedError,
)
from tamma.git.base import GitPlatform
from tamma.git.github import (
    API_VERSION,
    GitHubPlatform,
    _aggregate_check_runs,
)
from tamma.git.models import (
    CIState,
    IssueState,
    MergeMethod,
    PRState,
    WebhookEvent,
)
from tamma.git.pagination import PageRequest, TotalAccuracy
from tests.fixtures import responses as r
from tests.fixtures.http import MockRouter

BASE = "https://api.github.com"
REPO_PATH = f"/repos/{r.OWNER}/{r.REPO}"


@pytest.fixture
def router() -> MockRouter:
    return MockRouter(BASE)


@pytest.fixture
def github(router) -> GitHubPlatform:
    return GitHubPlatform("ghp_test", client=router.client())


class TestLifecycle:
    def test_satisfies_protocol(self, github):
        assert isinstance(github, GitPlatform)
        assert github.platform_id == "github"
        assert github.get_capabilities().supports_ci

    async def test_initialize_requires_token(self):
        with pytest.raises(InvalidConfigError, match="token"):
            await GitHubPlatform().initialize(PlatformConfig())

    async def test_initialize_builds_authenticated_client(self):
        platform = GitHubPlatform()
        await platform.initialize(
            PlatformConfig(api_key="ghp_secret", base_url="https://ghe.example/api/v3")
        )
        client = platform._http._client
        assert client.headers["Authorization"] == "Bearer ghp_secret"
        assert client.headers["X-GitHub-Api-Version"] == API_VERSION
        assert str(client.base_url).startswith("https://ghe.example/api/v3")
        await platform.dispose()

    async def test_uninitialized(self):
        with pytest.raises(InvalidConfigError, match="not initialized"):
            await GitHubPlatform().get_repository("a", "b")

    async def test_dispose_idempotent(self, github):
        await github.dispose()
        await github.dispose()
        with pytest.raises(InvalidConfigError):
            await github.get_repository(r.OWNER, r.REPO)


class TestRepositories:
    async def test_get_repository(self, github, router):
        router.add("GET", REPO_PATH, r.GITHUB_REPO)
        repo = await github.get_repository(r.OWNER, r.REPO)
        assert repo.full_name == "acme/widgets"
        assert repo.id == "1296269"
        assert repo.default_branch == "main"
        assert repo.metadata["node_id"] == r.GITHUB_REPO["node_id"]

    async def test_create_branch_resolves_ref(self, github, router):
        router.add("GET", f"{REPO_PATH}/commits/main", {"sha": r.SHA})
        router.add(
            "POST",
            f"{REPO_PATH}/git/refs",
            {"ref": "refs/heads/feature", "object": {"sha": r.SHA}},
            status=201,
        )
        branch = await github.create_branch(r.OWNER, r.REPO, "feature", "main")
        assert branch.name == "feature"
        assert branch.sha == r.SHA
        assert router.last_json() == {"ref": "refs/heads/feature", "sha": r.SHA}

    async def test_get_branch(self, github, router):
        router.add("GET", f"{REPO_PATH}/branches/feature", r.GITHUB_BRANCH)
        branch = await github.get_branch(r.OWNER, r.REPO, "feature")
        assert branch.sha == r.SHA
        assert branch.web_url.endswith("/tree/feature")

    async def test_delete_branch(self, github, router):
        router.add("DELETE", f"{REPO_PATH}/git/refs/heads/feature", status=204)
        await github.delete_branch(r.OWNER, r.REPO, "feature")
        assert router.last.method == "DELETE"

    async def test_missing_repository(self, github):
        with pytest.raises(NotFoundError):
            await github.get_repository(r.OWNER, "nope")


class TestPullRequests:
    async def test_create_pr(self, github, router):
        router.add("POST", f"{REPO_PATH}/pulls", r.GITHUB_PR, status=201)
        pr = await github.create_pr(
            r.OWNER,
            r.REPO,
            title="Add sprockets",
            head="feature",
            base="main",
            body="Adds sprocket support",
        )
        assert pr.number == 7
        assert pr.state is PRState.OPEN
        assert pr.head == "feature"
        assert router.last_json()["draft"] is False

    async def test_merged_state(self, github, router):
        merged = {**r.GITHUB_PR, "state": "closed", "merged_at": "2024-01-01T00:00:00Z"}
        router.add("GET", f"{REPO_PATH}/pulls/7", merged)
        assert (await github.get_pr(r.OWNER, r.REPO, 7)).state is PRState.MERGED

    async def test_list_prs_paginates_from_link(self, github, router):
        link = f'<{BASE}{REPO_PATH}/pulls?page=2>; rel="next"'
        router.add("GET", f"{REPO_PATH}/pulls", [r.GITHUB_PR], headers={"Link": link})
        page = await github.list_prs(
            r.OWNER, r.REPO, page=PageRequest(page_size=1, page=1)
        )
        assert [pr.number for pr in page] == [7]
        assert page.info.has_more is True
        assert router.last.url.params["state"] == "all"
        assert router.last.url.params["per_page"] == "1"

    async def test_list_merged_filters_client_side(self, github, router):
        merged = {**r.GITHUB_PR, "number": 8, "state": "closed", "merged": True}
        closed = {**r.GITHUB_PR, "number": 9, "state": "closed"}
        router.add("GET", f"{REPO_PATH}/pulls", [merged, closed])
        page = await github.list_prs(r.OWNER, r.REPO, state=PRState.MERGED)
        assert [pr.number for pr in page] == [8]
        assert router.last.url.params["state"] == "closed"
        assert page.info.total_count is None
        assert page.info.total_accuracy is TotalAccuracy.UNKNOWN

    async def test_filtered_short_page_keeps_paging(self, github, router):
        merged = {**r.GITHUB_PR, "state": "closed", "merged": True}
        router.add("GET", f"{REPO_PATH}/pulls", [merged, {**merged, "number": 8}])
        page = await github.list_prs(
            r.OWNER, r.REPO, state=PRState.CLOSED, page=PageRequest(page_size=2, page=2)
        )
        assert len(page) == 0
        assert page.info.has_more is True
        assert page.info.total_count is None
        assert page.info.total_accuracy is TotalAccuracy.UNKNOWN

    async def test_merge_pr(self, github, router):
        router.add(
            "PUT",
            f"{REPO_PATH}/pulls/7/merge",
            {"merged": True, "sha": r.SHA, "message": "Merged"},
        )
        result = await github.merge_pr(
            r.OWNER, r.REPO, 7, method=MergeMethod.SQUASH, commit_message="squash!"
        )
        assert result.merged
        assert result.sha == r.SHA
        assert router.last_json() == {
            "merge_method": "squash",
            "commit_message": "squash!",
        }

    async def test_merge_conflict(self, github, router):
        router.add(
            "PUT",
            f"{REPO_PATH}/pulls/7/merge",
            {"message": "Head branch was modified"},
            status=409,
        )
        with pytest.raises(InvalidRequestError, match="Head branch"):
            await github.merge_pr(r.OWNER, r.REPO, 7)

    async def test_comment_on_pr_uses_issue_endpoint(self, github, router):
        router.add(
            "POST", f"{REPO_PATH}/issues/7/comments", r.GITHUB_COMMENT, status=201
        )
        comment = await github.comment_on_pr(r.OWNER, r.REPO, 7, "Looks good")
        assert comment.body == "Looks good"
        assert comment.author == "octo"


class TestIssues:
    async def test_get_issue(self, github, router):
        router.add("GET", f"{REPO_PATH}/issues/3", r.GITHUB_ISSUE)
        issue = await github.get_issue(r.OWNER, r.REPO, 3)
        assert issue.state is IssueState.OPEN
        assert issue.labels == ("bug",)

    async def test_list_issues_skips_pull_requests(self, github, router):
        pr_as_issue = {**r.GITHUB_ISSUE, "number": 7, "pull_request": {}}
        router.add("GET", f"{REPO_PATH}/issues", [r.GITHUB_ISSUE, pr_as_issue])
        page = await github.list_issues(
            r.OWNER, r.REPO, state=IssueState.OPEN, labels=["bug", "ui"]
        )
        assert [i.number for i in page] == [3]
        assert page.info.has_more is False
        assert page.info.total_accuracy is TotalAccuracy.UNKNOWN
        assert router.last.url.params["labels"] == "bug,ui"
        assert router.last.url.params["state"] == "open"

    async def test_create_issue(self, github, router):
        router.add("POST", f"{REPO_PATH}/issues", r.GITHUB_ISSUE, status=201)
        issue = await github.create_issue(
            r.OWNER, r.REPO, title="Sprockets jam", labels=["bug"]
        )
        assert issue.number == 3
        assert router.last_json()["labels"] == ["bug"]


class TestCI:
    async def test_trigger_requires_workflow(self, github):
        with pytest.raises(InvalidRequestError, match="workflow"):
            await github.trigger_ci(r.OWNER, r.REPO, ref="main")

    async def test_trigger_dispatches(self, github, router):
        router.add(
            "POST", f"{REPO_PATH}/actions/workflows/ci.yml/dispatches", status=204
        )
        status = await github.trigger_ci(
            r.OWNER, r.REPO, ref="main", workflow="ci.yml", inputs={"debug": "1"}
        )
        assert status.state is CIState.PENDING
        assert router.last_json() == {"ref": "main", "inputs": {"debug": "1"}}

    async def test_status_aggregates_check_runs(self, github, router):
        runs = [
            {"status": "completed", "conclusion": "success"},
            {"status": "completed", "conclusion": "failure"},
        ]
        router.add(
            "GET",
            f"{REPO_PATH}/commits/main/check-runs",
            {"total_count": 2, "check_runs": runs},
        )
        status = await github.get_ci_status(r.OWNER, r.REPO, "main")
        assert status.state is CIState.FAILURE
        assert status.metadata["total_count"] == 2

    @pytest.mark.parametrize(
        ("runs", "expected"),
        [
            ([], CIState.UNKNOWN),
            ([{"status": "in_progress"}], CIState.RUNNING),
            ([{"status": "queued"}], CIState.PENDING),
            (
                [{"status": "completed", "conclusion": "cancelled"}],
                CIState.CANCELLED,
            ),
            (
                [
                    {"status": "completed", "conclusion": "success"},
                    {"status": "completed", "conclusion": "skipped"},
                ],
                CIState.SUCCESS,
            ),
        ],
    )
    def test_aggregate(self, runs, expected):
        assert _aggregate_check_runs(runs) is expected


class TestWebhooks:
    async def test_create_translates_events(self, github, router):
        router.add("POST", f"{REPO_PATH}/hooks", r.GITHUB_HOOK, status=201)
        hook = await github.create_webhook(
            r.OWNER,
            r.REPO,
            url="https://ci.example/hook",
            events=[WebhookEvent.PUSH, "pull_request", WebhookEvent.COMMENT],
            secret="s3cret",
        )
        sent = router.last_json()
        assert sent["events"] == ["push", "pull_request", "issue_comment"]
        assert sent["config"]["secret"] == "s3cret"
        assert hook.events == ("push", "pull_request")
        assert hook.url == "https://ci.example/hook"

    async def test_unknown_event(self, github):
        with pytest.raises(InvalidRequestError, match="Unknown webhook event"):
            await github.create_webhook(
                r.OWNER, r.REPO, url="https://x", events=["deployment"]
            )

    async def test_list_and_delete(self, github, router):
        router.add("GET", f"{REPO_PATH}/hooks", [r.GITHUB_HOOK])
        router.add("DELETE", f"{REPO_PATH}/hooks/12", status=204)
        hooks = await github.list_webhooks(r.OWNER, r.REPO)
        assert [h.id for h in hooks] == ["12"]
        await github.delete_webhook(r.OWNER, r.REPO, "12")


class TestErrors:
    async def test_bad_credentials(self, github, router):
        router.add("GET", REPO_PATH, {"message": "Bad credentials"}, status=401)
        with pytest.raises(AuthFailedError, match="Bad credentials"):
            await github.get_repository(r.OWNER, r.REPO)

    async def test_secondary_rate_limit(self, github, router):
        router.add(
            "GET",
            REPO_PATH,
            {"message": "API rate limit exceeded"},
            status=403,
            headers={"Retry-After": "60", "X-RateLimit-Remaining": "0"},
        )
        with pytest.raises(RateLimitedError) as exc_info:
            await github.get_repository(r.OWNER, r.REPO)
        assert exc_info.value.retry_after == 60.0
        assert exc_info.value.provider_id == "github"
