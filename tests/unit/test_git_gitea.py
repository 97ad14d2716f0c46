"""Tests for the Gitea / Forgejo adapter against a mocked v1 API."""

from __future__ import annotations

import json

import pytest

from tamma.core.errors import InvalidRequestError
from tamma.git.gitea import GiteaPlatform
from tamma.git.models import CIState, MergeMethod, PRState, WebhookEvent
from tamma.git.pagination import TotalAccuracy
from tests.fixtures import responses as r
from tests.fixtures.http import MockRouter

BASE = "https://gitea.com/api/v1"
REPO_PATH = f"/api/v1/repos/{r.OWNER}/{r.REPO}"


@pytest.fixture
def router() -> MockRouter:
    return MockRouter(BASE)


@pytest.fixture
def gitea(router) -> GiteaPlatform:
    return GiteaPlatform("gitea-token", client=router.client())


class TestIdentity:
    def test_forgejo_shares_adapter(self, router):
        forgejo = GiteaPlatform("t", client=router.client(), platform_id="forgejo")
        assert forgejo.platform_id == "forgejo"

    async def test_platform_id_flows_into_entities(self, router):
        router.add("GET", REPO_PATH, r.GITEA_REPO)
        forgejo = GiteaPlatform("t", client=router.client(), platform_id="forgejo")
        repo = await forgejo.get_repository(r.OWNER, r.REPO)
        assert repo.platform == "forgejo"

    def test_no_published_rate_limit(self, gitea):
        assert gitea.get_capabilities().requests_per_minute is None


class TestBranches:
    async def test_create_branch(self, gitea, router):
        router.add("POST", f"{REPO_PATH}/branches", r.GITEA_BRANCH, status=201)
        branch = await gitea.create_branch(r.OWNER, r.REPO, "feature", "main")
        assert branch.sha == r.SHA
        assert router.last_json() == {
            "new_branch_name": "feature",
            "old_ref_name": "main",
        }


class TestPullRequests:
    async def test_draft_uses_wip_prefix(self, gitea, router):
        wip = {**r.GITEA_PR, "title": "WIP: Add sprockets"}
        router.add("POST", f"{REPO_PATH}/pulls", wip, status=201)
        pr = await gitea.create_pr(
            r.OWNER,
            r.REPO,
            title="Add sprockets",
            head="feature",
            base="main",
            draft=True,
        )
        assert router.last_json()["title"] == "WIP: Add sprockets"
        assert pr.draft is True
        assert pr.title == "Add sprockets"

    async def test_list_uses_limit_param(self, gitea, router):
        router.add(
            "GET", f"{REPO_PATH}/pulls", [r.GITEA_PR], headers={"X-Total-Count": "1"}
        )
        page = await gitea.list_prs(r.OWNER, r.REPO, state=PRState.OPEN)
        assert router.last.url.params["limit"] == "30"
        assert page.info.total_count == 1
        assert page.info.has_more is False

    async def test_merged_filter_drops_platform_total(self, gitea, router):
        merged = {**r.GITEA_PR, "state": "closed", "merged": True}
        closed = {**r.GITEA_PR, "number": 8, "state": "closed"}
        router.add(
            "GET",
            f"{REPO_PATH}/pulls",
            [merged, closed, {**closed, "number": 9}],
            headers={"X-Total-Count": "3"},
        )
        page = await gitea.list_prs(r.OWNER, r.REPO, state=PRState.MERGED)
        assert [pr.number for pr in page] == [7]
        assert router.last.url.params["state"] == "closed"
        assert page.info.has_more is False
        assert page.info.total_count is None
        assert page.info.total_accuracy is TotalAccuracy.UNKNOWN

    async def test_merge_reads_back_pr(self, gitea, router):
        merged = {**r.GITEA_PR, "merged": True, "merge_commit_sha": r.SHA}
        router.add("POST", f"{REPO_PATH}/pulls/7/merge", status=200)
        router.add("GET", f"{REPO_PATH}/pulls/7", merged)
        result = await gitea.merge_pr(r.OWNER, r.REPO, 7, method=MergeMethod.REBASE)
        assert result.merged
        assert result.sha == r.SHA
        merge_request = router.requests[0]
        assert merge_request.method == "POST"
        assert json.loads(merge_request.content) == {"Do": "rebase"}


class TestIssues:
    async def test_create_issue_resolves_label_ids(self, gitea, router):
        router.add(
            "GET",
            f"{REPO_PATH}/labels",
            [{"id": 1, "name": "bug"}, {"id": 2, "name": "ui"}],
        )
        router.add("POST", f"{REPO_PATH}/issues", r.GITEA_ISSUE, status=201)
        issue = await gitea.create_issue(
            r.OWNER, r.REPO, title="Sprockets jam", labels=["ui", "bug"]
        )
        assert router.last_json()["labels"] == [2, 1]
        assert issue.labels == ("bug",)

    async def test_unknown_label(self, gitea, router):
        router.add("GET", f"{REPO_PATH}/labels", [{"id": 1, "name": "bug"}])
        with pytest.raises(InvalidRequestError, match="Unknown labels: wontfix"):
            await gitea.create_issue(
                r.OWNER, r.REPO, title="x", labels=["bug", "wontfix"]
            )

    async def test_list_issues_excludes_pulls(self, gitea, router):
        router.add("GET", f"{REPO_PATH}/issues", [r.GITEA_ISSUE])
        await gitea.list_issues(r.OWNER, r.REPO)
        assert router.last.url.params["type"] == "issues"


class TestCI:
    @pytest.mark.parametrize(
        ("payload", "expected"),
        [
            ({"state": "success", "statuses": [{}]}, CIState.SUCCESS),
            ({"state": "error", "statuses": [{}]}, CIState.FAILURE),
            ({"state": "pending", "statuses": [{}]}, CIState.PENDING),
            ({"state": "pending", "statuses": []}, CIState.UNKNOWN),
        ],
    )
    async def test_combined_status(self, gitea, router, payload, expected):
        router.add("GET", f"{REPO_PATH}/commits/main/status", payload)
        status = await gitea.get_ci_status(r.OWNER, r.REPO, "main")
        assert status.state is expected

    async def test_trigger_requires_workflow(self, gitea):
        with pytest.raises(InvalidRequestError):
            await gitea.trigger_ci(r.OWNER, r.REPO, ref="main")


class TestWebhooks:
    async def test_create_webhook(self, gitea, router):
        router.add("POST", f"{REPO_PATH}/hooks", r.GITEA_HOOK, status=201)
        hook = await gitea.create_webhook(
            r.OWNER,
            r.REPO,
            url="https://ci.example/hook",
            events=[WebhookEvent.PUSH, WebhookEvent.PULL_REQUEST],
        )
        sent = router.last_json()
        assert sent["type"] == "gitea"
        assert sent["events"] == ["push", "pull_request"]
        assert "secret" not in sent["config"]
        assert hook.events == ("push", "pull_request")
