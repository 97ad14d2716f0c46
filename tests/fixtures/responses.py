"""Canned platform payloads for deterministic adapter testing.

Each GitHub / GitLab / Gitea pair describes the *same* logical entity, so
the adapters must normalize them to records whose portable fields match.
"""

from __future__ import annotations

from typing import Any

OWNER = "acme"
REPO = "widgets"

# ── Repositories ─────────────────────────────────────────────

GITHUB_REPO: dict[str, Any] = {
    "id": 1296269,
    "node_id": "MDEwOlJlcG9zaXRvcnkxMjk2MjY5",
    "name": REPO,
    "owner": {"login": OWNER},
    "default_branch": "main",
    "private": False,
    "description": "Widget factory",
    "html_url": "https://github.com/acme/widgets",
    "clone_url": "https://github.com/acme/widgets.git",
    "fork": False,
}

GITLAB_PROJECT: dict[str, Any] = {
    "id": 42,
    "path": REPO,
    "path_with_namespace": f"{OWNER}/{REPO}",
    "namespace": {"path": OWNER, "full_path": OWNER},
    "default_branch": "main",
    "visibility": "public",
    "description": "Widget factory",
    "web_url": "https://gitlab.com/acme/widgets",
    "http_url_to_repo": "https://gitlab.com/acme/widgets.git",
}

GITEA_REPO: dict[str, Any] = {
    "id": 9,
    "name": REPO,
    "owner": {"login": OWNER},
    "default_branch": "main",
    "private": False,
    "description": "Widget factory",
    "html_url": "https://gitea.com/acme/widgets",
    "clone_url": "https://gitea.com/acme/widgets.git",
}

# ── Branches ─────────────────────────────────────────────────

SHA = "6dcb09b5b57875f334f61aebed695e2e4193db5e"

GITHUB_BRANCH: dict[str, Any] = {
    "name": "feature",
    "commit": {"sha": SHA},
    "protected": False,
    "_links": {"html": "https://github.com/acme/widgets/tree/feature"},
}

GITLAB_BRANCH: dict[str, Any] = {
    "name": "feature",
    "commit": {"id": SHA},
    "protected": False,
    "web_url": "https://gitlab.com/acme/widgets/-/tree/feature",
}

GITEA_BRANCH: dict[str, Any] = {
    "name": "feature",
    "commit": {"id": SHA},
    "protected": False,
}

# ── Pull / merge requests ────────────────────────────────────

GITHUB_PR: dict[str, Any] = {
    "id": 1001,
    "node_id": "PR_kwDOA",
    "number": 7,
    "title": "Add sprockets",
    "state": "open",
    "merged": False,
    "merged_at": None,
    "head": {"ref": "feature", "sha": SHA},
    "base": {"ref": "main"},
    "body": "Adds sprocket support",
    "user": {"login": "octo"},
    "draft": False,
    "html_url": "https://github.com/acme/widgets/pull/7",
    "merge_commit_sha": None,
}

GITLAB_MR: dict[str, Any] = {
    "id": 5005,
    "iid": 7,
    "project_id": 42,
    "title": "Add sprockets",
    "state": "opened",
    "source_branch": "feature",
    "target_branch": "main",
    "description": "Adds sprocket support",
    "author": {"username": "octo"},
    "draft": False,
    "web_url": "https://gitlab.com/acme/widgets/-/merge_requests/7",
    "sha": SHA,
    "merge_commit_sha": None,
    "merge_status": "can_be_merged",
}

GITEA_PR: dict[str, Any] = {
    "id": 77,
    "number": 7,
    "title": "Add sprockets",
    "state": "open",
    "merged": False,
    "head": {"ref": "feature", "sha": SHA},
    "base": {"ref": "main"},
    "body": "Adds sprocket support",
    "user": {"login": "octo"},
    "html_url": "https://gitea.com/acme/widgets/pulls/7",
    "merge_commit_sha": None,
}

# ── Issues & comments ────────────────────────────────────────

GITHUB_ISSUE: dict[str, Any] = {
    "id": 2002,
    "node_id": "I_kwDOA",
    "number": 3,
    "title": "Sprockets jam",
    "state": "open",
    "body": "They jam on startup",
    "user": {"login": "octo"},
    "labels": [{"name": "bug"}],
    "html_url": "https://github.com/acme/widgets/issues/3",
}

GITLAB_ISSUE: dict[str, Any] = {
    "id": 6006,
    "iid": 3,
    "project_id": 42,
    "title": "Sprockets jam",
    "state": "opened",
    "description": "They jam on startup",
    "author": {"username": "octo"},
    "labels": ["bug"],
    "web_url": "https://gitlab.com/acme/widgets/-/issues/3",
}

GITEA_ISSUE: dict[str, Any] = {
    "id": 88,
    "number": 3,
    "title": "Sprockets jam",
    "state": "open",
    "body": "They jam on startup",
    "user": {"login": "octo"},
    "labels": [{"id": 1, "name": "bug"}],
    "html_url": "https://gitea.com/acme/widgets/issues/3",
}

GITHUB_COMMENT: dict[str, Any] = {
    "id": 3003,
    "body": "Looks good",
    "user": {"login": "octo"},
    "html_url": "https://github.com/acme/widgets/pull/7#issuecomment-3003",
}

GITLAB_NOTE: dict[str, Any] = {
    "id": 7007,
    "body": "Looks good",
    "author": {"username": "octo"},
    "noteable_type": "MergeRequest",
}

GITEA_COMMENT: dict[str, Any] = {
    "id": 99,
    "body": "Looks good",
    "user": {"login": "octo"},
    "html_url": "https://gitea.com/acme/widgets/pulls/7#issuecomment-99",
}

# ── Webhooks ─────────────────────────────────────────────────

GITHUB_HOOK: dict[str, Any] = {
    "id": 12,
    "active": True,
    "events": ["push", "pull_request"],
    "config": {"url": "https://ci.example/hook", "content_type": "json"},
}

GITLAB_HOOK: dict[str, Any] = {
    "id": 13,
    "url": "https://ci.example/hook",
    "push_events": True,
    "merge_requests_events": True,
    "issues_events": False,
    "disabled_until": None,
}

GITEA_HOOK: dict[str, Any] = {
    "id": 14,
    "type": "gitea",
    "active": True,
    "events": ["push", "pull_request"],
    "config": {"url": "https://ci.example/hook", "content_type": "json"},
}
