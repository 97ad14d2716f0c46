"""Git dispatch façade.

``GitDispatcher`` exposes every ``GitPlatform`` operation with an extra
keyword ``platform``. The platform is the explicit one, else the
configured default, else the only registered platform. CI operations need
``supports_ci`` and webhook operations ``supports_webhooks``. Every call
takes one permit from the platform's requests bucket before it reaches the
adapter, and accepts a keyword ``timeout`` that bounds the adapter call.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, TypeVar

from tamma.capabilities import CapabilityFlag
from tamma.core.errors import NoCapableProviderError, ProviderTimeoutError
from tamma.git.models import MergeMethod
from tamma.ratelimit import REQUESTS, BucketKey, BucketPolicy

from .calls import CallState, CallTracker, as_provider_error

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Mapping, Sequence

    from tamma.capabilities import CapabilityDescriptor
    from tamma.git.base import GitPlatform
    from tamma.git.models import (
        Branch,
        CIStatus,
        Comment,
        Issue,
        IssueState,
        MergeResult,
        PRState,
        PullRequest,
        Repository,
        Webhook,
        WebhookEvent,
    )
    from tamma.git.pagination import Page, PageRequest
    from tamma.ratelimit import RateLimiter
    from tamma.registry import CapabilityRegistry, Registration

    from .calls import CallObserver

logger = logging.getLogger(__name__)

T = TypeVar("T")


class GitDispatcher:
    """Routes Git operations to registered platform adapters.

    Args:
        registry: Platforms and their capability descriptors.
        limiter: Shared rate limiter.
        default_platform: Used when a call names no platform.
        max_rate_limit_waits: Bounded waits before ``RateLimitedError``.
        default_timeout: Seconds, used when a call passes no ``timeout``.
            Rate-limit waits are not counted.
        observer: Receives a ``CallEvent`` on every state transition.
    """

    def __init__(
        self,
        registry: CapabilityRegistry[GitPlatform],
        limiter: RateLimiter,
        *,
        default_platform: str | None = None,
        max_rate_limit_waits: int | None = 3,
        default_timeout: float | None = None,
        observer: CallObserver | None = None,
    ) -> None:
        self.registry = registry
        self.limiter = limiter
        self.default_platform = default_platform
        self._max_waits = max_rate_limit_waits
        self._default_timeout = default_timeout
        self._observer = observer

    def get_capabilities(self, platform: str | None = None) -> CapabilityDescriptor:
        return self._resolve(platform, None).descriptor

    async def dispose(self, platform: str | None = None) -> None:
        """Unregister and dispose one platform, or all of them."""
        if platform is None:
            await self.registry.dispose_all()
            return
        entry = self.registry.unregister(platform)
        await entry.adapter.dispose()

    # ── Repositories & branches ──────────────────────────────────

    async def get_repository(
        self,
        owner: str,
        repo: str,
        *,
        platform: str | None = None,
        timeout: float | None = None,
    ) -> Repository:
        return await self._call(
            "get_repository",
            platform,
            timeout,
            None,
            lambda p: p.get_repository(owner, repo),
        )

    async def create_branch(
        self,
        owner: str,
        repo: str,
        name: str,
        from_ref: str,
        *,
        platform: str | None = None,
        timeout: float | None = None,
    ) -> Branch:
        return await self._call(
            "create_branch",
            platform,
            timeout,
            None,
            lambda p: p.create_branch(owner, repo, name, from_ref),
        )

    async def get_branch(
        self,
        owner: str,
        repo: str,
        name: str,
        *,
        platform: str | None = None,
        timeout: float | None = None,
    ) -> Branch:
        return await self._call(
            "get_branch",
            platform,
            timeout,
            None,
            lambda p: p.get_branch(owner, repo, name),
        )

    async def delete_branch(
        self,
        owner: str,
        repo: str,
        name: str,
        *,
        platform: str | None = None,
        timeout: float | None = None,
    ) -> None:
        await self._call(
            "delete_branch",
            platform,
            timeout,
            None,
            lambda p: p.delete_branch(owner, repo, name),
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
        platform: str | None = None,
        timeout: float | None = None,
    ) -> PullRequest:
        return await self._call(
            "create_pr",
            platform,
            timeout,
            None,
            lambda p: p.create_pr(
                owner, repo, title=title, head=head, base=base, body=body, draft=draft
            ),
        )

    async def get_pr(
        self,
        owner: str,
        repo: str,
        number: int,
        *,
        platform: str | None = None,
        timeout: float | None = None,
    ) -> PullRequest:
        return await self._call(
            "get_pr",
            platform,
            timeout,
            None,
            lambda p: p.get_pr(owner, repo, number),
        )

    async def list_prs(
        self,
        owner: str,
        repo: str,
        *,
        state: PRState | None = None,
        page: PageRequest | None = None,
        platform: str | None = None,
        timeout: float | None = None,
    ) -> Page[PullRequest]:
        return await self._call(
            "list_prs",
            platform,
            timeout,
            None,
            lambda p: p.list_prs(owner, repo, state=state, page=page),
        )

    async def merge_pr(
        self,
        owner: str,
        repo: str,
        number: int,
        *,
        method: MergeMethod = MergeMethod.MERGE,
        commit_message: str | None = None,
        platform: str | None = None,
        timeout: float | None = None,
    ) -> MergeResult:
        return await self._call(
            "merge_pr",
            platform,
            timeout,
            None,
            lambda p: p.merge_pr(
                owner, repo, number, method=method, commit_message=commit_message
            ),
        )

    async def comment_on_pr(
        self,
        owner: str,
        repo: str,
        number: int,
        body: str,
        *,
        platform: str | None = None,
        timeout: float | None = None,
    ) -> Comment:
        return await self._call(
            "comment_on_pr",
            platform,
            timeout,
            None,
            lambda p: p.comment_on_pr(owner, repo, number, body),
        )

    # ── Issues ───────────────────────────────────────────────────

    async def get_issue(
        self,
        owner: str,
        repo: str,
        number: int,
        *,
        platform: str | None = None,
        timeout: float | None = None,
    ) -> Issue:
        return await self._call(
            "get_issue",
            platform,
            timeout,
            None,
            lambda p: p.get_issue(owner, repo, number),
        )

    async def list_issues(
        self,
        owner: str,
        repo: str,
        *,
        state: IssueState | None = None,
        labels: Sequence[str] = (),
        page: PageRequest | None = None,
        platform: str | None = None,
        timeout: float | None = None,
    ) -> Page[Issue]:
        return await self._call(
            "list_issues",
            platform,
            timeout,
            None,
            lambda p: p.list_issues(
                owner, repo, state=state, labels=labels, page=page
            ),
        )

    async def create_issue(
        self,
        owner: str,
        repo: str,
        *,
        title: str,
        body: str = "",
        labels: Sequence[str] = (),
        platform: str | None = None,
        timeout: float | None = None,
    ) -> Issue:
        return await self._call(
            "create_issue",
            platform,
            timeout,
            None,
            lambda p: p.create_issue(
                owner, repo, title=title, body=body, labels=labels
            ),
        )

    async def comment_on_issue(
        self,
        owner: str,
        repo: str,
        number: int,
        body: str,
        *,
        platform: str | None = None,
        timeout: float | None = None,
    ) -> Comment:
        return await self._call(
            "comment_on_issue",
            platform,
            timeout,
            None,
            lambda p: p.comment_on_issue(owner, repo, number, body),
        )

    # ── CI ───────────────────────────────────────────────────────

    async def trigger_ci(
        self,
        owner: str,
        repo: str,
        *,
        ref: str,
        workflow: str | None = None,
        inputs: Mapping[str, str] | None = None,
        platform: str | None = None,
        timeout: float | None = None,
    ) -> CIStatus:
        return await self._call(
            "trigger_ci",
            platform,
            timeout,
            CapabilityFlag.CI,
            lambda p: p.trigger_ci(
                owner, repo, ref=ref, workflow=workflow, inputs=inputs
            ),
        )

    async def get_ci_status(
        self,
        owner: str,
        repo: str,
        ref: str,
        *,
        platform: str | None = None,
        timeout: float | None = None,
    ) -> CIStatus:
        return await self._call(
            "get_ci_status",
            platform,
            timeout,
            CapabilityFlag.CI,
            lambda p: p.get_ci_status(owner, repo, ref),
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
        platform: str | None = None,
        timeout: float | None = None,
    ) -> Webhook:
        return await self._call(
            "create_webhook",
            platform,
            timeout,
            CapabilityFlag.WEBHOOKS,
            lambda p: p.create_webhook(
                owner, repo, url=url, events=events, secret=secret
            ),
        )

    async def list_webhooks(
        self,
        owner: str,
        repo: str,
        *,
        platform: str | None = None,
        timeout: float | None = None,
    ) -> list[Webhook]:
        return await self._call(
            "list_webhooks",
            platform,
            timeout,
            CapabilityFlag.WEBHOOKS,
            lambda p: p.list_webhooks(owner, repo),
        )

    async def delete_webhook(
        self,
        owner: str,
        repo: str,
        hook_id: str,
        *,
        platform: str | None = None,
        timeout: float | None = None,
    ) -> None:
        await self._call(
            "delete_webhook",
            platform,
            timeout,
            CapabilityFlag.WEBHOOKS,
            lambda p: p.delete_webhook(owner, repo, hook_id),
        )

    # ── Internals ────────────────────────────────────────────────

    def _resolve(
        self, platform: str | None, required: CapabilityFlag | None
    ) -> Registration[GitPlatform]:
        name = platform or self.default_platform
        if name is None:
            names = self.registry.names()
            if len(names) != 1:
                msg = (
                    "No platform registered"
                    if not names
                    else f"Several platforms registered ({', '.join(names)}); "
                    "name one"
                )
                raise NoCapableProviderError("dispatch", msg)
            name = names[0]

        entry = self.registry.get(name)
        if required is not None and not entry.descriptor.has(required):
            msg = f"Platform {name} lacks {required.value}"
            raise NoCapableProviderError(name, msg)
        return entry

    async def _call(
        self,
        operation: str,
        platform: str | None,
        timeout: float | None,
        required: CapabilityFlag | None,
        invoke: Callable[[GitPlatform], Awaitable[T]],
    ) -> T:
        if timeout is None:
            timeout = self._default_timeout
        tracker = CallTracker(platform or "auto", operation, self._observer)
        try:
            entry = self._resolve(platform, required)
            tracker.target = entry.name
            tracker.transition(CallState.RATE_LIMIT_WAIT)
            rpm = entry.descriptor.requests_per_minute
            if rpm is not None:
                await self.limiter.acquire(
                    BucketKey(entry.name, entry.adapter.credential_id, REQUESTS),
                    1,
                    policy=BucketPolicy.per_minute(rpm),
                    max_waits=self._max_waits,
                )
            tracker.transition(CallState.IN_FLIGHT)
            try:
                async with asyncio.timeout(timeout):
                    result = await invoke(entry.adapter)
            except TimeoutError as e:
                msg = f"{operation} exceeded {timeout:g}s timeout"
                raise ProviderTimeoutError(entry.name, msg) from e
        except asyncio.CancelledError:
            tracker.fail(None)
            raise
        except Exception as e:
            error = as_provider_error(e, tracker.target)
            tracker.fail(error)
            if error is e:
                raise
            raise error from e

        tracker.transition(CallState.COMPLETED)
        return result
