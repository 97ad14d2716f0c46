"""AI dispatch façade.

``AIDispatcher`` is the single entry point for sending a ``MessageRequest``
to one of the registered providers. Per call it:

1. validates the request (no permit is taken, no network call made on
   failure),
2. picks a provider, by name or by the capabilities the request implies,
3. takes rate-limit permits from the provider's requests and tokens
   buckets,
4. calls the adapter under the request timeout,
5. returns the unified response, or a ``ResponseStream`` of chunks.

Failures surface as exactly one ``ProviderError``; anything else an adapter
lets escape is wrapped as ``UpstreamError``.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import TYPE_CHECKING, TypeVar

from tamma.capabilities import CapabilityFlag
from tamma.core.errors import (
    NoCapableProviderError,
    ProviderError,
    ProviderTimeoutError,
    UpstreamError,
)
from tamma.core.streams import close_stream
from tamma.core.tokens import estimate_tokens
from tamma.models import FinishReason, MessageResponse, TokenUsage
from tamma.ratelimit import REQUESTS, TOKENS, BucketKey, BucketPolicy

from .calls import CallState, CallTracker, as_provider_error

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Awaitable
    from types import TracebackType

    from tamma.capabilities import CapabilityDescriptor
    from tamma.config.schema import ProviderConfig
    from tamma.core.tokens import TokenEstimator
    from tamma.models import MessageChunk, MessageRequest, ModelInfo
    from tamma.providers.base import AIProvider
    from tamma.ratelimit import RateLimiter
    from tamma.registry import CapabilityRegistry, Registration

    from .calls import CallObserver

logger = logging.getLogger(__name__)

T = TypeVar("T")


def required_flags(
    request: MessageRequest, *, streaming: bool
) -> frozenset[CapabilityFlag]:
    """Capabilities a provider needs to serve ``request``."""
    flags: set[CapabilityFlag] = set()
    if streaming:
        flags.add(CapabilityFlag.STREAMING)
    if request.tools:
        flags.add(CapabilityFlag.TOOLS)
    if request.has_images:
        flags.add(CapabilityFlag.MULTIMODAL)
    return frozenset(flags)


def _flag_names(flags: frozenset[CapabilityFlag]) -> str:
    return ", ".join(sorted(f.value for f in flags))


class ResponseStream:
    """Chunks of one streaming call, in vendor order.

    Iterate with ``async for``; use ``async with`` (or ``aclose()``) to
    release the vendor connection when stopping early. The stream is
    forward-only and cannot be restarted.
    """

    def __init__(
        self,
        chunks: AsyncIterator[MessageChunk],
        tracker: CallTracker,
        *,
        timeout: float | None = None,
    ) -> None:
        self._chunks = chunks
        self._tracker = tracker
        self._timeout = timeout
        self._deadline = (
            None if timeout is None else asyncio.get_running_loop().time() + timeout
        )
        self._final_seen = False
        self._closed = False

    @property
    def provider(self) -> str:
        return self._tracker.target

    @property
    def state(self) -> CallState:
        return self._tracker.state

    @property
    def closed(self) -> bool:
        return self._closed

    def __aiter__(self) -> ResponseStream:
        return self

    async def __anext__(self) -> MessageChunk:
        if self._closed or self._final_seen:
            await self._close_source()
            raise StopAsyncIteration
        try:
            async with asyncio.timeout_at(self._deadline):
                chunk = await anext(self._chunks)
        except StopAsyncIteration:
            error = UpstreamError(self.provider, "Stream ended without a final chunk")
            await self._abort(error)
            raise error from None
        except TimeoutError as e:
            error = ProviderTimeoutError(
                self.provider, f"Stream exceeded {self._timeout:g}s timeout"
            )
            await self._abort(error)
            raise error from e
        except asyncio.CancelledError:
            await self._abort(None)
            raise
        except Exception as e:
            error = as_provider_error(e, self.provider)
            await self._abort(error)
            if error is e:
                raise
            raise error from e

        if chunk.is_final:
            self._final_seen = True
            self._tracker.transition(CallState.COMPLETED)
        return chunk

    async def aclose(self) -> None:
        """Stop the stream and release the vendor connection. Idempotent."""
        self._tracker.fail(None)
        await self._close_source()

    async def __aenter__(self) -> ResponseStream:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    async def collect(self) -> MessageResponse:
        """Drain the stream into a single ``MessageResponse``."""
        started = time.monotonic()
        parts: list[str] = []
        final: MessageChunk | None = None
        async with self:
            async for chunk in self:
                parts.append(chunk.delta)
                if chunk.is_final:
                    final = chunk
        if final is None:
            # Only reachable if the stream was closed before it started
            raise UpstreamError(self.provider, "Stream closed before completion")
        return MessageResponse(
            id=final.id,
            content="".join(parts),
            model=final.model,
            usage=final.usage or TokenUsage(input_tokens=0, output_tokens=0),
            finish_reason=final.finish_reason or FinishReason.STOP,
            latency_ms=(time.monotonic() - started) * 1000,
            tool_calls=final.tool_calls,
        )

    async def _abort(self, error: ProviderError | None) -> None:
        self._tracker.fail(error)
        await self._close_source()

    async def _close_source(self) -> None:
        if self._closed:
            return
        self._closed = True
        await close_stream(self._chunks)


class AIDispatcher:
    """Routes message requests to registered AI providers.

    Args:
        registry: Providers and their capability descriptors.
        limiter: Shared rate limiter; buckets are keyed by provider name
            and credential fingerprint.
        estimator: Sizes the tokens-bucket permit for a request.
        max_rate_limit_waits: Bounded waits per bucket before giving up
            with ``RateLimitedError``.
        default_timeout: Seconds, used when a request sets none.
        observer: Receives a ``CallEvent`` on every state transition.
    """

    def __init__(
        self,
        registry: CapabilityRegistry[AIProvider],
        limiter: RateLimiter,
        *,
        estimator: TokenEstimator = estimate_tokens,
        max_rate_limit_waits: int | None = 3,
        default_timeout: float | None = None,
        observer: CallObserver | None = None,
    ) -> None:
        self.registry = registry
        self.limiter = limiter
        self._estimator = estimator
        self._max_waits = max_rate_limit_waits
        self._default_timeout = default_timeout
        self._observer = observer

    # ── Sending ──────────────────────────────────────────────────

    async def send_message(
        self,
        request: MessageRequest,
        provider_name: str | None = None,
    ) -> MessageResponse | ResponseStream:
        """Send ``request``; a ``ResponseStream`` if ``request.stream``."""
        if request.stream:
            return await self.stream_message(request, provider_name)
        return await self.send_message_sync(request, provider_name)

    async def send_message_sync(
        self,
        request: MessageRequest,
        provider_name: str | None = None,
    ) -> MessageResponse:
        """Send ``request`` and wait for the complete response.

        Raises:
            ProviderError: Exactly one taxonomy error on any failure.
        """
        tracker = CallTracker(provider_name or "auto", "send_sync", self._observer)
        try:
            entry = await self._prepare(
                request, provider_name, tracker, streaming=False
            )
            timeout = self._timeout_for(request)
            try:
                async with asyncio.timeout(timeout):
                    response = await entry.adapter.send_sync(request)
            except TimeoutError as e:
                msg = f"Request exceeded {timeout:g}s timeout"
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
        return response

    async def stream_message(
        self,
        request: MessageRequest,
        provider_name: str | None = None,
    ) -> ResponseStream:
        """Admit ``request`` and open a stream of chunks.

        Permits are taken before this returns; the vendor call starts on
        the first iteration. The timeout covers the whole stream.
        """
        tracker = CallTracker(provider_name or "auto", "stream", self._observer)
        try:
            entry = await self._prepare(
                request, provider_name, tracker, streaming=True
            )
            chunks = entry.adapter.send_streaming(request)
        except asyncio.CancelledError:
            tracker.fail(None)
            raise
        except Exception as e:
            error = as_provider_error(e, tracker.target)
            tracker.fail(error)
            if error is e:
                raise
            raise error from e
        return ResponseStream(chunks, tracker, timeout=self._timeout_for(request))

    # ── Provider management ──────────────────────────────────────

    async def initialize(self, provider_name: str, config: ProviderConfig) -> None:
        """(Re)initialize a registered adapter and refresh its descriptor."""
        entry = self.registry.get(provider_name)
        await self._guard(provider_name, entry.adapter.initialize(config))
        self.registry.refresh_descriptor(
            provider_name, entry.adapter.get_capabilities()
        )

    def get_capabilities(self, provider_name: str) -> CapabilityDescriptor:
        return self.registry.get(provider_name).descriptor

    async def get_models(self, provider_name: str) -> list[ModelInfo]:
        """Models the provider offers right now. Not cached."""
        entry = self.registry.get(provider_name)
        return await self._guard(provider_name, entry.adapter.list_models())

    async def dispose(self, provider_name: str | None = None) -> None:
        """Unregister and dispose one provider, or all of them."""
        if provider_name is None:
            await self.registry.dispose_all()
            return
        entry = self.registry.unregister(provider_name)
        await self._guard(provider_name, entry.adapter.dispose())

    # ── Internals ────────────────────────────────────────────────

    async def _prepare(
        self,
        request: MessageRequest,
        provider_name: str | None,
        tracker: CallTracker,
        *,
        streaming: bool,
    ) -> Registration[AIProvider]:
        request.validate()
        entry = self._select(request, provider_name, streaming=streaming)
        tracker.target = entry.name
        tracker.transition(CallState.RATE_LIMIT_WAIT)
        waited = await self._admit(entry, request)
        if waited:
            logger.info("Waited %.2fs for %s rate limit", waited, entry.name)
        tracker.transition(CallState.IN_FLIGHT)
        return entry

    def _select(
        self,
        request: MessageRequest,
        provider_name: str | None,
        *,
        streaming: bool,
    ) -> Registration[AIProvider]:
        required = required_flags(request, streaming=streaming)

        if provider_name is not None:
            entry = self.registry.get(provider_name)
            missing = required - entry.descriptor.flags
            if missing:
                msg = f"Provider {provider_name} lacks {_flag_names(missing)}"
                raise NoCapableProviderError(provider_name, msg)
            return entry

        for entry in self.registry:
            if required <= entry.descriptor.flags:
                return entry

        if len(self.registry) == 0:
            msg = "No providers registered"
        else:
            msg = f"No registered provider supports {_flag_names(required)}"
        raise NoCapableProviderError("dispatch", msg)

    async def _admit(
        self, entry: Registration[AIProvider], request: MessageRequest
    ) -> float:
        descriptor = entry.descriptor
        credential = entry.adapter.credential_id
        waited = 0.0

        rpm = descriptor.requests_per_minute
        if rpm is not None:
            waited += await self.limiter.acquire(
                BucketKey(entry.name, credential, REQUESTS),
                1,
                policy=BucketPolicy.per_minute(rpm),
                max_waits=self._max_waits,
            )

        tpm = descriptor.tokens_per_minute
        if tpm is not None:
            key = BucketKey(entry.name, credential, TOKENS)
            policy = BucketPolicy.per_minute(tpm)
            # The bucket may predate the current descriptor
            cost = min(self._estimator(request), self.limiter.capacity(key, policy))
            waited += await self.limiter.acquire(
                key, cost, policy=policy, max_waits=self._max_waits
            )
        return waited

    def _timeout_for(self, request: MessageRequest) -> float | None:
        if request.timeout is not None:
            return request.timeout
        return self._default_timeout

    @staticmethod
    async def _guard(target: str, call: Awaitable[T]) -> T:
        try:
            return await call
        except ProviderError:
            raise
        except Exception as e:
            raise as_provider_error(e, target) from e
