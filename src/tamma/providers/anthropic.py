"""Anthropic (Claude) provider adapter."""

from __future__ import annotations

import json
import logging
import time
from typing import TYPE_CHECKING, Any

import anthropic
import httpx

from tamma.capabilities import CapabilityDescriptor
from tamma.core.errors import (
    AuthFailedError,
    ContentBlockedError,
    ContextOverflowError,
    InvalidConfigError,
    InvalidRequestError,
    NotFoundError,
    ProviderError,
    ProviderTimeoutError,
    RateLimitedError,
    UpstreamError,
)
from tamma.core.http import header, parse_retry_after
from tamma.core.redact import credential_fingerprint
from tamma.core.streams import close_stream
from tamma.models import (
    FinishReason,
    MessageChunk,
    MessageResponse,
    ModelCapability,
    ModelInfo,
    TokenUsage,
    ToolCall,
    new_response_id,
)

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from tamma.config.schema import ProviderConfig
    from tamma.models import Message, MessageRequest

logger = logging.getLogger(__name__)

PROVIDER_ID = "anthropic"
DEFAULT_MODEL = "claude-sonnet-4-5-20250929"
DEFAULT_MAX_TOKENS = 4096

# Known Claude models with metadata.
# Updated as new models release; list_models() returns these.
_KNOWN_MODELS: list[dict[str, Any]] = [
    {
        "model_id": "claude-opus-4-1-20250805",
        "display_name": "Claude Opus 4.1",
        "context_window": 200_000,
        "max_output_tokens": 32_000,
        "input_cost_per_mtok": 15.0,
        "output_cost_per_mtok": 75.0,
    },
    {
        "model_id": "claude-sonnet-4-5-20250929",
        "display_name": "Claude Sonnet 4.5",
        "context_window": 200_000,
        "max_output_tokens": 64_000,
        "input_cost_per_mtok": 3.0,
        "output_cost_per_mtok": 15.0,
    },
    {
        "model_id": "claude-haiku-4-5-20251001",
        "display_name": "Claude Haiku 4.5",
        "context_window": 200_000,
        "max_output_tokens": 64_000,
        "input_cost_per_mtok": 1.0,
        "output_cost_per_mtok": 5.0,
    },
]

_DEFAULT_CAPS = (
    ModelCapability.TEXT
    | ModelCapability.STREAMING
    | ModelCapability.SYSTEM_PROMPT
    | ModelCapability.TOOL_USE
    | ModelCapability.VISION
    | ModelCapability.PROMPT_CACHING
)

CAPABILITIES = CapabilityDescriptor(
    supports_streaming=True,
    supports_tools=True,
    supports_multimodal=True,
    supports_prompt_caching=True,
    max_input_tokens=200_000,
    max_output_tokens=64_000,
    requests_per_minute=50,
    tokens_per_minute=40_000,
    versions=tuple(m["model_id"] for m in _KNOWN_MODELS),
)

_STOP_REASONS: dict[str, FinishReason] = {
    "end_turn": FinishReason.STOP,
    "stop_sequence": FinishReason.STOP,
    "pause_turn": FinishReason.STOP,
    "max_tokens": FinishReason.LENGTH,
    "tool_use": FinishReason.TOOL_CALLS,
    "refusal": FinishReason.CONTENT_FILTER,
}

_CONTEXT_MARKERS = ("prompt is too long", "context window", "too many tokens")


def _map_error(e: Exception) -> ProviderError:
    """Map Anthropic SDK and transport errors to the tamma taxonomy."""
    msg = str(e)
    # APITimeoutError subclasses APIConnectionError; check it first
    if isinstance(e, (anthropic.APITimeoutError, httpx.TimeoutException)):
        return ProviderTimeoutError(PROVIDER_ID, msg or "Request timed out")
    if isinstance(e, (anthropic.APIConnectionError, httpx.TransportError)):
        return UpstreamError(PROVIDER_ID, msg or "Connection error")
    if isinstance(e, (anthropic.AuthenticationError, anthropic.PermissionDeniedError)):
        return AuthFailedError(PROVIDER_ID, msg)
    if isinstance(e, anthropic.RateLimitError):
        retry_after = None
        response = getattr(e, "response", None)
        if response is not None:
            retry_after = parse_retry_after(header(response.headers, "retry-after"))
        return RateLimitedError(PROVIDER_ID, retry_after=retry_after)
    if isinstance(e, anthropic.NotFoundError):
        return NotFoundError(PROVIDER_ID, msg)
    if isinstance(e, anthropic.APIStatusError) and e.status_code == 413:
        return ContextOverflowError(PROVIDER_ID, msg)
    if isinstance(e, anthropic.BadRequestError):
        if any(marker in msg.lower() for marker in _CONTEXT_MARKERS):
            return ContextOverflowError(PROVIDER_ID, msg)
        return InvalidRequestError(PROVIDER_ID, msg)
    # 5xx, 529 overloaded, and anything unrecognised
    return UpstreamError(PROVIDER_ID, msg or type(e).__name__)


def _content_blocks(message: Message) -> str | list[dict[str, Any]]:
    if isinstance(message.content, str):
        return message.content
    blocks: list[dict[str, Any]] = []
    for part in message.content:
        if part.type == "image":
            blocks.append(
                {
                    "type": "image",
                    "source": {
                        "type": "base64",
                        "media_type": part.media_type,
                        "data": part.data,
                    },
                }
            )
        else:
            blocks.append({"type": "text", "text": part.text or ""})
    return blocks


def _build_messages(
    messages: tuple[Message, ...],
) -> tuple[str | None, list[dict[str, Any]]]:
    """Split messages into Anthropic's system + messages format."""
    system_parts: list[str] = []
    api_messages: list[dict[str, Any]] = []

    for msg in messages:
        if str(msg.role) == "system":
            system_parts.append(msg.text)
        else:
            api_messages.append(
                {"role": str(msg.role), "content": _content_blocks(msg)}
            )

    system = "\n\n".join(system_parts) if system_parts else None
    return system, api_messages


def _int(value: Any) -> int:
    return value if isinstance(value, int) else 0


def _opt_int(value: Any) -> int | None:
    return value if isinstance(value, int) else None


def _usage(raw: Any, output_tokens: int | None = None) -> TokenUsage:
    return TokenUsage(
        input_tokens=_int(getattr(raw, "input_tokens", 0)),
        output_tokens=(
            output_tokens
            if output_tokens is not None
            else _int(getattr(raw, "output_tokens", 0))
        ),
        cache_read_tokens=_opt_int(getattr(raw, "cache_read_input_tokens", None)),
        cache_write_tokens=_opt_int(getattr(raw, "cache_creation_input_tokens", None)),
    )


class AnthropicProvider:
    """Provider adapter for Anthropic's Claude models."""

    def __init__(
        self,
        api_key: str | None = None,
        *,
        client: anthropic.AsyncAnthropic | None = None,
        default_model: str = DEFAULT_MODEL,
        capabilities: CapabilityDescriptor = CAPABILITIES,
    ) -> None:
        self._api_key = api_key
        self._default_model = default_model
        self._capabilities = capabilities
        self._client = client
        if client is None and api_key is not None:
            self._client = anthropic.AsyncAnthropic(api_key=api_key)

    @property
    def provider_id(self) -> str:
        return PROVIDER_ID

    @property
    def credential_id(self) -> str:
        return credential_fingerprint(self._api_key)

    async def initialize(self, config: ProviderConfig) -> None:
        if not config.api_key:
            raise InvalidConfigError(PROVIDER_ID, "api_key is required")
        if config.base_url and not config.base_url.startswith(("http://", "https://")):
            raise InvalidConfigError(PROVIDER_ID, "base_url must be an http(s) URL")

        await self.dispose()
        self._api_key = config.api_key
        if config.model:
            self._default_model = config.model
        self._client = anthropic.AsyncAnthropic(
            api_key=config.api_key,
            base_url=config.base_url,
            timeout=config.timeout,
            max_retries=config.max_retries,
        )
        logger.debug("Initialized %s (credential %s)", PROVIDER_ID, self.credential_id)

    def get_capabilities(self) -> CapabilityDescriptor:
        return self._capabilities

    async def list_models(self) -> list[ModelInfo]:
        return [
            ModelInfo(
                provider_id=PROVIDER_ID,
                model_id=m["model_id"],
                display_name=m["display_name"],
                capabilities=_DEFAULT_CAPS,
                context_window=m["context_window"],
                max_output_tokens=m["max_output_tokens"],
                input_cost_per_mtok=m["input_cost_per_mtok"],
                output_cost_per_mtok=m["output_cost_per_mtok"],
            )
            for m in _KNOWN_MODELS
        ]

    def _require_client(self) -> anthropic.AsyncAnthropic:
        if self._client is None:
            raise InvalidConfigError(PROVIDER_ID, "Provider is not initialized")
        return self._client

    def _build_kwargs(self, request: MessageRequest) -> dict[str, Any]:
        system, api_messages = _build_messages(request.messages)
        kwargs: dict[str, Any] = {
            "model": request.model or self._default_model,
            "max_tokens": request.max_tokens or DEFAULT_MAX_TOKENS,
            "messages": api_messages,
        }
        if system is not None:
            kwargs["system"] = system
        if request.temperature is not None:
            kwargs["temperature"] = request.temperature
        if request.top_p is not None:
            kwargs["top_p"] = request.top_p
        if request.stop_sequences:
            kwargs["stop_sequences"] = list(request.stop_sequences)
        if request.tools:
            kwargs["tools"] = [
                {
                    "name": t.name,
                    "description": t.description,
                    "input_schema": dict(t.input_schema),
                }
                for t in request.tools
            ]
        return kwargs

    async def send_sync(self, request: MessageRequest) -> MessageResponse:
        client = self._require_client()
        kwargs = self._build_kwargs(request)

        start = time.monotonic()
        try:
            response = await client.messages.create(**kwargs)
        except (anthropic.APIError, httpx.HTTPError) as e:
            raise _map_error(e) from e

        latency_ms = (time.monotonic() - start) * 1000

        texts: list[str] = []
        tool_calls: list[ToolCall] = []
        for block in response.content:
            block_type = getattr(block, "type", "text")
            if block_type == "tool_use":
                tool_calls.append(
                    ToolCall(
                        id=block.id,
                        name=block.name,
                        arguments=json.dumps(block.input),
                    )
                )
            elif block_type == "text":
                texts.append(block.text)

        content = "".join(texts)
        finish_reason = _STOP_REASONS.get(response.stop_reason or "", FinishReason.STOP)
        if finish_reason is FinishReason.CONTENT_FILTER and not content:
            raise ContentBlockedError(PROVIDER_ID, "Claude declined to respond")

        return MessageResponse(
            id=getattr(response, "id", None) or new_response_id(),
            content=content,
            model=getattr(response, "model", None) or kwargs["model"],
            usage=_usage(response.usage),
            finish_reason=finish_reason,
            latency_ms=latency_ms,
            tool_calls=tuple(tool_calls),
            raw_response=response,
        )

    async def send_streaming(
        self, request: MessageRequest
    ) -> AsyncIterator[MessageChunk]:
        client = self._require_client()
        kwargs = self._build_kwargs(request)

        stream = None
        try:
            stream = await client.messages.create(stream=True, **kwargs)

            response_id = new_response_id()
            model = kwargs["model"]
            start_usage: Any = None
            output_tokens: int | None = None
            stop_reason: str | None = None
            index = 0
            emitted_text = False
            tools: dict[int, dict[str, Any]] = {}
            finished = False

            async for event in stream:
                event_type = getattr(event, "type", None)
                if event_type == "message_start":
                    response_id = event.message.id or response_id
                    model = event.message.model or model
                    start_usage = event.message.usage
                elif event_type == "content_block_start":
                    block = event.content_block
                    if getattr(block, "type", None) == "tool_use":
                        tools[event.index] = {
                            "id": block.id,
                            "name": block.name,
                            "json": [],
                        }
                elif event_type == "content_block_delta":
                    delta = event.delta
                    delta_type = getattr(delta, "type", None)
                    if delta_type == "text_delta" and delta.text:
                        emitted_text = True
                        yield MessageChunk(
                            id=response_id, model=model, index=index, delta=delta.text
                        )
                        index += 1
                    elif delta_type == "input_json_delta" and event.index in tools:
                        tools[event.index]["json"].append(delta.partial_json)
                elif event_type == "message_delta":
                    reason = getattr(event.delta, "stop_reason", None)
                    stop_reason = reason or stop_reason
                    usage = getattr(event, "usage", None)
                    if usage is not None:
                        output_tokens = _opt_int(getattr(usage, "output_tokens", None))
                elif event_type == "message_stop":
                    finished = True
                    break

            if not finished:
                raise UpstreamError(PROVIDER_ID, "Stream ended before message_stop")

            finish_reason = _STOP_REASONS.get(stop_reason or "", FinishReason.STOP)
            if finish_reason is FinishReason.CONTENT_FILTER and not emitted_text:
                raise ContentBlockedError(PROVIDER_ID, "Claude declined to respond")

            tool_calls = tuple(
                ToolCall(
                    id=t["id"],
                    name=t["name"],
                    arguments="".join(t["json"]) or "{}",
                )
                for _, t in sorted(tools.items())
            )
            yield MessageChunk(
                id=response_id,
                model=model,
                index=index,
                is_final=True,
                finish_reason=finish_reason,
                usage=_usage(start_usage, output_tokens),
                tool_calls=tool_calls,
            )
        except (anthropic.APIError, httpx.HTTPError) as e:
            raise _map_error(e) from e
        finally:
            if stream is not None:
                await close_stream(stream)

    async def dispose(self) -> None:
        client, self._client = self._client, None
        if client is not None:
            await close_stream(client)
