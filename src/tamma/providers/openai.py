"""OpenAI provider adapter (Chat Completions API).

Also serves OpenAI-compatible gateways such as OpenRouter: pass a
``base_url`` and a different ``provider_id``.
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Any

import httpx
import openai

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

PROVIDER_ID = "openai"
DEFAULT_MODEL = "gpt-4o"
OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"

_KNOWN_MODELS: list[dict[str, Any]] = [
    {
        "model_id": "gpt-4o",
        "display_name": "GPT-4o",
        "context_window": 128_000,
        "max_output_tokens": 16_384,
        "input_cost_per_mtok": 2.50,
        "output_cost_per_mtok": 10.00,
    },
    {
        "model_id": "gpt-4o-mini",
        "display_name": "GPT-4o mini",
        "context_window": 128_000,
        "max_output_tokens": 16_384,
        "input_cost_per_mtok": 0.15,
        "output_cost_per_mtok": 0.60,
    },
    {
        "model_id": "gpt-4.1",
        "display_name": "GPT-4.1",
        "context_window": 1_047_576,
        "max_output_tokens": 32_768,
        "input_cost_per_mtok": 2.00,
        "output_cost_per_mtok": 8.00,
    },
]

_DEFAULT_CAPS = (
    ModelCapability.TEXT
    | ModelCapability.STREAMING
    | ModelCapability.SYSTEM_PROMPT
    | ModelCapability.JSON_MODE
    | ModelCapability.TOOL_USE
    | ModelCapability.VISION
)

CAPABILITIES = CapabilityDescriptor(
    supports_streaming=True,
    supports_tools=True,
    supports_multimodal=True,
    max_input_tokens=128_000,
    max_output_tokens=16_384,
    requests_per_minute=500,
    tokens_per_minute=30_000,
    versions=tuple(m["model_id"] for m in _KNOWN_MODELS),
)

_FINISH_REASONS: dict[str, FinishReason] = {
    "stop": FinishReason.STOP,
    "length": FinishReason.LENGTH,
    "tool_calls": FinishReason.TOOL_CALLS,
    "function_call": FinishReason.TOOL_CALLS,
    "content_filter": FinishReason.CONTENT_FILTER,
}


def _error_code(e: Exception) -> str:
    code = getattr(e, "code", None)
    return code if isinstance(code, str) else ""


def _map_error(e: Exception, provider_id: str = PROVIDER_ID) -> ProviderError:
    """Map OpenAI SDK and transport errors to the tamma taxonomy."""
    msg = str(e)
    if isinstance(e, (openai.APITimeoutError, httpx.TimeoutException)):
        return ProviderTimeoutError(provider_id, msg or "Request timed out")
    if isinstance(e, (openai.APIConnectionError, httpx.TransportError)):
        return UpstreamError(provider_id, msg or "Connection error")
    if isinstance(e, (openai.AuthenticationError, openai.PermissionDeniedError)):
        return AuthFailedError(provider_id, msg)
    if isinstance(e, openai.RateLimitError):
        retry_after = None
        response = getattr(e, "response", None)
        if response is not None:
            retry_after = parse_retry_after(header(response.headers, "retry-after"))
        return RateLimitedError(provider_id, retry_after=retry_after)
    if isinstance(e, openai.NotFoundError):
        return NotFoundError(provider_id, msg)
    if isinstance(e, openai.BadRequestError):
        code = _error_code(e)
        if code == "context_length_exceeded" or "maximum context length" in msg:
            return ContextOverflowError(provider_id, msg)
        if code == "content_policy_violation" or "content management policy" in msg:
            return ContentBlockedError(provider_id, msg)
        return InvalidRequestError(provider_id, msg)
    return UpstreamError(provider_id, msg or type(e).__name__)


def _message_content(message: Message) -> str | list[dict[str, Any]]:
    if isinstance(message.content, str):
        return message.content
    parts: list[dict[str, Any]] = []
    for part in message.content:
        if part.type == "image":
            url = f"data:{part.media_type};base64,{part.data}"
            parts.append({"type": "image_url", "image_url": {"url": url}})
        else:
            parts.append({"type": "text", "text": part.text or ""})
    return parts


def _build_messages(messages: tuple[Message, ...]) -> list[dict[str, Any]]:
    """Convert messages to OpenAI chat message format."""
    return [{"role": str(m.role), "content": _message_content(m)} for m in messages]


def _usage(raw: Any) -> TokenUsage:
    if raw is None:
        return TokenUsage(input_tokens=0, output_tokens=0)
    prompt = getattr(raw, "prompt_tokens", 0)
    completion = getattr(raw, "completion_tokens", 0)
    cached: int | None = None
    details = getattr(raw, "prompt_tokens_details", None)
    if details is not None and isinstance(getattr(details, "cached_tokens", None), int):
        cached = details.cached_tokens
    return TokenUsage(
        input_tokens=prompt if isinstance(prompt, int) else 0,
        output_tokens=completion if isinstance(completion, int) else 0,
        cache_read_tokens=cached,
    )


class OpenAIProvider:
    """Provider adapter for OpenAI and OpenAI-compatible chat APIs."""

    def __init__(
        self,
        api_key: str | None = None,
        *,
        client: openai.AsyncOpenAI | None = None,
        provider_id: str = PROVIDER_ID,
        base_url: str | None = None,
        default_model: str = DEFAULT_MODEL,
        capabilities: CapabilityDescriptor = CAPABILITIES,
    ) -> None:
        self._provider_id = provider_id
        self._api_key = api_key
        self._base_url = base_url
        self._default_model = default_model
        self._capabilities = capabilities
        self._client = client
        if client is None and api_key is not None:
            self._client = openai.AsyncOpenAI(api_key=api_key, base_url=base_url)

    @property
    def provider_id(self) -> str:
        return self._provider_id

    @property
    def credential_id(self) -> str:
        return credential_fingerprint(self._api_key)

    async def initialize(self, config: ProviderConfig) -> None:
        if not config.api_key:
            raise InvalidConfigError(self._provider_id, "api_key is required")
        base_url = config.base_url or self._base_url
        if base_url and not base_url.startswith(("http://", "https://")):
            msg = "base_url must be an http(s) URL"
            raise InvalidConfigError(self._provider_id, msg)

        await self.dispose()
        self._api_key = config.api_key
        self._base_url = base_url
        if config.model:
            self._default_model = config.model
        self._client = openai.AsyncOpenAI(
            api_key=config.api_key,
            base_url=base_url,
            timeout=config.timeout,
            max_retries=config.max_retries,
        )
        logger.debug(
            "Initialized %s (credential %s)", self._provider_id, self.credential_id
        )

    def get_capabilities(self) -> CapabilityDescriptor:
        return self._capabilities

    async def list_models(self) -> list[ModelInfo]:
        return [
            ModelInfo(
                provider_id=self._provider_id,
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

    def _require_client(self) -> openai.AsyncOpenAI:
        if self._client is None:
            raise InvalidConfigError(self._provider_id, "Provider is not initialized")
        return self._client

    def _build_kwargs(self, request: MessageRequest) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "model": request.model or self._default_model,
            "messages": _build_messages(request.messages),
        }
        if request.max_tokens is not None:
            kwargs["max_completion_tokens"] = request.max_tokens
        if request.temperature is not None:
            kwargs["temperature"] = request.temperature
        if request.top_p is not None:
            kwargs["top_p"] = request.top_p
        if request.stop_sequences:
            kwargs["stop"] = list(request.stop_sequences)
        if request.tools:
            kwargs["tools"] = [
                {
                    "type": "function",
                    "function": {
                        "name": t.name,
                        "description": t.description,
                        "parameters": dict(t.input_schema),
                    },
                }
                for t in request.tools
            ]
        return kwargs

    async def send_sync(self, request: MessageRequest) -> MessageResponse:
        client = self._require_client()
        kwargs = self._build_kwargs(request)

        start = time.monotonic()
        try:
            response = await client.chat.completions.create(**kwargs)
        except (openai.APIError, httpx.HTTPError) as e:
            raise _map_error(e, self._provider_id) from e

        latency_ms = (time.monotonic() - start) * 1000

        content = ""
        finish_reason = FinishReason.STOP
        tool_calls: tuple[ToolCall, ...] = ()
        if response.choices:
            choice = response.choices[0]
            content = choice.message.content or ""
            finish_reason = _FINISH_REASONS.get(
                choice.finish_reason or "", FinishReason.STOP
            )
            if choice.message.tool_calls:
                tool_calls = tuple(
                    ToolCall(
                        id=tc.id,
                        name=tc.function.name,
                        arguments=tc.function.arguments,
                    )
                    for tc in choice.message.tool_calls
                )

        if finish_reason is FinishReason.CONTENT_FILTER and not content:
            msg = "Response blocked by content filter"
            raise ContentBlockedError(self._provider_id, msg)

        response_id = getattr(response, "id", None)
        if not isinstance(response_id, str):
            response_id = new_response_id("chatcmpl")
        model = getattr(response, "model", None)
        return MessageResponse(
            id=response_id,
            content=content,
            model=model if isinstance(model, str) else kwargs["model"],
            usage=_usage(response.usage),
            finish_reason=finish_reason,
            latency_ms=latency_ms,
            tool_calls=tool_calls,
            raw_response=response,
        )

    async def send_streaming(
        self, request: MessageRequest
    ) -> AsyncIterator[MessageChunk]:
        client = self._require_client()
        kwargs = self._build_kwargs(request)
        kwargs["stream_options"] = {"include_usage": True}

        stream = None
        try:
            stream = await client.chat.completions.create(stream=True, **kwargs)

            response_id = new_response_id("chatcmpl")
            model = kwargs["model"]
            usage: TokenUsage | None = None
            finish: str | None = None
            index = 0
            emitted_text = False
            tools: dict[int, dict[str, Any]] = {}

            async for chunk in stream:
                chunk_id = getattr(chunk, "id", None)
                if isinstance(chunk_id, str):
                    response_id = chunk_id
                chunk_model = getattr(chunk, "model", None)
                if isinstance(chunk_model, str):
                    model = chunk_model
                # Usage arrives in the final chunk (choices empty)
                if chunk.usage is not None:
                    usage = _usage(chunk.usage)
                if not chunk.choices:
                    continue

                choice = chunk.choices[0]
                delta = choice.delta
                text = getattr(delta, "content", None)
                if isinstance(text, str) and text:
                    emitted_text = True
                    yield MessageChunk(
                        id=response_id, model=model, index=index, delta=text
                    )
                    index += 1
                for tc in getattr(delta, "tool_calls", None) or []:
                    slot = tools.setdefault(
                        tc.index, {"id": "", "name": "", "args": []}
                    )
                    if tc.id:
                        slot["id"] = tc.id
                    if tc.function is not None:
                        if tc.function.name:
                            slot["name"] = tc.function.name
                        if tc.function.arguments:
                            slot["args"].append(tc.function.arguments)
                if isinstance(choice.finish_reason, str):
                    finish = choice.finish_reason

            if finish is None:
                msg = "Stream ended without a finish reason"
                raise UpstreamError(self._provider_id, msg)

            finish_reason = _FINISH_REASONS.get(finish, FinishReason.STOP)
            if finish_reason is FinishReason.CONTENT_FILTER and not emitted_text:
                raise ContentBlockedError(
                    self._provider_id, "Response blocked by content filter"
                )

            yield MessageChunk(
                id=response_id,
                model=model,
                index=index,
                is_final=True,
                finish_reason=finish_reason,
                usage=usage,
                tool_calls=tuple(
                    ToolCall(id=t["id"], name=t["name"], arguments="".join(t["args"]))
                    for _, t in sorted(tools.items())
                ),
            )
        except (openai.APIError, httpx.HTTPError) as e:
            raise _map_error(e, self._provider_id) from e
        finally:
            if stream is not None:
                await close_stream(stream)

    async def dispose(self) -> None:
        client, self._client = self._client, None
        if client is not None:
            await close_stream(client)


def openrouter_provider(api_key: str | None = None, **kwargs: Any) -> OpenAIProvider:
    """OpenAIProvider preconfigured for OpenRouter."""
    kwargs.setdefault("provider_id", "openrouter")
    kwargs.setdefault("base_url", OPENROUTER_BASE_URL)
    kwargs.setdefault("default_model", "openai/gpt-4o")
    kwargs.setdefault(
        "capabilities",
        CapabilityDescriptor(
            supports_streaming=True,
            supports_tools=True,
            supports_multimodal=True,
            max_input_tokens=128_000,
            max_output_tokens=16_384,
            requests_per_minute=200,
        ),
    )
    return OpenAIProvider(api_key, **kwargs)
