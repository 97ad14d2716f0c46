"""Google (Gemini) provider adapter."""

from __future__ import annotations

import json
import logging
import time
from typing import TYPE_CHECKING, Any

import httpx
from google import genai
from google.genai import errors as genai_errors

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

PROVIDER_ID = "google"
DEFAULT_MODEL = "gemini-2.5-flash"

_KNOWN_MODELS: list[dict[str, Any]] = [
    {
        "model_id": "gemini-2.5-pro",
        "display_name": "Gemini 2.5 Pro",
        "context_window": 1_048_576,
        "max_output_tokens": 65_536,
        "input_cost_per_mtok": 1.25,
        "output_cost_per_mtok": 10.00,
    },
    {
        "model_id": "gemini-2.5-flash",
        "display_name": "Gemini 2.5 Flash",
        "context_window": 1_048_576,
        "max_output_tokens": 65_536,
        "input_cost_per_mtok": 0.30,
        "output_cost_per_mtok": 2.50,
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
    max_input_tokens=1_048_576,
    max_output_tokens=65_536,
    requests_per_minute=60,
    tokens_per_minute=1_000_000,
    versions=tuple(m["model_id"] for m in _KNOWN_MODELS),
)

_FINISH_REASONS: dict[str, FinishReason] = {
    "STOP": FinishReason.STOP,
    "MAX_TOKENS": FinishReason.LENGTH,
    "SAFETY": FinishReason.CONTENT_FILTER,
    "RECITATION": FinishReason.CONTENT_FILTER,
    "BLOCKLIST": FinishReason.CONTENT_FILTER,
    "PROHIBITED_CONTENT": FinishReason.CONTENT_FILTER,
    "SPII": FinishReason.CONTENT_FILTER,
    "IMAGE_SAFETY": FinishReason.CONTENT_FILTER,
    "MALFORMED_FUNCTION_CALL": FinishReason.ERROR,
    "OTHER": FinishReason.STOP,
}


def _map_error(e: Exception) -> ProviderError:
    """Map Google GenAI and transport errors to the tamma taxonomy.

    The SDK reports the HTTP status on ``.code``; classify on that rather
    than on message text.
    """
    msg = str(e)
    if isinstance(e, httpx.TimeoutException):
        return ProviderTimeoutError(PROVIDER_ID, msg or "Request timed out")
    if isinstance(e, httpx.TransportError):
        return UpstreamError(PROVIDER_ID, msg or "Connection error")
    if isinstance(e, genai_errors.ClientError):
        code = getattr(e, "code", None)
        lower = msg.lower()
        if code in (401, 403):
            return AuthFailedError(PROVIDER_ID, msg)
        if code == 429:
            response = getattr(e, "response", None)
            headers = getattr(response, "headers", None)
            retry_after = parse_retry_after(header(headers, "retry-after"))
            return RateLimitedError(PROVIDER_ID, retry_after=retry_after)
        if code == 404:
            return NotFoundError(PROVIDER_ID, msg)
        if code == 408:
            return ProviderTimeoutError(PROVIDER_ID, msg)
        if code == 413 or "exceeds the maximum number of tokens" in lower:
            return ContextOverflowError(PROVIDER_ID, msg)
        if "api key not valid" in lower:
            return AuthFailedError(PROVIDER_ID, msg)
        return InvalidRequestError(PROVIDER_ID, msg)
    if isinstance(e, genai_errors.ServerError) and getattr(e, "code", None) == 504:
        return ProviderTimeoutError(PROVIDER_ID, msg)
    return UpstreamError(PROVIDER_ID, msg or type(e).__name__)


def _reason_name(value: Any) -> str | None:
    if value is None:
        return None
    name = getattr(value, "name", None)
    return name if isinstance(name, str) else str(value).upper()


def _parts(message: Message) -> list[dict[str, Any]]:
    if isinstance(message.content, str):
        return [{"text": message.content}]
    parts: list[dict[str, Any]] = []
    for part in message.content:
        if part.type == "image":
            inline = {"mime_type": part.media_type, "data": part.data}
            parts.append({"inline_data": inline})
        else:
            parts.append({"text": part.text or ""})
    return parts


def _build_contents(
    messages: tuple[Message, ...],
) -> tuple[str | None, list[dict[str, Any]]]:
    """Split messages into system instruction + contents."""
    system_parts: list[str] = []
    contents: list[dict[str, Any]] = []

    for msg in messages:
        role = str(msg.role)
        if role == "system":
            system_parts.append(msg.text)
        else:
            vendor_role = "model" if role == "assistant" else "user"
            contents.append({"role": vendor_role, "parts": _parts(msg)})

    system = "\n\n".join(system_parts) if system_parts else None
    return system, contents


def _usage(metadata: Any) -> TokenUsage:
    if metadata is None:
        return TokenUsage(input_tokens=0, output_tokens=0)
    cached = getattr(metadata, "cached_content_token_count", None)
    return TokenUsage(
        input_tokens=getattr(metadata, "prompt_token_count", None) or 0,
        output_tokens=getattr(metadata, "candidates_token_count", None) or 0,
        cache_read_tokens=cached if isinstance(cached, int) else None,
    )


def _function_calls(candidate: Any) -> list[ToolCall]:
    content = getattr(candidate, "content", None)
    parts = getattr(content, "parts", None) or []
    calls: list[ToolCall] = []
    for part in parts:
        fc = getattr(part, "function_call", None)
        if fc and fc.name:
            calls.append(
                ToolCall(
                    id=getattr(fc, "id", None) or f"google-{fc.name}",
                    name=str(fc.name),
                    arguments=json.dumps(dict(fc.args) if fc.args else {}),
                )
            )
    return calls


def _prompt_blocked(response: Any) -> str | None:
    feedback = getattr(response, "prompt_feedback", None)
    return _reason_name(getattr(feedback, "block_reason", None))


class GoogleProvider:
    """Provider adapter for Google Gemini models."""

    def __init__(
        self,
        api_key: str | None = None,
        *,
        client: genai.Client | None = None,
        default_model: str = DEFAULT_MODEL,
        capabilities: CapabilityDescriptor = CAPABILITIES,
    ) -> None:
        self._api_key = api_key
        self._default_model = default_model
        self._capabilities = capabilities
        self._client = client
        if client is None and api_key is not None:
            self._client = genai.Client(api_key=api_key)

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
        http_options: dict[str, Any] = {"timeout": int(config.timeout * 1000)}
        if config.base_url:
            http_options["base_url"] = config.base_url
        self._client = genai.Client(
            api_key=config.api_key,
            http_options=genai.types.HttpOptions(**http_options),
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

    def _require_client(self) -> genai.Client:
        if self._client is None:
            raise InvalidConfigError(PROVIDER_ID, "Provider is not initialized")
        return self._client

    def _build_call(self, request: MessageRequest) -> dict[str, Any]:
        system, contents = _build_contents(request.messages)

        config_kwargs: dict[str, Any] = {"system_instruction": system}
        if request.max_tokens is not None:
            config_kwargs["max_output_tokens"] = request.max_tokens
        if request.temperature is not None:
            config_kwargs["temperature"] = request.temperature
        if request.top_p is not None:
            config_kwargs["top_p"] = request.top_p
        if request.stop_sequences:
            config_kwargs["stop_sequences"] = list(request.stop_sequences)
        if request.tools:
            config_kwargs["tools"] = [
                {
                    "function_declarations": [
                        {
                            "name": t.name,
                            "description": t.description,
                            "parameters": dict(t.input_schema),
                        }
                        for t in request.tools
                    ]
                }
            ]

        return {
            "model": request.model or self._default_model,
            "contents": contents,
            "config": genai.types.GenerateContentConfig(**config_kwargs),
        }

    async def send_sync(self, request: MessageRequest) -> MessageResponse:
        client = self._require_client()
        call = self._build_call(request)

        start = time.monotonic()
        try:
            response = await client.aio.models.generate_content(**call)
        except (genai_errors.APIError, httpx.HTTPError) as e:
            raise _map_error(e) from e

        latency_ms = (time.monotonic() - start) * 1000

        blocked = _prompt_blocked(response)
        if blocked:
            raise ContentBlockedError(PROVIDER_ID, f"Prompt blocked: {blocked}")

        candidate = response.candidates[0] if response.candidates else None
        reason = _reason_name(getattr(candidate, "finish_reason", None))
        finish_reason = _FINISH_REASONS.get(reason or "STOP", FinishReason.STOP)
        tool_calls = _function_calls(candidate) if candidate is not None else []
        if tool_calls and finish_reason is FinishReason.STOP:
            finish_reason = FinishReason.TOOL_CALLS

        # response.text raises on candidates with only function calls in some
        # SDK versions; read text parts directly
        content_obj = getattr(candidate, "content", None)
        parts = getattr(content_obj, "parts", None) or []
        content = "".join(
            p.text for p in parts if isinstance(getattr(p, "text", None), str)
        )
        if finish_reason is FinishReason.CONTENT_FILTER and not content:
            raise ContentBlockedError(PROVIDER_ID, f"Response blocked: {reason}")

        response_id = getattr(response, "response_id", None)
        return MessageResponse(
            id=response_id if isinstance(response_id, str) else new_response_id("gen"),
            content=content,
            model=call["model"],
            usage=_usage(response.usage_metadata),
            finish_reason=finish_reason,
            latency_ms=latency_ms,
            tool_calls=tuple(tool_calls),
            raw_response=response,
        )

    async def send_streaming(
        self, request: MessageRequest
    ) -> AsyncIterator[MessageChunk]:
        client = self._require_client()
        call = self._build_call(request)

        stream = None
        try:
            stream = await client.aio.models.generate_content_stream(**call)

            response_id = new_response_id("gen")
            model = call["model"]
            usage: TokenUsage | None = None
            reason: str | None = None
            index = 0
            emitted_text = False
            tool_calls: list[ToolCall] = []

            async for chunk in stream:
                blocked = _prompt_blocked(chunk)
                if blocked:
                    raise ContentBlockedError(PROVIDER_ID, f"Prompt blocked: {blocked}")
                chunk_id = getattr(chunk, "response_id", None)
                if isinstance(chunk_id, str):
                    response_id = chunk_id
                if chunk.usage_metadata:
                    usage = _usage(chunk.usage_metadata)
                if not chunk.candidates:
                    continue

                candidate = chunk.candidates[0]
                tool_calls.extend(_function_calls(candidate))
                content_obj = getattr(candidate, "content", None)
                for part in getattr(content_obj, "parts", None) or []:
                    text = getattr(part, "text", None)
                    if isinstance(text, str) and text:
                        emitted_text = True
                        yield MessageChunk(
                            id=response_id, model=model, index=index, delta=text
                        )
                        index += 1
                chunk_reason = _reason_name(getattr(candidate, "finish_reason", None))
                if chunk_reason:
                    reason = chunk_reason

            if reason is None:
                raise UpstreamError(PROVIDER_ID, "Stream ended without a finish reason")

            finish_reason = _FINISH_REASONS.get(reason, FinishReason.STOP)
            if tool_calls and finish_reason is FinishReason.STOP:
                finish_reason = FinishReason.TOOL_CALLS
            if finish_reason is FinishReason.CONTENT_FILTER and not emitted_text:
                raise ContentBlockedError(PROVIDER_ID, f"Response blocked: {reason}")

            yield MessageChunk(
                id=response_id,
                model=model,
                index=index,
                is_final=True,
                finish_reason=finish_reason,
                usage=usage,
                tool_calls=tuple(tool_calls),
            )
        except (genai_errors.APIError, httpx.HTTPError) as e:
            raise _map_error(e) from e
        finally:
            if stream is not None:
                await close_stream(stream)

    async def dispose(self) -> None:
        client, self._client = self._client, None
        if client is None:
            return
        aio = getattr(client, "aio", None)
        if aio is not None:
            await close_stream(aio)
