"""Unified request/response model for AI providers.

Data classes are immutable where possible (frozen dataclasses with slots).
Sequences are stored as tuples so a submitted request can't change under
an in-flight call.
"""

from __future__ import annotations

import enum
import uuid
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

from tamma.core.errors import InvalidRequestError

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping


class Role(enum.StrEnum):
    """Message roles accepted by every provider."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class FinishReason(enum.StrEnum):
    """Why a model stopped generating."""

    STOP = "stop"
    LENGTH = "length"
    TOOL_CALLS = "tool_calls"
    CONTENT_FILTER = "content_filter"
    ERROR = "error"


class ModelCapability(enum.Flag):
    """Capabilities a model may or may not support."""

    TEXT = enum.auto()
    STREAMING = enum.auto()
    TOOL_USE = enum.auto()
    VISION = enum.auto()
    JSON_MODE = enum.auto()
    SYSTEM_PROMPT = enum.auto()
    PROMPT_CACHING = enum.auto()


@dataclass(frozen=True, slots=True)
class ModelInfo:
    """Static metadata about a model available through a provider."""

    provider_id: str  # e.g. "anthropic", "openai", "google"
    model_id: str  # e.g. "claude-sonnet-4-5"
    display_name: str
    capabilities: ModelCapability
    context_window: int  # Max tokens (input + output)
    max_output_tokens: int
    input_cost_per_mtok: float = 0.0  # USD per million input tokens
    output_cost_per_mtok: float = 0.0

    @property
    def model_ref(self) -> str:
        """Canonical reference: ``provider_id:model_id``."""
        return f"{self.provider_id}:{self.model_id}"


@dataclass(frozen=True, slots=True)
class TokenUsage:
    """Token counts from a single model call.

    Cache counts are ``None`` for providers without prompt caching.
    """

    input_tokens: int
    output_tokens: int
    cache_read_tokens: int | None = None
    cache_write_tokens: int | None = None

    def __post_init__(self) -> None:
        for name in (
            "input_tokens",
            "output_tokens",
            "cache_read_tokens",
            "cache_write_tokens",
        ):
            value = getattr(self, name)
            if value is None:
                continue
            if not isinstance(value, int) or value < 0:
                msg = f"{name} must be a non-negative integer, got {value!r}"
                raise ValueError(msg)

    @property
    def total_tokens(self) -> int:
        """Input + output, plus cache traffic when reported."""
        return (
            self.input_tokens
            + self.output_tokens
            + (self.cache_read_tokens or 0)
            + (self.cache_write_tokens or 0)
        )


@dataclass(frozen=True, slots=True)
class ContentPart:
    """One part of a structured message: text or a base64 image."""

    type: str  # "text" | "image"
    text: str | None = None
    media_type: str | None = None
    data: str | None = None  # base64 payload for images


@dataclass(frozen=True, slots=True)
class Message:
    """A single message in a conversation."""

    role: Role | str
    content: str | tuple[ContentPart, ...]

    def __post_init__(self) -> None:
        if isinstance(self.content, list):
            object.__setattr__(self, "content", tuple(self.content))

    @property
    def text(self) -> str:
        """Concatenated text content (image parts contribute nothing)."""
        if isinstance(self.content, str):
            return self.content
        return "".join(p.text or "" for p in self.content if p.type == "text")

    @property
    def has_images(self) -> bool:
        if isinstance(self.content, str):
            return False
        return any(p.type == "image" for p in self.content)


@dataclass(frozen=True, slots=True)
class ToolSpec:
    """A function the model may call."""

    name: str
    description: str
    input_schema: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class ToolCall:
    """A tool call from a model response."""

    id: str
    name: str
    arguments: str  # JSON string of arguments


@dataclass(frozen=True, slots=True)
class MessageRequest:
    """Provider-agnostic request for one model call."""

    messages: tuple[Message, ...]
    model: str | None = None
    max_tokens: int | None = None
    temperature: float | None = None
    top_p: float | None = None
    stop_sequences: tuple[str, ...] = ()
    tools: tuple[ToolSpec, ...] = ()
    stream: bool = False
    timeout: float | None = None  # seconds
    metadata: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "messages", tuple(self.messages))
        object.__setattr__(self, "stop_sequences", tuple(self.stop_sequences))
        object.__setattr__(self, "tools", tuple(self.tools))
        object.__setattr__(self, "metadata", MappingProxyType(dict(self.metadata)))

    @classmethod
    def from_prompt(
        cls,
        prompt: str,
        system_prompt: str | None = None,
        **kwargs: Any,
    ) -> MessageRequest:
        """Helper to create a request from a simple prompt."""
        messages: list[Message] = []
        if system_prompt:
            messages.append(Message(role=Role.SYSTEM, content=system_prompt))
        messages.append(Message(role=Role.USER, content=prompt))
        return cls(messages=tuple(messages), **kwargs)

    @property
    def has_images(self) -> bool:
        return any(m.has_images for m in self.messages)

    def validate(self) -> None:
        """Reject malformed requests before any network call.

        Raises:
            InvalidRequestError: On zero messages, unknown roles, empty
                content or out-of-range generation parameters.
        """
        if not self.messages:
            raise InvalidRequestError("request", "Request has no messages")

        roles = {r.value for r in Role}
        for i, msg in enumerate(self.messages):
            if str(msg.role) not in roles:
                msg_text = f"Message {i} has unknown role {msg.role!r}"
                raise InvalidRequestError("request", msg_text)
            if not msg.content:
                raise InvalidRequestError("request", f"Message {i} has no content")
            if not isinstance(msg.content, str):
                for part in msg.content:
                    _validate_part(i, part)

        if self.max_tokens is not None and self.max_tokens <= 0:
            raise InvalidRequestError("request", "max_tokens must be positive")
        if self.temperature is not None and not 0.0 <= self.temperature <= 2.0:
            raise InvalidRequestError("request", "temperature must be in [0, 2]")
        if self.top_p is not None and not 0.0 <= self.top_p <= 1.0:
            raise InvalidRequestError("request", "top_p must be in [0, 1]")
        if self.timeout is not None and self.timeout <= 0:
            raise InvalidRequestError("request", "timeout must be positive")
        for tool in self.tools:
            if not tool.name:
                raise InvalidRequestError("request", "Tool declarations need a name")


def _validate_part(index: int, part: ContentPart) -> None:
    if part.type == "text":
        if part.text is None:
            msg = f"Message {index} has a text part without text"
            raise InvalidRequestError("request", msg)
    elif part.type == "image":
        if not part.data or not part.media_type:
            msg = f"Message {index} has an image part without data"
            raise InvalidRequestError("request", msg)
    else:
        msg = f"Message {index} has unknown content type {part.type!r}"
        raise InvalidRequestError("request", msg)


@dataclass(frozen=True, slots=True)
class MessageResponse:
    """Complete response from a non-streaming call."""

    id: str
    content: str
    model: str
    usage: TokenUsage
    finish_reason: FinishReason
    latency_ms: float = 0.0
    tool_calls: tuple[ToolCall, ...] = ()
    raw_response: object = field(default=None, repr=False)


@dataclass(frozen=True, slots=True)
class MessageChunk:
    """A single chunk from a streaming response.

    The last chunk of a stream has ``is_final=True`` and carries usage
    when the vendor reports it.
    """

    id: str
    model: str
    index: int
    delta: str = ""
    is_final: bool = False
    finish_reason: FinishReason | None = None
    usage: TokenUsage | None = None
    tool_calls: tuple[ToolCall, ...] = ()


def new_response_id(prefix: str = "msg") -> str:
    """Id for responses whose vendor doesn't supply one."""
    return f"{prefix}_{uuid.uuid4().hex[:24]}"


def collect_text(chunks: Iterable[MessageChunk]) -> str:
    """Join the deltas of a drained stream."""
    return "".join(c.delta for c in chunks)
