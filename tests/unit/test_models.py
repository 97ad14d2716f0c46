"""Tests for the unified AI request/response model and token estimation."""

from __future__ import annotations

import dataclasses

import pytest

from tamma.core.errors import InvalidRequestError
from tamma.core.tokens import (
    DEFAULT_COMPLETION_TOKENS,
    estimate_text_tokens,
    estimate_tokens,
)
from tamma.models import (
    ContentPart,
    Message,
    FinishReason,
    MessageChunk,
    MessageRequest,
    MessageResponse,
    Role,
    TokenUsage,
    ToolSpec,
    collect_text,
    new_response_id,
)

# ─── TokenUsage ───────────────────────────────────────────────


class TestTokenUsage:
    def test_total_without_cache(self, make_usage):
        assert make_usage().total_tokens == 150

    def test_total_with_cache(self, make_usage):
        usage = make_usage(cache_read_tokens=20, cache_write_tokens=5)
        assert usage.total_tokens == 175

    @pytest.mark.parametrize(
        "field", ["input_tokens", "output_tokens", "cache_read_tokens"]
    )
    def test_rejects_negative(self, make_usage, field):
        with pytest.raises(ValueError, match=field):
            make_usage(**{field: -1})

    def test_frozen(self, make_usage):
        usage = make_usage()
        with pytest.raises(dataclasses.FrozenInstanceError):
            usage.input_tokens = 5  # type: ignore[misc]


class TestModelInfo:
    def test_model_ref(self, make_model_info):
        info = make_model_info(provider_id="openai", model_id="gpt-4o")
        assert info.model_ref == "openai:gpt-4o"


# ─── Messages ─────────────────────────────────────────────────


class TestMessage:
    def test_text_from_string(self):
        assert Message(role="user", content="hi").text == "hi"

    def test_text_from_parts(self):
        msg = Message(
            role="user",
            content=(
                ContentPart(type="text", text="look at "),
                ContentPart(type="image", media_type="image/png", data="iVBOR"),
                ContentPart(type="text", text="this"),
            ),
        )
        assert msg.text == "look at this"
        assert msg.has_images

    def test_list_content_becomes_tuple(self):
        parts = [ContentPart(type="text", text="x")]
        msg = Message(role="user", content=parts)  # type: ignore[arg-type]
        assert isinstance(msg.content, tuple)

    def test_plain_text_has_no_images(self):
        assert not Message(role="user", content="hi").has_images


class TestMessageRequest:
    def test_from_prompt(self):
        req = MessageRequest.from_prompt("Hi", system_prompt="Be brief", max_tokens=5)
        assert [m.role for m in req.messages] == [Role.SYSTEM, Role.USER]
        assert req.max_tokens == 5

    def test_from_prompt_without_system(self):
        req = MessageRequest.from_prompt("Hi")
        assert len(req.messages) == 1

    def test_sequences_are_tuples(self):
        req = MessageRequest(
            messages=[Message(role="user", content="a")],  # type: ignore[arg-type]
            stop_sequences=["END"],  # type: ignore[arg-type]
            tools=[ToolSpec(name="f", description="d")],  # type: ignore[arg-type]
        )
        assert isinstance(req.messages, tuple)
        assert req.stop_sequences == ("END",)
        assert isinstance(req.tools, tuple)

    def test_metadata_is_read_only(self):
        source = {"trace_id": "abc"}
        req = MessageRequest.from_prompt("Hi", metadata=source)
        source["trace_id"] = "changed"
        assert req.metadata["trace_id"] == "abc"
        with pytest.raises(TypeError):
            req.metadata["trace_id"] = "x"  # type: ignore[index]

    def test_has_images(self):
        image = ContentPart(type="image", media_type="image/png", data="iVBOR")
        req = MessageRequest(messages=(Message(role="user", content=(image,)),))
        assert req.has_images

    def test_valid_request_passes(self, make_request):
        make_request(max_tokens=10, temperature=0.5, top_p=0.9).validate()

    def test_zero_messages(self):
        with pytest.raises(InvalidRequestError, match="no messages"):
            MessageRequest(messages=()).validate()

    def test_unknown_role(self):
        req = MessageRequest(messages=(Message(role="tool", content="x"),))
        with pytest.raises(InvalidRequestError, match="unknown role"):
            req.validate()

    def test_empty_content(self):
        req = MessageRequest(messages=(Message(role="user", content=""),))
        with pytest.raises(InvalidRequestError, match="no content"):
            req.validate()

    def test_image_without_data(self):
        part = ContentPart(type="image", media_type="image/png")
        req = MessageRequest(messages=(Message(role="user", content=(part,)),))
        with pytest.raises(InvalidRequestError, match="without data"):
            req.validate()

    def test_unknown_part_type(self):
        part = ContentPart(type="audio", data="abc")
        req = MessageRequest(messages=(Message(role="user", content=(part,)),))
        with pytest.raises(InvalidRequestError, match="unknown content type"):
            req.validate()

    @pytest.mark.parametrize(
        "overrides",
        [
            {"max_tokens": 0},
            {"temperature": 2.5},
            {"temperature": -0.1},
            {"top_p": 1.5},
            {"timeout": 0},
        ],
    )
    def test_out_of_range_params(self, make_request, overrides):
        with pytest.raises(InvalidRequestError):
            make_request(**overrides).validate()

    def test_tool_without_name(self, make_request):
        req = make_request(tools=(ToolSpec(name="", description="nothing"),))
        with pytest.raises(InvalidRequestError, match="name"):
            req.validate()


# ─── Helpers ──────────────────────────────────────────────────


class TestHelpers:
    def test_new_response_id(self):
        first = new_response_id("msg")
        assert first.startswith("msg_")
        assert first != new_response_id("msg")

    def test_collect_text(self):
        chunks = [
            MessageChunk(id="1", model="m", index=0, delta="Hel"),
            MessageChunk(id="1", model="m", index=1, delta="lo"),
            MessageChunk(id="1", model="m", index=2, is_final=True),
        ]
        assert collect_text(chunks) == "Hello"

    def test_response_is_frozen(self, make_usage):
        response = MessageResponse(
            id="r1",
            content="hi",
            model="m",
            usage=make_usage(),
            finish_reason=FinishReason.STOP,
        )
        with pytest.raises(dataclasses.FrozenInstanceError):
            response.content = "changed"


class TestTokenEstimation:
    def test_empty_text(self):
        assert estimate_text_tokens("") == 0

    def test_rounds_up(self):
        assert estimate_text_tokens("abcde") == 2

    def test_request_uses_max_tokens(self, make_request):
        req = make_request("a" * 40, max_tokens=100)
        assert estimate_tokens(req) == 110

    def test_request_default_completion(self, make_request):
        req = make_request("abcd")
        assert estimate_tokens(req) == 1 + DEFAULT_COMPLETION_TOKENS
