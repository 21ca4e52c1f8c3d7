import json
from unittest.mock import MagicMock

import anthropic
import httpx
import pytest

from llmsuite.framework.context import Context
from llmsuite.framework.message import ContentPart, Function, Message, ReasoningDetail, ReasoningProvider, ToolCall
from llmsuite.framework.stop_reason import FinishReason
from llmsuite.framework.stream_chunk import ChunkType
from llmsuite.provider import APIError
from llmsuite.providers.anthropic_provider import AnthropicMessageConverter, AnthropicProvider


@pytest.fixture(autouse=True)
def set_api_key_env_var(monkeypatch):
    monkeypatch.setenv("ANTHROPIC_API_KEY", "test-api-key")


def sse_event(payload):
    return f"event: {payload['type']}\ndata: {json.dumps(payload)}\n\n".encode("utf-8")


STREAM_EVENTS = [
    {"type": "message_start", "message": {
        "id": "msg_01", "type": "message", "role": "assistant", "model": "claude-sonnet-4-5",
        "content": [], "stop_reason": None, "usage": {"input_tokens": 25, "output_tokens": 1},
    }},
    {"type": "content_block_start", "index": 0, "content_block": {"type": "thinking", "thinking": ""}},
    {"type": "content_block_delta", "index": 0, "delta": {"type": "thinking_delta", "thinking": "Let me think"}},
    {"type": "content_block_delta", "index": 0, "delta": {"type": "signature_delta", "signature": "sig-1"}},
    {"type": "content_block_stop", "index": 0},
    {"type": "ping"},
    {"type": "content_block_start", "index": 1, "content_block": {"type": "text", "text": ""}},
    {"type": "content_block_delta", "index": 1, "delta": {"type": "text_delta", "text": "Checking the "}},
    {"type": "content_block_delta", "index": 1, "delta": {"type": "text_delta", "text": "weather."}},
    {"type": "content_block_stop", "index": 1},
    {"type": "content_block_start", "index": 2, "content_block": {
        "type": "tool_use", "id": "toolu_01", "name": "get_weather", "input": {},
    }},
    {"type": "content_block_delta", "index": 2, "delta": {"type": "input_json_delta", "partial_json": '{"city":'}},
    {"type": "content_block_delta", "index": 2, "delta": {"type": "input_json_delta", "partial_json": ' "Paris"}'}},
    {"type": "content_block_stop", "index": 2},
    {"type": "message_delta", "delta": {"stop_reason": "tool_use", "stop_sequence": None}, "usage": {"output_tokens": 42}},
    {"type": "message_stop"},
]


async def byte_stream(data: bytes, size: int = 17):
    for start in range(0, len(data), size):
        yield data[start:start + size]


class FakeStreamingResponse:
    def __init__(self, data: bytes):
        self.data = data
        self.closed = False

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        self.closed = True

    def iter_bytes(self):
        return byte_stream(self.data)


def test_classify_message_start():
    converter = AnthropicMessageConverter()

    chunks = converter.classify(STREAM_EVENTS[0], "claude")

    assert chunks[0].type is ChunkType.META
    assert chunks[0].metadata == {"id": "msg_01", "model": "claude-sonnet-4-5"}
    assert chunks[1].metadata == {"prompt_tokens": 25, "completion_tokens": 1, "total_tokens": 26}


def test_classify_thinking_delta_metadata():
    converter = AnthropicMessageConverter()

    (chunk,) = converter.classify(STREAM_EVENTS[2], "claude")

    assert chunk.type is ChunkType.THINKING
    assert chunk.text == "Let me think"
    assert chunk.metadata["provider"] is ReasoningProvider.ANTHROPIC
    assert chunk.metadata["format"] == "anthropic-thinking-v1"
    assert chunk.metadata["provider_data"] == {"type": "thinking", "block_index": 0}


def test_classify_redacted_thinking():
    converter = AnthropicMessageConverter()
    event = {"type": "content_block_start", "index": 0, "content_block": {"type": "redacted_thinking", "data": "opaque"}}

    (chunk,) = converter.classify(event, "claude")

    assert chunk.type is ChunkType.THINKING
    assert chunk.text == ""
    assert chunk.metadata["signature"] == "opaque"
    assert chunk.metadata["encrypted"] is True


def test_classify_tool_use_and_json_deltas():
    converter = AnthropicMessageConverter()

    (start,) = converter.classify(STREAM_EVENTS[10], "claude")
    (delta,) = converter.classify(STREAM_EVENTS[11], "claude")

    assert (start.name, start.id, start.index, start.arguments) == ("get_weather", "toolu_01", 2, "")
    assert (delta.name, delta.id, delta.index, delta.arguments) == (None, None, 2, '{"city":')


def test_classify_message_delta_maps_stop_reason():
    converter = AnthropicMessageConverter()

    meta, usage = converter.classify(STREAM_EVENTS[14], "claude")

    assert meta.metadata["finish_reason"] is FinishReason.TOOL_CALLS
    assert meta.metadata["provider_meta"] == {"stop_reason": "tool_use"}
    assert usage.metadata == {"completion_tokens": 42}


def test_classify_error_event():
    converter = AnthropicMessageConverter()
    event = {"type": "error", "error": {"type": "overloaded_error", "message": "Overloaded"}}

    (chunk,) = converter.classify(event, "claude")

    assert chunk.metadata["finish_reason"] is FinishReason.ERROR
    assert chunk.metadata["error"]["type"] == "overloaded_error"


def test_classify_ignores_unknown_and_bookkeeping_events():
    converter = AnthropicMessageConverter()

    assert converter.classify({"type": "ping"}, "claude") == []
    assert converter.classify({"type": "message_stop"}, "claude") == []
    assert converter.classify({"type": "something_new"}, "claude") == []
    assert converter.classify(["not", "a", "dict"], "claude") == []


def test_convert_request_lifts_system_and_merges_tool_results():
    converter = AnthropicMessageConverter()
    thinking = {"provider": ReasoningProvider.ANTHROPIC, "format": "anthropic-thinking-v1"}
    context = Context(messages=[
        Message.system("Be terse."),
        Message.user("Weather in Paris and Rome?"),
        Message(
            role="assistant",
            content=[],
            reasoning_details=[
                ReasoningDetail(text="Let me ", index=0, provider_data={"type": "thinking", "block_index": 0}, **thinking),
                ReasoningDetail(text="think", index=1, provider_data={"type": "thinking", "block_index": 0}, **thinking),
                ReasoningDetail(text="", signature="sig-1", index=2, provider_data={"type": "thinking", "block_index": 0}, **thinking),
            ],
            tool_calls=[
                ToolCall(id="toolu_1", function=Function(name="get_weather", arguments='{"city": "Paris"}')),
                ToolCall(id="toolu_2", function=Function(name="get_weather", arguments='{"city": "Rome"}')),
            ],
        ),
        Message.tool_result("toolu_1", "18C"),
        Message.tool_result("toolu_2", "24C"),
    ])

    system, messages = converter.convert_request(context)

    assert system == "Be terse."
    assert [m["role"] for m in messages] == ["user", "assistant", "user"]
    assert messages[1]["content"][0] == {"type": "thinking", "thinking": "Let me think", "signature": "sig-1"}
    assert messages[1]["content"][1] == {
        "type": "tool_use", "id": "toolu_1", "name": "get_weather", "input": {"city": "Paris"},
    }
    assert [block["tool_use_id"] for block in messages[2]["content"]] == ["toolu_1", "toolu_2"]


def test_convert_request_encodes_inline_images():
    converter = AnthropicMessageConverter()
    context = Context(messages=[Message(role="user", content=[ContentPart.from_image(b"\x89PNG", "image/png")])])

    _, messages = converter.convert_request(context)

    source = messages[0]["content"][0]["source"]
    assert source == {"type": "base64", "media_type": "image/png", "data": "iVBORw=="}


def test_openai_style_tools_converted():
    provider = AnthropicProvider()
    tools = [
        {"type": "function", "function": {"name": "get_weather", "description": "Weather", "parameters": {"type": "object"}}},
        {"type": "web_search_20250305", "name": "web_search"},
    ]

    kwargs = provider._prepare_kwargs({"tools": tools})

    assert kwargs["tools"] == [
        {"name": "get_weather", "description": "Weather", "input_schema": {"type": "object"}},
        {"type": "web_search_20250305", "name": "web_search"},
    ]
    assert kwargs["max_tokens"] == 4096
    assert "tools" not in provider._prepare_kwargs({"tools": []})


def test_missing_api_key_raises(monkeypatch):
    monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)

    with pytest.raises(ValueError):
        AnthropicProvider()


def test_invalid_decode_policy_rejected():
    with pytest.raises(ValueError):
        AnthropicProvider(on_decode_error="panic")


@pytest.mark.asyncio
async def test_streaming_end_to_end():
    provider = AnthropicProvider()
    fake = FakeStreamingResponse(b"".join(sse_event(e) for e in STREAM_EVENTS))
    create = MagicMock(return_value=fake)
    provider.client = MagicMock()
    provider.client.messages.with_streaming_response.create = create

    stream = await provider.chat_completions_create(
        "claude-sonnet-4-5", [Message.system("Be terse."), Message.user("Weather in Paris?")], stream=True
    )
    chunks = [chunk async for chunk in stream]
    response = await stream.response()

    kwargs = create.call_args.kwargs
    assert kwargs["system"] == "Be terse."
    assert kwargs["stream"] is True
    assert kwargs["max_tokens"] == 4096
    assert fake.closed

    assert [c.type for c in chunks].count(ChunkType.TEXT) == 2
    assert response.id == "msg_01"
    assert response.text() == "Checking the weather."
    assert response.finish_reason is FinishReason.TOOL_CALLS
    assert response.tool_calls()[0].parsed_arguments() == {"city": "Paris"}
    assert [d.index for d in response.reasoning_details()] == [0, 1]
    assert response.reasoning_details()[1].signature == "sig-1"
    assert response.usage == {"prompt_tokens": 25, "completion_tokens": 42, "total_tokens": 67}
    assert len(response.context) == 3


@pytest.mark.asyncio
async def test_tool_only_turn_gets_empty_text_part():
    provider = AnthropicProvider()
    events = [STREAM_EVENTS[0], *STREAM_EVENTS[10:]]
    provider.client = MagicMock()
    provider.client.messages.with_streaming_response.create = MagicMock(
        return_value=FakeStreamingResponse(b"".join(sse_event(e) for e in events))
    )

    stream = await provider.chat_completions_create("claude-sonnet-4-5", [Message.user("hi")])
    response = await stream.response()

    assert response.message.content == [ContentPart.from_text("")]
    assert response.tool_calls()[0].id == "toolu_01"


@pytest.mark.asyncio
async def test_http_error_becomes_api_error():
    provider = AnthropicProvider()
    request = httpx.Request("POST", "https://api.anthropic.com/v1/messages")
    error = anthropic.APIStatusError(
        "overloaded",
        response=httpx.Response(529, request=request),
        body={"type": "error", "error": {"type": "overloaded_error"}},
    )
    provider.client = MagicMock()
    provider.client.messages.with_streaming_response.create = MagicMock(side_effect=error)

    with pytest.raises(APIError) as exc_info:
        await provider.chat_completions_create("claude-sonnet-4-5", [Message.user("hi")])

    assert exc_info.value.status_code == 529
    assert exc_info.value.body["error"]["type"] == "overloaded_error"
    assert exc_info.value.provider == "anthropic"
