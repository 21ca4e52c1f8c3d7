import json
from unittest.mock import MagicMock

import httpx
import openai
import pytest

from llmsuite.framework.context import Context
from llmsuite.framework.message import Function, Message, ReasoningDetail, ReasoningProvider, ToolCall
from llmsuite.framework.stop_reason import FinishReason
from llmsuite.framework.stream_chunk import ChunkType
from llmsuite.provider import APIError
from llmsuite.providers.deepseek_provider import DeepseekProvider
from llmsuite.providers.openai_provider import OpenAIMessageConverter, OpenaiProvider
from llmsuite.providers.vllm_provider import VllmProvider


@pytest.fixture(autouse=True)
def set_api_key_env_vars(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "test-api-key")
    monkeypatch.setenv("DEEPSEEK_API_KEY", "test-api-key")


def sse(*payloads):
    return b"".join(
        f"data: {p if isinstance(p, str) else json.dumps(p)}\n\n".encode("utf-8") for p in payloads
    )


async def byte_stream(data: bytes, size: int = 23):
    for start in range(0, len(data), size):
        yield data[start:start + size]


class FakeStreamingResponse:
    def __init__(self, data: bytes):
        self.data = data

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return None

    def iter_bytes(self):
        return byte_stream(self.data)


def chat_chunk(delta=None, finish_reason=None, **extra):
    chunk = {
        "id": "chatcmpl-1",
        "object": "chat.completion.chunk",
        "model": "gpt-4o-2024-08-06",
        "choices": [{"index": 0, "delta": delta or {}, "finish_reason": finish_reason}],
    }
    chunk.update(extra)
    return chunk


CHAT_TOOL_STREAM = [
    chat_chunk({"role": "assistant", "content": None, "tool_calls": [
        {"index": 0, "id": "call_abc", "type": "function", "function": {"name": "get_weather", "arguments": ""}},
    ]}),
    chat_chunk({"tool_calls": [{"index": 0, "function": {"arguments": '{"location":'}}]}),
    chat_chunk({"tool_calls": [{"index": 0, "function": {"arguments": ' "Boston"}'}}]}),
    chat_chunk({}, finish_reason="stop"),
    {"id": "chatcmpl-1", "model": "gpt-4o-2024-08-06", "choices": [], "usage": {
        "prompt_tokens": 82, "completion_tokens": 17, "total_tokens": 99,
        "prompt_tokens_details": {"cached_tokens": 64},
    }},
    "[DONE]",
]


RESPONSES_STREAM = [
    {"type": "response.created", "response": {"id": "resp_123", "model": "gpt-5", "status": "in_progress"}},
    {"type": "response.reasoning_summary_text.delta", "item_id": "rs_1", "output_index": 0, "delta": "Thinking about it"},
    {"type": "response.output_item.done", "output_index": 0, "item": {
        "type": "reasoning", "id": "rs_1", "encrypted_content": "gAAAA-encrypted", "summary": [],
    }},
    {"type": "response.output_item.added", "output_index": 1, "item": {
        "type": "function_call", "id": "fc_1", "call_id": "call_xyz", "name": "lookup", "arguments": "",
    }},
    {"type": "response.function_call_arguments.delta", "item_id": "fc_1", "output_index": 1, "delta": '{"q":'},
    {"type": "response.function_call_arguments.delta", "item_id": "fc_1", "output_index": 1, "delta": ' "llm"}'},
    {"type": "response.output_text.delta", "item_id": "msg_1", "output_index": 2, "delta": "Looking it up."},
    {"type": "response.completed", "response": {
        "id": "resp_123", "model": "gpt-5", "status": "completed",
        "usage": {"input_tokens": 50, "output_tokens": 30, "total_tokens": 80,
                  "output_tokens_details": {"reasoning_tokens": 12}},
    }},
]


def test_chat_classify_text_and_reasoning():
    converter = OpenAIMessageConverter()

    chunks = converter.classify(chat_chunk({"reasoning_content": "hmm", "content": "Hi"}), "gpt-4o")

    assert [c.type for c in chunks] == [ChunkType.META, ChunkType.THINKING, ChunkType.TEXT]
    assert chunks[1].metadata["provider"] is ReasoningProvider.OPENAI
    assert chunks[2].text == "Hi"


def test_chat_classify_tool_call_delta():
    converter = OpenAIMessageConverter()

    tool_chunk = converter.classify(CHAT_TOOL_STREAM[0], "gpt-4o")[-1]

    assert (tool_chunk.name, tool_chunk.id, tool_chunk.index) == ("get_weather", "call_abc", 0)


def test_chat_classify_finish_reason_and_usage():
    converter = OpenAIMessageConverter()

    finish = converter.classify(chat_chunk({}, finish_reason="length"), "gpt-4o")[-1]
    usage = converter.classify(CHAT_TOOL_STREAM[4], "gpt-4o")[-1]

    assert finish.metadata["finish_reason"] is FinishReason.LENGTH
    assert usage.type is ChunkType.USAGE
    assert usage.metadata == {
        "prompt_tokens": 82, "completion_tokens": 17, "total_tokens": 99, "cache_read_input_tokens": 64,
    }


def test_responses_classify_encrypted_reasoning_item():
    converter = OpenAIMessageConverter()

    (chunk,) = converter.classify(RESPONSES_STREAM[2], "gpt-5")

    assert chunk.type is ChunkType.THINKING
    assert chunk.metadata["encrypted"] is True
    assert chunk.metadata["signature"] == "gAAAA-encrypted"
    assert chunk.metadata["provider_data"]["id"] == "rs_1"


def test_responses_classify_incomplete_and_failed():
    converter = OpenAIMessageConverter()
    incomplete = {"type": "response.incomplete", "response": {
        "id": "resp_1", "status": "incomplete", "incomplete_details": {"reason": "max_output_tokens"},
    }}
    failed = {"type": "response.failed", "response": {
        "id": "resp_2", "status": "failed", "error": {"code": "server_error", "message": "boom"},
    }}

    (incomplete_meta,) = converter.classify(incomplete, "gpt-5")
    (failed_meta,) = converter.classify(failed, "gpt-5")

    assert incomplete_meta.metadata["finish_reason"] is FinishReason.LENGTH
    assert failed_meta.metadata["finish_reason"] is FinishReason.ERROR
    assert failed_meta.metadata["error"]["code"] == "server_error"


def test_responses_classify_error_event():
    (chunk,) = OpenAIMessageConverter().classify({"type": "error", "code": "rate_limit", "message": "slow down"}, "gpt-5")

    assert chunk.metadata["finish_reason"] is FinishReason.ERROR
    assert chunk.metadata["error"] == {"code": "rate_limit", "message": "slow down"}


def test_convert_request_chat_messages():
    converter = OpenAIMessageConverter()
    context = Context(messages=[
        Message.system("sys"),
        Message.user("hi"),
        Message(role="assistant", content=[], tool_calls=[
            ToolCall(id="call_1", function=Function(name="f", arguments="{}")),
        ]),
        Message.tool_result("call_1", "result"),
    ])

    messages = converter.convert_request(context)

    assert messages[0] == {"role": "system", "content": "sys"}
    assert messages[2]["content"] is None
    assert messages[2]["tool_calls"][0]["function"] == {"name": "f", "arguments": "{}"}
    assert messages[3] == {"role": "tool", "tool_call_id": "call_1", "content": "result"}


def test_convert_responses_input_sends_back_encrypted_reasoning():
    converter = OpenAIMessageConverter()
    context = Context(messages=[
        Message.user("hi"),
        Message(
            role="assistant",
            content=[],
            reasoning_details=[
                ReasoningDetail(text="summary", provider=ReasoningProvider.OPENAI, provider_data={"id": "rs_1"}),
                ReasoningDetail(
                    signature="enc", encrypted=True, provider=ReasoningProvider.OPENAI, index=1,
                    provider_data={"type": "reasoning", "id": "rs_1", "summary": []},
                ),
            ],
            tool_calls=[ToolCall(id="call_1", function=Function(name="f", arguments="{}"))],
        ),
        Message.tool_result("call_1", "ok"),
    ])

    items = converter.convert_responses_input(context)

    assert items[0] == {"role": "user", "content": [{"type": "input_text", "text": "hi"}]}
    assert items[1] == {"type": "reasoning", "encrypted_content": "enc", "summary": [], "id": "rs_1"}
    assert items[2] == {"type": "function_call", "call_id": "call_1", "name": "f", "arguments": "{}"}
    assert items[3] == {"type": "function_call_output", "call_id": "call_1", "output": "ok"}


def test_tools_flattened_for_responses_api():
    tools = [{"type": "function", "function": {"name": "f", "description": "d", "parameters": {}, "strict": True}}]

    assert OpenAIMessageConverter.convert_tools_for_responses_api(tools) == [
        {"type": "function", "name": "f", "description": "d", "parameters": {}, "strict": True},
    ]


def test_reasoning_kwargs_for_non_reasoning_model_are_dropped():
    provider = OpenaiProvider()

    prepared = provider._prepare_reasoning_kwargs("gpt-4o", {"reasoning_effort": "high", "temperature": 0.2})

    assert prepared == {"temperature": 0.2}


def test_reasoning_kwargs_for_o_series():
    provider = OpenaiProvider()

    prepared = provider._prepare_reasoning_kwargs("o3-mini", {"reasoning": {"effort": "low"}, "max_tokens": 100})

    assert prepared == {"reasoning_effort": "low", "max_completion_tokens": 100}


@pytest.mark.asyncio
async def test_chat_stream_end_to_end():
    provider = OpenaiProvider()
    create = MagicMock(return_value=FakeStreamingResponse(sse(*CHAT_TOOL_STREAM)))
    provider.client = MagicMock()
    provider.client.chat.completions.with_streaming_response.create = create

    stream = await provider.chat_completions_create("gpt-4o", [Message.user("Weather in Boston?")])
    response = await stream.response()

    assert create.call_args.kwargs["stream_options"] == {"include_usage": True}
    assert response.id == "chatcmpl-1"
    # finish_reason "stop" with a tool call is corrected
    assert response.finish_reason is FinishReason.TOOL_CALLS
    assert response.tool_calls()[0].parsed_arguments() == {"location": "Boston"}
    assert response.usage["cache_read_input_tokens"] == 64
    assert response.message.content == []


@pytest.mark.asyncio
async def test_responses_stream_end_to_end():
    provider = OpenaiProvider()
    create = MagicMock(return_value=FakeStreamingResponse(sse(*RESPONSES_STREAM)))
    provider.client = MagicMock()
    provider.client.responses.with_streaming_response.create = create

    stream = await provider.chat_completions_create("gpt-5", [Message.user("search llm")], max_tokens=256)
    response = await stream.response()

    kwargs = create.call_args.kwargs
    assert kwargs["max_output_tokens"] == 256
    assert kwargs["input"] == [{"role": "user", "content": [{"type": "input_text", "text": "search llm"}]}]
    assert response.id == "resp_123"
    assert response.message.metadata["response_id"] == "resp_123"
    assert response.finish_reason is FinishReason.TOOL_CALLS
    assert response.tool_calls()[0].id == "call_xyz"
    assert response.tool_calls()[0].parsed_arguments() == {"q": "llm"}
    assert response.text() == "Looking it up."
    assert [d.encrypted for d in response.reasoning_details()] == [False, True]
    assert response.usage["reasoning_tokens"] == 12


@pytest.mark.asyncio
async def test_http_error_becomes_api_error():
    provider = OpenaiProvider()
    request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
    error = openai.APIStatusError(
        "bad request", response=httpx.Response(400, request=request), body={"error": {"message": "bad"}}
    )
    provider.client = MagicMock()
    provider.client.chat.completions.with_streaming_response.create = MagicMock(side_effect=error)

    with pytest.raises(APIError) as exc_info:
        await provider.chat_completions_create("gpt-4o", [Message.user("hi")])

    assert exc_info.value.status_code == 400
    assert exc_info.value.provider == "openai"


def test_deepseek_reasoning_is_tagged_deepseek():
    provider = DeepseekProvider()

    chunks = provider.classify(chat_chunk({"reasoning_content": "first, ..."}), "deepseek-reasoner")

    assert chunks[-1].metadata["provider"] is ReasoningProvider.DEEPSEEK
    assert str(provider.client.base_url).startswith("https://api.deepseek.com")


def test_deepseek_sends_reasoning_back_on_tool_turns():
    provider = DeepseekProvider()
    context = Context(messages=[Message(
        role="assistant",
        content=[],
        reasoning_details=[ReasoningDetail(text="need a tool", provider=ReasoningProvider.DEEPSEEK)],
        tool_calls=[ToolCall(id="call_1", function=Function(name="f", arguments="{}"))],
    )])

    (message,) = provider.converter.convert_request(context)

    assert message["reasoning_content"] == "need a tool"


def test_deepseek_never_uses_responses_api():
    assert DeepseekProvider()._should_use_responses_api("gpt-5", {}) is False


def test_vllm_defaults(monkeypatch):
    monkeypatch.delenv("VLLM_BASE_URL", raising=False)

    provider = VllmProvider()

    assert str(provider.client.base_url).startswith("http://localhost:8000/v1")
    assert provider.STREAM_SENTINEL == "[DONE]"
