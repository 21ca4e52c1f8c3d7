# OpenAI provider
# Links:
# Chat Completions streaming - https://platform.openai.com/docs/api-reference/chat-streaming
# Responses API streaming - https://platform.openai.com/docs/api-reference/responses-streaming

import base64
import logging
import os
from contextlib import AsyncExitStack
from typing import Any, Dict, List, Optional

import openai

from llmsuite.framework.context import Context, MergePolicy
from llmsuite.framework.message import Message, ReasoningProvider
from llmsuite.framework.response_builder import ResponseBuilder
from llmsuite.framework.stop_reason import FinishReason, stop_reason_manager
from llmsuite.framework.stream_chunk import StreamChunk
from llmsuite.provider import APIError, Provider
from llmsuite.utils.usage import normalize_openai_usage

logger = logging.getLogger(__name__)

CHAT_REASONING_FORMAT = "openai-chat-v1"
RESPONSES_REASONING_FORMAT = "openai-responses-v1"
DONE_SENTINEL = "[DONE]"


class OpenAIMessageConverter:
    """Request encoding and stream classification for OpenAI style APIs.

    The same converter serves Chat Completions and the Responses API; a
    streamed event is routed by its ``type`` field, which only Responses
    events carry.
    """

    reasoning_provider = ReasoningProvider.OPENAI
    chat_reasoning_format = CHAT_REASONING_FORMAT

    # Request side

    def convert_request(self, context: Context) -> List[Dict[str, Any]]:
        """Convert framework messages to Chat Completions messages."""
        converted = []
        for msg in context.messages:
            if msg.role == "tool":
                converted.append({"role": "tool", "tool_call_id": msg.tool_call_id, "content": msg.text()})
            elif msg.role == "assistant":
                converted.append(self._assistant_message(msg))
            else:
                item = {"role": msg.role, "content": self._chat_content(msg)}
                if msg.name:
                    item["name"] = msg.name
                converted.append(item)
        return converted

    def _assistant_message(self, msg: Message) -> Dict[str, Any]:
        item: Dict[str, Any] = {"role": "assistant", "content": msg.text() or None}
        if msg.tool_calls:
            item["tool_calls"] = [
                {
                    "id": tool_call.id,
                    "type": "function",
                    "function": {"name": tool_call.function.name, "arguments": tool_call.function.arguments},
                }
                for tool_call in msg.tool_calls
            ]
        return item

    @staticmethod
    def _chat_content(msg: Message):
        if all(part.type == "text" for part in msg.content):
            return msg.text()
        parts = []
        for part in msg.content:
            if part.type == "text":
                parts.append({"type": "text", "text": part.text or ""})
            else:
                parts.append({"type": "image_url", "image_url": {"url": _image_url(part)}})
        return parts

    def convert_responses_input(self, context: Context) -> List[Dict[str, Any]]:
        """Convert framework messages to Responses API input items.

        Encrypted reasoning items from earlier turns are sent back ahead of
        the assistant output they belong to.
        """
        items: List[Dict[str, Any]] = []
        for msg in context.messages:
            if msg.role == "tool":
                items.append({"type": "function_call_output", "call_id": msg.tool_call_id, "output": msg.text()})
                continue

            if msg.role == "assistant":
                for detail in msg.reasoning_details or []:
                    if detail.provider is ReasoningProvider.OPENAI and detail.encrypted and detail.signature:
                        item = {
                            "type": "reasoning",
                            "encrypted_content": detail.signature,
                            "summary": detail.provider_data.get("summary", []),
                        }
                        if detail.provider_data.get("id"):
                            item["id"] = detail.provider_data["id"]
                        items.append(item)
                if msg.text():
                    items.append({"role": "assistant", "content": msg.text()})
                for tool_call in msg.tool_calls or []:
                    items.append({
                        "type": "function_call",
                        "call_id": tool_call.id,
                        "name": tool_call.function.name,
                        "arguments": tool_call.function.arguments,
                    })
                continue

            content = []
            for part in msg.content:
                if part.type == "text":
                    content.append({"type": "input_text", "text": part.text or ""})
                else:
                    content.append({"type": "input_image", "image_url": _image_url(part)})
            items.append({"role": msg.role, "content": content})
        return items

    @staticmethod
    def convert_tools_for_responses_api(tools: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Flatten Chat style ``{"type": "function", "function": {...}}`` tools."""
        converted = []
        for tool in tools or []:
            if tool.get("type") == "function" and isinstance(tool.get("function"), dict):
                fn = tool["function"]
                item = {"type": "function", "name": fn.get("name")}
                if "description" in fn:
                    item["description"] = fn["description"]
                if "parameters" in fn:
                    item["parameters"] = fn["parameters"]
                if "strict" in fn:
                    item["strict"] = fn["strict"]
                converted.append(item)
            else:
                converted.append(tool)
        return converted

    # Stream side

    def classify(self, event: Any, model: str) -> List[StreamChunk]:
        if not isinstance(event, dict):
            return []
        event_type = event.get("type")
        if isinstance(event_type, str) and (event_type.startswith("response.") or event_type == "error"):
            return self.classify_responses_event(event)
        return self.classify_chat_chunk(event)

    def classify_chat_chunk(self, event: Dict[str, Any]) -> List[StreamChunk]:
        """One ``chat.completion.chunk`` object."""
        chunks: List[StreamChunk] = []

        if event.get("error"):
            return [StreamChunk.meta({"finish_reason": FinishReason.ERROR, "error": event["error"]})]

        if event.get("id") or event.get("model"):
            chunks.append(StreamChunk.meta({"id": event.get("id"), "model": event.get("model")}))

        for choice in event.get("choices") or []:
            delta = choice.get("delta") or {}

            reasoning = delta.get("reasoning_content") or delta.get("reasoning")
            if reasoning:
                chunks.append(StreamChunk.thinking(reasoning, {
                    "provider": self.reasoning_provider,
                    "format": self.chat_reasoning_format,
                }))

            if delta.get("content"):
                chunks.append(StreamChunk.text_delta(delta["content"]))

            for tool_delta in delta.get("tool_calls") or []:
                function = tool_delta.get("function") or {}
                chunks.append(StreamChunk.tool_call(
                    name=function.get("name"),
                    arguments=function.get("arguments") or "",
                    id=tool_delta.get("id"),
                    index=tool_delta.get("index"),
                ))

            if choice.get("finish_reason"):
                chunks.append(StreamChunk.meta({
                    "finish_reason": stop_reason_manager.map_stop_reason("openai", choice["finish_reason"]),
                    "provider_meta": {"finish_reason": choice["finish_reason"]},
                }))

        usage = normalize_openai_usage(event.get("usage"))
        if usage:
            chunks.append(StreamChunk.usage(usage))

        if event.get("system_fingerprint"):
            chunks.append(StreamChunk.meta({"provider_meta": {"system_fingerprint": event["system_fingerprint"]}}))
        return chunks

    def classify_responses_event(self, event: Dict[str, Any]) -> List[StreamChunk]:
        """One Responses API server-sent event."""
        event_type = event["type"]

        if event_type == "response.created":
            response = event.get("response") or {}
            return [StreamChunk.meta({
                "id": response.get("id"),
                "response_id": response.get("id"),
                "model": response.get("model"),
            })]

        elif event_type == "response.output_text.delta":
            return [StreamChunk.text_delta(event.get("delta", ""))]

        elif event_type in ("response.reasoning_summary_text.delta", "response.reasoning_text.delta"):
            return [StreamChunk.thinking(event.get("delta", ""), {
                "provider": ReasoningProvider.OPENAI,
                "format": RESPONSES_REASONING_FORMAT,
                "provider_data": {
                    "type": "summary" if "summary" in event_type else "reasoning_text",
                    "id": event.get("item_id"),
                },
            })]

        elif event_type == "response.output_item.added":
            item = event.get("item") or {}
            if item.get("type") != "function_call":
                return []
            return [StreamChunk.tool_call(
                name=item.get("name"),
                arguments=item.get("arguments") or "",
                id=item.get("call_id"),
                index=event.get("output_index"),
            )]

        elif event_type == "response.function_call_arguments.delta":
            return [StreamChunk.tool_call(arguments=event.get("delta", ""), index=event.get("output_index"))]

        elif event_type == "response.output_item.done":
            item = event.get("item") or {}
            if item.get("type") == "reasoning" and item.get("encrypted_content"):
                return [StreamChunk.thinking("", {
                    "provider": ReasoningProvider.OPENAI,
                    "format": RESPONSES_REASONING_FORMAT,
                    "signature": item["encrypted_content"],
                    "encrypted": True,
                    "provider_data": {"type": "reasoning", "id": item.get("id"), "summary": item.get("summary") or []},
                })]
            return []

        elif event_type in ("response.completed", "response.incomplete", "response.failed"):
            return self._classify_terminal(event.get("response") or {})

        elif event_type == "error":
            error = {key: event[key] for key in ("code", "message", "param") if event.get(key) is not None}
            return [StreamChunk.meta({"finish_reason": FinishReason.ERROR, "error": error or {"type": "error"}})]

        logger.debug(f"Ignoring Responses API event type: {event_type}")
        return []

    def _classify_terminal(self, response: Dict[str, Any]) -> List[StreamChunk]:
        status = response.get("status")
        reason = status
        if status == "incomplete":
            reason = (response.get("incomplete_details") or {}).get("reason")

        meta: Dict[str, Any] = {
            "id": response.get("id"),
            "response_id": response.get("id"),
            "model": response.get("model"),
            "finish_reason": stop_reason_manager.map_stop_reason("openai_responses", reason),
            "provider_meta": {"status": status},
        }
        if status == "failed":
            meta["error"] = response.get("error") or {"type": "failed"}

        chunks = [StreamChunk.meta(meta)]
        usage = normalize_openai_usage(response.get("usage"))
        if usage:
            chunks.append(StreamChunk.usage(usage))
        return chunks


def _image_url(part) -> str:
    if part.type == "image_url":
        return part.url
    encoded = base64.b64encode(part.data or b"").decode("ascii")
    return f"data:{part.media_type};base64,{encoded}"


class OpenaiProvider(Provider):
    PROVIDER_NAME = "openai"
    STREAM_SENTINEL = DONE_SENTINEL

    # Chat Completions streams report finish_reason "stop" on some tool-call
    # turns; the Responses API id is kept for continuation requests.
    response_builder = ResponseBuilder(
        correct_finish_reason=True,
        propagate_response_id=True,
        merge_policy=MergePolicy.APPEND,
    )

    def __init__(self, **config):
        """
        Initialize the OpenAI provider with the given configuration.
        Pass the entire configuration dictionary to the OpenAI client constructor.
        """
        config = self._configure_stream(config)
        # Ensure API key is provided either in config or via environment variable
        config.setdefault("api_key", os.getenv("OPENAI_API_KEY"))
        if not config["api_key"]:
            raise ValueError(
                "OpenAI API key is missing. Please provide it in the config or set the OPENAI_API_KEY environment variable."
            )
        self.client = openai.AsyncOpenAI(**config)
        self.converter = OpenAIMessageConverter()

    def classify(self, message, model):
        return self.converter.classify(message, model)

    def _supports_reasoning(self, model: str) -> bool:
        """Check if the model supports reasoning parameters."""
        return model.startswith(("o1", "o3", "o4", "gpt-5"))

    def _prepare_reasoning_kwargs(self, model: str, kwargs: dict) -> dict:
        """Prepare reasoning-related kwargs based on model type."""
        prepared_kwargs = kwargs.copy()

        # If model doesn't support reasoning, remove reasoning-related parameters
        if not self._supports_reasoning(model):
            prepared_kwargs.pop("reasoning", None)
            prepared_kwargs.pop("reasoning_effort", None)
            return prepared_kwargs

        # Reasoning models don't support max_tokens, use max_completion_tokens instead
        if "max_tokens" in prepared_kwargs:
            prepared_kwargs["max_completion_tokens"] = prepared_kwargs.pop("max_tokens")

        # o-series chat models take a flat reasoning_effort
        reasoning = prepared_kwargs.get("reasoning")
        if reasoning is not None and not model.startswith("gpt-5"):
            prepared_kwargs.pop("reasoning")
            prepared_kwargs["reasoning_effort"] = reasoning.get("effort") if isinstance(reasoning, dict) else reasoning
        return prepared_kwargs

    def _should_use_responses_api(self, model: str, kwargs: dict) -> bool:
        """GPT-5 models default to the Responses API, everything else uses Chat Completions."""
        if "use_responses_api" in kwargs:
            return bool(kwargs["use_responses_api"])
        return model.startswith("gpt-5")

    def _chat_request(self, model, context, kwargs) -> Dict[str, Any]:
        request = self._prepare_reasoning_kwargs(model, kwargs)
        stream_options = dict(request.pop("stream_options", None) or {})
        stream_options.setdefault("include_usage", True)
        return {
            "model": model,
            "messages": self.converter.convert_request(context),
            "stream_options": stream_options,
            **request,
        }

    def _responses_request(self, model, context, kwargs) -> Dict[str, Any]:
        request = kwargs.copy()
        if "max_tokens" in request:
            request["max_output_tokens"] = request.pop("max_tokens")
        if "tools" in request:
            request["tools"] = self.converter.convert_tools_for_responses_api(request["tools"])
        if request.get("store") is False:
            # Without server side storage, reasoning can only be continued from the encrypted item
            request.setdefault("include", ["reasoning.encrypted_content"])
        return {"model": model, "input": self.converter.convert_responses_input(context), **request}

    async def _open_stream(self, stack: AsyncExitStack, model, context, **kwargs):
        use_responses = self._should_use_responses_api(model, kwargs)
        kwargs.pop("use_responses_api", None)

        try:
            if use_responses:
                create = self.client.responses.with_streaming_response.create(
                    stream=True, **self._responses_request(model, context, kwargs)
                )
            else:
                create = self.client.chat.completions.with_streaming_response.create(
                    stream=True, **self._chat_request(model, context, kwargs)
                )
            response = await stack.enter_async_context(create)
        except openai.APIStatusError as e:
            raise APIError(e.status_code, e.body if e.body is not None else e.message, self.PROVIDER_NAME) from e

        return response.iter_bytes()
