# Anthropic provider
# Links:
# Streaming events - https://docs.anthropic.com/en/docs/build-with-claude/streaming
# Extended thinking - https://docs.anthropic.com/en/docs/build-with-claude/extended-thinking

import base64
import logging
import os
from contextlib import AsyncExitStack
from typing import Any, Dict, List, Optional, Tuple

import anthropic

from llmsuite.framework.context import Context, MergePolicy
from llmsuite.framework.message import Message, ReasoningDetail, ReasoningProvider
from llmsuite.framework.response_builder import ResponseBuilder
from llmsuite.framework.stop_reason import FinishReason, stop_reason_manager
from llmsuite.framework.stream_chunk import StreamChunk
from llmsuite.provider import APIError, Provider
from llmsuite.utils.usage import normalize_anthropic_usage

logger = logging.getLogger(__name__)

# Define a constant for the default max_tokens value
DEFAULT_MAX_TOKENS = 4096

THINKING_FORMAT = "anthropic-thinking-v1"


class AnthropicMessageConverter:
    # Role constants
    ROLE_USER = "user"
    ROLE_ASSISTANT = "assistant"
    ROLE_TOOL = "tool"
    ROLE_SYSTEM = "system"

    def convert_request(self, context: Context) -> Tuple[Optional[str], List[Dict[str, Any]]]:
        """Convert framework messages to Anthropic format.

        System messages are lifted into the separate ``system`` field and
        consecutive tool results are merged into a single user turn.
        """
        system_parts = []
        converted: List[Dict[str, Any]] = []

        for msg in context.messages:
            if msg.role == self.ROLE_SYSTEM:
                system_parts.append(msg.text())
                continue

            if msg.role == self.ROLE_TOOL:
                block = {
                    "type": "tool_result",
                    "tool_use_id": msg.tool_call_id,
                    "content": msg.text(),
                }
                if converted and converted[-1]["role"] == self.ROLE_USER and self._is_tool_result_turn(converted[-1]):
                    converted[-1]["content"].append(block)
                else:
                    converted.append({"role": self.ROLE_USER, "content": [block]})
                continue

            converted.append({"role": msg.role, "content": self._content_blocks(msg)})

        system = "\n\n".join(part for part in system_parts if part) or None
        return system, converted

    @staticmethod
    def _is_tool_result_turn(message: Dict[str, Any]) -> bool:
        content = message.get("content")
        return isinstance(content, list) and all(block.get("type") == "tool_result" for block in content)

    def _content_blocks(self, msg: Message) -> List[Dict[str, Any]]:
        blocks: List[Dict[str, Any]] = []

        if msg.role == self.ROLE_ASSISTANT:
            blocks.extend(self._thinking_blocks(msg.reasoning_details or []))

        for part in msg.content:
            if part.type == "text":
                blocks.append({"type": "text", "text": part.text or ""})
            elif part.type == "image":
                blocks.append({
                    "type": "image",
                    "source": {
                        "type": "base64",
                        "media_type": part.media_type,
                        "data": base64.b64encode(part.data or b"").decode("ascii"),
                    },
                })
            elif part.type == "image_url":
                blocks.append({"type": "image", "source": {"type": "url", "url": part.url}})

        for tool_call in msg.tool_calls or []:
            blocks.append({
                "type": "tool_use",
                "id": tool_call.id,
                "name": tool_call.function.name,
                "input": tool_call.parsed_arguments() if not tool_call.error else {},
            })
        return blocks

    def _thinking_blocks(self, details: List[ReasoningDetail]) -> List[Dict[str, Any]]:
        """Rebuild thinking blocks from streamed reasoning details.

        Streaming yields one detail per delta; details that came from the same
        content block are joined back into one block.
        """
        blocks: List[Dict[str, Any]] = []
        current_key = None
        for detail in details:
            if detail.provider is not ReasoningProvider.ANTHROPIC:
                logger.warning(f"Skipping {detail.provider} reasoning detail for Anthropic request")
                continue

            block_type = detail.provider_data.get("type", "thinking")
            key = (block_type, detail.provider_data.get("block_index", detail.index))
            if key != current_key:
                if block_type == "redacted_thinking":
                    blocks.append({"type": "redacted_thinking", "data": detail.signature or ""})
                else:
                    blocks.append({"type": "thinking", "thinking": "", "signature": ""})
                current_key = key

            block = blocks[-1]
            if block_type == "redacted_thinking":
                continue
            block["thinking"] += detail.text
            if detail.signature:
                block["signature"] = detail.signature
        return blocks

    @staticmethod
    def convert_tool_spec(tools) -> Optional[List[Dict[str, Any]]]:
        """Convert OpenAI style function tools to Anthropic tools; native tools pass through."""
        converted = []
        for tool in tools or []:
            if isinstance(tool, dict) and tool.get("type") == "function" and "function" in tool:
                func_def = tool["function"]
                converted.append({
                    "name": func_def["name"],
                    "description": func_def.get("description", ""),
                    "input_schema": func_def.get("parameters") or {"type": "object", "properties": {}},
                })
            else:
                converted.append(tool)
        return converted or None

    def classify(self, event: Any, model: str) -> List[StreamChunk]:
        """Convert one Anthropic streaming event into StreamChunks."""
        if not isinstance(event, dict):
            return []

        event_type = event.get("type")

        if event_type == "message_start":
            message = event.get("message") or {}
            chunks = [StreamChunk.meta({"id": message.get("id"), "model": message.get("model")})]
            usage = normalize_anthropic_usage(message.get("usage"))
            if usage:
                chunks.append(StreamChunk.usage(usage))
            return chunks

        elif event_type == "content_block_start":
            return self._classify_block_start(event.get("index"), event.get("content_block") or {})

        elif event_type == "content_block_delta":
            return self._classify_block_delta(event.get("index"), event.get("delta") or {})

        elif event_type == "message_delta":
            delta = event.get("delta") or {}
            stop_reason = delta.get("stop_reason")
            meta: Dict[str, Any] = {
                "finish_reason": stop_reason_manager.map_stop_reason("anthropic", stop_reason),
            }
            provider_meta = {
                key: delta[key] for key in ("stop_reason", "stop_sequence") if delta.get(key) is not None
            }
            if provider_meta:
                meta["provider_meta"] = provider_meta
            chunks = [StreamChunk.meta(meta)]
            usage = normalize_anthropic_usage(event.get("usage"))
            if usage:
                chunks.append(StreamChunk.usage(usage))
            return chunks

        elif event_type == "error":
            return [StreamChunk.meta({
                "finish_reason": FinishReason.ERROR,
                "error": event.get("error") or {"type": "error"},
            })]

        elif event_type in ("message_stop", "content_block_stop", "ping"):
            return []

        logger.debug(f"Ignoring unknown Anthropic event type: {event_type}")
        return []

    def _classify_block_start(self, index: Optional[int], block: Dict[str, Any]) -> List[StreamChunk]:
        block_type = block.get("type")

        if block_type == "text":
            return [StreamChunk.text_delta(block["text"])] if block.get("text") else []

        elif block_type == "thinking":
            if not block.get("thinking") and not block.get("signature"):
                return []
            return [StreamChunk.thinking(
                block.get("thinking", ""),
                self._thinking_meta(index, signature=block.get("signature") or None),
            )]

        elif block_type == "redacted_thinking":
            return [StreamChunk.thinking(
                "",
                self._thinking_meta(index, signature=block.get("data"), encrypted=True, block_type="redacted_thinking"),
            )]

        elif block_type == "tool_use":
            # input is always {} at block start; the arguments arrive as input_json_delta
            initial = block.get("input") or ""
            return [StreamChunk.tool_call(name=block.get("name"), arguments=initial, id=block.get("id"), index=index)]

        logger.debug(f"Ignoring unknown Anthropic content block type: {block_type}")
        return []

    def _classify_block_delta(self, index: Optional[int], delta: Dict[str, Any]) -> List[StreamChunk]:
        delta_type = delta.get("type")

        if delta_type == "text_delta":
            return [StreamChunk.text_delta(delta.get("text", ""))]

        elif delta_type == "thinking_delta":
            return [StreamChunk.thinking(delta.get("thinking", ""), self._thinking_meta(index))]

        elif delta_type == "signature_delta":
            return [StreamChunk.thinking("", self._thinking_meta(index, signature=delta.get("signature")))]

        elif delta_type == "input_json_delta":
            return [StreamChunk.tool_call(arguments=delta.get("partial_json", ""), index=index)]

        logger.debug(f"Ignoring unknown Anthropic delta type: {delta_type}")
        return []

    @staticmethod
    def _thinking_meta(
        index: Optional[int],
        signature: Optional[str] = None,
        encrypted: bool = False,
        block_type: str = "thinking",
    ) -> Dict[str, Any]:
        meta = {
            "provider": ReasoningProvider.ANTHROPIC,
            "format": THINKING_FORMAT,
            "encrypted": encrypted,
            "provider_data": {"type": block_type, "block_index": index},
        }
        if signature:
            meta["signature"] = signature
        return meta


class AnthropicProvider(Provider):
    PROVIDER_NAME = "anthropic"

    # Anthropic rejects an assistant turn that has tool_use but no other blocks
    # once it is sent back, so tool-only messages get an empty text part.
    response_builder = ResponseBuilder(ensure_non_empty_content=True, merge_policy=MergePolicy.APPEND)

    def __init__(self, **config):
        """Initialize the Anthropic provider with the given configuration."""
        config = self._configure_stream(config)
        config.setdefault("api_key", os.getenv("ANTHROPIC_API_KEY"))
        if not config["api_key"]:
            raise ValueError(
                "Anthropic API key is missing. Please provide it in the config or set the ANTHROPIC_API_KEY environment variable."
            )
        self.client = anthropic.AsyncAnthropic(**config)
        self.converter = AnthropicMessageConverter()

    def classify(self, message, model):
        return self.converter.classify(message, model)

    def _prepare_kwargs(self, kwargs):
        """Prepare kwargs for the API call."""
        kwargs = kwargs.copy()
        kwargs.setdefault("max_tokens", DEFAULT_MAX_TOKENS)
        if "tools" in kwargs:
            tools = self.converter.convert_tool_spec(kwargs.pop("tools"))
            if tools:
                kwargs["tools"] = tools
        return kwargs

    async def _open_stream(self, stack: AsyncExitStack, model, context, **kwargs):
        system, messages = self.converter.convert_request(context)
        kwargs = self._prepare_kwargs(kwargs)
        if system:
            kwargs["system"] = system

        try:
            response = await stack.enter_async_context(
                self.client.messages.with_streaming_response.create(
                    model=model,
                    messages=messages,
                    stream=True,
                    **kwargs
                )
            )
        except anthropic.APIStatusError as e:
            raise APIError(e.status_code, e.body if e.body is not None else e.message, self.PROVIDER_NAME) from e

        return response.iter_bytes()
