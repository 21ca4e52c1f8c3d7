# Google Gemini provider (Generative Language API, SSE)
# Links:
# https://ai.google.dev/api/generate-content#method:-models.streamgeneratecontent
# Thought signatures - https://ai.google.dev/gemini-api/docs/thought-signatures

import base64
import logging
import os
import uuid
from contextlib import AsyncExitStack
from typing import Any, Dict, List, Optional

import httpx

from llmsuite.framework.context import Context, MergePolicy
from llmsuite.framework.message import Message, ReasoningProvider
from llmsuite.framework.response_builder import ResponseBuilder
from llmsuite.framework.stop_reason import FinishReason, stop_reason_manager
from llmsuite.framework.stream_chunk import StreamChunk
from llmsuite.provider import Provider
from llmsuite.utils.usage import normalize_gemini_usage

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"
THINKING_FORMAT = "google-gemini-v1"

# Sampling kwargs that Gemini expects inside generationConfig
GENERATION_CONFIG_KEYS = {
    "temperature": "temperature",
    "top_p": "topP",
    "top_k": "topK",
    "max_tokens": "maxOutputTokens",
    "max_output_tokens": "maxOutputTokens",
    "stop": "stopSequences",
    "candidate_count": "candidateCount",
    "response_mime_type": "responseMimeType",
    "thinking_config": "thinkingConfig",
}


class GeminiMessageConverter:
    def convert_request(self, context: Context) -> Dict[str, Any]:
        """Convert framework messages to ``contents`` and ``systemInstruction``."""
        system_texts = []
        contents: List[Dict[str, Any]] = []
        tool_names: Dict[str, str] = {}

        for msg in context.messages:
            if msg.role == "system":
                system_texts.append(msg.text())
                continue

            if msg.role == "tool":
                part = {
                    "functionResponse": {
                        "name": msg.name or tool_names.get(msg.tool_call_id, ""),
                        "response": {"result": msg.text()},
                    }
                }
                if contents and contents[-1]["role"] == "user" and _is_function_response_turn(contents[-1]):
                    contents[-1]["parts"].append(part)
                else:
                    contents.append({"role": "user", "parts": [part]})
                continue

            if msg.role == "assistant":
                for tool_call in msg.tool_calls or []:
                    tool_names[tool_call.id] = tool_call.function.name
                contents.append({"role": "model", "parts": self._model_parts(msg)})
            else:
                contents.append({"role": "user", "parts": self._user_parts(msg)})

        request: Dict[str, Any] = {"contents": contents}
        system = "\n\n".join(text for text in system_texts if text)
        if system:
            request["systemInstruction"] = {"parts": [{"text": system}]}
        return request

    @staticmethod
    def _user_parts(msg: Message) -> List[Dict[str, Any]]:
        parts = []
        for part in msg.content:
            if part.type == "text":
                parts.append({"text": part.text or ""})
            elif part.type == "image":
                parts.append({"inlineData": {
                    "mimeType": part.media_type,
                    "data": base64.b64encode(part.data or b"").decode("ascii"),
                }})
            elif part.type == "image_url":
                parts.append({"fileData": {"fileUri": part.url}})
        return parts

    @staticmethod
    def _model_parts(msg: Message) -> List[Dict[str, Any]]:
        parts: List[Dict[str, Any]] = []
        call_signature = None
        for detail in msg.reasoning_details or []:
            if detail.provider is not ReasoningProvider.GOOGLE:
                continue
            if detail.provider_data.get("attached_to") == "functionCall":
                call_signature = call_signature or detail.signature
                continue
            part: Dict[str, Any] = {"text": detail.text, "thought": True}
            if detail.signature:
                part["thoughtSignature"] = detail.signature
            parts.append(part)

        if msg.text():
            parts.append({"text": msg.text()})

        for i, tool_call in enumerate(msg.tool_calls or []):
            part = {"functionCall": {"name": tool_call.function.name, "args": _arguments(tool_call)}}
            # Only the first function call of a turn carries the signature
            if i == 0 and call_signature:
                part["thoughtSignature"] = call_signature
            parts.append(part)
        return parts

    @staticmethod
    def convert_tool_spec(openai_tools) -> Optional[List[Dict[str, Any]]]:
        """Convert OpenAI style tools to a single ``functionDeclarations`` tool."""
        declarations = []
        for tool in openai_tools or []:
            if not isinstance(tool, dict) or tool.get("type") != "function" or "function" not in tool:
                continue
            func_def = tool["function"]
            if "name" not in func_def:
                continue
            declaration = {"name": func_def["name"], "description": func_def.get("description", "")}
            if "parameters" in func_def:
                declaration["parameters"] = func_def["parameters"]
            declarations.append(declaration)

        if not declarations:
            return None
        return [{"functionDeclarations": declarations}]

    def classify(self, event: Any, model: str) -> List[StreamChunk]:
        """Convert one ``GenerateContentResponse`` SSE payload into StreamChunks."""
        if not isinstance(event, dict):
            return []

        if event.get("error"):
            return [StreamChunk.meta({"finish_reason": FinishReason.ERROR, "error": event["error"]})]

        chunks: List[StreamChunk] = []
        meta: Dict[str, Any] = {}
        provider_meta: Dict[str, Any] = {}
        if event.get("responseId"):
            meta["id"] = event["responseId"]
        if event.get("modelVersion"):
            meta["model"] = event["modelVersion"]

        candidates = event.get("candidates") or []
        if candidates:
            candidate = candidates[0]
            for part in (candidate.get("content") or {}).get("parts") or []:
                chunks.extend(self._classify_part(part))

            finish_reason = candidate.get("finishReason")
            if finish_reason:
                meta["finish_reason"] = stop_reason_manager.map_stop_reason("gemini", finish_reason)
                provider_meta["finish_reason"] = finish_reason

        block_reason = (event.get("promptFeedback") or {}).get("blockReason")
        if block_reason:
            meta["finish_reason"] = FinishReason.CONTENT_FILTER
            provider_meta["block_reason"] = block_reason

        if provider_meta:
            meta["provider_meta"] = provider_meta
        if meta:
            chunks.append(StreamChunk.meta(meta))

        usage = normalize_gemini_usage(event.get("usageMetadata"))
        if usage:
            chunks.append(StreamChunk.usage(usage))
        return chunks

    def _classify_part(self, part: Dict[str, Any]) -> List[StreamChunk]:
        signature = part.get("thoughtSignature")

        if part.get("thought"):
            return [StreamChunk.thinking(part.get("text", ""), self._thinking_meta(signature))]

        if part.get("functionCall"):
            call = part["functionCall"]
            chunks = []
            if signature:
                chunks.append(StreamChunk.thinking("", self._thinking_meta(signature, attached_to="functionCall")))
            # Gemini sends each call whole and often without an id
            chunks.append(StreamChunk.tool_call(
                name=call.get("name"),
                arguments=call.get("args") or {},
                id=call.get("id") or f"call_{uuid.uuid4().hex[:24]}",
            ))
            return chunks

        if part.get("text"):
            return [StreamChunk.text_delta(part["text"])]

        return []

    @staticmethod
    def _thinking_meta(signature: Optional[str], attached_to: Optional[str] = None) -> Dict[str, Any]:
        provider_data: Dict[str, Any] = {"thought": True}
        if attached_to:
            provider_data["attached_to"] = attached_to
        meta = {
            "provider": ReasoningProvider.GOOGLE,
            "format": THINKING_FORMAT,
            "encrypted": signature is not None,
            "provider_data": provider_data,
        }
        if signature is not None:
            meta["signature"] = signature
        return meta


def _is_function_response_turn(content: Dict[str, Any]) -> bool:
    parts = content.get("parts") or []
    return bool(parts) and all("functionResponse" in part for part in parts)


def _arguments(tool_call) -> Dict[str, Any]:
    if tool_call.error:
        return {}
    return tool_call.parsed_arguments()


class GeminiProvider(Provider):
    PROVIDER_NAME = "gemini"

    # finishReason is STOP even when the model answered with function calls
    response_builder = ResponseBuilder(correct_finish_reason=True, merge_policy=MergePolicy.APPEND)

    def __init__(self, **config):
        """Initialize the Gemini provider with API key and HTTP client."""
        config = self._configure_stream(config)
        self.api_key = config.pop("api_key", None) or os.environ.get("GEMINI_API_KEY")
        if not self.api_key:
            raise ValueError(
                "Gemini API key is missing. Please provide it in the config or set the GEMINI_API_KEY environment variable."
            )
        base_url = config.pop("base_url", DEFAULT_BASE_URL)
        timeout = config.pop("timeout", 60.0)
        if config:
            logger.warning(f"Ignoring unsupported Gemini config keys: {sorted(config)}")
        self.client = httpx.AsyncClient(base_url=base_url, timeout=timeout)
        self.converter = GeminiMessageConverter()

    def classify(self, message, model):
        return self.converter.classify(message, model)

    def _is_thinking_model(self, model_id: str) -> bool:
        return "gemini-2.5" in model_id or "gemini-3" in model_id

    def _build_body(self, model, context, kwargs) -> Dict[str, Any]:
        kwargs = kwargs.copy()
        body = self.converter.convert_request(context)

        tools = self.converter.convert_tool_spec(kwargs.pop("tools", None))
        if tools:
            body["tools"] = tools

        generation_config = dict(kwargs.pop("generation_config", None) or {})
        for key, gemini_key in GENERATION_CONFIG_KEYS.items():
            if key in kwargs:
                generation_config[gemini_key] = kwargs.pop(key)
        # Thought summaries are off unless asked for
        if self._is_thinking_model(model):
            generation_config.setdefault("thinkingConfig", {"includeThoughts": True})
        if generation_config:
            body["generationConfig"] = generation_config

        body.update(kwargs)
        return body

    async def _open_stream(self, stack: AsyncExitStack, model, context, **kwargs):
        return await self._open_http_stream(
            stack,
            self.client,
            f"/models/{model}:streamGenerateContent",
            self._build_body(model, context, kwargs),
            headers={"x-goog-api-key": self.api_key},
            params={"alt": "sse"},
        )
