# Amazon Bedrock provider (Anthropic models)
# Links:
# https://docs.aws.amazon.com/bedrock/latest/APIReference/API_runtime_InvokeModelWithResponseStream.html

import base64
import json
import logging
import os
from contextlib import AsyncExitStack
from typing import Any, Dict, List
from urllib.parse import quote

import httpx

from llmsuite.framework.context import MergePolicy
from llmsuite.framework.response_builder import ResponseBuilder
from llmsuite.framework.stop_reason import FinishReason
from llmsuite.framework.stream_chunk import StreamChunk
from llmsuite.framework.stream_processor import PROTOCOL_EVENTSTREAM
from llmsuite.provider import Provider, StreamDecodeError
from llmsuite.providers.anthropic_provider import DEFAULT_MAX_TOKENS, AnthropicMessageConverter

logger = logging.getLogger(__name__)

BEDROCK_ANTHROPIC_VERSION = "bedrock-2023-05-31"
DEFAULT_REGION = "us-east-1"
INVOCATION_METRICS_KEY = "amazon-bedrock-invocationMetrics"


class BedrockMessageConverter(AnthropicMessageConverter):
    """Anthropic events wrapped in Bedrock's binary event-stream frames."""

    def classify(self, event: Any, model: str) -> List[StreamChunk]:
        if not isinstance(event, dict):
            return []

        if "bytes" in event:
            inner = self._unwrap(event["bytes"])
            chunks = super().classify(inner, model)
            metrics = inner.get(INVOCATION_METRICS_KEY)
            if metrics:
                chunks.append(StreamChunk.meta({"provider_meta": {"invocation_metrics": metrics}}))
            return chunks

        # Exception frames (throttlingException, modelStreamErrorException, ...)
        # carry only a message.
        if "message" in event:
            return [StreamChunk.meta({
                "finish_reason": FinishReason.ERROR,
                "error": {"type": "exception", "message": event["message"]},
            })]

        logger.debug(f"Ignoring Bedrock frame without bytes: {sorted(event)}")
        return []

    @staticmethod
    def _unwrap(encoded: str) -> Dict[str, Any]:
        try:
            raw = base64.b64decode(encoded, validate=True)
        except (ValueError, TypeError) as e:
            raise StreamDecodeError(f"invalid base64 chunk: {e}", raw=str(encoded).encode("utf-8"))
        try:
            inner = json.loads(raw)
        except ValueError as e:
            raise StreamDecodeError(f"invalid JSON chunk: {e}", raw=raw)
        if not isinstance(inner, dict):
            raise StreamDecodeError("chunk is not a JSON object", raw=raw)
        return inner


class BedrockProvider(Provider):
    PROVIDER_NAME = "bedrock"
    STREAM_PROTOCOL = PROTOCOL_EVENTSTREAM

    response_builder = ResponseBuilder(ensure_non_empty_content=True, merge_policy=MergePolicy.APPEND)

    def __init__(self, **config):
        """Initialize the Bedrock provider.

        Authentication uses a Bedrock API key sent as a bearer token.
        """
        config = self._configure_stream(config)
        self.api_key = config.pop("api_key", None) or os.getenv("AWS_BEARER_TOKEN_BEDROCK")
        if not self.api_key:
            raise ValueError(
                "Bedrock API key is missing. Please provide it in the config or set the AWS_BEARER_TOKEN_BEDROCK environment variable."
            )
        self.region = config.pop("region", None) or os.getenv("AWS_REGION") or DEFAULT_REGION
        base_url = config.pop("base_url", None) or f"https://bedrock-runtime.{self.region}.amazonaws.com"
        timeout = config.pop("timeout", 60.0)
        if config:
            logger.warning(f"Ignoring unsupported Bedrock config keys: {sorted(config)}")

        self.client = httpx.AsyncClient(base_url=base_url, timeout=timeout)
        self.converter = BedrockMessageConverter()

    def classify(self, message, model):
        return self.converter.classify(message, model)

    def _build_body(self, context, kwargs) -> Dict[str, Any]:
        system, messages = self.converter.convert_request(context)
        body = {
            "anthropic_version": BEDROCK_ANTHROPIC_VERSION,
            "messages": messages,
            "max_tokens": DEFAULT_MAX_TOKENS,
        }
        if system:
            body["system"] = system
        kwargs = dict(kwargs)
        tools = self.converter.convert_tool_spec(kwargs.pop("tools", None))
        if tools:
            body["tools"] = tools
        body.update(kwargs)
        return body

    async def _open_stream(self, stack: AsyncExitStack, model, context, **kwargs):
        url = f"/model/{quote(model, safe='')}/invoke-with-response-stream"
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Accept": "application/vnd.amazon.eventstream",
            "Content-Type": "application/json",
        }
        return await self._open_http_stream(stack, self.client, url, self._build_body(context, kwargs), headers=headers)
