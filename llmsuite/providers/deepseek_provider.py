import os
from typing import Any, Dict

import openai

from llmsuite.framework.message import Message, ReasoningProvider
from llmsuite.framework.response_builder import ResponseBuilder
from llmsuite.framework.context import MergePolicy
from llmsuite.providers.openai_provider import OpenAIMessageConverter, OpenaiProvider

DEEPSEEK_BASE_URL = "https://api.deepseek.com"


class DeepSeekMessageConverter(OpenAIMessageConverter):
    reasoning_provider = ReasoningProvider.DEEPSEEK
    chat_reasoning_format = "deepseek-reasoning-v1"

    def _assistant_message(self, msg: Message) -> Dict[str, Any]:
        item = super()._assistant_message(msg)
        # Thinking mode with tools expects the reasoning of the tool-call turn back
        if msg.tool_calls and msg.reasoning_details:
            item["reasoning_content"] = "".join(
                detail.text for detail in msg.reasoning_details if detail.provider is ReasoningProvider.DEEPSEEK
            )
        return item


class DeepseekProvider(OpenaiProvider):
    PROVIDER_NAME = "deepseek"

    response_builder = ResponseBuilder(merge_policy=MergePolicy.APPEND)

    def __init__(self, **config):
        """
        Initialize the DeepSeek provider with the given configuration.
        Pass the entire configuration dictionary to the OpenAI client constructor.
        """
        config = self._configure_stream(config)
        config.setdefault("api_key", os.getenv("DEEPSEEK_API_KEY"))
        if not config["api_key"]:
            raise ValueError(
                "DeepSeek API key is missing. Please provide it in the config or set the DEEPSEEK_API_KEY environment variable."
            )
        config.setdefault("base_url", DEEPSEEK_BASE_URL)
        self.client = openai.AsyncOpenAI(**config)
        self.converter = DeepSeekMessageConverter()

    def _supports_reasoning(self, model: str) -> bool:
        # deepseek-reasoner always thinks and takes no effort parameter
        return False

    def _should_use_responses_api(self, model: str, kwargs: dict) -> bool:
        return False
