import os

import openai

from llmsuite.framework.context import MergePolicy
from llmsuite.framework.response_builder import ResponseBuilder
from llmsuite.providers.openai_provider import OpenAIMessageConverter, OpenaiProvider

DEFAULT_VLLM_BASE_URL = "http://localhost:8000/v1"


class VllmProvider(OpenaiProvider):
    """Self-hosted vLLM server speaking the OpenAI Chat Completions protocol.

    vLLM requires an API key to be present but usually does not check it, so
    any non-empty value works when the server has no authentication.
    """

    PROVIDER_NAME = "vllm"

    response_builder = ResponseBuilder(merge_policy=MergePolicy.APPEND)

    def __init__(self, **config):
        config = self._configure_stream(config)
        config.setdefault("api_key", os.getenv("VLLM_API_KEY") or os.getenv("OPENAI_API_KEY"))
        if not config["api_key"]:
            raise ValueError(
                "vLLM API key is missing. Please provide it in the config or set the VLLM_API_KEY environment variable."
            )
        config.setdefault("base_url", os.getenv("VLLM_BASE_URL") or DEFAULT_VLLM_BASE_URL)
        self.client = openai.AsyncOpenAI(**config)
        self.converter = OpenAIMessageConverter()

    def _supports_reasoning(self, model: str) -> bool:
        return False

    def _should_use_responses_api(self, model: str, kwargs: dict) -> bool:
        return False
