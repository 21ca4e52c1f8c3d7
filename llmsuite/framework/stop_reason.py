"""
LLMSuite Framework Stop Reason Module

Standardizing finish reasons across different LLM providers.
Provides the unified FinishReason enumeration and per-provider mapping logic.
"""

from enum import Enum
from typing import Dict, Optional, Union
import logging

logger = logging.getLogger(__name__)


class FinishReason(str, Enum):
    """Standardized finish reasons across all LLM providers"""

    STOP = "stop"                      # Natural completion or stop sequence
    LENGTH = "length"                  # Hit max_tokens limit
    TOOL_CALLS = "tool_calls"          # Tool call required
    CONTENT_FILTER = "content_filter"  # Safety refusal or filtered content
    ERROR = "error"                    # Model/request error

    @classmethod
    def coerce(cls, value: Union["FinishReason", str, None]) -> "FinishReason":
        """Turn an enum member, its string value or None into a FinishReason."""
        if value is None:
            return cls.STOP
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            logger.warning(f"Unknown finish reason: {value}, treating as stop")
            return cls.STOP


class ProviderStopMapper:
    """Base class for provider-specific stop reason mapping"""

    REASONS: Dict[str, FinishReason] = {}

    def __init__(self, provider_name: str):
        self.provider_name = provider_name

    def map_stop_reason(self, original_reason: str) -> FinishReason:
        """Map provider-specific stop reason to a FinishReason"""
        reason = self.REASONS.get(original_reason)
        if reason is None:
            logger.warning(f"Unknown {self.provider_name} stop reason: {original_reason}")
            return FinishReason.STOP
        return reason


class AnthropicStopMapper(ProviderStopMapper):
    """Anthropic Claude stop reason mapper"""

    REASONS = {
        "end_turn": FinishReason.STOP,
        "stop_sequence": FinishReason.STOP,
        "pause_turn": FinishReason.STOP,
        "max_tokens": FinishReason.LENGTH,
        "model_context_window_exceeded": FinishReason.LENGTH,
        "tool_use": FinishReason.TOOL_CALLS,
        "refusal": FinishReason.CONTENT_FILTER,
    }

    def __init__(self):
        super().__init__("anthropic")


class OpenAIStopMapper(ProviderStopMapper):
    """OpenAI Chat Completions finish_reason mapper (also DeepSeek and vLLM)"""

    REASONS = {
        "stop": FinishReason.STOP,
        "length": FinishReason.LENGTH,
        "tool_calls": FinishReason.TOOL_CALLS,
        "function_call": FinishReason.TOOL_CALLS,
        "content_filter": FinishReason.CONTENT_FILTER,
        "insufficient_system_resource": FinishReason.ERROR,
    }

    def __init__(self):
        super().__init__("openai")


class OpenAIResponsesStopMapper(ProviderStopMapper):
    """OpenAI Responses API mapper.

    The Responses API reports a response status rather than a finish reason;
    ``incomplete`` responses carry the actual cause in ``incomplete_details``.
    """

    REASONS = {
        "completed": FinishReason.STOP,
        "max_output_tokens": FinishReason.LENGTH,
        "content_filter": FinishReason.CONTENT_FILTER,
        "failed": FinishReason.ERROR,
        "cancelled": FinishReason.ERROR,
    }

    def __init__(self):
        super().__init__("openai_responses")


class GeminiStopMapper(ProviderStopMapper):
    """Google Gemini finishReason mapper"""

    REASONS = {
        "STOP": FinishReason.STOP,
        "MAX_TOKENS": FinishReason.LENGTH,
        "SAFETY": FinishReason.CONTENT_FILTER,
        "RECITATION": FinishReason.CONTENT_FILTER,
        "BLOCKLIST": FinishReason.CONTENT_FILTER,
        "PROHIBITED_CONTENT": FinishReason.CONTENT_FILTER,
        "SPII": FinishReason.CONTENT_FILTER,
        "IMAGE_SAFETY": FinishReason.CONTENT_FILTER,
        "LANGUAGE": FinishReason.ERROR,
        "MALFORMED_FUNCTION_CALL": FinishReason.ERROR,
        "UNEXPECTED_TOOL_CALL": FinishReason.ERROR,
        "TOO_MANY_TOOL_CALLS": FinishReason.ERROR,
        "OTHER": FinishReason.STOP,
        "FINISH_REASON_UNSPECIFIED": FinishReason.STOP,
    }

    def __init__(self):
        super().__init__("gemini")


class StopReasonManager:
    """Central manager for stop reason mapping"""

    def __init__(self):
        self._mappers: Dict[str, ProviderStopMapper] = {}
        self._register_default_mappers()

    def _register_default_mappers(self):
        """Register default provider mappers"""
        self.register_mapper("anthropic", AnthropicStopMapper())
        self.register_mapper("openai", OpenAIStopMapper())
        self.register_mapper("openai_responses", OpenAIResponsesStopMapper())
        self.register_mapper("gemini", GeminiStopMapper())

    def register_mapper(self, provider_name: str, mapper: ProviderStopMapper):
        """Register a provider-specific mapper"""
        self._mappers[provider_name] = mapper
        logger.debug(f"Registered stop mapper for provider: {provider_name}")

    def map_stop_reason(self, provider_name: str, original_reason: Optional[str]) -> Optional[FinishReason]:
        """Map provider-specific stop reason to a FinishReason, None when absent"""
        if original_reason is None:
            return None

        if provider_name not in self._mappers:
            logger.warning(f"No mapper found for provider: {provider_name}")
            return FinishReason.coerce(original_reason)

        return self._mappers[provider_name].map_stop_reason(original_reason)


# Global instance
stop_reason_manager = StopReasonManager()
