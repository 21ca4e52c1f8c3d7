"""Conversation message types shared by every provider.

Content is always a list of ContentPart values, never a bare string.
"""

import json
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ContentPart(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["text", "image", "image_url"]
    text: Optional[str] = None
    data: Optional[bytes] = None
    media_type: Optional[str] = None
    url: Optional[str] = None

    @classmethod
    def from_text(cls, text: str) -> "ContentPart":
        return cls(type="text", text=text)

    @classmethod
    def from_image(cls, data: bytes, media_type: str = "image/png") -> "ContentPart":
        return cls(type="image", data=data, media_type=media_type)

    @classmethod
    def from_image_url(cls, url: str) -> "ContentPart":
        return cls(type="image_url", url=url)


class Function(BaseModel):
    model_config = ConfigDict(frozen=True)

    arguments: str
    name: str


class ToolCall(BaseModel):
    """A completed tool invocation.

    ``error`` is set when the streamed arguments could not be parsed into a
    JSON object; ``function.arguments`` then holds the raw text as received.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    function: Function
    type: Literal["function"] = "function"
    error: Optional[str] = None

    def parsed_arguments(self) -> Dict[str, Any]:
        if self.error:
            raise ValueError(f"Tool call {self.id} has unparsable arguments: {self.error}")
        return json.loads(self.function.arguments)


class ReasoningProvider(str, Enum):
    ANTHROPIC = "anthropic"
    GOOGLE = "google"
    OPENAI = "openai"
    DEEPSEEK = "deepseek"
    OPENROUTER = "openrouter"


class ReasoningDetail(BaseModel):
    """Normalized reasoning/thinking segment.

    Args:
        text: Human readable reasoning text (may be a summary).
        signature: Opaque token the vendor needs to continue the reasoning.
        encrypted: Whether ``signature`` carries encrypted reasoning.
        provider: Vendor that produced the segment.
        format: Vendor specific format version, e.g. ``anthropic-thinking-v1``.
        index: Position among reasoning segments only.
        provider_data: Raw vendor fields kept for lossless re-encoding.
    """

    model_config = ConfigDict(frozen=True)

    text: str = ""
    signature: Optional[str] = None
    encrypted: bool = False
    provider: Optional[ReasoningProvider] = None
    format: Optional[str] = None
    index: int = Field(default=0, ge=0)
    provider_data: Dict[str, Any] = Field(default_factory=dict)


class Message(BaseModel):
    model_config = ConfigDict(frozen=True)

    role: Literal["user", "assistant", "system", "tool"]
    content: List[ContentPart] = Field(default_factory=list)
    name: Optional[str] = None
    tool_call_id: Optional[str] = None
    tool_calls: Optional[List[ToolCall]] = None
    reasoning_details: Optional[List[ReasoningDetail]] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("content", mode="before")
    @classmethod
    def _content_is_a_list(cls, value):
        if value is None:
            return []
        if isinstance(value, (str, bytes)):
            raise ValueError("content must be a list of ContentPart, not a bare string")
        return value

    @field_validator("reasoning_details")
    @classmethod
    def _empty_reasoning_is_none(cls, value):
        return value or None

    @classmethod
    def user(cls, text: str, **kwargs) -> "Message":
        return cls(role="user", content=[ContentPart.from_text(text)], **kwargs)

    @classmethod
    def system(cls, text: str, **kwargs) -> "Message":
        return cls(role="system", content=[ContentPart.from_text(text)], **kwargs)

    @classmethod
    def assistant(cls, text: str, **kwargs) -> "Message":
        return cls(role="assistant", content=[ContentPart.from_text(text)], **kwargs)

    @classmethod
    def tool_result(cls, tool_call_id: str, text: str) -> "Message":
        return cls(role="tool", tool_call_id=tool_call_id, content=[ContentPart.from_text(text)])

    def text(self) -> str:
        """Concatenated text of all text parts."""
        return "".join(part.text or "" for part in self.content if part.type == "text")

    def __repr__(self) -> str:
        summary = ",".join(part.type for part in self.content)
        return f"<Message {self.role} {summary}>"
