from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from llmsuite.framework.context import Context
from llmsuite.framework.message import ContentPart, Message, ReasoningDetail, ToolCall
from llmsuite.framework.stop_reason import FinishReason


class Response(BaseModel):
    """Standard response record for a completed stream, across all providers.

    Built exactly once per stream and never mutated afterwards; ``context``
    already contains ``message`` as its newest entry.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    model: Optional[str] = None
    context: Context
    message: Message
    usage: Optional[Dict[str, Any]] = None
    finish_reason: FinishReason = FinishReason.STOP
    provider_meta: Dict[str, Any] = Field(default_factory=dict)
    error: Optional[Dict[str, Any]] = None

    def text(self) -> str:
        return self.message.text()

    def images(self) -> List[ContentPart]:
        """Image and image_url parts of the message, in order."""
        return [part for part in self.message.content if part.type in ("image", "image_url")]

    def image_data(self) -> Optional[bytes]:
        """Bytes of the first inline image, if any."""
        return next((part.data for part in self.message.content if part.type == "image"), None)

    def image_url(self) -> Optional[str]:
        """URL of the first image_url part, if any."""
        return next((part.url for part in self.message.content if part.type == "image_url"), None)

    def thinking(self) -> str:
        return "".join(detail.text for detail in self.reasoning_details())

    def tool_calls(self) -> List[ToolCall]:
        return list(self.message.tool_calls or [])

    def reasoning_details(self) -> List[ReasoningDetail]:
        return list(self.message.reasoning_details or [])

    @property
    def ok(self) -> bool:
        return self.error is None and self.finish_reason is not FinishReason.ERROR
