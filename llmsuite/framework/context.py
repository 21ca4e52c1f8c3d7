"""Conversation history and the merge step that appends a built message."""

from enum import Enum
from typing import Any, Dict, Iterable, List, Union

from pydantic import BaseModel, ConfigDict, Field

from llmsuite.framework.message import Message


class MergePolicy(str, Enum):
    APPEND = "append"    # always add the new message
    REPLACE = "replace"  # overwrite a trailing message of the same role


class Context(BaseModel):
    model_config = ConfigDict(frozen=True)

    messages: List[Message] = Field(default_factory=list)

    @classmethod
    def wrap(cls, value: Union["Context", Iterable[Union[Message, Dict[str, Any]]], None]) -> "Context":
        """Accept a Context, a list of Message objects or message dicts."""
        if value is None:
            return cls()
        if isinstance(value, Context):
            return value
        return cls(messages=list(value))

    def merge(self, message: Message, policy: MergePolicy = MergePolicy.APPEND) -> "Context":
        return merge(self, message, policy)

    def __len__(self) -> int:
        return len(self.messages)


def merge(context: Context, message: Message, policy: MergePolicy = MergePolicy.APPEND) -> Context:
    """Return a new Context with ``message`` added.

    REPLACE is for vendors that stream a message incrementally and then
    deliver the full message again; the trailing same-role message is swapped
    out instead of duplicated. APPEND never looks at the previous message.
    """
    messages = list(context.messages)
    if (
        MergePolicy(policy) is MergePolicy.REPLACE
        and messages
        and messages[-1].role == message.role
    ):
        messages[-1] = message
    else:
        messages.append(message)
    return context.model_copy(update={"messages": messages})
