from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Union


class ChunkType(str, Enum):
    TEXT = "text"
    TOOL_CALL = "tool_call"
    THINKING = "thinking"
    USAGE = "usage"
    META = "meta"  # terminal state: finish reason, ids, errors


@dataclass(frozen=True)
class StreamChunk:
    """One canonical unit of streamed output.

    Chunks that belong to the same tool call share ``id`` and/or ``index``.
    There is no sequence number: emission order is the only ordering.
    """

    type: ChunkType
    text: Optional[str] = None
    name: Optional[str] = None
    arguments: Union[str, Dict[str, Any], None] = None
    id: Optional[str] = None
    index: Optional[int] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def text_delta(cls, delta: str) -> "StreamChunk":
        return cls(type=ChunkType.TEXT, text=delta)

    @classmethod
    def tool_call(
        cls,
        name: Optional[str] = None,
        arguments: Union[str, Mapping[str, Any], None] = None,
        id: Optional[str] = None,
        index: Optional[int] = None,
    ) -> "StreamChunk":
        if isinstance(arguments, Mapping):
            arguments = dict(arguments)
        return cls(type=ChunkType.TOOL_CALL, name=name, arguments=arguments, id=id, index=index)

    @classmethod
    def thinking(cls, text: str, metadata: Optional[Mapping[str, Any]] = None) -> "StreamChunk":
        return cls(type=ChunkType.THINKING, text=text, metadata=dict(metadata or {}))

    @classmethod
    def usage(cls, snapshot: Mapping[str, Any]) -> "StreamChunk":
        return cls(type=ChunkType.USAGE, metadata=dict(snapshot))

    @classmethod
    def meta(cls, data: Mapping[str, Any]) -> "StreamChunk":
        return cls(type=ChunkType.META, metadata=dict(data))
