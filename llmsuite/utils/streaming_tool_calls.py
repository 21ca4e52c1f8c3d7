"""
Utilities for handling streaming tool calls.

In streaming mode, tool calls are sent in chunks and need to be accumulated
before they can be processed. Chunks of the same call share an ``index``
or an ``id``, and a chunk carrying both links the two. Argument text is
concatenated in emission order and parsed exactly once, when the stream is
complete.
"""

from typing import Any, Dict, Iterable, List, Optional
import json
import logging
import uuid

from llmsuite.framework.message import Function, ToolCall
from llmsuite.framework.stream_chunk import ChunkType, StreamChunk

logger = logging.getLogger(__name__)


class StreamingToolCallAccumulator:
    """
    Accumulates tool call chunks and converts them to complete tool calls
    once the stream has ended.
    """

    def __init__(self):
        # First appearance decides the tool call order
        self.tool_calls: List[Dict[str, Any]] = []
        self._by_index: Dict[int, Dict[str, Any]] = {}
        self._by_id: Dict[str, Dict[str, Any]] = {}

    def add_chunk(self, chunk: StreamChunk) -> None:
        """
        Add one tool_call chunk to the accumulator.

        Args:
            chunk: A StreamChunk of type TOOL_CALL
        """
        if chunk.type is not ChunkType.TOOL_CALL:
            return

        tool_call = self._find_group(chunk)
        if tool_call is None:
            tool_call = {
                "id": "",
                "name": "",
                "argument_parts": [],
                "argument_map": {},
            }
            self.tool_calls.append(tool_call)

        # A call may be keyed by index in one chunk and by id in the next
        if chunk.index is not None:
            self._by_index.setdefault(chunk.index, tool_call)
        if chunk.id:
            self._by_id.setdefault(chunk.id, tool_call)

        if chunk.id and not tool_call["id"]:
            tool_call["id"] = chunk.id
        if chunk.name and not tool_call["name"]:
            tool_call["name"] = chunk.name

        if isinstance(chunk.arguments, dict):
            tool_call["argument_map"].update(chunk.arguments)
        elif chunk.arguments:
            tool_call["argument_parts"].append(chunk.arguments)

    def _find_group(self, chunk: StreamChunk) -> Optional[Dict[str, Any]]:
        if chunk.index is not None and chunk.index in self._by_index:
            return self._by_index[chunk.index]
        if chunk.id and chunk.id in self._by_id:
            return self._by_id[chunk.id]
        return None

    def get_complete_tool_calls(self) -> List[ToolCall]:
        """
        Convert every accumulated group into a ToolCall.

        A group whose arguments do not parse into a JSON object still becomes
        a ToolCall, with ``error`` set and the raw argument text preserved.

        Returns:
            List of ToolCall objects in order of first appearance
        """
        return [self._to_tool_call(data) for data in self.tool_calls]

    def _to_tool_call(self, data: Dict[str, Any]) -> ToolCall:
        call_id = data["id"] or f"call_{uuid.uuid4().hex[:24]}"
        raw = "".join(data["argument_parts"])
        error: Optional[str] = None

        if raw.strip():
            try:
                parsed = json.loads(raw)
            except json.JSONDecodeError as e:
                parsed, error = None, f"invalid JSON arguments: {e.msg}"
            else:
                if not isinstance(parsed, dict):
                    parsed, error = None, f"arguments must be a JSON object, got {type(parsed).__name__}"
        else:
            parsed = {}

        if error:
            logger.warning(f"Tool call {call_id} ({data['name']}) has unparsable arguments: {error}")
            arguments = raw
        else:
            parsed.update(data["argument_map"])
            arguments = json.dumps(parsed)

        return ToolCall(
            id=call_id,
            function=Function(name=data["name"], arguments=arguments),
            type="function",
            error=error,
        )


def accumulate_streaming_tool_calls(chunks: Iterable[StreamChunk]) -> List[ToolCall]:
    """
    Convenience function to accumulate tool calls from a list of streaming chunks.

    Args:
        chunks: Ordered StreamChunk sequence; non tool-call chunks are skipped

    Returns:
        List of ToolCall objects
    """
    accumulator = StreamingToolCallAccumulator()

    for chunk in chunks:
        accumulator.add_chunk(chunk)

    return accumulator.get_complete_tool_calls()
