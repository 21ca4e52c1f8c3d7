"""
Folds an ordered StreamChunk sequence plus terminal metadata into a Response.

``build_response`` is the shared algorithm. Vendors that need quirk
corrections configure a ``ResponseBuilder`` whose hooks run around it in a
fixed order::

    correct_finish_reason -> build_response -> ensure_non_empty_content -> propagate_response_id

Every step returns a new value; nothing here mutates its input or does I/O.
"""

import logging
import uuid
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from pydantic import ValidationError

from llmsuite.errors import ResponseBuildError
from llmsuite.framework.context import Context, MergePolicy, merge
from llmsuite.framework.message import ContentPart, Message, ReasoningDetail
from llmsuite.framework.response import Response
from llmsuite.framework.stop_reason import FinishReason
from llmsuite.framework.stream_chunk import ChunkType, StreamChunk
from llmsuite.utils.streaming_tool_calls import accumulate_streaming_tool_calls
from llmsuite.utils.usage import merge_usage

logger = logging.getLogger(__name__)


def build_response(
    chunks: Iterable[StreamChunk],
    metadata: Optional[Mapping[str, Any]] = None,
    context=None,
    model: Optional[str] = None,
    merge_policy: MergePolicy = MergePolicy.APPEND,
) -> Response:
    """Default build algorithm shared by every provider.

    Args:
        chunks: Chunks in emission order. META chunks and unknown types are ignored.
        metadata: Terminal metadata: ``finish_reason``, ``usage``, ``id``,
            ``response_id``, ``model``, ``error``, ``provider_meta``.
        context: Conversation the new message is merged into.
        model: Fallback model name when the stream did not report one.
        merge_policy: How the message joins ``context``.

    Raises:
        ResponseBuildError: metadata is not a mapping or the records fail validation.
    """
    if metadata is not None and not isinstance(metadata, Mapping):
        raise ResponseBuildError(f"terminal metadata must be a mapping, got {type(metadata).__name__}")
    metadata = dict(metadata or {})
    chunks = list(chunks)

    text_parts: List[str] = []
    thinking_chunks: List[StreamChunk] = []
    usage_snapshots: List[Mapping[str, Any]] = []

    for chunk in chunks:
        if chunk.type is ChunkType.TEXT:
            text_parts.append(chunk.text or "")
        elif chunk.type is ChunkType.THINKING:
            thinking_chunks.append(chunk)
        elif chunk.type is ChunkType.USAGE:
            usage_snapshots.append(chunk.metadata)
        elif chunk.type not in (ChunkType.TOOL_CALL, ChunkType.META):
            logger.debug(f"Ignoring chunk of unknown type: {chunk.type}")

    if isinstance(metadata.get("usage"), Mapping):
        usage_snapshots.append(metadata["usage"])

    text = "".join(text_parts)
    tool_calls = accumulate_streaming_tool_calls(chunks)

    try:
        message = Message(
            role="assistant",
            content=[ContentPart.from_text(text)] if text else [],
            tool_calls=tool_calls or None,
            reasoning_details=_reasoning_details(thinking_chunks),
        )
        response = Response(
            id=metadata.get("id") or metadata.get("response_id") or f"resp_{uuid.uuid4().hex}",
            model=metadata.get("model") or model,
            context=merge(Context.wrap(context), message, merge_policy),
            message=message,
            usage=merge_usage(usage_snapshots),
            finish_reason=FinishReason.coerce(metadata.get("finish_reason")),
            provider_meta=dict(metadata.get("provider_meta") or {}),
            error=metadata.get("error"),
        )
    except ValidationError as e:
        raise ResponseBuildError(f"could not build response: {e}") from e

    return response


def _reasoning_details(thinking_chunks: Sequence[StreamChunk]) -> Optional[List[ReasoningDetail]]:
    if not thinking_chunks:
        return None

    details = []
    for index, chunk in enumerate(thinking_chunks):
        meta = chunk.metadata
        details.append(ReasoningDetail(
            text=chunk.text or "",
            signature=meta.get("signature"),
            encrypted=bool(meta.get("encrypted", False)),
            provider=meta.get("provider"),
            format=meta.get("format"),
            index=index,
            provider_data=dict(meta.get("provider_data") or {}),
        ))
    return details


def correct_finish_reason(chunks: Sequence[StreamChunk], metadata: Mapping[str, Any]) -> Dict[str, Any]:
    """Rewrite a normal stop to ``tool_calls`` when a tool call was streamed.

    For vendors whose terminal event reports the same reason whether or not
    the model called a function.
    """
    metadata = dict(metadata)
    has_tool_calls = any(chunk.type is ChunkType.TOOL_CALL for chunk in chunks)
    reason = metadata.get("finish_reason")
    if has_tool_calls and (reason is None or FinishReason.coerce(reason) is FinishReason.STOP):
        metadata["finish_reason"] = FinishReason.TOOL_CALLS
    return metadata


def ensure_non_empty_content(response: Response) -> Response:
    """Give a tool-call-only message a single empty text part.

    For vendors that reject an assistant turn with zero content blocks.
    """
    message = response.message
    if message.tool_calls and not message.content:
        message = message.model_copy(update={"content": [ContentPart.from_text("")]})
        return _with_message(response, message)
    return response


def propagate_response_id(response: Response, metadata: Mapping[str, Any]) -> Response:
    """Copy the continuation identifier into ``message.metadata``.

    Stateless multi-turn APIs continue from this id instead of replaying history.
    """
    response_id = metadata.get("response_id")
    if not isinstance(response_id, str) or not response_id:
        return response
    message = response.message.model_copy(
        update={"metadata": {**response.message.metadata, "response_id": response_id}}
    )
    return _with_message(response, message)


def _with_message(response: Response, message: Message) -> Response:
    # The built message is always the newest entry of the returned context
    messages = list(response.context.messages)
    messages[-1] = message
    context = response.context.model_copy(update={"messages": messages})
    return response.model_copy(update={"message": message, "context": context})


class ResponseBuilder:
    """Default build algorithm with the vendor quirk hooks switched on or off.

    Hooks compose; their order is fixed regardless of which are enabled.
    """

    def __init__(
        self,
        correct_finish_reason: bool = False,
        ensure_non_empty_content: bool = False,
        propagate_response_id: bool = False,
        merge_policy: MergePolicy = MergePolicy.APPEND,
    ):
        self.correct_finish_reason = correct_finish_reason
        self.ensure_non_empty_content = ensure_non_empty_content
        self.propagate_response_id = propagate_response_id
        self.merge_policy = MergePolicy(merge_policy)

    def build_response(
        self,
        chunks: Iterable[StreamChunk],
        metadata: Optional[Mapping[str, Any]] = None,
        context=None,
        model: Optional[str] = None,
    ) -> Response:
        chunks = list(chunks)
        if metadata is not None and not isinstance(metadata, Mapping):
            raise ResponseBuildError(f"terminal metadata must be a mapping, got {type(metadata).__name__}")
        metadata = dict(metadata or {})

        if self.correct_finish_reason:
            metadata = correct_finish_reason(chunks, metadata)

        response = build_response(
            chunks, metadata, context=context, model=model, merge_policy=self.merge_policy
        )

        if self.ensure_non_empty_content:
            response = ensure_non_empty_content(response)
        if self.propagate_response_id:
            response = propagate_response_id(response, metadata)
        return response

    def __repr__(self) -> str:
        return (
            f"ResponseBuilder(correct_finish_reason={self.correct_finish_reason}, "
            f"ensure_non_empty_content={self.ensure_non_empty_content}, "
            f"propagate_response_id={self.propagate_response_id}, "
            f"merge_policy={self.merge_policy.value})"
        )
