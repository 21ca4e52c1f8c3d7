"""
Pull-based decode -> classify -> accumulate pipeline for one stream.

The caller feeds every network read into ``feed`` and gets back the chunks
that read completed. Nothing blocks: a partial frame or event simply stays in
the processor's buffer until the next read. ``finish`` builds the Response.
"""

import json
import logging
from typing import Any, Dict, List, Optional

from llmsuite.errors import StreamDecodeError
from llmsuite.framework.stream_chunk import ChunkType, StreamChunk
from llmsuite.utils.event_stream import DecodeError, decode_messages
from llmsuite.utils.sse import decode_events

logger = logging.getLogger(__name__)

PROTOCOL_SSE = "sse"
PROTOCOL_EVENTSTREAM = "eventstream"

ON_DECODE_ERROR_RAISE = "raise"
ON_DECODE_ERROR_SKIP = "skip"

_STREAM_END = object()


class StreamProcessor:
    """Decoder state for a single stream.

    Args:
        provider: Adapter exposing ``STREAM_PROTOCOL``, ``STREAM_SENTINEL``,
            ``classify(message, model)`` and ``build_response(...)``.
        model: Model name passed to the classifier.
        on_decode_error: ``"raise"`` aborts the stream on a malformed message,
            ``"skip"`` logs it and carries on. Checksum failures always raise.
    """

    def __init__(self, provider, model: str, on_decode_error: str = ON_DECODE_ERROR_RAISE):
        if on_decode_error not in (ON_DECODE_ERROR_RAISE, ON_DECODE_ERROR_SKIP):
            raise ValueError(f"on_decode_error must be 'raise' or 'skip', got {on_decode_error!r}")
        self.provider = provider
        self.model = model
        self.on_decode_error = on_decode_error
        self.protocol = getattr(provider, "STREAM_PROTOCOL", PROTOCOL_SSE)
        self.sentinel = getattr(provider, "STREAM_SENTINEL", None)
        self.done = False
        self.error: Optional[StreamDecodeError] = None
        self._buffer = b""
        self._chunks: List[StreamChunk] = []
        self._metadata: Dict[str, Any] = {}

    @property
    def chunks(self) -> List[StreamChunk]:
        return list(self._chunks)

    @property
    def metadata(self) -> Dict[str, Any]:
        return dict(self._metadata)

    @property
    def pending_bytes(self) -> int:
        return len(self._buffer)

    @property
    def failed(self) -> bool:
        return self.error is not None

    def feed(self, data: bytes) -> List[StreamChunk]:
        """Consume one network read and return the chunks it completed."""
        if self.error is not None:
            raise self.error
        if self.done:
            return []

        emitted: List[StreamChunk] = []
        try:
            for message in self._decode(data):
                if message is _STREAM_END:
                    logger.debug("Stream sentinel reached")
                    self.done = True
                    break
                if isinstance(message, DecodeError):
                    self._handle_decode_error(message)
                    continue
                try:
                    classified = self.provider.classify(message, self.model)
                except StreamDecodeError as e:
                    self._handle_decode_error(DecodeError(reason=str(e), raw=e.raw or b""))
                    continue
                for chunk in classified:
                    if chunk.type is ChunkType.META:
                        self._absorb_meta(chunk.metadata)
                    else:
                        emitted.append(chunk)
        except StreamDecodeError as e:
            # An aborted stream stays aborted: no later read or finish() succeeds
            self.error = e
            self._buffer = b""
            raise

        self._chunks.extend(emitted)
        return emitted

    def finish(self, context=None, **opts):
        """Build the Response from everything fed so far.

        Raises the stored decode error instead when the stream was aborted.
        """
        if self.error is not None:
            raise self.error
        if self._buffer:
            logger.debug(f"Discarding {len(self._buffer)} unterminated bytes at end of stream")
        return self.provider.build_response(
            self._chunks, self._metadata, context=context, model=opts.pop("model", self.model), **opts
        )

    def _decode(self, data: bytes) -> List[Any]:
        if self.protocol == PROTOCOL_EVENTSTREAM:
            result = decode_messages(data, self._buffer)
            self._buffer = result.leftover
            return result.messages

        events, self._buffer = decode_events(data, self._buffer)
        messages: List[Any] = []
        for event in events:
            if isinstance(event, DecodeError):
                messages.append(event)
                continue
            if event.data is None:
                continue
            if self.sentinel is not None and event.data.strip() == self.sentinel:
                messages.append(_STREAM_END)
                break
            try:
                messages.append(json.loads(event.data))
            except ValueError as e:
                messages.append(DecodeError(reason=f"invalid JSON event data: {e}", raw=event.data.encode("utf-8")))
        return messages

    def _handle_decode_error(self, error: DecodeError) -> None:
        if self.on_decode_error == ON_DECODE_ERROR_RAISE:
            raise StreamDecodeError(error.reason, raw=error.raw)
        logger.warning(f"Skipping undecodable stream message: {error.reason}")

    def _absorb_meta(self, data: Dict[str, Any]) -> None:
        provider_meta = data.get("provider_meta")
        updates = {k: v for k, v in data.items() if k != "provider_meta" and v is not None}
        merged = {**self._metadata, **updates}
        if provider_meta:
            merged["provider_meta"] = {**self._metadata.get("provider_meta", {}), **provider_meta}
        self._metadata = merged
