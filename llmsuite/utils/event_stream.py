"""
Binary event-stream framing (as used by Amazon Bedrock streaming endpoints).

Every message is self delimited and carries two CRC32 checksums::

    total_length(4) | headers_length(4) | prelude_crc(4) | headers | payload | message_crc(4)

All integers are big-endian unsigned 32 bit. ``decode_messages`` is resumable:
feed it whatever bytes the network produced plus the ``leftover`` of the
previous call, in any split, including one inside the 12 byte prelude.
"""

import json
import struct
import zlib
from dataclasses import dataclass
from typing import Any, Dict, List, NamedTuple, Optional, Union

from llmsuite.errors import EventStreamError

PRELUDE_LENGTH = 12
MESSAGE_OVERHEAD = 16  # prelude + trailing message crc

STATUS_OK = "ok"
STATUS_INCOMPLETE = "incomplete"

_HEADER_TYPE_STRING = 7


@dataclass(frozen=True)
class DecodeError:
    """Marker left in place of a frame whose payload was not valid JSON."""

    reason: str
    raw: bytes


class DecodeResult(NamedTuple):
    status: str
    messages: List[Union[Dict[str, Any], DecodeError]]
    leftover: bytes


def crc32(data: bytes) -> int:
    return zlib.crc32(data) & 0xFFFFFFFF


def decode_messages(buffer: bytes, carry: bytes = b"") -> DecodeResult:
    """Decode every complete message in ``carry + buffer``.

    Returns ``DecodeResult("ok", messages, leftover)`` when at least one
    message was decoded and ``DecodeResult("incomplete", [], leftover)``
    otherwise. Raises EventStreamError on checksum or length corruption.
    """
    data = bytes(carry) + bytes(buffer)
    messages: List[Union[Dict[str, Any], DecodeError]] = []
    offset = 0

    while len(data) - offset >= PRELUDE_LENGTH:
        total_length, headers_length, prelude_crc = struct.unpack_from(">III", data, offset)

        # Checked before waiting for the body: a corrupted length would
        # otherwise make us wait for bytes that never come.
        if crc32(data[offset:offset + 8]) != prelude_crc:
            raise EventStreamError(EventStreamError.CHECKSUM_MISMATCH, "prelude crc")
        if total_length < MESSAGE_OVERHEAD or headers_length > total_length - MESSAGE_OVERHEAD:
            raise EventStreamError(
                EventStreamError.INVALID_LENGTH,
                f"total={total_length} headers={headers_length}",
            )

        if len(data) - offset < total_length:
            break

        end = offset + total_length
        (message_crc,) = struct.unpack_from(">I", data, end - 4)
        if crc32(data[offset:end - 4]) != message_crc:
            raise EventStreamError(EventStreamError.CHECKSUM_MISMATCH, "message crc")

        payload = data[offset + PRELUDE_LENGTH + headers_length:end - 4]
        messages.append(_parse_payload(payload))
        offset = end

    leftover = data[offset:]
    return DecodeResult(STATUS_OK if messages else STATUS_INCOMPLETE, messages, leftover)


def _parse_payload(payload: bytes) -> Union[Dict[str, Any], DecodeError]:
    try:
        return json.loads(payload)
    except (UnicodeDecodeError, ValueError) as e:
        return DecodeError(reason=f"invalid JSON payload: {e}", raw=payload)


def encode_message(payload: Union[bytes, str, Dict[str, Any]], headers: Optional[Dict[str, str]] = None) -> bytes:
    """Frame ``payload`` as one event-stream message.

    Dict payloads are JSON encoded. Header values are encoded as strings.
    """
    if isinstance(payload, dict):
        payload = json.dumps(payload, separators=(",", ":")).encode("utf-8")
    elif isinstance(payload, str):
        payload = payload.encode("utf-8")

    encoded_headers = b"".join(_encode_header(name, value) for name, value in (headers or {}).items())
    total_length = MESSAGE_OVERHEAD + len(encoded_headers) + len(payload)

    prelude = struct.pack(">II", total_length, len(encoded_headers))
    prelude += struct.pack(">I", crc32(prelude))
    body = prelude + encoded_headers + payload
    return body + struct.pack(">I", crc32(body))


def _encode_header(name: str, value: str) -> bytes:
    name_bytes = name.encode("utf-8")
    value_bytes = value.encode("utf-8")
    return (
        struct.pack(">B", len(name_bytes))
        + name_bytes
        + struct.pack(">BH", _HEADER_TYPE_STRING, len(value_bytes))
        + value_bytes
    )
