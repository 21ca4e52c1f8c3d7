"""
Server-sent event decoding.

Events are groups of ``field: value`` lines terminated by a blank line. The
decoder works on raw bytes and only decodes UTF-8 once an event is complete,
so a multi-byte character split across two network reads is never mangled.
"""

from dataclasses import dataclass
from typing import List, Optional, Tuple, Union

from llmsuite.utils.event_stream import DecodeError

_EVENT_TERMINATOR = b"\n\n"


@dataclass(frozen=True)
class ServerSentEvent:
    event: Optional[str] = None
    data: Optional[str] = None
    id: Optional[str] = None
    retry: Optional[int] = None


def decode_events(buffer: bytes, carry: bytes = b"") -> Tuple[List[Union[ServerSentEvent, DecodeError]], bytes]:
    """Split ``carry + buffer`` into complete events and the unterminated tail.

    Events without any field (for example a block made only of comments)
    are dropped. A block that is not valid UTF-8 is returned as a
    ``DecodeError`` marker in its slot.
    """
    data = (bytes(carry) + bytes(buffer)).replace(b"\r\n", b"\n")
    events: List[Union[ServerSentEvent, DecodeError]] = []

    while True:
        boundary = data.find(_EVENT_TERMINATOR)
        if boundary == -1:
            break
        block, data = data[:boundary], data[boundary + len(_EVENT_TERMINATOR):]
        try:
            text = block.decode("utf-8")
        except UnicodeDecodeError as e:
            events.append(DecodeError(reason=f"invalid UTF-8 in event: {e.reason}", raw=block))
            continue
        event = _parse_event(text)
        if event is not None:
            events.append(event)

    return events, data


def _parse_event(block: str) -> Optional[ServerSentEvent]:
    event_name = None
    event_id = None
    retry = None
    data_lines: List[str] = []
    seen_field = False

    for line in block.split("\n"):
        if not line or line.startswith(":"):
            continue
        name, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]

        if name == "data":
            data_lines.append(value)
        elif name == "event":
            event_name = value
        elif name == "id":
            event_id = value
        elif name == "retry":
            if not value.isdigit():
                continue
            retry = int(value)
        else:
            continue
        seen_field = True

    if not seen_field:
        return None
    return ServerSentEvent(
        event=event_name,
        data="\n".join(data_lines) if data_lines else None,
        id=event_id,
        retry=retry,
    )
