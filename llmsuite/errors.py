from typing import Any, Optional


class LLMError(Exception):
    """Custom exception for LLM errors."""

    def __init__(self, message):
        super().__init__(message)


class APIError(LLMError):
    """The vendor answered the initial request with a non-success HTTP status.

    Raised before any byte reaches the chunk pipeline.
    """

    def __init__(self, status_code: int, body: Any = None, provider: Optional[str] = None):
        self.status_code = status_code
        self.body = body
        self.provider = provider
        super().__init__(f"{provider or 'provider'} returned HTTP {status_code}: {body!r}")


class StreamDecodeError(LLMError):
    """A complete protocol message could not be decoded."""

    def __init__(self, message, raw: Optional[bytes] = None):
        self.raw = raw
        super().__init__(message)


class EventStreamError(StreamDecodeError):
    """Binary event-stream framing failure; the stream cannot continue."""

    CHECKSUM_MISMATCH = "checksum_mismatch"
    INVALID_LENGTH = "invalid_length"

    def __init__(self, reason: str, detail: str = ""):
        self.reason = reason
        super().__init__(f"{reason}: {detail}" if detail else reason)


class ResponseBuildError(LLMError):
    """The response builder could not produce a Response."""
