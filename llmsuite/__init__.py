from .client import Client
from .framework import (
    ChunkType,
    ContentPart,
    Context,
    FinishReason,
    MergePolicy,
    Message,
    ReasoningDetail,
    Response,
    ResponseBuilder,
    StreamChunk,
    StreamResponse,
    ToolCall,
)
from .provider import (
    APIError,
    EventStreamError,
    LLMError,
    ProviderFactory,
    ResponseBuildError,
    StreamDecodeError,
)
