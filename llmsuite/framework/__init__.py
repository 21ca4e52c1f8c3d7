from .context import Context, MergePolicy, merge
from .message import ContentPart, Function, Message, ReasoningDetail, ReasoningProvider, ToolCall
from .response import Response
from .response_builder import ResponseBuilder, build_response
from .stop_reason import FinishReason
from .stream_chunk import ChunkType, StreamChunk
from .stream_processor import StreamProcessor
from .stream_response import StreamResponse
