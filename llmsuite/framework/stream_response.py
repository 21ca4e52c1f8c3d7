from typing import AsyncIterator, Awaitable, Callable, List, Optional

from llmsuite.framework.context import Context
from llmsuite.framework.response import Response
from llmsuite.framework.stream_chunk import StreamChunk
from llmsuite.framework.stream_processor import StreamProcessor


class StreamResponse:
    """Async iterator of StreamChunk over a live vendor byte stream.

    Iterate it to observe chunks as they arrive, then ``await response()``
    for the folded Response. ``response()`` drains whatever has not been
    consumed yet. A stream abandoned part way builds nothing; call ``aclose``
    (or use ``async with``) to release the connection.
    """

    def __init__(
        self,
        processor: StreamProcessor,
        byte_stream: AsyncIterator[bytes],
        context: Context,
        on_close: Optional[Callable[[], Awaitable[None]]] = None,
    ):
        self.processor = processor
        self.context = context
        self._byte_stream = byte_stream
        self._on_close = on_close
        self._closed = False
        self._exhausted = False
        self._response: Optional[Response] = None

    @property
    def model(self) -> str:
        return self.processor.model

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        if self.processor.failed:
            raise self.processor.error
        if self._exhausted:
            return
        try:
            async for data in self._byte_stream:
                for chunk in self.processor.feed(data):
                    yield chunk
                if self.processor.done:
                    break
        except Exception:
            await self.aclose()
            raise
        self._exhausted = True
        await self.aclose()

    async def collect(self) -> List[StreamChunk]:
        """Drain the stream and return every chunk it produced."""
        async for _ in self:
            pass
        return self.processor.chunks

    async def response(self) -> Response:
        if self.processor.failed:
            raise self.processor.error
        if self._response is None:
            await self.collect()
            self._response = self.processor.finish(context=self.context)
        return self._response

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._on_close is not None:
            await self._on_close()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.aclose()
