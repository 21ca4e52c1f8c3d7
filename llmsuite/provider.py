from abc import ABC, abstractmethod
from contextlib import AsyncExitStack
from pathlib import Path
from typing import Any, AsyncIterator, Dict, List, Optional
import functools
import importlib
import json
import logging

import httpx

from llmsuite.errors import (
    APIError,
    EventStreamError,
    LLMError,
    ResponseBuildError,
    StreamDecodeError,
)
from llmsuite.framework.context import Context
from llmsuite.framework.response import Response
from llmsuite.framework.response_builder import ResponseBuilder
from llmsuite.framework.stream_chunk import StreamChunk
from llmsuite.framework.stream_processor import (
    ON_DECODE_ERROR_RAISE,
    ON_DECODE_ERROR_SKIP,
    PROTOCOL_SSE,
    StreamProcessor,
)
from llmsuite.framework.stream_response import StreamResponse

__all__ = [
    "APIError",
    "EventStreamError",
    "LLMError",
    "Provider",
    "ProviderFactory",
    "ResponseBuildError",
    "StreamDecodeError",
]

logger = logging.getLogger(__name__)


class Provider(ABC):
    """A vendor adapter.

    Subclasses declare how their stream is framed, classify each decoded
    protocol message into StreamChunks and open the byte stream. The shared
    ``chat_completions_create`` wires those pieces into a StreamResponse.
    """

    PROVIDER_NAME = ""
    STREAM_PROTOCOL = PROTOCOL_SSE
    STREAM_SENTINEL: Optional[str] = None

    response_builder = ResponseBuilder()

    on_decode_error = ON_DECODE_ERROR_RAISE

    @abstractmethod
    def classify(self, message: Any, model: str) -> List[StreamChunk]:
        """Turn one decoded protocol message into canonical chunks, without state."""

    def _configure_stream(self, config: Dict[str, Any]) -> Dict[str, Any]:
        """Pop the stream options out of a provider config, returning the rest."""
        config = dict(config)
        on_decode_error = config.pop("on_decode_error", ON_DECODE_ERROR_RAISE)
        if on_decode_error not in (ON_DECODE_ERROR_RAISE, ON_DECODE_ERROR_SKIP):
            raise ValueError(f"on_decode_error must be 'raise' or 'skip', got {on_decode_error!r}")
        self.on_decode_error = on_decode_error
        return config

    def build_response(self, chunks, metadata, context=None, model=None) -> Response:
        return self.response_builder.build_response(chunks, metadata, context=context, model=model)

    @abstractmethod
    async def _open_stream(self, stack: AsyncExitStack, model: str, context: Context, **kwargs) -> AsyncIterator[bytes]:
        """Send the request and return the raw response byte iterator.

        Anything that must be released when the stream ends is registered on
        ``stack``. Non-success statuses are raised as APIError.
        """

    async def _open_http_stream(
        self,
        stack: AsyncExitStack,
        client: httpx.AsyncClient,
        url: str,
        payload: Dict[str, Any],
        headers: Optional[Dict[str, str]] = None,
        params: Optional[Dict[str, str]] = None,
    ) -> AsyncIterator[bytes]:
        """POST ``payload`` and return the streamed body for providers without an SDK transport."""
        response = await stack.enter_async_context(
            client.stream("POST", url, json=payload, headers=headers, params=params)
        )
        if response.status_code >= 400:
            body = await response.aread()
            raise APIError(response.status_code, _decode_error_body(body), self.PROVIDER_NAME)
        return response.aiter_bytes()

    async def chat_completions_create(self, model, messages, **kwargs) -> StreamResponse:
        """Start a streaming completion and return it as a StreamResponse."""
        context = Context.wrap(messages)
        # Every request streams
        kwargs.pop("stream", None)
        stack = AsyncExitStack()
        try:
            byte_stream = await self._open_stream(stack, model, context, **kwargs)
        except BaseException:
            await stack.aclose()
            raise

        processor = StreamProcessor(self, model, on_decode_error=self.on_decode_error)
        return StreamResponse(processor, byte_stream, context, on_close=stack.aclose)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} protocol={self.STREAM_PROTOCOL} builder={self.response_builder!r}>"


def _decode_error_body(body: bytes) -> Any:
    try:
        return json.loads(body)
    except ValueError:
        return body.decode("utf-8", errors="replace")


class ProviderFactory:
    """Factory to dynamically load provider instances based on naming conventions."""

    PROVIDERS_DIR = Path(__file__).parent / "providers"

    @classmethod
    def create_provider(cls, provider_key: str, config: Optional[Dict[str, Any]] = None) -> Provider:
        """Dynamically load and create an instance of a provider based on the naming convention."""
        provider_class_name = f"{provider_key.capitalize()}Provider"
        provider_module_name = f"{provider_key}_provider"

        module_path = f"llmsuite.providers.{provider_module_name}"

        try:
            module = importlib.import_module(module_path)
        except ImportError as e:
            raise ImportError(
                f"Could not import module {module_path}: {str(e)}. "
                "Please ensure the provider is supported by doing ProviderFactory.get_supported_providers()"
            )

        provider_class = getattr(module, provider_class_name)
        logger.debug(f"Creating provider {provider_class_name} for key '{provider_key}'")
        return provider_class(**(config or {}))

    @classmethod
    @functools.cache
    def get_supported_providers(cls):
        """List all supported provider names based on files present in the providers directory."""
        provider_files = Path(cls.PROVIDERS_DIR).glob("*_provider.py")
        return {file.stem.replace("_provider", "") for file in provider_files}
