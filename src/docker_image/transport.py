"""HTTP transport used by images and the build pipeline.

The core only issues requests through an ``HTTPTransport``; it never owns or
configures the connection beyond that. ``HttpxTransport`` is the concrete
implementation backed by ``httpx.AsyncClient``.
"""

import logging
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import (
    Any,
    AsyncContextManager,
    AsyncIterator,
    Dict,
    Mapping,
    Optional,
    Union,
)

import httpx

from .config import ClientConfig
from .core.exceptions import TransportError
from .core.utils.http import get_docker_httpx_client
from .core.utils.json import to_query_value

log = logging.getLogger(__name__)

RequestContent = Union[bytes, AsyncIterator[bytes], None]


@dataclass
class TransportResponse:
    """A fully read HTTP response."""

    status_code: int
    content: bytes = b""
    headers: Dict[str, str] = field(default_factory=dict)

    @property
    def text(self) -> str:
        return self.content.decode("utf-8", errors="replace")


class StreamedResponse(ABC):
    """An HTTP response whose body is consumed as it arrives."""

    status_code: int

    @abstractmethod
    def aiter_raw(self) -> AsyncIterator[bytes]:
        """Yield raw body chunks in network order."""

    @abstractmethod
    async def aread(self) -> bytes:
        """Read the remaining body."""


def encode_params(params: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """Render query parameters, dropping unset values."""
    if not params:
        return {}
    return {
        key: to_query_value(value) for key, value in params.items() if value is not None
    }


class HTTPTransport(ABC):
    """Abstract request/response collaborator.

    Implementations must support chunked request bodies (an async iterator of
    bytes as ``content``) and streamed response consumption.
    """

    @abstractmethod
    async def request(
        self,
        method: str,
        path: str,
        params: Optional[Mapping[str, Any]] = None,
        headers: Optional[Mapping[str, str]] = None,
        content: RequestContent = None,
    ) -> TransportResponse:
        """Issue a request and read the whole response."""

    @abstractmethod
    def stream(
        self,
        method: str,
        path: str,
        params: Optional[Mapping[str, Any]] = None,
        headers: Optional[Mapping[str, str]] = None,
        content: RequestContent = None,
    ) -> AsyncContextManager[StreamedResponse]:
        """Issue a request and expose the response body as a stream.

        Leaving the context closes the response and its connection.
        """

    async def get(self, path: str, params=None, headers=None) -> TransportResponse:
        return await self.request("GET", path, params=params, headers=headers)

    async def post(
        self, path: str, params=None, headers=None, content: RequestContent = None
    ) -> TransportResponse:
        return await self.request(
            "POST", path, params=params, headers=headers, content=content
        )

    async def delete(self, path: str, params=None, headers=None) -> TransportResponse:
        return await self.request("DELETE", path, params=params, headers=headers)

    def stream_post(
        self, path: str, params=None, headers=None, content: RequestContent = None
    ) -> AsyncContextManager[StreamedResponse]:
        return self.stream("POST", path, params=params, headers=headers, content=content)

    async def aclose(self) -> None:
        """Release the underlying connection."""

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()


class _HttpxStreamedResponse(StreamedResponse):
    def __init__(self, response: httpx.Response):
        self._response = response
        self.status_code = response.status_code

    async def aiter_raw(self) -> AsyncIterator[bytes]:
        try:
            async for chunk in self._response.aiter_raw():
                yield chunk
        except httpx.TransportError as e:
            raise TransportError(f"Connection lost while reading response: {e}") from e

    async def aread(self) -> bytes:
        try:
            return await self._response.aread()
        except httpx.TransportError as e:
            raise TransportError(f"Connection lost while reading response: {e}") from e


class HttpxTransport(HTTPTransport):
    """HTTPTransport backed by httpx.AsyncClient.

    Args:
        client: Preconfigured client. Built from ``config`` when omitted.
        config: Client settings used for the default client and API version.
    """

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        config: Optional[ClientConfig] = None,
    ):
        self.config = config or ClientConfig()
        self._client = client or get_docker_httpx_client(self.config)

    @classmethod
    def from_config(cls, config: ClientConfig) -> "HttpxTransport":
        return cls(config=config)

    @property
    def is_closed(self) -> bool:
        return self._client.is_closed

    async def request(
        self,
        method: str,
        path: str,
        params: Optional[Mapping[str, Any]] = None,
        headers: Optional[Mapping[str, str]] = None,
        content: RequestContent = None,
    ) -> TransportResponse:
        url = self.config.api_path(path)
        log.debug(f"{method} {url}")
        try:
            response = await self._client.request(
                method,
                url,
                params=encode_params(params),
                headers=dict(headers or {}),
                content=content,
            )
        except httpx.TransportError as e:
            raise TransportError(f"{method} {url} failed: {e}") from e

        return TransportResponse(
            status_code=response.status_code,
            content=response.content,
            headers=dict(response.headers),
        )

    @asynccontextmanager
    async def stream(
        self,
        method: str,
        path: str,
        params: Optional[Mapping[str, Any]] = None,
        headers: Optional[Mapping[str, str]] = None,
        content: RequestContent = None,
    ) -> AsyncIterator[StreamedResponse]:
        url = self.config.api_path(path)
        log.debug(f"{method} {url} (streamed)")
        try:
            async with self._client.stream(
                method,
                url,
                params=encode_params(params),
                headers=dict(headers or {}),
                content=content,
            ) as response:
                yield _HttpxStreamedResponse(response)
        except httpx.TransportError as e:
            raise TransportError(f"{method} {url} failed: {e}") from e

    async def aclose(self) -> None:
        if not self._client.is_closed:
            await self._client.aclose()
