"""Chunked upload of build archives."""

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Mapping, Optional

from ..config import DEFAULT_BLOCK_SIZE
from ..core.exceptions import raise_for_status
from ..transport import HTTPTransport
from .archive import Archive

log = logging.getLogger(__name__)

TAR_HEADERS = {
    "Content-Type": "application/tar",
    "Transfer-Encoding": "chunked",
}


class ChunkedUploader:
    """
    POST an archive with chunked transfer encoding and stream the reply back.

    Blocks are pulled from the archive only when the transport asks for the
    next piece of the request body, so at most one block is held in memory.
    """

    def __init__(self, transport: HTTPTransport, block_size: int = DEFAULT_BLOCK_SIZE):
        self.transport = transport
        self.block_size = block_size
        self.blocks_sent = 0
        self.bytes_sent = 0

    async def _body(self, archive: Archive) -> AsyncIterator[bytes]:
        blocks = archive.iter_blocks(self.block_size)
        try:
            for block in blocks:
                self.blocks_sent += 1
                self.bytes_sent += len(block)
                yield block
        finally:
            blocks.close()
            archive.close()
        log.debug(f"Upload body complete: {self.blocks_sent} blocks, {self.bytes_sent} bytes")

    @asynccontextmanager
    async def upload(
        self,
        archive: Archive,
        endpoint: str,
        params: Optional[Mapping[str, Any]] = None,
        headers: Optional[Mapping[str, str]] = None,
    ) -> AsyncIterator[AsyncIterator[bytes]]:
        """
        Upload ``archive`` to ``endpoint`` and yield the raw response chunks.

        Usage:
            async with uploader.upload(archive, "/build") as chunks:
                async for chunk in chunks:
                    parser.feed(chunk)

        Raises:
            TransportError: On connection failure
            ClientError: For 4xx responses, with the response body attached
            ServerError: For 5xx responses
        """
        request_headers = dict(TAR_HEADERS)
        request_headers.update(headers or {})
        request_headers.pop("Content-Length", None)

        body = self._body(archive)
        try:
            async with self.transport.stream_post(
                endpoint, params=params, headers=request_headers, content=body
            ) as response:
                if response.status_code >= 400:
                    content = await response.aread()
                    raise_for_status(
                        response.status_code, content.decode("utf-8", errors="replace")
                    )
                yield response.aiter_raw()
        finally:
            await body.aclose()
            archive.close()
