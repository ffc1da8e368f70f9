"""
Build orchestration: archive, upload, parse.

One BuildOrchestrator can run any number of concurrent builds against the same
transport. Every call owns its archive, parser and sink; the transport is only
used to issue requests.
"""

import asyncio
import inspect
import logging
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Union

import pathspec
from pydantic import BaseModel, ConfigDict, Field

from ..config import ClientConfig
from ..core.exceptions import (
    MalformedStreamError,
    ServerError,
    UnexpectedResponseError,
)
from ..transport import HTTPTransport
from .archive import Archive, ArchiveBuilder
from .parser import BuildResponseParser, BuildResult
from .uploader import ChunkedUploader

log = logging.getLogger(__name__)

BUILD_ENDPOINT = "/build"

BuildSource = Union[Mapping[str, Union[bytes, str]], str, Path]
OutputSink = Callable[[str], Union[None, Awaitable[None]]]


class BuildOptions(BaseModel):
    """Query parameters for POST /build.

    Unknown keys are passed through to the engine untouched.
    """

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    tag: Optional[str] = Field(default=None, alias="t")
    quiet: Optional[bool] = Field(default=None, alias="q")
    nocache: Optional[bool] = None
    rm: Optional[bool] = None
    forcerm: Optional[bool] = None
    pull: Optional[bool] = None
    dockerfile: Optional[str] = None
    buildargs: Optional[Dict[str, str]] = None

    def to_params(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


def _coerce_options(options: Union[BuildOptions, Mapping[str, Any], None]) -> Dict[str, Any]:
    if options is None:
        return {}
    if isinstance(options, BuildOptions):
        return options.to_params()
    return BuildOptions(**options).to_params()


class BuildOrchestrator:
    """
    Run builds: archive the source, upload it, parse the response.

    Args:
        transport: Connection used for the upload. Referenced, not owned.
        config: Supplies the upload block size. Defaults to ClientConfig().
        archive_builder: Override for tests or custom spooling limits.
    """

    def __init__(
        self,
        transport: HTTPTransport,
        config: Optional[ClientConfig] = None,
        archive_builder: Optional[ArchiveBuilder] = None,
    ):
        self.transport = transport
        self.config = config or ClientConfig()
        self.archive_builder = archive_builder or ArchiveBuilder()

    def make_archive(
        self, source: BuildSource, ignore: Optional[pathspec.PathSpec] = None
    ) -> Archive:
        """Build the archive for a file map or a directory path."""
        if isinstance(source, Mapping):
            return self.archive_builder.build_from_files(source)
        return self.archive_builder.build_from_directory(source, ignore=ignore)

    async def build(
        self,
        source: BuildSource,
        options: Union[BuildOptions, Mapping[str, Any], None] = None,
        sink: Optional[OutputSink] = None,
        ignore: Optional[pathspec.PathSpec] = None,
    ) -> str:
        """
        Build an image and return its identifier.

        Args:
            source: Mapping of archive path to contents, or a context directory
            options: Build query parameters
            sink: Receives the text of every status event in arrival order.
                May be a plain function or a coroutine function.
            ignore: Paths to leave out of a directory context

        Returns:
            The image identifier reported by the engine

        Raises:
            InvalidInputError: The source could not be archived
            TransportError: The connection failed
            ClientError: The engine rejected the request (4xx)
            UnexpectedResponseError: 5xx from /build, or no identifier in a
                successful stream
            MalformedStreamError: The response was not a sequence of JSON objects
            BuildFailedError: The stream carried an error event
        """
        archive = self.make_archive(source, ignore=ignore)
        result = await self.run(archive, params=_coerce_options(options), sink=sink)
        return result.image_id

    async def run(
        self,
        archive: Archive,
        endpoint: str = BUILD_ENDPOINT,
        params: Optional[Mapping[str, Any]] = None,
        headers: Optional[Mapping[str, str]] = None,
        sink: Optional[OutputSink] = None,
    ) -> BuildResult:
        """
        Upload a prepared archive and parse the streamed reply.

        Also used for the other tar-upload endpoints (image import), which
        answer with the same kind of status stream.

        Returns:
            A successful BuildResult; failures are raised
        """
        uploader = ChunkedUploader(self.transport, block_size=self.config.block_size)
        parser = BuildResponseParser()
        log.info(f"Uploading build context to {endpoint}")

        try:
            async with uploader.upload(archive, endpoint, params=params, headers=headers) as chunks:
                async for chunk in chunks:
                    for event in parser.feed(chunk):
                        await self._deliver(sink, event.text)
            result = parser.finish()
        except asyncio.CancelledError:
            log.info(
                f"Build cancelled after {uploader.blocks_sent} blocks; "
                f"discarding {len(parser.pending)} pending bytes"
            )
            raise
        except ServerError as e:
            if endpoint != BUILD_ENDPOINT:
                raise
            # A 500 from /build means the Dockerfile was rejected, not a server fault
            raise UnexpectedResponseError(
                f"Build rejected by server: {e.body[:500]}",
                stream_text=parser.stream_text or e.body,
                status_code=e.status_code,
            ) from e
        except MalformedStreamError as e:
            raise MalformedStreamError(
                str(e), remainder=e.remainder, stream_text=parser.stream_text
            ) from e
        finally:
            archive.close()

        result.raise_for_failure()
        log.info(f"Build finished: {result.image_id}")
        return result

    @staticmethod
    async def _deliver(sink: Optional[OutputSink], text: str) -> None:
        if sink is None or not text:
            return
        outcome = sink(text)
        if inspect.isawaitable(outcome):
            await outcome
