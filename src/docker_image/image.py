"""Image resource handle.

An Image is a local reference to an image on the engine. It holds a transport
reference for issuing requests but never manages the transport's lifecycle;
callers open and close the transport themselves.
"""

import logging
import re
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union
from urllib.parse import quote

import pathspec

from .build.archive import Archive, dockerfile_for, file_map_from_paths
from .build.orchestrator import BuildOptions, BuildOrchestrator, OutputSink
from .build.parser import BuildResponseParser
from .config import ClientConfig
from .core.exceptions import (
    BuildFailedError,
    InvalidInputError,
    UnexpectedResponseError,
    raise_for_status,
)
from .core.utils.http import build_auth_header
from .core.utils.json import parse_json
from .transport import HTTPTransport, TransportResponse

log = logging.getLogger(__name__)

_INSERT_ID_PATTERN = re.compile(r'\{"status":"([a-f0-9]+)"\}\s*\Z')

PathLike = Union[str, Path]
Options = Union[BuildOptions, Mapping[str, Any], None]


def _checked(response: TransportResponse) -> TransportResponse:
    raise_for_status(response.status_code, response.text)
    return response


def _image_path(image_id: str, suffix: Optional[str] = None) -> str:
    path = f"/images/{quote(image_id, safe='/:@')}"
    if suffix:
        path = f"{path}/{suffix}"
    return path


class Image:
    """A Docker image on the remote engine.

    Args:
        transport: Connection used for requests.
        id: Image id or name.
        info: Extra attributes returned by the engine (RepoTags, Size...).
    """

    def __init__(
        self,
        transport: HTTPTransport,
        id: Optional[str] = None,
        info: Optional[Dict[str, Any]] = None,
    ):
        if not isinstance(transport, HTTPTransport):
            raise TypeError(f"Expected an HTTPTransport, got: {transport!r}")
        self.transport = transport
        self.id = id
        self.info = info or {}

    def __str__(self) -> str:
        return f"Image {{ id={self.id}, info={self.info!r}, transport={self.transport!r} }}"

    def __repr__(self) -> str:
        return f"Image(id={self.id!r})"

    async def _read(self, suffix: str, params: Optional[Mapping[str, Any]] = None) -> Any:
        response = await self.transport.get(_image_path(self.id, suffix), params=params)
        return parse_json(_checked(response).content)

    async def json(self, params: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
        """Return low-level information about the image."""
        return await self._read("json", params)

    async def history(self, params: Optional[Mapping[str, Any]] = None) -> List[Dict[str, Any]]:
        """Return the layer history of the image."""
        return await self._read("history", params)

    async def tag(self, params: Mapping[str, Any]) -> Any:
        """Tag the image, e.g. ``{"repo": "ubuntu2", "force": True}``."""
        response = await self.transport.post(_image_path(self.id, "tag"), params=params)
        return parse_json(_checked(response).content)

    async def remove(self, params: Optional[Mapping[str, Any]] = None) -> Any:
        """Remove the image from the engine."""
        response = _checked(
            await self.transport.delete(_image_path(self.id), params=params)
        )
        log.info(f"Removed image {self.id}")
        return parse_json(response.content)

    async def insert(self, params: Mapping[str, Any]) -> "Image":
        """Insert a file fetched from a URL; returns the resulting image."""
        response = _checked(
            await self.transport.post(_image_path(self.id, "insert"), params=params)
        )
        match = _INSERT_ID_PATTERN.search(response.text)
        if match is None:
            raise UnexpectedResponseError(
                f"Could not find Id in '{response.text[:500]}'", stream_text=response.text
            )
        return Image(self.transport, match.group(1))

    async def insert_local(
        self,
        local_paths: Union[PathLike, Iterable[PathLike]],
        output_path: str,
        options: Options = None,
        sink: Optional[OutputSink] = None,
        config: Optional[ClientConfig] = None,
    ) -> "Image":
        """
        Build a new image with local files added on top of this one.

        Args:
            local_paths: One path or several; each lands under output_path by
                basename
            output_path: Destination directory inside the image
            options: Build query parameters
            sink: Receives build output text
            config: Client settings for the upload

        Raises:
            InvalidInputError: If a local file is missing or named Dockerfile
        """
        if isinstance(local_paths, (str, Path)):
            local_paths = [local_paths]

        files = file_map_from_paths(local_paths)
        if "Dockerfile" in files:
            raise InvalidInputError("Cannot insert a local file named Dockerfile")
        files["Dockerfile"] = dockerfile_for(self.id, files, output_path)

        orchestrator = BuildOrchestrator(self.transport, config=config)
        image_id = await orchestrator.build(files, options=options, sink=sink)
        return Image(self.transport, image_id)

    @classmethod
    async def create(
        cls,
        transport: HTTPTransport,
        params: Mapping[str, Any],
        registry_auth: Optional[Mapping[str, Any]] = None,
    ) -> "Image":
        """
        Create (pull) an image, e.g. ``{"fromImage": "ubuntu"}``.

        Raises:
            BuildFailedError: If the pull stream reports an error
            UnexpectedResponseError: If params name no image
        """
        if params.get("repo"):
            image_id = f"{params['repo']}:{params['tag']}" if params.get("tag") else params["repo"]
        else:
            image_id = params.get("fromImage")
        if not image_id:
            raise UnexpectedResponseError("Create response did not contain an Id")

        response = _checked(
            await transport.post(
                "/images/create", params=params, headers=build_auth_header(registry_auth)
            )
        )
        parser = BuildResponseParser()
        parser.feed(response.content)
        if parser.error is not None:
            raise BuildFailedError(
                parser.error.error_message,
                detail=parser.error.error_detail,
                stream_text=parser.stream_text,
            )
        return cls(transport, image_id)

    @classmethod
    async def get(
        cls,
        transport: HTTPTransport,
        image_id: str,
        params: Optional[Mapping[str, Any]] = None,
    ) -> "Image":
        """Return a handle for an existing image.

        Raises:
            NotFoundError: If the engine has no such image
        """
        response = await transport.get(_image_path(image_id, "json"), params=params)
        info = parse_json(_checked(response).content) or {}
        resolved = info.pop("Id", None) or info.pop("id", None) or image_id
        return cls(transport, resolved, info)

    @classmethod
    async def all(
        cls, transport: HTTPTransport, params: Optional[Mapping[str, Any]] = None
    ) -> List["Image"]:
        """Return every image on the engine."""
        response = await transport.get("/images/json", params=params)
        records = parse_json(_checked(response).content) or []
        images = []
        for record in records:
            record = dict(record)
            images.append(cls(transport, record.pop("Id", None), record))
        return images

    @classmethod
    async def search(
        cls, transport: HTTPTransport, params: Mapping[str, Any]
    ) -> List["Image"]:
        """Search the registry, e.g. ``{"term": "sshd"}``."""
        response = await transport.get("/images/search", params=params)
        records = parse_json(_checked(response).content) or []
        return [cls(transport, record["Name"], dict(record)) for record in records]

    @classmethod
    async def import_image(
        cls,
        transport: HTTPTransport,
        path: PathLike,
        params: Optional[Mapping[str, Any]] = None,
        sink: Optional[OutputSink] = None,
        config: Optional[ClientConfig] = None,
    ) -> "Image":
        """
        Import an image from a tar file, such as a container export.

        The file is streamed with chunked encoding; the new id comes from the
        final status object of the response.
        """
        archive = Archive.from_tarfile(path)
        query = dict(params or {})
        query["fromSrc"] = "-"
        orchestrator = BuildOrchestrator(transport, config=config)
        result = await orchestrator.run(archive, endpoint="/images/create", params=query, sink=sink)
        return cls(transport, result.image_id)

    @classmethod
    async def build(
        cls,
        transport: HTTPTransport,
        commands: str,
        options: Options = None,
        sink: Optional[OutputSink] = None,
        config: Optional[ClientConfig] = None,
    ) -> "Image":
        """Build an image from Dockerfile text."""
        orchestrator = BuildOrchestrator(transport, config=config)
        image_id = await orchestrator.build({"Dockerfile": commands}, options=options, sink=sink)
        return cls(transport, image_id)

    @classmethod
    async def build_from_dir(
        cls,
        transport: HTTPTransport,
        directory: PathLike,
        options: Options = None,
        sink: Optional[OutputSink] = None,
        config: Optional[ClientConfig] = None,
        ignore: Optional[pathspec.PathSpec] = None,
    ) -> "Image":
        """Build an image from a directory containing a Dockerfile.

        Pass ``ignore=load_dockerignore(directory)`` to honour .dockerignore.
        """
        orchestrator = BuildOrchestrator(transport, config=config)
        image_id = await orchestrator.build(
            Path(directory), options=options, sink=sink, ignore=ignore
        )
        return cls(transport, image_id)
