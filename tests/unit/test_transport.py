"""Tests for HttpxTransport."""

import json

import httpx
import pytest

from docker_image.build.archive import ArchiveBuilder
from docker_image.build.orchestrator import BuildOrchestrator
from docker_image.config import ClientConfig
from docker_image.core.exceptions import TransportError, UnexpectedResponseError
from docker_image.transport import HttpxTransport, encode_params


def make_transport(handler, config=None) -> HttpxTransport:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://docker")
    return HttpxTransport(client=client, config=config)


async def chunked(*parts):
    for part in parts:
        yield part


class TestEncodeParams:
    """Test query parameter rendering."""

    def test_drops_none_and_renders_values(self):
        assert encode_params({"t": "app", "q": True, "nocache": False, "x": None}) == {
            "t": "app",
            "q": "1",
            "nocache": "0",
        }

    def test_json_encodes_mappings(self):
        assert encode_params({"buildargs": {"A": "1"}}) == {"buildargs": '{"A":"1"}'}

    def test_empty(self):
        assert encode_params(None) == {}


class TestHttpxTransport:
    """Test HttpxTransport against httpx.MockTransport."""

    @pytest.mark.asyncio
    async def test_get(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/images/json"
            assert request.url.params["all"] == "1"
            return httpx.Response(200, json=[{"Id": "a"}])

        async with make_transport(handler) as transport:
            response = await transport.get("/images/json", params={"all": True})

        assert response.status_code == 200
        assert json.loads(response.text) == [{"Id": "a"}]

    @pytest.mark.asyncio
    async def test_api_version_prefix(self):
        paths = []

        def handler(request: httpx.Request) -> httpx.Response:
            paths.append(request.url.path)
            return httpx.Response(204)

        transport = make_transport(handler, config=ClientConfig(api_version="1.43"))
        await transport.delete("/images/abc")
        await transport.aclose()

        assert paths == ["/v1.43/images/abc"]
        assert transport.is_closed

    @pytest.mark.asyncio
    async def test_connection_error_mapped(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        transport = make_transport(handler)

        with pytest.raises(TransportError, match="connection refused"):
            await transport.post("/images/create")

    @pytest.mark.asyncio
    async def test_stream_chunked_body(self):
        received = {}

        async def handler(request: httpx.Request) -> httpx.Response:
            received["encoding"] = request.headers.get("Transfer-Encoding")
            received["length"] = request.headers.get("Content-Length")
            received["body"] = request.content
            return httpx.Response(200, content=chunked(b'{"stream":"a"}', b'{"stream":"b"}'))

        transport = make_transport(handler)
        async with transport.stream_post("/build", content=chunked(b"ab", b"cd")) as response:
            chunks = [chunk async for chunk in response.aiter_raw()]

        assert received == {"encoding": "chunked", "length": None, "body": b"abcd"}
        assert b"".join(chunks) == b'{"stream":"a"}{"stream":"b"}'

    @pytest.mark.asyncio
    async def test_stream_connection_error_mapped(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadError("reset", request=request)

        transport = make_transport(handler)

        with pytest.raises(TransportError):
            async with transport.stream_post("/build", content=chunked(b"x")):
                pass


class TestBuildOverHttpx:
    """End-to-end build through httpx with a mocked engine."""

    @pytest.mark.asyncio
    async def test_build(self):
        uploads = []

        async def handler(request: httpx.Request) -> httpx.Response:
            uploads.append(request.content)
            assert request.headers["Content-Type"] == "application/tar"
            assert request.url.params["t"] == "app"
            return httpx.Response(
                200,
                content=chunked(
                    b'{"stream":"Step 0 : from ub',
                    b'untu\\n"}{"stream":"Successfully bui',
                    b'lt 1a2b3c4d5e6f\\n"}',
                ),
            )

        transport = make_transport(handler, config=ClientConfig(block_size=512))
        seen = []

        image_id = await BuildOrchestrator(transport, config=transport.config).build(
            {"Dockerfile": "from ubuntu\n"}, options={"t": "app"}, sink=seen.append
        )

        assert image_id == "1a2b3c4d5e6f"
        assert seen == ["Step 0 : from ubuntu\n", "Successfully built 1a2b3c4d5e6f\n"]
        assert uploads[0] == ArchiveBuilder().build_from_files({"Dockerfile": "from ubuntu\n"}).read()

    @pytest.mark.asyncio
    async def test_build_server_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500, content=b"Unknown instruction: FORM")

        transport = make_transport(handler)

        with pytest.raises(UnexpectedResponseError) as exc_info:
            await BuildOrchestrator(transport).build({"Dockerfile": "form ubuntu\n"})

        assert exc_info.value.status_code == 500
