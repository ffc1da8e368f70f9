"""Tests for ChunkedUploader."""

import io
import tarfile

import pytest

from docker_image.build.archive import ArchiveBuilder
from docker_image.build.uploader import ChunkedUploader
from docker_image.core.exceptions import ClientError, NotFoundError, ServerError


class TestChunkedUploader:
    """Test chunked archive upload and raw response streaming."""

    @pytest.fixture
    def archive(self):
        return ArchiveBuilder().build_from_files({"Dockerfile": b"from ubuntu\n", "data": b"x" * 3000})

    @pytest.mark.asyncio
    async def test_upload_streams_blocks(self, fake_transport, archive):
        """The body arrives in fixed-size blocks that rebuild the archive."""
        uploader = ChunkedUploader(fake_transport, block_size=1024)

        async with uploader.upload(archive, "/build", params={"t": "app"}) as chunks:
            received = [chunk async for chunk in chunks]

        assert received == fake_transport.stream_chunks
        assert all(len(block) == 1024 for block in fake_transport.received_blocks[:-1])
        assert uploader.blocks_sent == len(fake_transport.received_blocks)
        assert uploader.bytes_sent == len(fake_transport.uploaded)
        with tarfile.open(fileobj=io.BytesIO(fake_transport.uploaded)) as tar:
            assert tar.extractfile("Dockerfile").read() == b"from ubuntu\n"

    @pytest.mark.asyncio
    async def test_request_headers(self, fake_transport, archive):
        uploader = ChunkedUploader(fake_transport)

        async with uploader.upload(
            archive, "/build", headers={"Content-Length": "10", "X-Registry-Config": "e30="}
        ) as chunks:
            async for _ in chunks:
                pass

        request = fake_transport.requests[0]
        assert request["method"] == "POST"
        assert request["path"] == "/build"
        assert request["headers"]["Content-Type"] == "application/tar"
        assert request["headers"]["Transfer-Encoding"] == "chunked"
        assert request["headers"]["X-Registry-Config"] == "e30="
        assert "Content-Length" not in request["headers"]

    @pytest.mark.asyncio
    async def test_archive_closed_after_upload(self, fake_transport, archive):
        uploader = ChunkedUploader(fake_transport)

        async with uploader.upload(archive, "/build") as chunks:
            async for _ in chunks:
                pass

        assert archive.closed
        assert fake_transport.stream_closed

    @pytest.mark.asyncio
    async def test_response_not_buffered(self, fake_transport, archive):
        """Chunks are handed over exactly as the transport produced them."""
        fake_transport.stream_chunks = [b'{"str', b'eam":"a"}', b""]
        uploader = ChunkedUploader(fake_transport)

        async with uploader.upload(archive, "/build") as chunks:
            received = [chunk async for chunk in chunks]

        assert received == [b'{"str', b'eam":"a"}', b""]

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status,error_type",
        [(400, ClientError), (404, NotFoundError), (500, ServerError), (503, ServerError)],
    )
    async def test_status_mapping(self, fake_transport, archive, status, error_type):
        fake_transport.stream_status = status
        fake_transport.stream_chunks = [b"Cannot locate specified Dockerfile"]
        uploader = ChunkedUploader(fake_transport)

        with pytest.raises(error_type) as exc_info:
            async with uploader.upload(archive, "/build"):
                pass

        assert exc_info.value.status_code == status
        assert exc_info.value.body == "Cannot locate specified Dockerfile"
        assert archive.closed
