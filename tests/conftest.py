"""
Test configuration and fixtures for docker_image tests.

Provides shared fixtures for:
- An in-memory HTTPTransport that records requests and replays responses
- Sample build response streams
- Build context directories
- Environment variable management
"""

import asyncio
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple

import pytest

from docker_image.transport import HTTPTransport, StreamedResponse, TransportResponse

SUCCESS_STREAM = (
    b'{"stream":"Step 0 : from ubuntu\\n"}'
    b'{"stream":" ---> 9cd978db300e\\n"}'
    b'{"stream":"Successfully built 1a2b3c4d5e6f\\n"}'
)


class FakeStreamedResponse(StreamedResponse):
    """Streamed response that yields preset chunks."""

    def __init__(self, status_code: int, chunks: List[bytes]):
        self.status_code = status_code
        self._chunks = chunks

    async def aiter_raw(self) -> AsyncIterator[bytes]:
        for chunk in self._chunks:
            yield chunk

    async def aread(self) -> bytes:
        return b"".join(self._chunks)


class FakeTransport(HTTPTransport):
    """HTTPTransport double.

    Records every request, answers plain requests from ``responses`` and
    streamed requests with ``stream_status``/``stream_chunks``. When
    ``stall_after_blocks`` is set, the upload hangs after that many body
    blocks (after setting ``stalled``) until the task is cancelled.
    """

    def __init__(self):
        self.requests: List[Dict[str, Any]] = []
        self.responses: Dict[Tuple[str, str], TransportResponse] = {}
        self.stream_status = 200
        self.stream_chunks: List[bytes] = [SUCCESS_STREAM]
        self.received_blocks: List[bytes] = []
        self.stream_opened = False
        self.stream_closed = False
        self.stall_after_blocks: Optional[int] = None
        self.stalled: Optional[asyncio.Event] = None
        self.closed = False

    async def request(self, method, path, params=None, headers=None, content=None):
        self.requests.append(
            {"method": method, "path": path, "params": dict(params or {}), "headers": dict(headers or {})}
        )
        return self.responses.get((method, path), TransportResponse(200, b""))

    @asynccontextmanager
    async def stream(self, method, path, params=None, headers=None, content=None):
        self.requests.append(
            {"method": method, "path": path, "params": dict(params or {}), "headers": dict(headers or {})}
        )
        self.stream_opened = True
        try:
            if content is not None:
                async for block in content:
                    self.received_blocks.append(block)
                    if (
                        self.stall_after_blocks is not None
                        and len(self.received_blocks) >= self.stall_after_blocks
                    ):
                        self.stalled.set()
                        await asyncio.Event().wait()
            yield FakeStreamedResponse(self.stream_status, list(self.stream_chunks))
        finally:
            self.stream_closed = True

    async def aclose(self):
        self.closed = True

    @property
    def uploaded(self) -> bytes:
        return b"".join(self.received_blocks)


@pytest.fixture
def fake_transport() -> FakeTransport:
    """Provide a fresh FakeTransport answering builds with SUCCESS_STREAM."""
    return FakeTransport()


@pytest.fixture
def success_stream() -> bytes:
    """Provide a complete, successful build response."""
    return SUCCESS_STREAM


@pytest.fixture
def build_context(tmp_path: Path) -> Path:
    """Provide a build context directory.

    Layout:
    - Dockerfile
    - app/main.py
    - app/data/empty/ (empty directory)
    """
    (tmp_path / "Dockerfile").write_text("from ubuntu\nadd app /app\n")
    (tmp_path / "app" / "data" / "empty").mkdir(parents=True)
    (tmp_path / "app" / "main.py").write_text("print('hello')\n")
    return tmp_path


@pytest.fixture
def mock_env_vars(monkeypatch: pytest.MonkeyPatch) -> Dict[str, str]:
    """Provide patched environment variables for tests.

    Returns:
        Dictionary of environment variables set.
    """
    env_vars = {
        "DOCKER_HOST": "tcp://127.0.0.1:2375",
        "DOCKER_API_VERSION": "1.43",
        "DOCKER_IMAGE_TIMEOUT": "15",
        "DOCKER_IMAGE_BLOCK_SIZE": "4096",
        "LOG_LEVEL": "ERROR",  # Suppress logs during tests
    }

    for key, value in env_vars.items():
        monkeypatch.setenv(key, value)

    return env_vars
