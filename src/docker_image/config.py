"""Configuration for docker_image clients.

Nothing here is process-wide mutable state: a ClientConfig is built once by the
caller (usually via ``ClientConfig.from_env()``) and passed explicitly to the
transport and the build orchestrator.
"""

import os
from typing import Optional, Tuple

from pydantic import BaseModel, Field, field_validator

# HTTP client configuration
DEFAULT_DOCKER_HOST = "unix:///var/run/docker.sock"
DEFAULT_REQUEST_TIMEOUT = 60.0  # seconds

# Build archive configuration
DEFAULT_BLOCK_SIZE = 1024 * 1024  # 1 MiB per upload chunk
SPOOL_MAX_SIZE = 16 * 1024 * 1024  # archives above this spill to disk

# Base URL used for requests sent over a Unix socket
UNIX_SOCKET_BASE_URL = "http://docker"


class ClientConfig(BaseModel):
    """Connection and build settings for one client.

    Attributes:
        host: Engine address: ``unix:///path``, ``tcp://host:port`` or an
            ``http(s)://`` URL.
        timeout: Request timeout in seconds. Build responses are streamed, so
            this bounds the gap between chunks, not the whole build.
        block_size: Size of each archive block sent during chunked uploads.
        api_version: Optional API version prefix, e.g. ``"1.43"``.
    """

    host: str = Field(default=DEFAULT_DOCKER_HOST)
    timeout: Optional[float] = Field(default=DEFAULT_REQUEST_TIMEOUT)
    block_size: int = Field(default=DEFAULT_BLOCK_SIZE, gt=0)
    api_version: Optional[str] = None

    @field_validator("host")
    @classmethod
    def _check_host(cls, value: str) -> str:
        if not value.startswith(("unix://", "tcp://", "http://", "https://")):
            raise ValueError(f"Unsupported DOCKER_HOST scheme: {value}")
        return value

    @classmethod
    def from_env(cls) -> "ClientConfig":
        """Build a config from environment variables.

        Reads DOCKER_HOST, DOCKER_API_VERSION, DOCKER_IMAGE_TIMEOUT and
        DOCKER_IMAGE_BLOCK_SIZE. Unset variables keep their defaults.
        """
        values = {}
        host = os.getenv("DOCKER_HOST")
        if host:
            values["host"] = host
        api_version = os.getenv("DOCKER_API_VERSION")
        if api_version:
            values["api_version"] = api_version
        timeout = os.getenv("DOCKER_IMAGE_TIMEOUT")
        if timeout:
            values["timeout"] = float(timeout)
        block_size = os.getenv("DOCKER_IMAGE_BLOCK_SIZE")
        if block_size:
            values["block_size"] = int(block_size)
        return cls(**values)

    def connection_target(self) -> Tuple[str, Optional[str]]:
        """Return the (base_url, unix_socket_path) pair for this host."""
        if self.host.startswith("unix://"):
            return UNIX_SOCKET_BASE_URL, self.host[len("unix://") :]
        if self.host.startswith("tcp://"):
            return "http://" + self.host[len("tcp://") :], None
        return self.host.rstrip("/"), None

    def api_path(self, path: str) -> str:
        """Prefix a request path with the API version, when one is pinned."""
        if self.api_version:
            return f"/v{self.api_version}{path}"
        return path
