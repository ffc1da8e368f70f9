"""HTTP utilities for Docker engine communication."""

import base64
import json
from typing import Any, Dict, Mapping, Optional

import httpx

from docker_image.config import ClientConfig
from docker_image.core.utils.json import normalize_for_json
from docker_image.core.utils.user_agent import get_user_agent


def get_docker_httpx_client(config: Optional[ClientConfig] = None) -> httpx.AsyncClient:
    """Create httpx AsyncClient pointed at a Docker engine.

    Handles the Unix socket case by mounting an AsyncHTTPTransport bound to the
    socket path, so callers only ever deal in request paths.

    Args:
        config: Client settings. Defaults to ClientConfig().

    Returns:
        Configured httpx.AsyncClient with a User-Agent header

    Example:
        async with get_docker_httpx_client(ClientConfig.from_env()) as client:
            response = await client.get("/images/json")
    """
    config = config or ClientConfig()
    base_url, socket_path = config.connection_target()

    transport = None
    if socket_path:
        transport = httpx.AsyncHTTPTransport(uds=socket_path)

    return httpx.AsyncClient(
        base_url=base_url,
        transport=transport,
        timeout=config.timeout,
        headers={"User-Agent": get_user_agent()},
    )


def build_auth_header(credentials: Optional[Mapping[str, Any]]) -> Dict[str, str]:
    """Build the X-Registry-Auth header for a set of registry credentials.

    Args:
        credentials: Registry credentials (username, password, serveraddress...).

    Returns:
        Header dict, empty when no credentials are given.
    """
    if not credentials:
        return {}
    payload = json.dumps(normalize_for_json(dict(credentials))).encode("utf-8")
    return {"X-Registry-Auth": base64.urlsafe_b64encode(payload).decode("ascii")}
