"""Custom exceptions for docker_image.

Every failure surfaced by the build pipeline and the image handle is one of
these types; raw transport or parsing exceptions never escape the public API.
"""

from typing import Any, Dict, Optional


class DockerImageError(Exception):
    """Base exception for all docker_image errors."""

    pass


class InvalidInputError(DockerImageError):
    """Raised when local input is unusable before any network call.

    Missing or unreadable files, bad archive paths and unsupported file types
    all end up here.
    """

    pass


class TransportError(DockerImageError):
    """Raised when the connection to the engine fails."""

    pass


class HTTPStatusError(DockerImageError):
    """Base exception for non-success HTTP responses.

    Attributes:
        status_code: HTTP status returned by the engine.
        body: Response body, decoded as text.
    """

    def __init__(self, message: str, status_code: int, body: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class ClientError(HTTPStatusError):
    """Raised for 4xx responses."""

    pass


class NotFoundError(ClientError):
    """Raised for 404 responses."""

    pass


class ServerError(HTTPStatusError):
    """Raised for 5xx responses."""

    pass


class MalformedStreamError(DockerImageError):
    """Raised when response bytes cannot be parsed as JSON objects.

    Attributes:
        remainder: The bytes that could not be parsed.
        stream_text: Build output decoded before the bad bytes.
    """

    def __init__(self, message: str, remainder: bytes = b"", stream_text: str = ""):
        super().__init__(message)
        self.remainder = remainder
        self.stream_text = stream_text


class UnexpectedResponseError(DockerImageError):
    """Raised when a response claimed success but carried no usable identifier.

    Attributes:
        stream_text: Build output accumulated before the failure, if any.
        status_code: HTTP status when the error was mapped from one.
    """

    def __init__(
        self,
        message: str,
        stream_text: str = "",
        status_code: Optional[int] = None,
    ):
        super().__init__(message)
        self.stream_text = stream_text
        self.status_code = status_code


class BuildFailedError(DockerImageError):
    """Raised when the build stream contained an explicit error event.

    Attributes:
        message: Error text reported by the engine.
        detail: The errorDetail object, if the engine sent one.
        stream_text: Build output accumulated before the failure.
    """

    def __init__(
        self,
        message: str,
        detail: Optional[Dict[str, Any]] = None,
        stream_text: str = "",
    ):
        super().__init__(message)
        self.message = message
        self.detail = detail or {}
        self.stream_text = stream_text


def raise_for_status(status_code: int, body: str = "") -> None:
    """Map an HTTP status to the matching exception.

    Args:
        status_code: HTTP status code of the response.
        body: Response body text, attached to the raised error.

    Raises:
        NotFoundError: For 404.
        ClientError: For other 4xx codes.
        ServerError: For 5xx codes.
    """
    if status_code < 400:
        return

    snippet = body[:500]
    if status_code == 404:
        raise NotFoundError(f"Not found: {snippet}", status_code, body)
    if status_code < 500:
        raise ClientError(
            f"Request rejected: {status_code} - {snippet}", status_code, body
        )
    raise ServerError(f"Docker server error: {status_code} - {snippet}", status_code, body)
