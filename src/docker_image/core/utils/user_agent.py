"""User-Agent utilities for docker_image HTTP clients."""

import platform
from importlib import metadata


def get_user_agent() -> str:
    """
    Generate the User-Agent string for engine requests.

    Format: docker-image/<version> (<OS> <release>; <arch>) Language/Python <python_version>
    Example: docker-image/0.1.0 (Linux 6.8.0-49-generic; x86_64) Language/Python 3.12.3

    Returns:
        str: Formatted User-Agent string
    """
    try:
        version = metadata.version("docker-image")
    except metadata.PackageNotFoundError:
        version = "unknown"

    system = platform.system()
    release = platform.release()
    machine = platform.machine()
    python_version = platform.python_version()

    return f"docker-image/{version} ({system} {release}; {machine}) Language/Python {python_version}"
