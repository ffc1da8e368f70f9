# Load .env vars from file before everything else
from dotenv import load_dotenv

load_dotenv()

from .logger import setup_logging  # noqa: E402

setup_logging()

# TYPE_CHECKING imports provide full IDE support (autocomplete, type hints)
# while __getattr__ keeps `import docker_image` cheap
from typing import TYPE_CHECKING  # noqa: E402

if TYPE_CHECKING:
    from .build import BuildOptions, BuildOrchestrator, load_dockerignore
    from .config import ClientConfig
    from .core.utils.rich_ui import RichBuildSink
    from .image import Image
    from .transport import HTTPTransport, HttpxTransport


def __getattr__(name):
    """Lazily import public classes only when accessed."""
    if name == "Image":
        from .image import Image

        return Image
    elif name in ("HTTPTransport", "HttpxTransport"):
        from . import transport

        return getattr(transport, name)
    elif name in ("BuildOptions", "BuildOrchestrator", "load_dockerignore"):
        from . import build

        return getattr(build, name)
    elif name == "ClientConfig":
        from .config import ClientConfig

        return ClientConfig
    elif name == "RichBuildSink":
        from .core.utils.rich_ui import RichBuildSink

        return RichBuildSink
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = [
    "BuildOptions",
    "BuildOrchestrator",
    "ClientConfig",
    "HTTPTransport",
    "HttpxTransport",
    "Image",
    "RichBuildSink",
    "load_dockerignore",
]
