"""
Rich UI components for log output and live build progress.
"""

import logging
import os
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler


def is_rich_enabled() -> bool:
    """Check if Rich UI should be enabled based on environment"""
    return os.environ.get("DOCKER_IMAGE_RICH_UI", "false").lower() in (
        "true",
        "1",
        "yes",
    )


def get_rich_handler(console: Optional[Console] = None) -> logging.Handler:
    """Get a Rich logging handler writing to stderr."""
    return RichHandler(
        console=console or Console(stderr=True),
        show_path=False,
        rich_tracebacks=True,
        markup=False,
    )


class RichLoggingFilter(logging.Filter):
    """Filter to suppress verbose third-party logs when Rich UI is active"""

    def filter(self, record: logging.LogRecord) -> bool:
        if record.levelno <= logging.INFO and record.name.startswith(
            ("httpx", "httpcore", "asyncio")
        ):
            return False
        return True


class RichBuildSink:
    """Build output sink that prints each line to a Rich console.

    Pass an instance as the ``sink`` argument of a build call to get live
    progress output.

    Example:
        sink = RichBuildSink()
        image = await Image.build(transport, "from ubuntu\\n", sink=sink)
    """

    def __init__(self, console: Optional[Console] = None, style: str = "dim"):
        self.console = console or Console()
        self.style = style
        self.lines = 0

    def __call__(self, text: str) -> None:
        text = text.rstrip("\n")
        if not text:
            return
        self.lines += 1
        self.console.print(text, style=self.style, markup=False, highlight=False)
