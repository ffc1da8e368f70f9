"""
Incremental parser for the build response stream.

The engine answers /build (and /images/create, /images/<id>/insert) with JSON
objects written back to back. Chunks from the network do not line up with
object boundaries, so the parser keeps the unconsumed tail of the stream and
cuts complete objects off its front with a string-aware brace scan. Each
object is handed to the sink as soon as its closing brace arrives.
"""

import json
import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from ..core.exceptions import (
    BuildFailedError,
    MalformedStreamError,
    UnexpectedResponseError,
)

log = logging.getLogger(__name__)

_WHITESPACE = b" \t\r\n"
_OPEN_BRACE = ord("{")
_QUOTE = ord('"')
_BACKSLASH = ord("\\")
# Bytes the scanner stops at inside and outside strings
_STRING_SPECIAL = re.compile(rb'["\\]')
_STRUCTURAL = re.compile(rb'["{}]')

# Server-side conventions, not protocol guarantees; kept in one place.
SUCCESS_BUILT_PATTERN = re.compile(
    r"^Successfully built ([0-9a-f]{12,64})\s*$", re.MULTILINE
)
HEX_ID_PATTERN = re.compile(r"^(?:sha256:)?([0-9a-f]{12,64})$")


class EventKind(str, Enum):
    STREAM = "stream"
    STATUS = "status"
    ERROR = "error"
    OTHER = "other"


@dataclass(frozen=True)
class BuildStatusEvent:
    """One decoded object from the response stream."""

    kind: EventKind
    payload: Dict[str, Any]

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "BuildStatusEvent":
        if "error" in payload or "errorDetail" in payload:
            kind = EventKind.ERROR
        elif "stream" in payload:
            kind = EventKind.STREAM
        elif "status" in payload:
            kind = EventKind.STATUS
        else:
            kind = EventKind.OTHER
        return cls(kind=kind, payload=payload)

    @property
    def is_error(self) -> bool:
        return self.kind is EventKind.ERROR

    @property
    def error_message(self) -> str:
        message = self.payload.get("error")
        if not message:
            detail = self.payload.get("errorDetail")
            if isinstance(detail, dict):
                message = detail.get("message", "")
            else:
                message = detail or ""
        return str(message)

    @property
    def error_detail(self) -> Dict[str, Any]:
        """The errorDetail object, wrapped in a dict when the engine sent a bare value."""
        detail = self.payload.get("errorDetail")
        if detail is None:
            return {}
        if isinstance(detail, dict):
            return detail
        return {"message": str(detail)}

    @property
    def text(self) -> str:
        """Human-readable text of the event."""
        if self.kind is EventKind.STREAM:
            return str(self.payload["stream"])
        if self.kind is EventKind.ERROR:
            return self.error_message + "\n"
        if self.kind is EventKind.STATUS:
            status = str(self.payload["status"])
            progress = self.payload.get("progress")
            if progress:
                status = f"{status} {progress}"
            ident = self.payload.get("id")
            if ident:
                status = f"{ident}: {status}"
            return status + "\n"
        return ""


@dataclass
class BuildResult:
    """Outcome of a parsed build stream.

    Attributes:
        image_id: Extracted identifier when the build succeeded.
        error: The last error event when the build failed.
        stream_text: All event text seen, for diagnostics.
    """

    image_id: Optional[str] = None
    error: Optional[BuildStatusEvent] = None
    stream_text: str = ""
    events: List[BuildStatusEvent] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.error is None and self.image_id is not None

    def raise_for_failure(self) -> None:
        """Raise BuildFailedError if the stream carried an error event."""
        if self.error is not None:
            raise BuildFailedError(
                self.error.error_message,
                detail=self.error.error_detail,
                stream_text=self.stream_text,
            )


def match_identifier(event: BuildStatusEvent) -> Optional[str]:
    """
    Extract an image identifier from a single event, if it carries one.

    Recognized forms:
        {"stream": "Successfully built <hex>\\n"}
        {"status": "<hex>"}  (insert and import responses)
        {"aux": {"ID": "sha256:<hex>"}}
    """
    if event.kind is EventKind.STREAM:
        match = SUCCESS_BUILT_PATTERN.search(event.text)
        if match:
            return match.group(1)
    elif event.kind is EventKind.STATUS:
        match = HEX_ID_PATTERN.match(str(event.payload["status"]).strip())
        if match:
            return match.group(1)
    elif event.kind is EventKind.OTHER:
        aux = event.payload.get("aux")
        if isinstance(aux, dict) and isinstance(aux.get("ID"), str):
            match = HEX_ID_PATTERN.match(aux["ID"])
            if match:
                return match.group(1)
    return None


class ObjectScanner:
    """
    Resumable brace scanner for one JSON object at the front of a buffer.

    The scan position and string state survive between calls, so an object
    that arrives over many chunks is scanned once in total. Call reset() after
    the object is cut off the buffer.
    """

    def __init__(self):
        self.reset()

    def reset(self) -> None:
        self.position = 0
        self.depth = 0
        self.in_string = False
        self.escaped = False

    def scan(self, buffer) -> int:
        """
        Continue scanning ``buffer`` from the saved position.

        Returns:
            Index one past the closing brace, or -1 if the object is incomplete
        """
        pos = self.position
        size = len(buffer)
        while pos < size:
            if self.in_string:
                if self.escaped:
                    self.escaped = False
                    pos += 1
                    continue
                match = _STRING_SPECIAL.search(buffer, pos)
                if match is None:
                    pos = size
                    break
                pos = match.start()
                if buffer[pos] == _BACKSLASH:
                    self.escaped = True
                else:
                    self.in_string = False
                pos += 1
            else:
                match = _STRUCTURAL.search(buffer, pos)
                if match is None:
                    pos = size
                    break
                pos = match.start()
                byte = buffer[pos]
                pos += 1
                if byte == _QUOTE:
                    self.in_string = True
                elif byte == _OPEN_BRACE:
                    self.depth += 1
                else:
                    self.depth -= 1
                    if self.depth == 0:
                        self.position = pos
                        return pos
        self.position = pos
        return -1


def scan_object(buffer: bytes, start: int = 0) -> int:
    """
    Find the end of the JSON object beginning at ``buffer[start]``.

    Braces inside strings and escaped quotes are skipped.

    Returns:
        Index one past the closing brace, or -1 if the object is incomplete
    """
    scanner = ObjectScanner()
    scanner.position = start
    return scanner.scan(buffer)


EventSink = Callable[[BuildStatusEvent], None]


class BuildResponseParser:
    """
    Feed raw response chunks in network order, then call finish().

    Args:
        sink: Called with each BuildStatusEvent as soon as it is complete.
    """

    def __init__(self, sink: Optional[EventSink] = None):
        self._sink = sink
        self._buffer = bytearray()
        self._scanner = ObjectScanner()
        self._events: List[BuildStatusEvent] = []
        self._text: List[str] = []
        self._error: Optional[BuildStatusEvent] = None
        self._finished = False

    @property
    def events(self) -> List[BuildStatusEvent]:
        return list(self._events)

    @property
    def stream_text(self) -> str:
        return "".join(self._text)

    @property
    def error(self) -> Optional[BuildStatusEvent]:
        """The last error event seen so far."""
        return self._error

    @property
    def pending(self) -> bytes:
        """Bytes received but not yet part of a complete object."""
        return bytes(self._buffer)

    def feed(self, chunk: bytes) -> List[BuildStatusEvent]:
        """
        Consume one chunk and emit every object it completes.

        Returns:
            Events completed by this chunk, in stream order

        Raises:
            MalformedStreamError: If the stream holds bytes that are not JSON objects
        """
        if self._finished:
            raise RuntimeError("feed() called after finish()")
        if not chunk:
            return []

        self._buffer += chunk
        emitted = []
        while True:
            if self._scanner.position == 0:
                # Between objects: the next non-whitespace byte must open one
                start = self._skip_whitespace()
                if start == len(self._buffer):
                    self._buffer.clear()
                    break
                if self._buffer[start] != _OPEN_BRACE:
                    raise MalformedStreamError(
                        f"Unexpected byte {bytes(self._buffer[start:start + 1])!r} in build stream",
                        remainder=bytes(self._buffer[start:]),
                    )
                del self._buffer[:start]

            end = self._scanner.scan(self._buffer)
            if end < 0:
                break

            raw = bytes(self._buffer[:end])
            del self._buffer[:end]
            self._scanner.reset()
            emitted.append(self._emit(raw))
        return emitted

    def finish(self) -> BuildResult:
        """
        Close the stream and compute the build result.

        Returns:
            BuildResult carrying either the identifier or the error event

        Raises:
            MalformedStreamError: If an incomplete object is left over
            UnexpectedResponseError: If the stream had no error and no identifier
        """
        if self._finished:
            raise RuntimeError("finish() called twice")
        self._finished = True

        if self._buffer.strip(_WHITESPACE):
            raise MalformedStreamError(
                f"Build stream ended inside a JSON object: {bytes(self._buffer[:200])!r}",
                remainder=bytes(self._buffer),
            )

        result = BuildResult(
            error=self._error,
            stream_text=self.stream_text,
            events=list(self._events),
        )
        if self._error is not None:
            return result

        for event in self._events:
            image_id = match_identifier(event)
            if image_id:
                result.image_id = image_id

        if result.image_id is None:
            raise UnexpectedResponseError(
                "Build stream reported no error but contained no image id",
                stream_text=result.stream_text,
            )
        return result

    def _skip_whitespace(self) -> int:
        index = 0
        while index < len(self._buffer) and self._buffer[index] in _WHITESPACE:
            index += 1
        return index

    def _emit(self, raw: bytes) -> BuildStatusEvent:
        try:
            payload = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise MalformedStreamError(f"Invalid JSON object in build stream: {e}", remainder=raw) from e
        if not isinstance(payload, dict):
            raise MalformedStreamError("Build stream object is not a JSON object", remainder=raw)

        event = BuildStatusEvent.from_payload(payload)
        self._events.append(event)
        self._text.append(event.text)
        if event.is_error:
            log.debug(f"Build error event: {event.error_message}")
            self._error = event
        if self._sink is not None:
            self._sink(event)
        return event
