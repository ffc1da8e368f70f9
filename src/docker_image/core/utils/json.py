"""JSON helpers for engine responses and request parameters."""

import json
from enum import Enum
from typing import Any, Union

from pydantic import BaseModel

from ..exceptions import UnexpectedResponseError


def parse_json(body: Union[str, bytes]) -> Any:
    """Decode a response body.

    Args:
        body: Raw response body.

    Returns:
        The decoded value, or None for an empty body.

    Raises:
        UnexpectedResponseError: If the body is not valid JSON.
    """
    if isinstance(body, bytes):
        body = body.decode("utf-8", errors="replace")
    if not body.strip():
        return None
    try:
        return json.loads(body)
    except json.JSONDecodeError as e:
        raise UnexpectedResponseError(f"'{body[:200]}' is not valid JSON: {e}") from e


def normalize_for_json(obj: Any) -> Any:
    """Normalize an object for JSON serialization.

    Converts Pydantic models to dicts and Enum values to their values,
    while recursively processing collections.
    """
    if obj is None or isinstance(obj, (bool, int, float, str)):
        return obj

    if isinstance(obj, Enum):
        return obj.value

    if isinstance(obj, BaseModel):
        return normalize_for_json(obj.model_dump(exclude_none=True))

    if isinstance(obj, dict):
        return {key: normalize_for_json(value) for key, value in obj.items()}

    if isinstance(obj, (list, tuple)):
        return [normalize_for_json(item) for item in obj]

    return obj


def to_query_value(value: Any) -> Any:
    """Render a parameter value the way the engine expects in a query string.

    Booleans become ``1``/``0``; dicts and lists are JSON encoded.
    """
    value = normalize_for_json(value)
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, (dict, list)):
        return json.dumps(value, separators=(",", ":"))
    return value
