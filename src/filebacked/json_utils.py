"""
High-Performance JSON Utilities
===============================

Thin wrappers over orjson used by the structured serializer.

orjson handles dataclasses, datetimes and UUIDs natively and produces bytes
directly, which is what gets written to disk.
"""

import logging
from typing import Any, Callable, Optional, Union

import orjson

logger = logging.getLogger(__name__)

JSON_BACKEND = "orjson"


def dumps(
    obj: Any,
    sort_keys: bool = False,
    default: Optional[Callable[[Any], Any]] = None,
) -> bytes:
    """
    Serialize object to JSON bytes.

    Args:
        obj: Object to serialize
        sort_keys: Whether to sort dictionary keys (for byte-stable output)
        default: Function to handle objects orjson cannot serialize natively

    Returns:
        UTF-8 encoded JSON
    """
    option = 0
    if sort_keys:
        option |= orjson.OPT_SORT_KEYS
    return orjson.dumps(obj, option=option, default=default)


def loads(s: Union[str, bytes, bytearray, memoryview]) -> Any:
    """Deserialize JSON text or bytes."""
    return orjson.loads(s)


def get_json_backend() -> str:
    """Get the active JSON backend name."""
    return JSON_BACKEND
