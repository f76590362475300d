"""JSON utilities for rule payloads.

Provides orjson-backed decoding of JSON-encoded rule strings and
deterministic, sorted-key comparison keys for structural equality.
Nothing here touches the filesystem.
"""
from __future__ import annotations

import dataclasses
import math
from collections.abc import Mapping, Set
from typing import Any, cast

import orjson

_KEY_OPTIONS = orjson.OPT_SORT_KEYS | orjson.OPT_NON_STR_KEYS

# orjson serializes integers only within the signed 64-bit range.
_INT_MIN = -(2**63)
_INT_MAX = 2**63 - 1


def try_decode_json(text: str | bytes) -> tuple[bool, Any]:
    """Decode JSON text, reporting failure instead of raising.

    Returns:
        ``(True, value)`` on success, ``(False, None)`` when *text* is not
        valid JSON.
    """
    try:
        return True, orjson.loads(text)
    except orjson.JSONDecodeError:
        return False, None


def _key_default(obj: Any) -> Any:
    """orjson ``default`` hook: render unsupported values deterministically."""
    if isinstance(obj, (set, frozenset)):
        items = [to_jsonable(v) for v in cast(Set[Any], obj)]
        return sorted(
            items,
            key=lambda v: orjson.dumps(v, option=_KEY_OPTIONS, default=_key_default),
        )
    if isinstance(obj, Mapping):
        return {str(k): to_jsonable(v) for k, v in cast(Mapping[Any, Any], obj).items()}
    if isinstance(obj, float) and not math.isfinite(obj):
        return str(obj)
    return repr(obj)


def canonical_json_key(obj: Any) -> bytes:
    """Serialize *obj* to a deterministic byte key (sorted keys).

    Two values that are structurally equal produce the same key regardless
    of mapping insertion order.
    """
    return orjson.dumps(to_jsonable(obj), option=_KEY_OPTIONS, default=_key_default)


def to_jsonable(obj: Any) -> Any:
    """Recursively convert containers into orjson-native types."""
    if isinstance(obj, Mapping):
        mapping = cast(Mapping[Any, Any], obj)
        return {_json_key(k): to_jsonable(v) for k, v in mapping.items()}
    if isinstance(obj, (list, tuple)):
        return [to_jsonable(v) for v in cast(list[Any], obj)]
    if isinstance(obj, (set, frozenset)):
        return _key_default(obj)
    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        return to_jsonable(dataclasses.asdict(obj))
    if isinstance(obj, float) and not math.isfinite(obj):
        return str(obj)
    if _oversized_int(obj):
        return f"int:{obj}"
    return obj


def _oversized_int(value: Any) -> bool:
    return (
        isinstance(value, int)
        and not isinstance(value, bool)
        and not _INT_MIN <= value <= _INT_MAX
    )


def _json_key(key: Any) -> Any:
    if isinstance(key, str) or (isinstance(key, int) and not isinstance(key, bool)
                                and not _oversized_int(key)):
        return key
    return str(key)
