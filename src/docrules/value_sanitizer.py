"""Type-coerce a raw value bag into canonical per-field values.

One rule per declared field type; unparsable values are dropped, never
raised. Keys the schema does not declare are passed through unchanged.
"""
from __future__ import annotations

import logging
import math
from collections.abc import Callable, Mapping
from datetime import date, datetime
from typing import Any

from docrules.rule_types import BOOLEAN_TYPES, FieldSchema, FormSchema
from docrules.schema_contract import normalize_form_schema
from docrules.textmatch import as_text, is_blank

logger = logging.getLogger(__name__)

_TRUE_VALUES: tuple[Any, ...] = (True, "true", 1, "1")

_MISSING = object()


def to_number(value: Any) -> int | float | None:
    """Numeric coercion shared by the sanitizer and the matcher.

    Returns None for None, blank strings, non-numeric text and NaN.
    Booleans coerce to 0/1.
    """
    if value is None:
        return None
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return None if math.isnan(value) else value
    text = str(value).strip()
    if not text:
        return None
    try:
        return int(text)
    except ValueError:
        pass
    try:
        number = float(text)
    except ValueError:
        return None
    return None if math.isnan(number) else number


def _is_true(value: Any) -> bool:
    # bool is an int subclass, so compare types explicitly.
    return any(type(value) is type(t) and value == t for t in _TRUE_VALUES)


def _sanitize_number(value: Any) -> Any:
    if is_blank(value):
        return _MISSING
    number = to_number(value)
    return _MISSING if number is None else number


def _sanitize_boolean(value: Any) -> Any:
    return _is_true(value)


def _sanitize_date(value: Any) -> Any:
    if value is None or value == "":
        return _MISSING
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    text = as_text(value).strip()
    return text or _MISSING


def _sanitize_multichoice(value: Any) -> Any:
    if isinstance(value, (set, frozenset)):
        items = sorted(as_text(v) for v in value)
    elif isinstance(value, (list, tuple)):
        items = [as_text(v) for v in value]
    elif is_blank(value):
        items = []
    else:
        items = [as_text(value)]
    return list(dict.fromkeys(items))


def _sanitize_select(value: Any) -> Any:
    if value is None:
        return _MISSING
    text = as_text(value)
    return text or _MISSING


def _sanitize_address(value: Any) -> Any:
    if isinstance(value, Mapping):
        return dict(value)
    if is_blank(value):
        return _MISSING
    return {"formatted": as_text(value)}


def _sanitize_datediff(value: Any) -> Any:
    if not isinstance(value, Mapping):
        return _MISSING
    formatted = as_text(value.get("formatted"))
    if not formatted:
        return _MISSING
    return {
        "days": to_number(value.get("days")) or 0,
        "months": to_number(value.get("months")) or 0,
        "years": to_number(value.get("years")) or 0,
        "formatted": formatted,
    }


def _sanitize_default(value: Any) -> Any:
    if is_blank(value):
        return _MISSING
    if isinstance(value, (str, bool, int, float)):
        return as_text(value)
    return value


_SANITIZERS: dict[str, Callable[[Any], Any]] = {
    "number": _sanitize_number,
    "date": _sanitize_date,
    "multichoice": _sanitize_multichoice,
    "select": _sanitize_select,
    "address": _sanitize_address,
    "datediff": _sanitize_datediff,
    **{t: _sanitize_boolean for t in BOOLEAN_TYPES},
}


def sanitize_field_value(field: FieldSchema, value: Any) -> tuple[bool, Any]:
    """Sanitize one value for *field*.

    Returns:
        ``(True, clean)`` when the value is kept, ``(False, None)`` when it
        is dropped.
    """
    sanitizer = _SANITIZERS.get(field.type, _sanitize_default)
    clean = sanitizer(value)
    if clean is _MISSING:
        return False, None
    return True, clean


def sanitize_values(schema: FormSchema | Mapping[str, Any] | None,
                    values: Mapping[str, Any] | None) -> dict[str, Any]:
    """Return the canonical value bag for *values* under *schema*.

    Declared fields are coerced by type (absent keys are read as None, so
    boolean fields always come out as True/False); undeclared keys are
    copied through unchanged.
    """
    form = normalize_form_schema(schema)
    raw = values if isinstance(values, Mapping) else {}
    declared = {field.id for field in form.fields}
    out: dict[str, Any] = {}
    for field in form.fields:
        keep, clean = sanitize_field_value(field, raw.get(field.id))
        if keep:
            out[field.id] = clean
        elif raw.get(field.id) is not None:
            logger.debug("dropping unparsable %s value for field %r", field.type, field.id)
    for key, value in raw.items():
        if key not in declared:
            out[key] = value
    return out
