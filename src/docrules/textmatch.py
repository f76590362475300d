"""Reusable text primitives for label/slug matching.

Pure text operations with zero domain dependencies. Every fuzzy comparison
in the rule pipeline (field labels, option labels, heading labels) goes
through ``slugify`` so that "Région Nord", "region-nord" and "REGION_NORD"
all compare equal.
"""
from __future__ import annotations

import math
import re
import unicodedata
from typing import Any

_NON_ALNUM_RE = re.compile(r"[^a-z0-9]+", re.IGNORECASE)


def slugify(value: Any) -> str:
    """Normalize a label into its slug form.

    Diacritics are stripped (NFKD + combining marks removed), runs of
    non-alphanumerics collapse to a single ``_``, leading/trailing ``_``
    are trimmed and the result is lower-cased.

    Args:
        value: Anything; ``None`` yields an empty slug.

    Returns:
        The slug, possibly empty.
    """
    text = unicodedata.normalize("NFKD", as_text(value))
    text = "".join(ch for ch in text if not unicodedata.combining(ch))
    text = _NON_ALNUM_RE.sub("_", text)
    return text.strip("_").lower()


def as_text(value: Any) -> str:
    """Render a scalar the way form values are compared as text.

    ``None`` becomes ``""``, booleans become ``"true"``/``"false"`` and
    integral floats drop their ``.0`` suffix (``3.0`` -> ``"3"``).
    """
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and math.isfinite(value) and value.is_integer():
        return str(int(value))
    return str(value)


def lower_key(value: Any) -> str:
    """Stripped, lower-cased text key used by the label indexes."""
    return as_text(value).strip().lower()


def is_blank(value: Any) -> bool:
    """True for ``None`` and for strings that are empty."""
    return value is None or (isinstance(value, str) and value == "")


def slug_equals(left: Any, right: Any) -> bool:
    """Compare two labels by slug. Two empty slugs never match."""
    left_slug = slugify(left)
    return bool(left_slug) and left_slug == slugify(right)
