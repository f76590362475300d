"""Stable-identity index over a document's heading list.

Rule targets must keep pointing at the same section across re-parses of
the document, so every heading is keyed by the ``idx`` the document parse
supplied. List position is only a fallback for records that carry no idx,
and a positional idx never displaces an explicit one.

Four lookups are built: canonical id, stable idx, document numbering
("2.1") and label slug. ``normalize_target`` resolves any historical
target representation to ``HeadingTarget(id, idx, label)``.
"""
from __future__ import annotations

import logging
import math
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from docrules.rule_types import (
    FieldTarget,
    HeadingBaselineEntry,
    HeadingTarget,
    UnresolvedTarget,
)
from docrules.textmatch import as_text, slugify

logger = logging.getLogger(__name__)


def finite_int(value: Any) -> int | None:
    """Integral value of *value*, or None (bools, NaN, non-integral, text)."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if math.isfinite(value) and value.is_integer() else None
    text = as_text(value).strip()
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
    return int(number) if math.isfinite(number) and number.is_integer() else None


def synthetic_heading_id(idx: int) -> str:
    return f"sec_{idx:06d}"


def _first_text(record: Mapping[str, Any], *keys: str) -> str:
    for key in keys:
        value = record.get(key)
        if value is not None and as_text(value).strip():
            return as_text(value).strip()
    return ""


def _record_view(record: Any) -> Mapping[str, Any] | None:
    if isinstance(record, HeadingBaselineEntry):
        return {
            "id": record.id, "idx": record.idx,
            "label": record.label, "number": record.number,
        }
    if isinstance(record, HeadingTarget):
        return {"id": record.id, "idx": record.idx, "label": record.label}
    if isinstance(record, Mapping):
        return record
    return None


def _baseline_records(baseline: Any) -> list[Any]:
    if isinstance(baseline, Mapping):
        for key in ("flat", "headings"):
            value = baseline.get(key)
            if isinstance(value, Sequence) and not isinstance(value, (str, bytes)):
                return list(value)
        return []
    if isinstance(baseline, Sequence) and not isinstance(baseline, (str, bytes)):
        return list(baseline)
    return []


def _to_entry(record: Mapping[str, Any], idx: int) -> HeadingBaselineEntry:
    entry_id = _first_text(record, "id", "uid", "key") or synthetic_heading_id(idx)
    label = _first_text(record, "label", "text", "title") or entry_id
    number = _first_text(record, "number", "num") or None
    return HeadingBaselineEntry(id=entry_id, idx=idx, label=label, number=number)


def _as_target(entry: HeadingBaselineEntry) -> HeadingTarget:
    return HeadingTarget(id=entry.id, idx=entry.idx, label=entry.label)


@dataclass(frozen=True, slots=True)
class HeadingIndex:
    """Lookups over a heading baseline. First entry wins on key collisions."""

    entries: tuple[HeadingBaselineEntry, ...]
    by_id: Mapping[str, HeadingBaselineEntry]
    by_idx: Mapping[str, HeadingBaselineEntry]
    by_number: Mapping[str, HeadingBaselineEntry]
    by_slug: Mapping[str, HeadingBaselineEntry]

    @property
    def has_baseline(self) -> bool:
        return bool(self.entries)

    def normalize_target(self, target: Any) -> HeadingTarget | None:
        """Resolve a raw target to ``HeadingTarget`` or None.

        Objects: id/uid -> idx/key -> number -> label slug -> synthesize
        from any present idx/label. Primitives: id -> idx -> number ->
        label slug -> a finite numeric string as a direct idx (never a
        1-based list position).
        """
        if target is None or isinstance(target, bool):
            return None
        if isinstance(target, UnresolvedTarget):
            return self.normalize_target(target.raw)
        view = _record_view(target)
        if view is not None:
            return self._normalize_object(view)
        if isinstance(target, (str, int, float)):
            return self._normalize_primitive(as_text(target).strip())
        return None

    def _normalize_object(self, view: Mapping[str, Any]) -> HeadingTarget | None:
        for key in ("id", "uid"):
            value = view.get(key)
            if value is not None:
                entry = self.by_id.get(as_text(value).strip())
                if entry is not None:
                    return _as_target(entry)
        for key in ("idx", "key"):
            value = view.get(key)
            if value is None or isinstance(value, bool):
                continue
            text = as_text(value).strip()
            entry = self.by_idx.get(text)
            if entry is None and key == "key":
                entry = self.by_id.get(text)
            if entry is not None:
                return _as_target(entry)
        number = view.get("number")
        if number is not None:
            entry = self.by_number.get(as_text(number).strip())
            if entry is not None:
                return _as_target(entry)
        label = _first_text(view, "label", "text", "title")
        if label:
            entry = self.by_slug.get(slugify(label))
            if entry is not None:
                return _as_target(entry)

        idx = finite_int(view.get("idx"))
        given_id = _first_text(view, "id", "uid")
        if idx is not None:
            target_id = given_id or synthetic_heading_id(idx)
            return HeadingTarget(id=target_id, idx=idx, label=label or target_id)
        if label:
            return HeadingTarget(id=given_id or slugify(label) or label, idx=None, label=label)
        logger.debug("heading target %r matched nothing", dict(view))
        return None

    def _normalize_primitive(self, text: str) -> HeadingTarget | None:
        if not text:
            return None
        entry = (
            self.by_id.get(text)
            or self.by_idx.get(text)
            or self.by_number.get(text)
            or self.by_slug.get(slugify(text))
        )
        if entry is not None:
            return _as_target(entry)
        idx = finite_int(text)
        if idx is None:
            logger.debug("heading target %r matched nothing", text)
            return None
        entry = self.by_idx.get(str(idx))
        if entry is not None:
            return _as_target(entry)
        return HeadingTarget(id=synthetic_heading_id(idx), idx=idx, label=text)

    def resolve(self, target: Any) -> HeadingTarget | None:
        """Like ``normalize_target`` but only for targets with an idx."""
        normalized = self.normalize_target(target)
        if normalized is not None and normalized.idx is not None:
            return normalized
        return None

    def resolve_idx(self, target: Any) -> int | None:
        return parse_target_idx(target, self)

    def build_label(self, entry: Any, fallback: Any = None) -> str:
        view = _record_view(entry)
        if view is not None:
            label = _first_text(view, "label", "text", "title")
            if label:
                return label
        return as_text(fallback)


def build_heading_target_index(baseline: Any) -> HeadingIndex:
    """Build a HeadingIndex from a flat list, ``{"flat": [...]}`` or ``{"headings": [...]}``."""
    if isinstance(baseline, HeadingIndex):
        return baseline
    explicit: list[HeadingBaselineEntry] = []
    positional: list[HeadingBaselineEntry] = []
    ordered: list[HeadingBaselineEntry] = []
    for position, record in enumerate(_baseline_records(baseline)):
        view = _record_view(record)
        if view is None:
            continue
        own_idx = finite_int(view.get("idx"))
        entry = _to_entry(view, own_idx if own_idx is not None else position)
        (explicit if own_idx is not None else positional).append(entry)
        ordered.append(entry)

    by_id: dict[str, HeadingBaselineEntry] = {}
    by_idx: dict[str, HeadingBaselineEntry] = {}
    by_number: dict[str, HeadingBaselineEntry] = {}
    by_slug: dict[str, HeadingBaselineEntry] = {}
    # Explicit idx values register first so a positional fallback never shadows them.
    for entry in explicit + positional:
        taken = by_idx.setdefault(str(entry.idx), entry)
        if taken is not entry:
            logger.debug(
                "heading %r: idx %d already taken by %r",
                entry.label, entry.idx, taken.label,
            )
    for entry in ordered:
        by_id.setdefault(entry.id, entry)
        if entry.number:
            by_number.setdefault(entry.number, entry)
        slug = slugify(entry.label)
        if slug:
            by_slug.setdefault(slug, entry)

    return HeadingIndex(
        entries=tuple(ordered),
        by_id=by_id,
        by_idx=by_idx,
        by_number=by_number,
        by_slug=by_slug,
    )


def parse_target_idx(target: Any, resolver: HeadingIndex | None = None) -> int | None:
    """Stable idx for *target*, or None when it has none.

    Order: a HeadingTarget's own idx, the resolver's normalized idx, a
    mapping's ``idx``, then the leading segment of ``"12|Label"``.
    """
    if isinstance(target, UnresolvedTarget):
        target = target.raw
    if isinstance(target, HeadingTarget) and target.idx is not None:
        return target.idx
    if target is None or isinstance(target, (bool, FieldTarget)):
        return None
    if resolver is not None:
        normalized = resolver.normalize_target(target)
        if normalized is not None and normalized.idx is not None:
            return normalized.idx
    if isinstance(target, Mapping):
        return finite_int(target.get("idx"))
    if isinstance(target, HeadingTarget):
        return None
    head = as_text(target).split("|", 1)[0]
    return finite_int(head)
