"""Evaluate canonical rules against form values into visibility maps.

Two independent passes share one matcher:

* ``evaluate_rules_to_visibility``: heading domain, keyed by stable idx.
* ``evaluate_field_rules_to_visibility``: field/option domain, keyed by
  field id or ``"<fieldId>__opt__<slug>"``.

Each pass is a single fold over the rules. Writes obey a fixed precedence
(SHOW > HIDE > DISABLE), so the resulting map depends only on which rules
matched, never on the order they were listed in.
"""
from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from datetime import UTC, date, datetime
from typing import Any

from docrules.heading_index import HeadingIndex, build_heading_target_index, parse_target_idx
from docrules.rule_types import (
    DISABLE,
    HIDE,
    OPTION_DELIMITER,
    SHOW,
    VISIBILITY_RANK,
    CanonicalCondition,
    CanonicalRule,
    FieldTarget,
    HeadingTarget,
    OptionDescriptor,
    RuleTarget,
    UnresolvedTarget,
    Visibility,
)
from docrules.schema_resolver import SchemaIndex, build_schema_index, parse_option_field_ref
from docrules.textmatch import as_text, slugify
from docrules.value_sanitizer import sanitize_values, to_number

logger = logging.getLogger(__name__)

DATE_OPERATORS: frozenset[str] = frozenset({"equals", "gt", "lt", "gte", "lte"})


# ---------------------------------------------------------------------------
# Matcher
# ---------------------------------------------------------------------------

def _is_sequence(value: Any) -> bool:
    return isinstance(value, (list, tuple, set, frozenset))


def _texts(value: Any) -> tuple[str, ...]:
    if _is_sequence(value):
        return tuple(as_text(v) for v in value)
    return (as_text(value),)


def _first(value: Any) -> Any:
    if isinstance(value, (list, tuple)):
        return value[0] if value else None
    return value


def _scalar_text(value: Any) -> str:
    if isinstance(value, Mapping):
        return as_text(value.get("formatted"))
    return as_text(value)


def _is_empty(value: Any) -> bool:
    if _is_sequence(value):
        return len(value) == 0
    return value is None or value == ""


def _equals(expected: Any, actual: Any) -> bool:
    if actual is None:
        return _is_empty(expected)
    if _is_sequence(actual):
        return set(_texts(actual)) == set(_texts(expected))
    if _is_sequence(expected):
        return _scalar_text(actual) in _texts(expected)
    return _scalar_text(actual) == as_text(expected)


def _compare_numbers(op: str, expected: Any, actual: Any) -> bool:
    left = to_number(actual)
    right = to_number(_first(expected))
    if left is None or right is None:
        return False
    if op == "gt":
        return left > right
    if op == "lt":
        return left < right
    if op == "gte":
        return left >= right
    return left <= right


def rule_matches_value(op: str, expected: Any, actual: Any, field_type: str = "") -> bool:
    """Generic operator dispatch. Unknown operators never match; never raises."""
    value_type = as_text(field_type).lower()
    if op == "isEmpty":
        return _is_empty(actual)
    if op == "isNotEmpty":
        return not _is_empty(actual)
    if op == "equals":
        return _equals(expected, actual)
    if op == "notEquals":
        return not _equals(expected, actual)
    if op == "anyOf":
        wanted = set(_texts(expected))
        if actual is None:
            return False
        if _is_sequence(actual):
            return any(a in wanted for a in _texts(actual))
        return _scalar_text(actual) in wanted
    if op == "allOf":
        if not _is_sequence(actual):
            return False
        got = set(_texts(actual))
        return all(e in got for e in _texts(expected))
    if op == "contains":
        if value_type != "text":
            return False
        needle = as_text(_first(expected)).lower()
        return needle in as_text(actual).lower()
    if op in ("gt", "lt", "gte", "lte"):
        return _compare_numbers(op, expected, actual)
    return False


def to_utc_day(value: Any) -> int | None:
    """Calendar-day ordinal (UTC for aware datetimes), or None if unparsable."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        moment = value.astimezone(UTC) if value.tzinfo is not None else value
        return moment.date().toordinal()
    if isinstance(value, date):
        return value.toordinal()
    text = as_text(value).strip()
    if not text:
        return None
    try:
        return date.fromisoformat(text).toordinal()
    except ValueError:
        pass
    try:
        return to_utc_day(datetime.fromisoformat(text))
    except ValueError:
        return None


def _date_matches(op: str, expected: Any, actual: Any) -> bool:
    left = to_utc_day(actual)
    right = to_utc_day(_first(expected))
    if left is None or right is None:
        return False
    if op == "equals":
        return left == right
    if op == "gt":
        return left > right
    if op == "lt":
        return left < right
    if op == "gte":
        return left >= right
    return left <= right


def value_matches(op: str, expected: Any, actual: Any, value_type: str) -> bool:
    """Date-aware matcher: date comparisons by calendar day, else generic."""
    if value_type == "date" and op in DATE_OPERATORS:
        return _date_matches(op, expected, actual)
    return rule_matches_value(op, expected, actual, value_type)


# ---------------------------------------------------------------------------
# Unified trigger resolver
# ---------------------------------------------------------------------------

def is_option_selected(field_type: str, actual: Any, option: OptionDescriptor) -> bool:
    """Is *option* currently selected given the parent field's clean value."""
    wanted_value = option.option_value
    wanted_slug = option.option_slug or ""

    def _hit(item: Any) -> bool:
        text = _scalar_text(item)
        if wanted_value is not None and text == wanted_value:
            return True
        return bool(wanted_slug) and slugify(text) == wanted_slug

    if field_type == "multichoice":
        items = actual if _is_sequence(actual) else ([] if _is_empty(actual) else [actual])
        return any(_hit(item) for item in items)
    if field_type == "select":
        return not _is_empty(actual) and _hit(actual)
    token = wanted_value if wanted_value is not None else wanted_slug
    return _scalar_text(actual) == token


def resolve_trigger_value(index: SchemaIndex, clean_values: Mapping[str, Any], field_id: str,
                          option: OptionDescriptor | None = None) -> tuple[Any, str]:
    """Return ``(value, semantic_type)`` for a trigger or condition reference.

    Option references report a boolean "selected?" with type ``boolean``;
    plain fields report their sanitized value and declared type.
    """
    if option is None and OPTION_DELIMITER in field_id and index.field(field_id) is None:
        option = parse_option_field_ref(index, field_id)
    if option is not None and option.kind == "option":
        parent = index.field(option.field_id)
        parent_type = parent.type if parent is not None else ""
        actual = clean_values.get(option.field_id)
        return is_option_selected(parent_type, actual, option), "boolean"
    target_id = option.field_id if option is not None else field_id
    found = index.field(target_id)
    return clean_values.get(target_id), (found.type if found is not None else "")


def _condition_holds(condition: CanonicalCondition, index: SchemaIndex,
                     clean_values: Mapping[str, Any]) -> bool:
    value, value_type = resolve_trigger_value(
        index, clean_values, condition.field_id, condition.option,
    )
    return value_matches(condition.op, condition.expected, value, value_type)


def rule_matches(rule: CanonicalRule, index: SchemaIndex, clean_values: Mapping[str, Any]) -> bool:
    """Base match of the trigger AND every condition."""
    value, value_type = resolve_trigger_value(index, clean_values, rule.field_id)
    if not value_matches(rule.op, rule.expected, value, value_type):
        return False
    return all(_condition_holds(c, index, clean_values) for c in rule.conditions)


# ---------------------------------------------------------------------------
# Passes
# ---------------------------------------------------------------------------

def _write[K](out: dict[K, Visibility], key: K, effect: Visibility) -> None:
    previous = out.get(key)
    if previous is None or VISIBILITY_RANK[effect] > VISIBILITY_RANK[previous]:
        out[key] = effect


def _canonical_rules(rules: Iterable[Any] | None) -> list[CanonicalRule]:
    if rules is None:
        return []
    return [r for r in rules if isinstance(r, CanonicalRule)]


def evaluate_rules_to_visibility(schema: Any, values: Mapping[str, Any] | None,
                                 rules: Iterable[CanonicalRule] | None,
                                 heading_resolver: Any = None) -> dict[int, Visibility]:
    """Heading pass: ``{idx: "SHOW" | "HIDE"}`` for every matched target."""
    out: dict[int, Visibility] = {}
    canonical = _canonical_rules(rules)
    if not canonical:
        return out
    index = build_schema_index(schema)
    resolver: HeadingIndex | None = (
        build_heading_target_index(heading_resolver) if heading_resolver is not None else None
    )
    clean = sanitize_values(index.schema, values)

    for rule in canonical:
        if rule.action not in (SHOW, HIDE):
            continue
        if not rule_matches(rule, index, clean):
            continue
        for target in rule.targets:
            idx = parse_target_idx(target, resolver)
            if idx is None:
                logger.debug("target %r of matched rule has no stable idx; skipped", target)
                continue
            _write(out, idx, SHOW if rule.action == SHOW else HIDE)
    return dict(sorted(out.items()))


def _field_target_key(target: RuleTarget) -> str:
    if isinstance(target, FieldTarget):
        return target.id
    if isinstance(target, HeadingTarget):
        return ""
    raw = target.raw if isinstance(target, UnresolvedTarget) else target
    if isinstance(raw, Mapping):
        return as_text(raw.get("id") or raw.get("fieldId") or raw.get("key")).strip()
    return as_text(raw).strip()


def evaluate_field_rules_to_visibility(schema: Any, values: Mapping[str, Any] | None,
                                       rules: Iterable[CanonicalRule] | None) -> dict[str, Visibility]:
    """Field pass: ``{id: "SHOW" | "HIDE" | "DISABLE"}`` for every matched target.

    A matching HIDE rule writes DISABLE instead when its ``hide_mode`` is
    ``"disable"``.
    """
    out: dict[str, Visibility] = {}
    canonical = _canonical_rules(rules)
    if not canonical:
        return out
    index = build_schema_index(schema)
    clean = sanitize_values(index.schema, values)

    for rule in canonical:
        if rule.action not in (SHOW, HIDE):
            continue
        if not rule_matches(rule, index, clean):
            continue
        if rule.action == SHOW:
            effect: Visibility = SHOW
        else:
            effect = DISABLE if rule.hide_mode == "disable" else HIDE
        for target in rule.targets:
            key = _field_target_key(target)
            if not key:
                continue
            _write(out, key, effect)
    return dict(sorted(out.items()))
