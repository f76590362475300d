"""Normalize raw rule records into CanonicalRule objects.

Each raw record goes through an explicit parse step (``parse_raw_rule``)
and then resolution against the schema. Both steps return a Result, so a
dropped rule always carries the reason it was dropped.

Shared trigger steps (heading and field domain):
  1. Resolve the trigger reference; unresolved -> the rule is dropped.
  2. Select/multi-choice triggers compare against a sequence.
  3. An option-composite trigger is rewritten to "option selected on the
     parent field"; a rewritten reference that no longer resolves falls
     back to the field resolved in step 1.
  4. AND-conditions whose reference does not resolve are dropped.

Targets are then resolved per domain. A rule never ends up without
targets: when none resolve, the trigger field itself is the target.
"""
from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from typing import Any

from docrules.heading_index import HeadingIndex, build_heading_target_index
from docrules.rule_types import (
    DEFAULT_OPERATOR,
    OPERATORS,
    OPTION_DELIMITER,
    CanonicalCondition,
    CanonicalRule,
    Err,
    FieldSchema,
    FieldTarget,
    HeadingTarget,
    HideMode,
    NormalizedRuleSet,
    Ok,
    OptionDescriptor,
    RawCondition,
    RawRule,
    Result,
    RuleAction,
    RuleParseFailure,
    RuleTarget,
    UnresolvedTarget,
)
from docrules.schema_resolver import (
    SchemaIndex,
    build_schema_index,
    coerce_expected_for_choice,
    match_option,
    option_id,
    parse_option_field_ref,
    resolve_field_ref,
    rewrite_option_trigger,
)
from docrules.textmatch import as_text, lower_key, slug_equals, slugify

logger = logging.getLogger(__name__)

_OPERATORS_BY_KEY: dict[str, str] = {op.lower(): op for op in OPERATORS}

TRIGGER_KEYS: tuple[str, ...] = ("fieldId", "field", "whenField")
CONDITION_KEYS: tuple[str, ...] = ("fieldId", "leftFieldId", "rightFieldId", "field", "whenField")
EXPECTED_KEYS: tuple[str, ...] = ("values", "value", "expected")


# ---------------------------------------------------------------------------
# Parse step
# ---------------------------------------------------------------------------

def _first_present(record: Mapping[str, Any], keys: tuple[str, ...]) -> Any:
    for key in keys:
        value = record.get(key)
        if value is not None:
            return value
    return None


def _as_tuple(value: Any) -> tuple[Any, ...]:
    if value is None:
        return ()
    if isinstance(value, (list, tuple)):
        return tuple(value)
    if isinstance(value, (set, frozenset)):
        return tuple(sorted(value, key=repr))
    return (value,)


def _freeze(value: Any) -> Any:
    if isinstance(value, list):
        return tuple(value)
    if isinstance(value, (set, frozenset)):
        return tuple(sorted(value, key=repr))
    return value


def normalize_operator(raw: Any) -> str:
    """Canonical operator name; unknown operators are kept verbatim."""
    text = as_text(raw).strip()
    if not text:
        return DEFAULT_OPERATOR
    return _OPERATORS_BY_KEY.get(text.lower(), text)


def normalize_action(raw: Any) -> RuleAction | None:
    action = as_text(raw).strip().upper()
    if action == "SHOW":
        return "SHOW"
    if action == "HIDE":
        return "HIDE"
    return None


def normalize_hide_mode(raw: Any) -> HideMode | None:
    if raw is None:
        return None
    return "disable" if lower_key(raw) == "disable" else "hide"


def parse_raw_rule(raw: Any) -> Result[RawRule, RuleParseFailure]:
    """Parse an untyped rule record into a RawRule view."""
    if isinstance(raw, RawRule):
        return Ok(raw)
    if not isinstance(raw, Mapping):
        return Err(RuleParseFailure(
            reason="not_a_mapping",
            raw_ref="",
            message=f"rule record is {type(raw).__name__}, not an object",
        ))
    trigger = _first_present(raw, TRIGGER_KEYS)
    if trigger is None or not as_text(trigger).strip():
        return Err(RuleParseFailure(
            reason="missing_trigger",
            raw_ref="",
            message="rule has no fieldId/field/whenField reference",
        ))
    action = normalize_action(raw.get("action"))
    if action is None:
        return Err(RuleParseFailure(
            reason="unsupported_action",
            raw_ref=as_text(trigger),
            message=f"action {raw.get('action')!r} is neither SHOW nor HIDE",
        ))
    return Ok(RawRule(
        action=action,
        trigger_ref=trigger,
        op=normalize_operator(_first_present(raw, ("op", "operator"))),
        expected=_freeze(_first_present(raw, EXPECTED_KEYS)),
        targets=_as_tuple(raw.get("targets")),
        conditions=_as_tuple(raw.get("conditions")),
        hide_mode=normalize_hide_mode(raw.get("hideMode")),
        origin=raw,
    ))


def parse_raw_condition(raw: Any) -> RawCondition | None:
    """Parse an AND-condition record; None when it is not an object."""
    if isinstance(raw, RawCondition):
        return raw
    if not isinstance(raw, Mapping):
        return None
    return RawCondition(
        ref=_first_present(raw, CONDITION_KEYS),
        op=normalize_operator(_first_present(raw, ("op", "operator"))),
        expected=_freeze(_first_present(raw, EXPECTED_KEYS)),
        origin=raw,
    )


# ---------------------------------------------------------------------------
# Trigger & conditions
# ---------------------------------------------------------------------------

def _resolve_trigger(
    index: SchemaIndex, parsed: RawRule,
) -> Result[tuple[FieldSchema, str, Any, str | None], RuleParseFailure]:
    """Resolve the trigger to ``(field, op, expected, source_ref)``."""
    ref = as_text(parsed.trigger_ref).strip()
    resolved = resolve_field_ref(index, ref)
    if resolved is None:
        return Err(RuleParseFailure(
            reason="unresolved_trigger",
            raw_ref=ref,
            message=f"trigger reference {ref!r} does not resolve to a field",
        ))

    field_id, op, expected = resolved.id, parsed.op, parsed.expected
    source_ref: str | None = None
    if OPTION_DELIMITER in ref:
        descriptor = parse_option_field_ref(index, ref)
        if descriptor is not None and descriptor.kind == "option":
            owner = index.field(descriptor.field_id) or resolved
            field_id, op, expected = rewrite_option_trigger(owner, descriptor)
            source_ref = ref

    trigger = index.field(field_id)
    if trigger is None:
        trigger = resolved
    return Ok((trigger, op, coerce_expected_for_choice(trigger, expected), source_ref))


def _resolve_condition(index: SchemaIndex, raw: Any) -> CanonicalCondition | None:
    parsed = parse_raw_condition(raw)
    if parsed is None or parsed.ref is None:
        return None
    ref = as_text(parsed.ref).strip()
    if OPTION_DELIMITER in ref:
        descriptor = parse_option_field_ref(index, ref)
        if descriptor is None:
            return None
        if descriptor.kind == "option":
            expected = parsed.expected
            if expected is None and parsed.op == DEFAULT_OPERATOR:
                expected = True
            return CanonicalCondition(
                field_id=descriptor.field_id,
                op=parsed.op,
                expected=expected,
                option=descriptor,
            )
        return CanonicalCondition(field_id=descriptor.field_id, op=parsed.op,
                                  expected=parsed.expected)
    found = resolve_field_ref(index, ref)
    if found is None:
        return None
    return CanonicalCondition(field_id=found.id, op=parsed.op, expected=parsed.expected)


def _resolve_conditions(index: SchemaIndex, raw_conditions: tuple[Any, ...]) -> tuple[CanonicalCondition, ...]:
    out: list[CanonicalCondition] = []
    for raw in raw_conditions:
        condition = _resolve_condition(index, raw)
        if condition is None:
            logger.debug("dropping condition with unresolved reference: %r", raw)
            continue
        out.append(condition)
    return tuple(out)


def _trigger_target(trigger: FieldSchema) -> FieldTarget:
    return FieldTarget(id=trigger.id, field_id=trigger.id, label=trigger.label or trigger.id)


# ---------------------------------------------------------------------------
# Heading-domain targets
# ---------------------------------------------------------------------------

def _heading_targets(raw_targets: tuple[Any, ...], headings: HeadingIndex) -> tuple[RuleTarget, ...]:
    if not headings.has_baseline:
        # No baseline loaded yet: keep user-authored targets as they are.
        return tuple(
            t if isinstance(t, HeadingTarget) else UnresolvedTarget(t)
            for t in raw_targets
            if t is not None
        )
    out: list[RuleTarget] = []
    for raw in raw_targets:
        normalized = headings.normalize_target(raw)
        if normalized is None:
            logger.debug("dropping unresolvable heading target %r", raw)
            continue
        out.append(normalized)
    return tuple(out)


# ---------------------------------------------------------------------------
# Field-domain targets
# ---------------------------------------------------------------------------

def _option_target(owner: FieldSchema, value: str | None, label: str | None,
                   slug: str, display: str | None = None) -> FieldTarget:
    shown = label or value or slug
    return FieldTarget(
        id=option_id(owner.id, slug),
        field_id=owner.id,
        label=display or f"{owner.label}: {shown}",
        option_value=value,
        option_label=label,
    )


def _field_target(owner: FieldSchema, display: str | None = None) -> FieldTarget:
    return FieldTarget(id=owner.id, field_id=owner.id, label=display or owner.label or owner.id)


def _find_field_by_label_slug(index: SchemaIndex, text: str) -> FieldSchema | None:
    for f in index.schema.fields:
        if slug_equals(f.label or f.id, text):
            return f
    return None


def _target_from_option_object(index: SchemaIndex, raw: Mapping[str, Any],
                               trigger: FieldSchema) -> FieldTarget:
    """(a) an object explicitly carrying optionValue/optionLabel."""
    owner_ref = as_text(raw.get("fieldId")).strip()
    if not owner_ref:
        owner_ref = as_text(raw.get("id")).split(OPTION_DELIMITER, 1)[0].strip()
    owner = (index.field(owner_ref) or resolve_field_ref(index, owner_ref)) if owner_ref else None
    owner = owner or trigger

    value = as_text(raw.get("optionValue")).strip()
    label = as_text(raw.get("optionLabel")).strip()
    options = index.options_for(owner.id)
    hit = (match_option(options, value) if value else None) or (
        match_option(options, label) if label else None
    )
    display = as_text(raw.get("label")).strip() or None
    if hit is not None:
        return _option_target(owner, hit.value, hit.label, hit.slug, display)
    label = label or value
    return _option_target(owner, value or None, label or None,
                          slugify(label) or label, display)


def _target_from_composite(index: SchemaIndex, text: str,
                           trigger: FieldSchema) -> FieldTarget | None:
    """(b) ``"<fieldId>__opt__<slug>"``."""
    descriptor = parse_option_field_ref(index, text)
    if descriptor is None:
        tail = text.split(OPTION_DELIMITER, 1)[1].strip()
        hit = match_option(index.options_for(trigger.id), tail)
        if hit is None:
            return None
        return _option_target(trigger, hit.value, hit.label, hit.slug)
    owner = index.field(descriptor.field_id) or trigger
    if descriptor.kind == "field":
        return _field_target(owner)
    return _descriptor_target(owner, descriptor)


def _descriptor_target(owner: FieldSchema, descriptor: OptionDescriptor) -> FieldTarget:
    return _option_target(
        owner,
        descriptor.option_value,
        descriptor.option_label,
        descriptor.option_slug or "",
    )


def _target_from_colon_pair(index: SchemaIndex, text: str,
                            trigger: FieldSchema) -> FieldTarget | None:
    """(c) ``"<field-or-label>:<option-label-or-value>"``."""
    lhs, rhs = (part.strip() for part in text.split(":", 1))
    owner = index.field(lhs) or _find_field_by_label_slug(index, lhs) or trigger
    hit = match_option(index.options_for(owner.id), rhs)
    if hit is None:
        return None
    return _option_target(owner, hit.value, hit.label, hit.slug)


def _target_from_plain_text(index: SchemaIndex, text: str) -> FieldTarget | None:
    """(d) a field id or field-label slug."""
    owner = index.field(text) or _find_field_by_label_slug(index, text)
    return _field_target(owner) if owner is not None else None


def resolve_field_target(index: SchemaIndex, raw: Any, trigger: FieldSchema) -> FieldTarget | None:
    """Resolve one field-domain target; None when nothing matches."""
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, FieldTarget):
        return raw
    if isinstance(raw, Mapping):
        if raw.get("optionValue") is not None or raw.get("optionLabel") is not None:
            return _target_from_option_object(index, raw, trigger)
        ref = as_text(raw.get("id") or raw.get("fieldId") or raw.get("key")).strip()
        if not ref:
            return None
        if OPTION_DELIMITER in ref:
            return _target_from_composite(index, ref, trigger)
        owner = index.field(ref)
        if owner is None:
            return None
        return _field_target(owner, as_text(raw.get("label")).strip() or None)
    if not isinstance(raw, (str, int, float)):
        return None

    text = as_text(raw).strip()
    if not text:
        return None
    if OPTION_DELIMITER in text:
        target = _target_from_composite(index, text, trigger)
        if target is not None:
            return target
    if ":" in text:
        target = _target_from_colon_pair(index, text, trigger)
        if target is not None:
            return target
    return _target_from_plain_text(index, text)


def _field_targets(index: SchemaIndex, raw_targets: tuple[Any, ...],
                   trigger: FieldSchema) -> tuple[FieldTarget, ...]:
    out: list[FieldTarget] = []
    for raw in raw_targets:
        target = resolve_field_target(index, raw, trigger)
        if target is None:
            logger.debug("dropping unresolvable field target %r", raw)
            continue
        out.append(target)
    return tuple(out)


# ---------------------------------------------------------------------------
# Per-rule normalization
# ---------------------------------------------------------------------------

def _prepare(raw: Any, index: SchemaIndex) -> Result[
    tuple[RawRule, FieldSchema, str, Any, str | None], RuleParseFailure,
]:
    parsed_result = parse_raw_rule(raw)
    if isinstance(parsed_result, Err):
        return parsed_result
    parsed = parsed_result.value
    trigger_result = _resolve_trigger(index, parsed)
    if isinstance(trigger_result, Err):
        return trigger_result
    trigger, op, expected, source_ref = trigger_result.value
    return Ok((parsed, trigger, op, expected, source_ref))


def _build_rule(index: SchemaIndex, parsed: RawRule, trigger: FieldSchema, op: str,
                expected: Any, source_ref: str | None,
                targets: tuple[RuleTarget, ...]) -> CanonicalRule:
    return CanonicalRule(
        action=parsed.action,
        field_id=trigger.id,
        op=op,
        expected=expected,
        conditions=_resolve_conditions(index, parsed.conditions),
        targets=targets or (_trigger_target(trigger),),
        hide_mode=parsed.hide_mode,
        source_ref=source_ref,
        origin=parsed.origin,
    )


def normalize_heading_rule(raw: Any, index: SchemaIndex,
                           headings: HeadingIndex) -> Result[CanonicalRule, RuleParseFailure]:
    """Normalize one heading-domain rule."""
    prepared = _prepare(raw, index)
    if isinstance(prepared, Err):
        return prepared
    parsed, trigger, op, expected, source_ref = prepared.value
    targets = _heading_targets(parsed.targets, headings)
    return Ok(_build_rule(index, parsed, trigger, op, expected, source_ref, targets))


def normalize_field_rule(raw: Any, index: SchemaIndex) -> Result[CanonicalRule, RuleParseFailure]:
    """Normalize one field/option-domain rule."""
    prepared = _prepare(raw, index)
    if isinstance(prepared, Err):
        return prepared
    parsed, trigger, op, expected, source_ref = prepared.value
    targets = _field_targets(index, parsed.targets, trigger)
    return Ok(_build_rule(index, parsed, trigger, op, expected, source_ref, targets))


# ---------------------------------------------------------------------------
# Collections
# ---------------------------------------------------------------------------

def _iter_raw_rules(raw_rules: Any) -> Iterable[Any]:
    if raw_rules is None or isinstance(raw_rules, (str, bytes, Mapping)):
        return ()
    if isinstance(raw_rules, Iterable):
        return raw_rules
    return ()


def _collect(results: Iterable[Result[CanonicalRule, RuleParseFailure]]) -> NormalizedRuleSet:
    rules: list[CanonicalRule] = []
    failures: list[RuleParseFailure] = []
    for result in results:
        match result:
            case Ok(value=rule):
                rules.append(rule)
            case Err(error=failure):
                logger.debug("dropping rule (%s): %s", failure.reason, failure.message)
                failures.append(failure)
    return NormalizedRuleSet(rules=tuple(rules), failures=tuple(failures))


def normalize_heading_rules_for_schema(schema: Any, raw_rules: Any,
                                       heading_baseline: Any = None) -> NormalizedRuleSet:
    """Normalize heading-domain rules against *schema* and the heading baseline."""
    index = build_schema_index(schema)
    headings = build_heading_target_index(heading_baseline)
    return _collect(
        normalize_heading_rule(raw, index, headings)
        for raw in _iter_raw_rules(raw_rules)
        if raw is not None
    )


def normalize_field_rules_for_schema(schema: Any, raw_rules: Any) -> NormalizedRuleSet:
    """Normalize field/option-domain rules against *schema*."""
    index = build_schema_index(schema)
    return _collect(
        normalize_field_rule(raw, index)
        for raw in _iter_raw_rules(raw_rules)
        if raw is not None
    )


# ---------------------------------------------------------------------------
# Export
# ---------------------------------------------------------------------------

def target_to_dict(target: RuleTarget) -> Any:
    if isinstance(target, HeadingTarget):
        return {"id": target.id, "idx": target.idx, "label": target.label}
    if isinstance(target, FieldTarget):
        out: dict[str, Any] = {"id": target.id, "fieldId": target.field_id, "label": target.label}
        if target.option_value is not None:
            out["optionValue"] = target.option_value
        if target.option_label is not None:
            out["optionLabel"] = target.option_label
        return out
    return target.raw


def _export_value(value: Any) -> Any:
    return list(value) if isinstance(value, tuple) else value


def canonical_rule_to_dict(rule: CanonicalRule) -> dict[str, Any]:
    """Serialize a CanonicalRule to its camelCase wire shape."""
    out: dict[str, Any] = {
        "action": rule.action,
        "fieldId": rule.field_id,
        "op": rule.op,
        "values": _export_value(rule.expected),
        "conditions": [
            {
                "fieldId": c.field_id,
                "op": c.op,
                "values": _export_value(c.expected),
                **({"optionId": c.option.id} if c.option is not None else {}),
            }
            for c in rule.conditions
        ],
        "targets": [target_to_dict(t) for t in rule.targets],
    }
    if rule.hide_mode is not None:
        out["hideMode"] = rule.hide_mode
    if rule.source_ref is not None:
        out["sourceRef"] = rule.source_ref
    return out
