"""End-to-end composition: state -> canonical rules -> visibility maps.

    resolve_rules_for_state        (aggregation, dedupe)
      -> normalize_*_rules_for_schema  (schema + heading baseline)
      -> evaluate_*_to_visibility      (sanitized values)

Also hosts the adapter that hands the heading map to the document
mutation engine as ``{idx: remove?}``.
"""
from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from docrules.config import DEFAULT_CONFIG, EngineConfig
from docrules.evaluation import (
    evaluate_field_rules_to_visibility,
    evaluate_rules_to_visibility,
)
from docrules.heading_index import build_heading_target_index
from docrules.rule_aggregator import RuleSourceInfo, resolve_rules_for_state
from docrules.rule_normalizer import (
    normalize_field_rules_for_schema,
    normalize_heading_rules_for_schema,
)
from docrules.rule_types import CanonicalRule, RuleParseFailure, Visibility
from docrules.schema_resolver import build_schema_index
from docrules.textmatch import as_text


@dataclass(frozen=True, slots=True)
class DocumentRules:
    """Canonical rules for both domains of one document."""

    rules: tuple[CanonicalRule, ...]
    field_rules: tuple[CanonicalRule, ...]
    source: RuleSourceInfo
    failures: tuple[RuleParseFailure, ...] = ()


@dataclass(frozen=True, slots=True)
class DocumentVisibility:
    """Results of the two independent evaluation passes."""

    headings: dict[int, Visibility]
    fields: dict[str, Visibility]


def derive_normalized_rules_for_doc(state: Any, schema: Any, heading_baseline: Any = None,
                                    payload_override: Any = None, *,
                                    config: EngineConfig = DEFAULT_CONFIG) -> DocumentRules:
    """Aggregate the state's rule history and normalize both domains."""
    resolved = resolve_rules_for_state(state, payload_override, config=config)
    index = build_schema_index(schema)
    headings = normalize_heading_rules_for_schema(index, resolved.rules, heading_baseline)
    fields = normalize_field_rules_for_schema(index, resolved.field_rules)
    return DocumentRules(
        rules=headings.rules,
        field_rules=fields.rules,
        source=resolved.source,
        failures=headings.failures + fields.failures,
    )


def evaluate_document(schema: Any, values: Mapping[str, Any] | None,
                      document_rules: DocumentRules,
                      heading_baseline: Any = None) -> DocumentVisibility:
    """Run the heading pass and the field pass; the two maps stay separate."""
    index = build_schema_index(schema)
    resolver = build_heading_target_index(heading_baseline) if heading_baseline is not None else None
    return DocumentVisibility(
        headings=evaluate_rules_to_visibility(index, values, document_rules.rules, resolver),
        fields=evaluate_field_rules_to_visibility(index, values, document_rules.field_rules),
    )


_REMOVE_WORDS = frozenset({"hide", "remove", "true"})
_KEEP_WORDS = frozenset({"show", "visible", "keep"})


def _should_remove(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        word = value.strip().lower()
        if not word or word in _KEEP_WORDS:
            return False
        if word in _REMOVE_WORDS:
            return True
    if isinstance(value, Mapping):
        action = value.get("action") or value.get("visibility") or value.get("state")
        if isinstance(action, str):
            word = action.strip().lower()
            if word in _KEEP_WORDS:
                return False
            if word in _REMOVE_WORDS - {"true"}:
                return True
    return bool(value)


def serialize_visibility_map_for_removal(visibility: Any) -> dict[str, bool]:
    """Heading map -> ``{str(idx): remove?}`` for the document mutation engine.

    Accepts a mapping or a sequence of ``(key, value)`` pairs; anything
    else yields an empty map.
    """
    if visibility is None:
        return {}
    if isinstance(visibility, Mapping):
        items = list(visibility.items())
    elif isinstance(visibility, (list, tuple)):
        items = [tuple(pair) for pair in visibility if isinstance(pair, (list, tuple)) and len(pair) == 2]
    else:
        return {}
    return {as_text(key): _should_remove(value) for key, value in items}
