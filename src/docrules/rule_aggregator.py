"""Collect, flatten and deduplicate rule records from historical sources.

Rule collections have been stored in several shapes over time: plain
lists, sets, JSON-encoded strings, objects wrapping further collections,
and nested "payload" containers under more than one legacy name. This
module turns all of them into one flat, deduplicated list per domain.

Public API:

* ``normalize_rule_collection(raw)``: recursive-descent flattening.
* ``dedupe_rules(rules)``: structural dedupe ignoring volatile keys.
* ``extract_rules_from_state(state)``: aggregate nested payload containers.
* ``resolve_rules_for_state(state, payload_override)``: top-level wins,
  else aggregated, with source diagnostics.
"""
from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from docrules.config import DEFAULT_CONFIG, EngineConfig
from docrules.io_utils import canonical_json_key, try_decode_json

logger = logging.getLogger(__name__)

RULE_MARKER_KEYS: tuple[str, ...] = ("action", "fieldId", "whenField", "targets")


def is_rule_like(node: Mapping[str, Any]) -> bool:
    """A mapping carrying a truthy action/fieldId/whenField/targets is a rule."""
    return any(node.get(key) for key in RULE_MARKER_KEYS)


class _RuleCollector:
    """Depth-bounded visitor accumulating rule-like mappings in encounter order."""

    def __init__(self, max_depth: int) -> None:
        self.max_depth = max_depth
        self.rules: list[Mapping[str, Any]] = []

    def visit(self, node: Any, depth: int = 0) -> None:
        if node is None:
            return
        if depth > self.max_depth:
            logger.debug("rule collection nested deeper than %d; branch skipped", self.max_depth)
            return
        if isinstance(node, (str, bytes, bytearray)):
            self.visit_text(node, depth)
        elif isinstance(node, Mapping):
            self.visit_mapping(node, depth)
        elif isinstance(node, (set, frozenset)):
            self.visit_items(sorted(node, key=repr), depth)
        elif isinstance(node, (list, tuple)):
            self.visit_items(node, depth)

    def visit_items(self, items: Iterable[Any], depth: int) -> None:
        for item in items:
            self.visit(item, depth + 1)

    def visit_text(self, text: str | bytes | bytearray, depth: int) -> None:
        stripped = text.strip()
        if not stripped:
            return
        ok, decoded = try_decode_json(stripped)
        if not ok:
            logger.debug("discarding non-JSON string in rule collection")
            return
        self.visit(decoded, depth + 1)

    def visit_mapping(self, node: Mapping[str, Any], depth: int) -> None:
        if is_rule_like(node):
            self.rules.append(node)
            return
        self.visit_items(node.values(), depth)


def normalize_rule_collection(raw: Any, *, config: EngineConfig = DEFAULT_CONFIG) -> list[Mapping[str, Any]]:
    """Flatten an arbitrarily nested rule collection into a list of rules.

    Sequences, sets, JSON-encoded strings and wrapping objects are
    descended into; non-JSON strings are dropped. Recursion stops at
    ``config.max_flatten_depth``. The accepted rule mappings are returned
    as-is, not copied.
    """
    collector = _RuleCollector(config.max_flatten_depth)
    collector.visit(raw)
    return collector.rules


def _comparison_key(rule: Any, volatile_keys: tuple[str, ...]) -> bytes:
    if isinstance(rule, Mapping):
        shallow = {k: v for k, v in rule.items() if k not in volatile_keys}
        return canonical_json_key(shallow)
    return canonical_json_key(rule)


def dedupe_rules(rules: Iterable[Any] | None, *, config: EngineConfig = DEFAULT_CONFIG) -> list[Any]:
    """Drop structural duplicates, ignoring ``config.volatile_keys``.

    The first occurrence is kept with its volatile fields intact. Falsy
    entries are dropped. Idempotent.
    """
    seen: set[bytes] = set()
    out: list[Any] = []
    for rule in rules or ():
        if not rule:
            continue
        key = _comparison_key(rule, config.volatile_keys)
        if key in seen:
            continue
        seen.add(key)
        out.append(rule)
    return out


# ---------------------------------------------------------------------------
# State aggregation
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class RuleAggregation:
    """Rules aggregated from nested payload containers."""

    rules: tuple[Any, ...]
    field_rules: tuple[Any, ...]
    rules_sources: tuple[str, ...]
    field_rule_sources: tuple[str, ...]


@dataclass(frozen=True, slots=True)
class RuleSourceInfo:
    """Where the winning rule collections came from."""

    rules: str
    field_rules: str
    contributing_rules: tuple[str, ...]
    contributing_field_rules: tuple[str, ...]


@dataclass(frozen=True, slots=True)
class ResolvedRules:
    """Deduplicated raw rules per domain plus their provenance."""

    rules: tuple[Any, ...]
    field_rules: tuple[Any, ...]
    source: RuleSourceInfo


def _legacy_payload(state: Mapping[str, Any], config: EngineConfig) -> Any:
    payload = state.get(config.payload_container)
    if isinstance(payload, Mapping):
        for alias in config.payload_aliases:
            if payload.get(alias):
                return payload[alias]
    for alias in config.payload_aliases:
        if state.get(alias):
            return state[alias]
    return None


def _source_containers(state: Mapping[str, Any], config: EngineConfig) -> list[tuple[str, Any]]:
    """Ordered (name, container) pairs consulted during aggregation."""
    payload = state.get(config.payload_container)
    primary = f"{config.payload_container}.{config.payload_aliases[0]}"
    containers: list[tuple[str, Any]] = [(primary, _legacy_payload(state, config))]
    if isinstance(payload, Mapping):
        containers.append((config.payload_container, payload))
    containers.append(("state", state))
    return containers


def extract_rules_from_state(state: Any, *, config: EngineConfig = DEFAULT_CONFIG) -> RuleAggregation:
    """Aggregate rules from every nested container, recording contributors."""
    if not isinstance(state, Mapping):
        return RuleAggregation((), (), (), ())

    heading_key, field_key = config.rule_keys
    heading_sources: list[tuple[str, list[Mapping[str, Any]]]] = []
    field_sources: list[tuple[str, list[Mapping[str, Any]]]] = []
    for name, container in _source_containers(state, config):
        if not isinstance(container, Mapping):
            continue
        if container.get(heading_key):
            heading_sources.append(
                (name, normalize_rule_collection(container[heading_key], config=config))
            )
        if container.get(field_key):
            field_sources.append(
                (name, normalize_rule_collection(container[field_key], config=config))
            )

    return RuleAggregation(
        rules=tuple(dedupe_rules(
            (r for _, found in heading_sources for r in found), config=config,
        )),
        field_rules=tuple(dedupe_rules(
            (r for _, found in field_sources for r in found), config=config,
        )),
        rules_sources=tuple(name for name, found in heading_sources if found),
        field_rule_sources=tuple(name for name, found in field_sources if found),
    )


def _with_payload_override(state: Mapping[str, Any], override: Any,
                           config: EngineConfig) -> dict[str, Any]:
    view = dict(state)
    payload = state.get(config.payload_container)
    merged = dict(payload) if isinstance(payload, Mapping) else {}
    merged[config.payload_aliases[0]] = override
    view[config.payload_container] = merged
    for alias in config.payload_aliases:
        view[alias] = override
    return view


def resolve_rules_for_state(state: Any, payload_override: Any = None, *,
                            config: EngineConfig = DEFAULT_CONFIG) -> ResolvedRules:
    """Pick the rule collections for a document state.

    Collections present at the state's own top level win outright (even
    when empty); otherwise rules are aggregated from the nested payload
    containers. A *payload_override* is installed as the primary nested
    container under every legacy alias first.
    """
    view: Mapping[str, Any] = state if isinstance(state, Mapping) else {}
    if payload_override:
        view = _with_payload_override(view, payload_override, config)

    aggregated = extract_rules_from_state(view, config=config)
    heading_key, field_key = config.rule_keys

    if heading_key in view:
        rules = tuple(dedupe_rules(
            normalize_rule_collection(view[heading_key], config=config), config=config,
        ))
        rules_source = f"workspace.{heading_key}"
    else:
        rules = aggregated.rules
        rules_source = aggregated.rules_sources[0] if aggregated.rules_sources else "none"

    if field_key in view:
        field_rules = tuple(dedupe_rules(
            normalize_rule_collection(view[field_key], config=config), config=config,
        ))
        field_source = f"workspace.{field_key}"
    else:
        field_rules = aggregated.field_rules
        field_source = (
            aggregated.field_rule_sources[0] if aggregated.field_rule_sources else "none"
        )

    return ResolvedRules(
        rules=rules,
        field_rules=field_rules,
        source=RuleSourceInfo(
            rules=rules_source,
            field_rules=field_source,
            contributing_rules=aggregated.rules_sources,
            contributing_field_rules=aggregated.field_rule_sources,
        ),
    )
