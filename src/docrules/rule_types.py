"""Core types for the rule pipeline.

Every layer shares these types. Schema/baseline types are immutable
snapshots; raw records are parsed into typed views before anything is
resolved against them.

Type hierarchy:
  Ok[T] / Err[E]       — Strict algebraic Result type
  OptionEntry          — One selectable option with its precomputed slug
  FieldSchema          — A form field (flat options + grouped multi-choice)
  FormSchema           — Ordered fields of a form
  OptionDescriptor     — Parsed ``<fieldId>__opt__<slug>`` reference
  HeadingBaselineEntry — Stable-idx record of a document heading
  HeadingTarget        — Resolved heading-domain target
  FieldTarget          — Resolved field/option-domain target
  UnresolvedTarget     — Heading target carried verbatim (no baseline yet)
  RawRule / RawCondition       — Typed views over untyped rule records
  CanonicalRule / CanonicalCondition — Fully resolved rules
  RuleParseFailure     — Why a raw rule was dropped
"""
from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from typing import Any, Literal

# ---------------------------------------------------------------------------
# Result ADT
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class Ok[T]:
    """Success case of Result[T, E].

    Usage::

        match normalize_field_rule(raw, index):
            case Ok(value=rule): rules.append(rule)
            case Err(error=failure): log(failure.reason)
    """
    value: T


@dataclass(frozen=True, slots=True)
class Err[E]:
    """Failure case of Result[T, E]. Keeps the typed reason a None would erase."""
    error: E


type Result[T, E] = Ok[T] | Err[E]


# ---------------------------------------------------------------------------
# Vocabulary
# ---------------------------------------------------------------------------

type Visibility = Literal["SHOW", "HIDE", "DISABLE"]
type RuleAction = Literal["SHOW", "HIDE"]
type HideMode = Literal["hide", "disable"]

SHOW: Visibility = "SHOW"
HIDE: Visibility = "HIDE"
DISABLE: Visibility = "DISABLE"

# Output precedence: a stronger effect is never overwritten by a weaker one.
VISIBILITY_RANK: dict[str, int] = {DISABLE: 1, HIDE: 2, SHOW: 3}

OPTION_DELIMITER = "__opt__"

FIELD_TYPES: frozenset[str] = frozenset({
    "text", "number", "date", "datediff", "select", "multichoice",
    "switch", "checkbox", "boolean", "address", "table",
})
CHOICE_TYPES: frozenset[str] = frozenset({"select", "multichoice"})
BOOLEAN_TYPES: frozenset[str] = frozenset({"switch", "checkbox", "boolean"})

OPERATORS: tuple[str, ...] = (
    "equals", "notEquals", "anyOf", "allOf", "contains",
    "isEmpty", "isNotEmpty", "gt", "lt", "gte", "lte",
)
DEFAULT_OPERATOR = "equals"


# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class OptionEntry:
    """A selectable option. ``slug`` is derived from the label."""

    value: str
    label: str
    slug: str


@dataclass(frozen=True, slots=True)
class OptionGroup:
    """A labelled group of multi-choice items (``mc.groups`` in payloads)."""

    label: str
    items: tuple[OptionEntry, ...]


@dataclass(frozen=True, slots=True)
class FieldSchema:
    """A form field. ``id`` is unique within its FormSchema."""

    id: str
    label: str
    type: str
    options: tuple[OptionEntry, ...] = ()
    option_groups: tuple[OptionGroup, ...] = ()

    def all_options(self) -> Iterator[OptionEntry]:
        """Flat options first, then grouped items in declaration order."""
        yield from self.options
        for group in self.option_groups:
            yield from group.items


@dataclass(frozen=True, slots=True)
class FormSchema:
    """Ordered fields of a form bound to a document template."""

    title: str
    fields: tuple[FieldSchema, ...]


@dataclass(frozen=True, slots=True)
class OptionDescriptor:
    """Parsed option reference.

    ``kind == "field"`` means the reference named a whole field. For
    ``kind == "option"`` an unmatched option keeps ``option_value=None`` and
    still gets a stable synthetic ``id`` so it can round-trip.
    """

    kind: Literal["field", "option"]
    field_id: str
    option_slug: str | None
    option_value: str | None
    option_label: str | None
    id: str


# ---------------------------------------------------------------------------
# Headings & targets
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class HeadingBaselineEntry:
    """A heading of the bound document.

    ``idx`` is an opaque stable key supplied by the document parse; it may
    be sparse and is never recomputed from list position once present.
    """

    id: str
    idx: int
    label: str
    number: str | None = None


@dataclass(frozen=True, slots=True)
class HeadingTarget:
    """Heading-domain target. ``idx`` is None only for label-only fallbacks."""

    id: str
    idx: int | None
    label: str


@dataclass(frozen=True, slots=True)
class FieldTarget:
    """Field-domain target: a whole field or one of its options."""

    id: str
    field_id: str
    label: str
    option_value: str | None = None
    option_label: str | None = None


@dataclass(frozen=True, slots=True)
class UnresolvedTarget:
    """A user-authored target kept verbatim because no baseline was loaded."""

    raw: Any


type RuleTarget = HeadingTarget | FieldTarget | UnresolvedTarget


# ---------------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class RawCondition:
    """Typed view of an AND-condition record (reference not yet resolved)."""

    ref: Any
    op: str
    expected: Any
    origin: Mapping[str, Any] = field(default_factory=dict, compare=False, repr=False)


@dataclass(frozen=True, slots=True)
class RawRule:
    """Typed view of a historical rule record (references not yet resolved).

    ``action`` is the upper-cased SHOW or HIDE (other actions never parse);
    ``expected`` is whichever of ``values|value|expected`` is set.
    """

    action: RuleAction
    trigger_ref: Any
    op: str
    expected: Any
    targets: tuple[Any, ...]
    conditions: tuple[Any, ...]
    hide_mode: HideMode | None
    origin: Mapping[str, Any] = field(default_factory=dict, compare=False, repr=False)


@dataclass(frozen=True, slots=True)
class CanonicalCondition:
    """AND-condition with a resolved field (and optional option) reference."""

    field_id: str
    op: str
    expected: Any
    option: OptionDescriptor | None = None


@dataclass(frozen=True, slots=True)
class CanonicalRule:
    """A rule after trigger/target resolution.

    Invariants: ``field_id`` exists in the schema it was normalized
    against and ``targets`` is never empty. ``source_ref`` keeps the
    original option-composite trigger when the trigger was rewritten.
    """

    action: RuleAction
    field_id: str
    op: str
    expected: Any
    conditions: tuple[CanonicalCondition, ...]
    targets: tuple[RuleTarget, ...]
    hide_mode: HideMode | None = None
    source_ref: str | None = None
    origin: Mapping[str, Any] = field(default_factory=dict, compare=False, repr=False)


type FailureReason = Literal[
    "not_a_mapping", "missing_trigger", "unsupported_action", "unresolved_trigger",
]


@dataclass(frozen=True, slots=True)
class RuleParseFailure:
    """Structured reason a raw rule did not become a CanonicalRule."""

    reason: FailureReason
    raw_ref: str
    message: str


@dataclass(frozen=True, slots=True)
class NormalizedRuleSet:
    """Rules that survived normalization plus the failures for the rest."""

    rules: tuple[CanonicalRule, ...]
    failures: tuple[RuleParseFailure, ...] = ()

    def __len__(self) -> int:
        return len(self.rules)

    def __iter__(self) -> Iterator[CanonicalRule]:
        return iter(self.rules)
