"""Resolve loose, human-entered field/option references against a schema.

A reference may be a field id, a field label, ``"<label>: <option>"``, a
bare option label/value, or an option composite ``"<fieldId>__opt__<slug>"``.
Resolution is an ordered list of independent strategies combined with a
first-match-wins combinator; a failed resolution returns None and the
caller drops whatever referenced it.

Public API:

* ``build_schema_index(schema)``: by-id, by-label and option lookups.
* ``resolve_field_ref(schema, ref)``: loose reference -> FieldSchema | None.
* ``parse_option_field_ref(schema, ref)``: composite -> OptionDescriptor.
* ``rewrite_option_trigger(field, descriptor)``: option trigger -> field check.
* ``coerce_expected_for_choice(field, expected)``: scalar -> sequence.
"""
from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

from docrules.rule_types import (
    CHOICE_TYPES,
    OPTION_DELIMITER,
    FieldSchema,
    FormSchema,
    OptionDescriptor,
    OptionEntry,
)
from docrules.schema_contract import normalize_form_schema
from docrules.textmatch import as_text, lower_key, slugify

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Index
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class SchemaIndex:
    """Lookup indexes over a FormSchema. First declared entry wins on collisions."""

    schema: FormSchema
    by_id: Mapping[str, FieldSchema]
    by_label: Mapping[str, FieldSchema]
    option_to_field: Mapping[str, FieldSchema]

    def field(self, field_id: Any) -> FieldSchema | None:
        return self.by_id.get(as_text(field_id))

    def options_for(self, field_id: Any) -> tuple[OptionEntry, ...]:
        found = self.field(field_id)
        return tuple(found.all_options()) if found is not None else ()


def build_schema_index(schema: SchemaIndex | FormSchema | Mapping[str, Any] | None) -> SchemaIndex:
    """Build (or pass through) the lookup indexes for *schema*."""
    if isinstance(schema, SchemaIndex):
        return schema
    form = normalize_form_schema(schema)
    by_id: dict[str, FieldSchema] = {}
    by_label: dict[str, FieldSchema] = {}
    option_to_field: dict[str, FieldSchema] = {}
    for f in form.fields:
        by_id.setdefault(f.id, f)
        if f.label:
            by_label.setdefault(lower_key(f.label), f)
        for opt in f.all_options():
            for key in (lower_key(opt.label), lower_key(opt.value)):
                if key:
                    option_to_field.setdefault(key, f)
    return SchemaIndex(
        schema=form,
        by_id=by_id,
        by_label=by_label,
        option_to_field=option_to_field,
    )


def match_option(options: tuple[OptionEntry, ...] | list[OptionEntry],
                 token: Any) -> OptionEntry | None:
    """Find the option *token* names: by slug, by re-slugified value, or raw value."""
    raw = as_text(token).strip()
    slug = slugify(raw)
    for opt in options:
        if opt.value == raw:
            return opt
        if slug and (opt.slug == slug or slugify(opt.value) == slug):
            return opt
    return None


# ---------------------------------------------------------------------------
# Resolver strategies
# ---------------------------------------------------------------------------

type ResolverStrategy = Callable[[SchemaIndex, str], FieldSchema | None]


def by_exact_id(index: SchemaIndex, ref: str) -> FieldSchema | None:
    return index.by_id.get(ref)


def by_label(index: SchemaIndex, ref: str) -> FieldSchema | None:
    return index.by_label.get(ref.lower())


def by_colon_prefix(index: SchemaIndex, ref: str) -> FieldSchema | None:
    """``"Region: North"`` -> the field labelled (or identified) ``Region``."""
    if ":" not in ref:
        return None
    head = ref.split(":", 1)[0].strip()
    if not head:
        return None
    return index.by_label.get(head.lower()) or index.by_id.get(head)


def by_option_text(index: SchemaIndex, ref: str) -> FieldSchema | None:
    """A bare option label/value resolves to the field owning that option."""
    return index.option_to_field.get(ref.lower())


def by_option_composite(index: SchemaIndex, ref: str) -> FieldSchema | None:
    """``"<fieldId>__opt__<slug>"``: left side as id, else slug-match the right side."""
    if OPTION_DELIMITER not in ref:
        return None
    head, tail = ref.split(OPTION_DELIMITER, 1)
    found = index.by_id.get(head.strip())
    if found is not None:
        return found
    for f in index.schema.fields:
        if match_option(tuple(f.all_options()), tail) is not None:
            return f
    return None


def first_match(*strategies: ResolverStrategy) -> ResolverStrategy:
    """Combine strategies; the first non-None result wins."""

    def resolve(index: SchemaIndex, ref: str) -> FieldSchema | None:
        for strategy in strategies:
            found = strategy(index, ref)
            if found is not None:
                return found
        return None

    return resolve


RESOLVE_FIELD_REF: ResolverStrategy = first_match(
    by_exact_id,
    by_label,
    by_colon_prefix,
    by_option_text,
    by_option_composite,
)


def resolve_field_ref(schema: SchemaIndex | FormSchema | Mapping[str, Any] | None,
                      raw: Any) -> FieldSchema | None:
    """Resolve a loose field reference. Returns None when nothing matches."""
    if raw is None or isinstance(raw, (Mapping, list, tuple)):
        return None
    ref = as_text(raw).strip()
    if not ref:
        return None
    found = RESOLVE_FIELD_REF(build_schema_index(schema), ref)
    if found is None:
        logger.debug("could not resolve field reference %r", ref)
    return found


# ---------------------------------------------------------------------------
# Option composites
# ---------------------------------------------------------------------------

def option_id(field_id: str, slug: str) -> str:
    return f"{field_id}{OPTION_DELIMITER}{slug}"


def parse_option_field_ref(schema: SchemaIndex | FormSchema | Mapping[str, Any] | None,
                           ref: Any) -> OptionDescriptor | None:
    """Parse ``"<fieldId>__opt__<slugOrValue>"`` into an OptionDescriptor.

    A reference without the delimiter (or with an empty option side)
    describes the whole field. An option side that matches nothing in the
    field's catalog still yields a descriptor, with ``option_value=None``
    and a synthetic id built from the slug.
    """
    index = build_schema_index(schema)
    text = as_text(ref).strip() if ref is not None else ""
    if not text:
        return None

    if OPTION_DELIMITER not in text:
        found = resolve_field_ref(index, text)
        if found is None:
            return None
        return OptionDescriptor(
            kind="field",
            field_id=found.id,
            option_slug=None,
            option_value=None,
            option_label=None,
            id=found.id,
        )

    head, tail = (part.strip() for part in text.split(OPTION_DELIMITER, 1))
    owner = (
        index.by_id.get(head)
        or resolve_field_ref(index, head)
        or resolve_field_ref(index, text)
    )
    if owner is None:
        return None
    if not tail:
        return OptionDescriptor(
            kind="field",
            field_id=owner.id,
            option_slug=None,
            option_value=None,
            option_label=None,
            id=owner.id,
        )

    hit = match_option(tuple(owner.all_options()), tail)
    if hit is not None:
        return OptionDescriptor(
            kind="option",
            field_id=owner.id,
            option_slug=hit.slug,
            option_value=hit.value,
            option_label=hit.label,
            id=option_id(owner.id, hit.slug),
        )

    slug = slugify(tail) or tail
    logger.debug("option %r not in catalog of field %r; keeping reference", tail, owner.id)
    return OptionDescriptor(
        kind="option",
        field_id=owner.id,
        option_slug=slug,
        option_value=None,
        option_label=None,
        id=option_id(owner.id, slug),
    )


def rewrite_option_trigger(field: FieldSchema,
                           descriptor: OptionDescriptor) -> tuple[str, str, tuple[str, ...]]:
    """Turn an option trigger into "is this option selected on *field*".

    Returns:
        ``(field_id, op, expected)``. Multi-choice fields test membership
        (``anyOf``); select and every other type test equality.
    """
    token = descriptor.option_value
    if token is None:
        token = descriptor.option_slug or ""
    op = "anyOf" if field.type == "multichoice" else "equals"
    return field.id, op, (token,)


def coerce_expected_for_choice(field: FieldSchema, expected: Any) -> Any:
    """Select/multi-choice triggers always compare against a sequence."""
    if isinstance(expected, (list, tuple)):
        return tuple(expected)
    if isinstance(expected, (set, frozenset)):
        return tuple(sorted(as_text(v) for v in expected))
    if field.type not in CHOICE_TYPES:
        return expected
    if expected is None:
        return ()
    return (expected,)
