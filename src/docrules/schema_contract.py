"""Form schema contract adapter.

Normalizes schema payload shape differences so the resolver and the
evaluator can use a stable contract:
- fields from ``fields`` (fields without an ``id`` are skipped)
- options as plain strings or mappings carrying ``value|id`` and ``label|text``
- grouped multi-choice items from ``mc.groups[].items[]``
"""
from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

from docrules.rule_types import FieldSchema, FormSchema, OptionEntry, OptionGroup
from docrules.textmatch import as_text, slugify


def _option_entry(raw: Any) -> OptionEntry | None:
    """Normalize one option record; ``None`` for empty entries."""
    if raw is None:
        return None
    if isinstance(raw, OptionEntry):
        return raw
    if isinstance(raw, Mapping):
        raw_value = raw.get("value")
        if raw_value is None:
            raw_value = raw.get("id")
        raw_label = raw.get("label")
        if raw_label is None:
            raw_label = raw.get("text")
        if raw_value is None and raw_label is None:
            return None
        value = as_text(raw_value if raw_value is not None else raw_label)
        label = as_text(raw_label if raw_label is not None else value)
    else:
        value = label = as_text(raw)
    return OptionEntry(value=value, label=label, slug=slugify(label))


def _option_entries(raw: Any) -> tuple[OptionEntry, ...]:
    if not isinstance(raw, Sequence) or isinstance(raw, (str, bytes)):
        return ()
    entries = (_option_entry(item) for item in raw)
    return tuple(e for e in entries if e is not None)


def _option_groups(raw_field: Mapping[str, Any]) -> tuple[OptionGroup, ...]:
    mc = raw_field.get("mc")
    if not isinstance(mc, Mapping):
        return ()
    groups = mc.get("groups")
    if not isinstance(groups, Sequence) or isinstance(groups, (str, bytes)):
        return ()
    out: list[OptionGroup] = []
    for group in groups:
        if not isinstance(group, Mapping):
            continue
        out.append(
            OptionGroup(
                label=as_text(group.get("label") or group.get("title")),
                items=_option_entries(group.get("items")),
            )
        )
    return tuple(out)


def normalize_field(raw_field: Any) -> FieldSchema | None:
    """Normalize one field payload; ``None`` when it carries no id."""
    if isinstance(raw_field, FieldSchema):
        return raw_field
    if not isinstance(raw_field, Mapping):
        return None
    field_id = as_text(raw_field.get("id")).strip()
    if not field_id:
        return None
    label = as_text(raw_field.get("label")).strip() or field_id
    field_type = as_text(raw_field.get("type")).strip().lower() or "text"
    return FieldSchema(
        id=field_id,
        label=label,
        type=field_type,
        options=_option_entries(raw_field.get("options")),
        option_groups=_option_groups(raw_field),
    )


def normalize_form_schema(payload: Any) -> FormSchema:
    """Normalize a schema payload to a FormSchema.

    A FormSchema is returned unchanged. ``None`` and non-mapping payloads
    yield an empty schema.
    """
    if isinstance(payload, FormSchema):
        return payload
    if not isinstance(payload, Mapping):
        return FormSchema(title="", fields=())
    raw_fields = payload.get("fields")
    if not isinstance(raw_fields, Sequence) or isinstance(raw_fields, (str, bytes)):
        raw_fields = []
    fields = (normalize_field(f) for f in raw_fields)
    return FormSchema(
        title=as_text(payload.get("title")),
        fields=tuple(f for f in fields if f is not None),
    )


def valid_field_ids(schema: Any) -> frozenset[str]:
    """Return the set of field ids declared by *schema*."""
    return frozenset(f.id for f in normalize_form_schema(schema).fields)
