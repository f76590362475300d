"""Tests for docrules.schema_resolver."""
from __future__ import annotations

import pytest

from docrules.rule_types import OptionDescriptor
from docrules.schema_resolver import (
    build_schema_index,
    by_colon_prefix,
    by_exact_id,
    by_label,
    by_option_composite,
    by_option_text,
    coerce_expected_for_choice,
    first_match,
    parse_option_field_ref,
    resolve_field_ref,
    rewrite_option_trigger,
)

SCHEMA = {
    "title": "Lease",
    "fields": [
        {"id": "f1", "label": "Tenant type", "type": "select",
         "options": [{"value": "yes", "label": "Yes"}, {"value": "no", "label": "No"}]},
        {"id": "f2", "label": "Mode", "type": "text"},
        {"id": "f4", "label": "Region", "type": "multichoice",
         "options": [{"value": "N", "label": "North"}, {"value": "E", "label": "East"}]},
        {"id": "dup", "label": "Mode", "type": "number"},
    ],
}

INDEX = build_schema_index(SCHEMA)


class TestResolveFieldRef:
    @pytest.mark.parametrize("field_id", ["f1", "f2", "f4", "dup"])
    def test_every_field_resolves_by_its_own_id(self, field_id: str) -> None:
        found = resolve_field_ref(SCHEMA, field_id)
        assert found is not None
        assert found.id == field_id

    @pytest.mark.parametrize(
        ("ref", "expected"),
        [
            ("Region", "f4"),
            ("  tenant TYPE ", "f1"),
            ("Region: North", "f4"),
            ("f1: yes", "f1"),
            ("North", "f4"),
            ("e", "f4"),
            ("f4__opt__north", "f4"),
            ("zz__opt__east", "f4"),
        ],
    )
    def test_loose_references(self, ref: str, expected: str) -> None:
        found = resolve_field_ref(SCHEMA, ref)
        assert found is not None
        assert found.id == expected

    def test_label_collision_first_declared_wins(self) -> None:
        found = resolve_field_ref(SCHEMA, "Mode")
        assert found is not None
        assert found.id == "f2"

    @pytest.mark.parametrize("ref", [None, "", "   ", "ghost", {"id": "f1"}, ["f1"], "nope__opt__zzz"])
    def test_unresolvable(self, ref: object) -> None:
        assert resolve_field_ref(SCHEMA, ref) is None

    def test_accepts_prebuilt_index(self) -> None:
        assert build_schema_index(INDEX) is INDEX
        found = resolve_field_ref(INDEX, "Region")
        assert found is not None and found.id == "f4"


class TestStrategies:
    def test_each_strategy_in_isolation(self) -> None:
        assert by_exact_id(INDEX, "f2").id == "f2"  # type: ignore[union-attr]
        assert by_exact_id(INDEX, "Mode") is None
        assert by_label(INDEX, "region").id == "f4"  # type: ignore[union-attr]
        assert by_colon_prefix(INDEX, "Region: North").id == "f4"  # type: ignore[union-attr]
        assert by_colon_prefix(INDEX, "Region") is None
        assert by_option_text(INDEX, "east").id == "f4"  # type: ignore[union-attr]
        assert by_option_composite(INDEX, "f1__opt__x").id == "f1"  # type: ignore[union-attr]
        assert by_option_composite(INDEX, "f1") is None

    def test_first_match_order(self) -> None:
        label_first = first_match(by_label, by_exact_id)
        assert label_first(INDEX, "f2").id == "f2"  # type: ignore[union-attr]
        assert first_match()(INDEX, "f2") is None


class TestParseOptionFieldRef:
    @pytest.mark.parametrize("ref", ["f4__opt__north", "f4__opt__N", "f4__opt__North", "Region__opt__north"])
    def test_catalog_match(self, ref: str) -> None:
        desc = parse_option_field_ref(SCHEMA, ref)
        assert desc == OptionDescriptor(
            kind="option",
            field_id="f4",
            option_slug="north",
            option_value="N",
            option_label="North",
            id="f4__opt__north",
        )

    def test_unmatched_option_keeps_slug(self) -> None:
        desc = parse_option_field_ref(SCHEMA, "f4__opt__West Side")
        assert desc is not None
        assert desc.kind == "option"
        assert desc.option_value is None
        assert desc.option_slug == "west_side"
        assert desc.id == "f4__opt__west_side"

    def test_plain_field_reference(self) -> None:
        desc = parse_option_field_ref(SCHEMA, "f4")
        assert desc is not None
        assert desc.kind == "field"
        assert desc.id == "f4"

    def test_empty_option_side_is_the_field(self) -> None:
        desc = parse_option_field_ref(SCHEMA, "f4__opt__")
        assert desc is not None
        assert desc.kind == "field"

    @pytest.mark.parametrize("ref", [None, "", "nope__opt__zzz", "ghost"])
    def test_unresolvable(self, ref: object) -> None:
        assert parse_option_field_ref(SCHEMA, ref) is None


class TestRewriteAndCoerce:
    def test_multichoice_option_becomes_membership(self) -> None:
        desc = parse_option_field_ref(SCHEMA, "f4__opt__north")
        assert desc is not None
        assert rewrite_option_trigger(INDEX.by_id["f4"], desc) == ("f4", "anyOf", ("N",))

    def test_select_option_becomes_equality(self) -> None:
        desc = parse_option_field_ref(SCHEMA, "f1__opt__no")
        assert desc is not None
        assert rewrite_option_trigger(INDEX.by_id["f1"], desc) == ("f1", "equals", ("no",))

    def test_unmatched_option_uses_slug(self) -> None:
        desc = parse_option_field_ref(SCHEMA, "f1__opt__maybe")
        assert desc is not None
        assert rewrite_option_trigger(INDEX.by_id["f1"], desc) == ("f1", "equals", ("maybe",))

    def test_coerce_expected_for_choice(self) -> None:
        select = INDEX.by_id["f1"]
        text = INDEX.by_id["f2"]
        assert coerce_expected_for_choice(select, "no") == ("no",)
        assert coerce_expected_for_choice(select, None) == ()
        assert coerce_expected_for_choice(select, ["a", "b"]) == ("a", "b")
        assert coerce_expected_for_choice(select, {"b", "a"}) == ("a", "b")
        assert coerce_expected_for_choice(text, "no") == "no"
