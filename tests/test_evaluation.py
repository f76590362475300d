"""Tests for docrules.evaluation."""
from __future__ import annotations

import itertools
from datetime import date

import pytest

from docrules.evaluation import (
    evaluate_field_rules_to_visibility,
    evaluate_rules_to_visibility,
    is_option_selected,
    resolve_trigger_value,
    rule_matches_value,
    to_utc_day,
    value_matches,
)
from docrules.rule_normalizer import (
    normalize_field_rules_for_schema,
    normalize_heading_rules_for_schema,
)
from docrules.rule_types import OptionDescriptor
from docrules.schema_resolver import build_schema_index

SCHEMA = {
    "title": "Lease",
    "fields": [
        {"id": "f1", "label": "Tenant type", "type": "select",
         "options": [{"value": "yes", "label": "Yes"}, {"value": "no", "label": "No"}]},
        {"id": "f2", "label": "Mode", "type": "text"},
        {"id": "f3", "label": "Other", "type": "text"},
        {"id": "f4", "label": "Region", "type": "multichoice",
         "options": [{"value": "N", "label": "North"}, {"value": "E", "label": "East"}]},
        {"id": "start", "label": "Start date", "type": "date"},
        {"id": "rent", "label": "Monthly rent", "type": "number"},
        {"id": "pets", "label": "Pets allowed", "type": "switch"},
    ],
}

BASELINE = [
    {"id": "h-intro", "idx": 10, "label": "Introduction"},
    {"id": "h-scope", "idx": 25, "label": "Scope of Works"},
]


def _heading_rules(raw: list[dict[str, object]], baseline: object = None):
    return normalize_heading_rules_for_schema(SCHEMA, raw, baseline).rules


def _field_rules(raw: list[dict[str, object]]):
    return normalize_field_rules_for_schema(SCHEMA, raw).rules


class TestRuleMatchesValue:
    @pytest.mark.parametrize(
        ("actual", "expected"),
        [(None, True), ("", True), ([], True), ((), True),
         ("x", False), (["a"], False), (0, False), (False, False)],
    )
    def test_is_empty(self, actual: object, expected: bool) -> None:
        assert rule_matches_value("isEmpty", None, actual) is expected
        assert rule_matches_value("isNotEmpty", None, actual) is (not expected)

    def test_equals(self) -> None:
        assert rule_matches_value("equals", ("no", "maybe"), "no")
        assert rule_matches_value("equals", "3", 3.0)
        assert rule_matches_value("equals", ["b", "a"], ["a", "b"])
        assert not rule_matches_value("equals", ["a"], ["a", "b"])
        assert rule_matches_value("equals", (), None)
        assert not rule_matches_value("equals", "x", None)
        assert rule_matches_value("equals", "1 Main St", {"formatted": "1 Main St"})

    def test_not_equals(self) -> None:
        assert rule_matches_value("notEquals", "x", None)
        assert not rule_matches_value("notEquals", "x", "x")

    def test_any_of_and_all_of(self) -> None:
        assert rule_matches_value("anyOf", ("N",), ["N", "E"])
        assert rule_matches_value("anyOf", "a", "a")
        assert not rule_matches_value("anyOf", ("a",), None)
        assert rule_matches_value("allOf", ["a", "b"], ["b", "a", "c"])
        assert not rule_matches_value("allOf", ["a", "b"], ["a"])
        assert not rule_matches_value("allOf", ["a"], "a")

    def test_contains_is_text_only(self) -> None:
        assert rule_matches_value("contains", "LEASE", "Commercial lease", "text")
        assert not rule_matches_value("contains", "lease", "Commercial lease", "select")

    @pytest.mark.parametrize(
        ("op", "expected", "actual", "result"),
        [
            ("gt", 5, 6, True),
            ("gt", ["10"], "10", False),
            ("gte", ["10"], "10", True),
            ("lt", "2.5", 2, True),
            ("lte", 1, True, True),
            ("gt", "abc", 5, False),
            ("lt", 3, None, False),
            ("gt", 1, float("nan"), False),
            ("gt", 1, "", False),
        ],
    )
    def test_numeric(self, op: str, expected: object, actual: object, result: bool) -> None:
        assert rule_matches_value(op, expected, actual) is result

    def test_unknown_operator_never_matches(self) -> None:
        assert not rule_matches_value("between", [1, 2], 1)


class TestDates:
    def test_to_utc_day(self) -> None:
        assert to_utc_day("2024-03-05") == date(2024, 3, 5).toordinal()
        assert to_utc_day("2024-03-05T23:00:00+00:00") == date(2024, 3, 5).toordinal()
        assert to_utc_day("2024-03-05T23:00:00-05:00") == date(2024, 3, 6).toordinal()
        assert to_utc_day("garbage") is None
        assert to_utc_day(None) is None
        assert to_utc_day(True) is None

    def test_date_comparisons_by_day(self) -> None:
        assert value_matches("gt", "2024-01-01", "2024-03-05", "date")
        assert not value_matches("gt", "2024-01-01", "2023-12-31", "date")
        assert value_matches("equals", ["2024-01-01"], "2024-01-01T09:30:00", "date")
        assert not value_matches("lt", "2024-01-01", "not a date", "date")

    def test_other_ops_on_dates_use_generic_matcher(self) -> None:
        assert value_matches("isEmpty", None, None, "date")
        assert value_matches("anyOf", ["2024-01-01"], "2024-01-01", "date")


class TestTriggerResolution:
    def test_option_selection(self) -> None:
        desc = OptionDescriptor(kind="option", field_id="f4", option_slug="east",
                                option_value="E", option_label="East", id="f4__opt__east")
        assert is_option_selected("multichoice", ["N", "E"], desc)
        assert is_option_selected("multichoice", ["east"], desc)
        assert is_option_selected("multichoice", "E", desc)
        assert not is_option_selected("multichoice", [], desc)
        assert is_option_selected("select", "E", desc)
        assert not is_option_selected("select", None, desc)
        assert is_option_selected("text", "E", desc)

    def test_unmatched_option_compares_by_slug(self) -> None:
        desc = OptionDescriptor(kind="option", field_id="f1", option_slug="west",
                                option_value=None, option_label=None, id="f1__opt__west")
        assert is_option_selected("select", "West", desc)

    def test_resolve_trigger_value(self) -> None:
        index = build_schema_index(SCHEMA)
        clean = {"f4": ["N"], "rent": 10}
        assert resolve_trigger_value(index, clean, "rent") == (10, "number")
        assert resolve_trigger_value(index, clean, "f4__opt__north") == (True, "boolean")
        assert resolve_trigger_value(index, clean, "f4__opt__east") == (False, "boolean")
        assert resolve_trigger_value(index, clean, "ghost") == (None, "")


class TestHeadingPass:
    def test_hide_by_stable_idx(self) -> None:
        rules = _heading_rules([
            {"action": "HIDE", "fieldId": "f1", "op": "equals", "values": ["no"], "targets": [{"idx": 3}]},
        ])
        assert evaluate_rules_to_visibility(SCHEMA, {"f1": "no"}, rules) == {3: "HIDE"}
        assert evaluate_rules_to_visibility(SCHEMA, {"f1": "yes"}, rules) == {}

    def test_show_wins_in_either_order(self) -> None:
        show = {"action": "SHOW", "fieldId": "f2", "op": "equals", "values": ["x"], "targets": [{"idx": 5}]}
        hide = {"action": "HIDE", "fieldId": "f3", "op": "equals", "values": ["y"], "targets": [{"idx": 5}]}
        values = {"f2": "x", "f3": "y"}
        assert evaluate_rules_to_visibility(SCHEMA, values, _heading_rules([show, hide])) == {5: "SHOW"}
        assert evaluate_rules_to_visibility(SCHEMA, values, _heading_rules([hide, show])) == {5: "SHOW"}

    def test_targets_resolved_against_baseline(self) -> None:
        rules = _heading_rules(
            [{"action": "HIDE", "fieldId": "f2", "values": ["x"], "targets": ["h-scope", "Introduction"]}],
            BASELINE,
        )
        assert evaluate_rules_to_visibility(SCHEMA, {"f2": "x"}, rules) == {10: "HIDE", 25: "HIDE"}

    def test_heading_resolver_applies_to_unresolved_targets(self) -> None:
        rules = _heading_rules([{"action": "HIDE", "fieldId": "f2", "values": ["x"], "targets": ["Scope of Works"]}])
        assert evaluate_rules_to_visibility(SCHEMA, {"f2": "x"}, rules) == {}
        assert evaluate_rules_to_visibility(SCHEMA, {"f2": "x"}, rules, BASELINE) == {25: "HIDE"}

    def test_field_fallback_targets_are_skipped(self) -> None:
        rules = _heading_rules([{"action": "HIDE", "fieldId": "f2", "values": ["x"], "targets": []}])
        assert evaluate_rules_to_visibility(SCHEMA, {"f2": "x"}, rules) == {}

    def test_conditions_are_anded(self) -> None:
        rules = _heading_rules([{
            "action": "SHOW", "fieldId": "f2", "values": ["go"], "targets": [7],
            "conditions": [{"fieldId": "f4__opt__east"}, {"fieldId": "rent", "op": "gte", "value": 1000}],
        }])
        assert evaluate_rules_to_visibility(SCHEMA, {"f2": "go", "f4": ["E"], "rent": "1500"}, rules) == {7: "SHOW"}
        assert evaluate_rules_to_visibility(SCHEMA, {"f2": "go", "f4": ["N"], "rent": "1500"}, rules) == {}
        assert evaluate_rules_to_visibility(SCHEMA, {"f2": "go", "f4": ["E"], "rent": "900"}, rules) == {}

    def test_option_trigger_against_multichoice(self) -> None:
        rules = _heading_rules([{"action": "SHOW", "fieldId": "f4__opt__north", "targets": [2]}])
        assert evaluate_rules_to_visibility(SCHEMA, {"f4": ["N", "E"]}, rules) == {2: "SHOW"}
        assert evaluate_rules_to_visibility(SCHEMA, {"f4": ["E"]}, rules) == {}

    def test_sanitized_values_drive_matching(self) -> None:
        rules = _heading_rules([
            {"action": "HIDE", "fieldId": "f4", "op": "isEmpty", "targets": [1]},
            {"action": "HIDE", "fieldId": "pets", "op": "equals", "values": [False], "targets": [2]},
            {"action": "HIDE", "fieldId": "start", "op": "gt", "values": "2024-01-01", "targets": [3]},
        ])
        values = {"start": date(2024, 3, 5)}
        assert evaluate_rules_to_visibility(SCHEMA, values, rules) == {1: "HIDE", 2: "HIDE", 3: "HIDE"}

    def test_unknown_operator_and_empty_inputs(self) -> None:
        rules = _heading_rules([{"action": "SHOW", "fieldId": "f2", "op": "between", "values": ["a"], "targets": [1]}])
        assert evaluate_rules_to_visibility(SCHEMA, {"f2": "a"}, rules) == {}
        assert evaluate_rules_to_visibility(SCHEMA, {"f2": "a"}, None) == {}
        assert evaluate_rules_to_visibility(SCHEMA, None, []) == {}

    def test_output_sorted_and_deterministic(self) -> None:
        rules = _heading_rules([
            {"action": "HIDE", "fieldId": "f2", "values": ["x"], "targets": [9, 2, 5]},
        ])
        first = evaluate_rules_to_visibility(SCHEMA, {"f2": "x"}, rules)
        assert list(first) == [2, 5, 9]
        assert evaluate_rules_to_visibility(SCHEMA, {"f2": "x"}, rules) == first


class TestFieldPass:
    RAW = [
        {"action": "HIDE", "fieldId": "f2", "values": ["go"], "targets": ["f3"]},
        {"action": "HIDE", "hideMode": "disable", "fieldId": "f2", "values": ["go"], "targets": ["f3"]},
        {"action": "SHOW", "fieldId": "f2", "values": ["go"], "targets": ["rent"]},
        {"action": "HIDE", "fieldId": "f2", "values": ["go"], "targets": ["Monthly rent"]},
        {"action": "HIDE", "hideMode": "disable", "fieldId": "f2", "values": ["go"], "targets": ["f4__opt__east"]},
    ]

    def test_result_independent_of_rule_order(self) -> None:
        rules = _field_rules(self.RAW)
        expected = {"f3": "HIDE", "f4__opt__east": "DISABLE", "rent": "SHOW"}
        for ordering in itertools.permutations(rules):
            assert evaluate_field_rules_to_visibility(SCHEMA, {"f2": "go"}, ordering) == expected

    def test_nothing_matches(self) -> None:
        assert evaluate_field_rules_to_visibility(SCHEMA, {"f2": "stop"}, _field_rules(self.RAW)) == {}

    def test_show_beats_disable(self) -> None:
        rules = _field_rules([
            {"action": "HIDE", "hideMode": "disable", "fieldId": "f1", "values": "yes", "targets": ["f2"]},
            {"action": "SHOW", "fieldId": "f1", "values": "yes", "targets": ["f2"]},
        ])
        assert evaluate_field_rules_to_visibility(SCHEMA, {"f1": "yes"}, rules) == {"f2": "SHOW"}

    def test_fallback_target_is_the_trigger_field(self) -> None:
        rules = _field_rules([{"action": "HIDE", "fieldId": "f2", "op": "isNotEmpty", "targets": ["ghost"]}])
        assert evaluate_field_rules_to_visibility(SCHEMA, {"f2": "x"}, rules) == {"f2": "HIDE"}
