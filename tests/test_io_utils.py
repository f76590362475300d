"""Tests for docrules.io_utils."""
from __future__ import annotations

from docrules.io_utils import canonical_json_key, to_jsonable, try_decode_json


class TestTryDecodeJson:
    def test_valid_json(self) -> None:
        ok, value = try_decode_json('[{"action": "SHOW"}]')
        assert ok
        assert value == [{"action": "SHOW"}]

    def test_bytes_input(self) -> None:
        ok, value = try_decode_json(b'{"a": 1}')
        assert ok
        assert value == {"a": 1}

    def test_invalid_json_reports_failure(self) -> None:
        assert try_decode_json("hide section 3") == (False, None)


class TestCanonicalJsonKey:
    def test_key_order_does_not_matter(self) -> None:
        assert canonical_json_key({"a": 1, "b": [1, 2]}) == canonical_json_key({"b": [1, 2], "a": 1})

    def test_different_values_differ(self) -> None:
        assert canonical_json_key({"a": 1}) != canonical_json_key({"a": 2})

    def test_sets_are_deterministic(self) -> None:
        assert canonical_json_key({"s": {"b", "a"}}) == canonical_json_key({"s": {"a", "b"}})

    def test_non_string_keys(self) -> None:
        assert canonical_json_key({1: "x"}) == canonical_json_key({1: "x"})

    def test_unknown_objects_do_not_raise(self) -> None:
        class Opaque:
            def __repr__(self) -> str:
                return "Opaque()"

        assert canonical_json_key({"o": Opaque()}) == canonical_json_key({"o": Opaque()})


class TestToJsonable:
    def test_tuples_become_lists(self) -> None:
        assert to_jsonable({"t": (1, 2)}) == {"t": [1, 2]}

    def test_nan_rendered_as_text(self) -> None:
        assert to_jsonable(float("nan")) == "nan"


class TestOversizedIntegers:
    def test_tagged_instead_of_rejected(self) -> None:
        assert to_jsonable([10**20, -(10**20), 2**63 - 1]) == ["int:100000000000000000000",
                                                             "int:-100000000000000000000",
                                                             2**63 - 1]
        assert canonical_json_key({"v": 10**20}) != canonical_json_key({"v": 10**21})
        assert canonical_json_key({10**20: 1}) == canonical_json_key({10**20: 1})
