"""Engine configuration.

Aggregation knobs (volatile keys, legacy payload containers, recursion
bound) live here so that supporting one more historical storage shape means
editing a JSON config, not the aggregator.
"""
from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

import orjson


@dataclass(frozen=True, slots=True)
class EngineConfig:
    """Configuration shared by the aggregation and normalization stages."""

    volatile_keys: tuple[str, ...] = ("version", "ts")
    payload_container: str = "payload"
    payload_aliases: tuple[str, ...] = ("CRONOS_PAYLOAD", "cronos_payload")
    heading_rules_key: str = "rules"
    field_rules_key: str = "fieldRules"
    max_flatten_depth: int = 32

    def __post_init__(self) -> None:
        if self.max_flatten_depth < 1:
            raise ValueError(
                f"max_flatten_depth must be >= 1, got {self.max_flatten_depth}"
            )
        if not self.payload_aliases:
            raise ValueError("payload_aliases must name at least one container")

    @property
    def rule_keys(self) -> tuple[str, str]:
        return (self.heading_rules_key, self.field_rules_key)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> EngineConfig:
        """Build a config from a mapping. Unknown keys are ignored."""
        if not isinstance(data, Mapping):
            raise ValueError("Engine config payload must be a JSON object")
        defaults = cls()
        return cls(
            volatile_keys=_str_tuple(data, "volatile_keys", defaults.volatile_keys),
            payload_container=_str_value(
                data, "payload_container", defaults.payload_container,
            ),
            payload_aliases=_str_tuple(data, "payload_aliases", defaults.payload_aliases),
            heading_rules_key=_str_value(
                data, "heading_rules_key", defaults.heading_rules_key,
            ),
            field_rules_key=_str_value(data, "field_rules_key", defaults.field_rules_key),
            max_flatten_depth=_int_value(
                data, "max_flatten_depth", defaults.max_flatten_depth,
            ),
        )

    @classmethod
    def from_json(cls, text: str | bytes) -> EngineConfig:
        """Build a config from JSON text."""
        try:
            data = orjson.loads(text)
        except orjson.JSONDecodeError as exc:
            raise ValueError(f"Engine config is not valid JSON: {exc}") from exc
        return cls.from_dict(data)


DEFAULT_CONFIG = EngineConfig()


def _str_value(data: Mapping[str, Any], key: str, default: str) -> str:
    value = data.get(key, default)
    if not isinstance(value, str) or not value:
        raise ValueError(f"Engine config '{key}' must be a non-empty string")
    return value


def _str_tuple(
    data: Mapping[str, Any], key: str, default: tuple[str, ...],
) -> tuple[str, ...]:
    value = data.get(key, default)
    if isinstance(value, str) or not isinstance(value, (list, tuple)):
        raise ValueError(f"Engine config '{key}' must be a list of strings")
    if not all(isinstance(v, str) for v in value):
        raise ValueError(f"Engine config '{key}' must be a list of strings")
    return tuple(value)


def _int_value(data: Mapping[str, Any], key: str, default: int) -> int:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"Engine config '{key}' must be an integer")
    return value
