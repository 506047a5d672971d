from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any


MAX_REPORTED_DIFFERENCES = 5
VALUE_PREVIEW_CHARS = 60
_MISSING = object()


@dataclass(slots=True)
class KeyDifference:
    key: str
    expected: str
    actual: str


@dataclass(slots=True)
class StateComparison:
    matches: bool
    differences: list[KeyDifference] = field(default_factory=list)
    remaining: int = 0

    @property
    def total_differences(self) -> int:
        return len(self.differences) + self.remaining

    def describe(self) -> list[str]:
        lines = [
            f"DIFF: {diff.key}: expected={diff.expected} actual={diff.actual}"
            for diff in self.differences
        ]
        if self.remaining:
            lines.append(f"... and {self.remaining} more differences")
        return lines


def canonical_json(value: Any) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def _preview(value: Any) -> str:
    if value is _MISSING:
        return "undefined"
    return canonical_json(value)[:VALUE_PREVIEW_CHARS]


def _as_mapping(value: Any) -> dict[str, Any]:
    if value is None:
        return {}
    if isinstance(value, dict):
        return value
    return {"": value}


def compare_states(
    expected: Any,
    actual: Any,
    *,
    max_reported: int = MAX_REPORTED_DIFFERENCES,
) -> StateComparison:
    """Structural comparison of two decoded state snapshots.

    Key order never matters. On mismatch every differing top-level key is
    counted; only the first `max_reported` (sorted by key) are kept.
    """
    expected_map = _as_mapping(expected)
    actual_map = _as_mapping(actual)
    if expected_map == actual_map:
        return StateComparison(matches=True)

    differences: list[KeyDifference] = []
    remaining = 0
    for key in sorted(set(expected_map) | set(actual_map)):
        expected_value = expected_map.get(key, _MISSING)
        actual_value = actual_map.get(key, _MISSING)
        if expected_value is not _MISSING and actual_value is not _MISSING:
            if canonical_json(expected_value) == canonical_json(actual_value):
                continue
        if len(differences) < max_reported:
            differences.append(
                KeyDifference(key=key, expected=_preview(expected_value), actual=_preview(actual_value))
            )
        else:
            remaining += 1

    if not differences:
        # Values differed only in container type (e.g. list vs tuple).
        return StateComparison(matches=True)
    return StateComparison(matches=False, differences=differences, remaining=remaining)
