"""
safeguard-audit — unit tests for rule results and severities

File: tests/unit/engine/test_result.py

Purpose
- Validate the immutable ``Result`` value, its constructors and JSON export.
- Validate severity ordering, aliases and the blocking threshold.
"""

from __future__ import annotations

import json

import pytest
from hypothesis import given
from hypothesis import strategies as st

from safeguard_audit.engine.result import Result, Severity, max_severity


def test_pass_constructor_is_info_and_passed() -> None:
    result = Result.pass_("All good", {"checked": 3})

    assert result.passed is True
    assert result.failed is False
    assert result.severity is Severity.INFO
    assert result.details == {"checked": 3}
    assert result.is_blocking_failure is False


@pytest.mark.parametrize(
    ("factory", "expected"),
    [
        (lambda: Result.warning("w"), Severity.WARNING),
        (lambda: Result.critical("c"), Severity.CRITICAL),
        (lambda: Result.fail("f"), Severity.ERROR),
        (lambda: Result.fail("f", "high"), Severity.HIGH),
    ],
)
def test_failure_constructors_set_severity(factory: object, expected: Severity) -> None:
    result = factory()  # type: ignore[operator]

    assert result.passed is False
    assert result.severity is expected


def test_result_is_immutable_and_details_are_frozen() -> None:
    source = {"issues": [{"file": "a.py"}]}
    result = Result.fail("bad", Severity.ERROR, source)
    source["issues"].append({"file": "b.py"})

    assert result.details["issues"] == [{"file": "a.py"}]
    with pytest.raises(AttributeError):
        result.message = "changed"  # type: ignore[misc]
    with pytest.raises(TypeError):
        result.details["new"] = 1  # type: ignore[index]


def test_to_dict_and_to_json_are_stable() -> None:
    result = Result.fail("bad", "critical", {"b": 2, "a": 1})

    assert result.to_dict() == {
        "passed": False,
        "message": "bad",
        "severity": "critical",
        "details": {"a": 1, "b": 2},
    }
    assert json.loads(result.to_json())["details"] == {"a": 1, "b": 2}
    assert result.to_json() == Result.fail("bad", "critical", {"a": 1, "b": 2}).to_json()


def test_details_must_be_json_serializable() -> None:
    with pytest.raises(ValueError, match="Result.details.when"):
        Result.fail("bad", Severity.ERROR, {"when": object()})

    with pytest.raises(ValueError, match="finite"):
        Result.fail("bad", Severity.ERROR, {"ratio": float("nan")})


def test_invalid_severity_is_rejected() -> None:
    with pytest.raises(ValueError, match="severity"):
        Result.fail("bad", "catastrophic")


def test_severity_ordering_and_blocking_threshold() -> None:
    ordered = [Severity.INFO, Severity.WARNING, Severity.ERROR, Severity.HIGH, Severity.CRITICAL]

    assert [item.rank for item in ordered] == sorted(item.rank for item in ordered)
    assert [item.is_blocking for item in ordered] == [False, False, True, True, True]


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("LOW", Severity.INFO),
        ("medium", Severity.WARNING),
        ("moderate", Severity.WARNING),
        (" Critical ", Severity.CRITICAL),
    ],
)
def test_severity_aliases(raw: str, expected: Severity) -> None:
    assert Severity.coerce(raw) is expected


def test_max_severity_uses_default_for_empty_input() -> None:
    assert max_severity([]) is Severity.INFO
    assert max_severity([], default=Severity.WARNING) is Severity.WARNING
    assert max_severity(["warning", Severity.CRITICAL, "error"]) is Severity.CRITICAL


@given(st.lists(st.sampled_from(list(Severity)), min_size=1))
def test_max_severity_matches_highest_rank(values: list[Severity]) -> None:
    assert max_severity(values).rank == max(item.rank for item in values)
