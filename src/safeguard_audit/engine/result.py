"""
safeguard-audit — rule result model

File: src/safeguard_audit/engine/result.py

Purpose
- Define the immutable outcome of one rule check and the severity scale shared by
  the engine, the analysis toolkit and every rule.

Functional requirements
- Results are only built through named factories that pin severity to outcome.
- Details are canonicalized to JSON-safe values so callers can render or hash them.

Non-functional requirements
- Deterministic ``to_dict`` export with stable key order.
"""

from __future__ import annotations

import json
import math
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import StrEnum
from types import MappingProxyType
from typing import Final, NoReturn

JSONScalar = str | int | float | bool | None
JSONValue = JSONScalar | list["JSONValue"] | dict[str, "JSONValue"]

_MAX_TEXT_LENGTH: Final[int] = 65_536
_MAX_JSON_DEPTH: Final[int] = 16
_MAX_JSON_COLLECTION: Final[int] = 10_000


class Severity(StrEnum):
    """Severity scale, ordered from least to most severe."""

    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]

    @property
    def is_blocking(self) -> bool:
        """Failures at ``info``/``warning`` are reported but do not block by default."""

        return self.rank >= _SEVERITY_RANK[Severity.ERROR]

    @classmethod
    def coerce(cls, value: object) -> Severity:
        if isinstance(value, Severity):
            return value
        if not isinstance(value, str):
            _fail("severity", f"expected Severity or string, got {type(value).__name__}")
        normalized = value.strip().lower()
        normalized = _SEVERITY_ALIASES.get(normalized, normalized)
        try:
            return cls(normalized)
        except ValueError:
            allowed = ", ".join(item.value for item in cls)
            _fail("severity", f"invalid value {value!r}; expected one of: {allowed}")


_SEVERITY_RANK: Final[Mapping[Severity, int]] = MappingProxyType(
    {
        Severity.INFO: 0,
        Severity.WARNING: 1,
        Severity.ERROR: 2,
        Severity.HIGH: 3,
        Severity.CRITICAL: 4,
    }
)

# Advisory feeds use low/medium; they fold into the nearest non-blocking level.
_SEVERITY_ALIASES: Final[Mapping[str, str]] = MappingProxyType(
    {"low": "info", "medium": "warning", "moderate": "warning"}
)


def max_severity(values: Iterable[Severity | str], *, default: Severity = Severity.INFO) -> Severity:
    """Return the most severe entry of ``values`` (``default`` when empty)."""

    highest = default
    seen = False
    for value in values:
        parsed = Severity.coerce(value)
        if not seen or parsed.rank > highest.rank:
            highest = parsed
            seen = True
    return highest


@dataclass(frozen=True, slots=True)
class Result:
    """Immutable outcome of one rule check."""

    passed: bool
    message: str
    severity: Severity
    details: Mapping[str, JSONValue] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not isinstance(self.passed, bool):
            _fail("Result.passed", f"expected boolean, got {type(self.passed).__name__}")
        if not isinstance(self.message, str):
            _fail("Result.message", f"expected string, got {type(self.message).__name__}")
        object.__setattr__(self, "severity", Severity.coerce(self.severity))
        details = canonicalize_details(self.details, "Result.details")
        object.__setattr__(self, "details", MappingProxyType(details))

    @classmethod
    def pass_(cls, message: str, details: Mapping[str, object] | None = None) -> Result:
        return cls(True, message, Severity.INFO, _details_or_empty(details))

    @classmethod
    def fail(
        cls,
        message: str,
        severity: Severity | str = Severity.ERROR,
        details: Mapping[str, object] | None = None,
    ) -> Result:
        return cls(False, message, Severity.coerce(severity), _details_or_empty(details))

    @classmethod
    def warning(cls, message: str, details: Mapping[str, object] | None = None) -> Result:
        return cls(False, message, Severity.WARNING, _details_or_empty(details))

    @classmethod
    def critical(cls, message: str, details: Mapping[str, object] | None = None) -> Result:
        return cls(False, message, Severity.CRITICAL, _details_or_empty(details))

    @property
    def failed(self) -> bool:
        return not self.passed

    @property
    def is_blocking_failure(self) -> bool:
        return not self.passed and self.severity.is_blocking

    def to_dict(self) -> dict[str, JSONValue]:
        """Stable-key JSON-safe export."""

        return {
            "passed": self.passed,
            "message": self.message,
            "severity": self.severity.value,
            "details": _thaw(self.details),
        }

    def to_json(self) -> str:
        return canonical_json_dumps(self.to_dict())


def canonicalize_details(value: object, path: str) -> dict[str, JSONValue]:
    """Validate ``value`` as a JSON object and return a key-sorted deep copy."""

    parsed = _as_json_value(value, path)
    if not isinstance(parsed, dict):
        _fail(path, "expected JSON object")
    return parsed


def canonical_json_dumps(value: JSONValue) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def _details_or_empty(details: Mapping[str, object] | None) -> Mapping[str, object]:
    return details if details is not None else {}


def _thaw(value: object) -> JSONValue:
    if isinstance(value, Mapping):
        return {str(key): _thaw(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_thaw(item) for item in value]
    return value  # type: ignore[return-value]


def _as_json_value(value: object, path: str, *, depth: int = 0) -> JSONValue:
    if depth > _MAX_JSON_DEPTH:
        _fail(path, f"JSON nesting exceeds max depth {_MAX_JSON_DEPTH}")

    if value is None or isinstance(value, bool):
        return value
    if isinstance(value, StrEnum):
        return value.value
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if not math.isfinite(value):
            _fail(path, "float values must be finite")
        return value
    if isinstance(value, str):
        if len(value) > _MAX_TEXT_LENGTH:
            _fail(path, f"string exceeds max length {_MAX_TEXT_LENGTH}")
        return value
    if isinstance(value, Mapping):
        if len(value) > _MAX_JSON_COLLECTION:
            _fail(path, f"object size exceeds {_MAX_JSON_COLLECTION}")
        parsed: dict[str, JSONValue] = {}
        for key in sorted(value, key=str):
            if not isinstance(key, str):
                _fail(path, f"object key must be string, got {type(key).__name__}")
            parsed[key] = _as_json_value(value[key], f"{path}.{key}", depth=depth + 1)
        return parsed
    if isinstance(value, Sequence) and not isinstance(value, (str, bytes, bytearray)):
        if len(value) > _MAX_JSON_COLLECTION:
            _fail(path, f"array length exceeds {_MAX_JSON_COLLECTION}")
        return [
            _as_json_value(item, f"{path}[{index}]", depth=depth + 1)
            for index, item in enumerate(value)
        ]

    _fail(path, f"value is not JSON-serializable ({type(value).__name__})")


def _fail(path: str, message: str) -> NoReturn:
    raise ValueError(f"{path}: {message}")


__all__ = [
    "JSONScalar",
    "JSONValue",
    "Result",
    "Severity",
    "canonical_json_dumps",
    "canonicalize_details",
    "max_severity",
]
