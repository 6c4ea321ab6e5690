"""
safeguard-audit — rule capability contract

File: src/safeguard_audit/engine/rule.py

Purpose
- Define the ``Rule`` protocol implemented by built-in and external rules.
- Define ``RuleContext``: the explicit inputs every rule receives instead of
  reaching into ambient global state.

Functional requirements
- A rule exposes a stable id, a description, a default severity, an environment
  applicability predicate and a ``check`` operation returning a ``Result``.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Protocol, runtime_checkable

from safeguard_audit.engine.result import Result, Severity

_MISSING = object()


@dataclass(frozen=True, slots=True)
class RuleContext:
    """Normalized rule invocation context."""

    environment: str
    config: Mapping[str, object] = field(default_factory=dict)
    app_config: Mapping[str, object] = field(default_factory=dict)
    base_path: Path = field(default_factory=Path.cwd)
    environ: Mapping[str, str] = field(default_factory=dict)
    testing: bool = False
    now: datetime | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.environment, str):
            raise ValueError(
                f"RuleContext.environment: expected string, got {type(self.environment).__name__}"
            )
        object.__setattr__(self, "environment", self.environment.strip())
        object.__setattr__(self, "base_path", Path(self.base_path))

    @property
    def is_production(self) -> bool:
        return self.environment in {"production", "prod"}

    def setting(self, dotted_key: str, default: object = None) -> object:
        """Look up ``dotted_key`` (``"database.connections"``) in the application config."""

        return lookup(self.app_config, dotted_key, default)

    def audit_setting(self, dotted_key: str, default: object = None) -> object:
        """Look up ``dotted_key`` in the audit configuration."""

        return lookup(self.config, dotted_key, default)

    def resolve_path(self, raw: str | Path) -> Path:
        candidate = Path(raw).expanduser()
        if candidate.is_absolute():
            return candidate
        return self.base_path / candidate


@runtime_checkable
class Rule(Protocol):
    """Rule protocol implemented by built-ins and external plugins."""

    rule_id: str
    description: str
    severity: Severity

    def applies_to_environment(self, environment: str) -> bool: ...

    def check(self, context: RuleContext) -> Result: ...


def lookup(payload: Mapping[str, object], dotted_key: str, default: object = None) -> object:
    cursor: object = payload
    for part in dotted_key.split("."):
        if not isinstance(cursor, Mapping):
            return default
        cursor = cursor.get(part, _MISSING)
        if cursor is _MISSING:
            return default
    return cursor


__all__ = ["Rule", "RuleContext", "lookup"]
