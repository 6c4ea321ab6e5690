"""
safeguard-audit — programmatic audit entrypoint

File: src/safeguard_audit/audit.py

Purpose
- Wire a loaded audit config, the built-in rules and any custom rule
  directories into a ``RuleEngine`` and run one audit.

Functional requirements
- Built-in rules register first, in catalog order; discovered custom rules
  follow in discovery order. A custom rule reusing a built-in id replaces it.
- The report carries outcomes, a summary and a deterministic exit code:
  0 when no blocking failure (and, with ``fail_on_warning``, no warning), else 1.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from enum import IntEnum
from pathlib import Path
from typing import Any

import structlog

from safeguard_audit.config.schema import assert_valid_config, default_config, merge_config
from safeguard_audit.engine.discovery import DiscoverySkip, discover_rules
from safeguard_audit.engine.engine import RuleEngine, RuleOutcome, RunSummary, summarize
from safeguard_audit.engine.result import JSONValue
from safeguard_audit.observability.logging import audit_scope
from safeguard_audit.rules import builtin_rules


class ExitCode(IntEnum):
    """Deterministic process exit-code contract for embedding callers."""

    SUCCESS = 0
    RULES_FAILED = 1
    CONFIG_ERROR = 2


@dataclass(frozen=True, slots=True)
class AuditReport:
    environment: str
    outcomes: tuple[RuleOutcome, ...]
    summary: RunSummary
    skipped_custom_rules: tuple[DiscoverySkip, ...] = ()

    @property
    def exit_code(self) -> ExitCode:
        return ExitCode.SUCCESS if self.summary.ok else ExitCode.RULES_FAILED

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "environment": self.environment,
            "summary": self.summary.to_dict(),
            "outcomes": [item.to_dict() for item in self.outcomes],
            "skipped_custom_rules": [
                {"path": item.path, "target": item.target, "reason": item.reason}
                for item in self.skipped_custom_rules
            ],
        }


def build_engine(
    config: Mapping[str, object] | None = None,
    *,
    app_config: Mapping[str, object] | None = None,
    base_path: Path | str | None = None,
    environ: Mapping[str, str] | None = None,
    testing: bool = False,
    logger: Any | None = None,
) -> tuple[RuleEngine, tuple[DiscoverySkip, ...]]:
    """Return an engine loaded with built-in and custom rules, plus discovery skips."""

    effective = assert_valid_config(merge_config(default_config(), config or {}))
    engine = RuleEngine(
        effective,
        app_config=app_config,
        base_path=base_path,
        environ=environ,
        testing=testing,
        logger=logger,
    )
    engine.register_rules(builtin_rules())

    custom_paths = [Path(item) for item in effective.get("custom_rule_paths", [])]
    if not custom_paths:
        return engine, ()
    discovery = discover_rules(custom_paths, logger=logger)
    engine.register_rules(discovery.rules)
    return engine, discovery.skipped


def run_audit(
    config: Mapping[str, object] | None = None,
    *,
    environment: str | None = None,
    app_config: Mapping[str, object] | None = None,
    base_path: Path | str | None = None,
    environ: Mapping[str, str] | None = None,
    testing: bool = False,
    fail_on_warning: bool = False,
    logger: Any | None = None,
) -> AuditReport:
    """Run every enabled rule, or the named environment's profile when given."""

    log = logger if logger is not None else structlog.get_logger(__name__)
    engine, skipped = build_engine(
        config,
        app_config=app_config,
        base_path=base_path,
        environ=environ,
        testing=testing,
        logger=logger,
    )
    for item in skipped:
        log.warning("custom_rule_skipped", path=item.path, target=item.target, reason=item.reason)

    resolved = engine.resolve_environment(environment)
    with audit_scope(environment=resolved):
        if environment is None:
            outcomes = engine.run_checks(resolved)
        else:
            outcomes = engine.run_checks_for_environment(resolved)

    return AuditReport(
        environment=resolved,
        outcomes=outcomes,
        summary=summarize(outcomes, fail_on_warning=fail_on_warning),
        skipped_custom_rules=skipped,
    )


__all__ = ["AuditReport", "ExitCode", "build_engine", "run_audit"]
