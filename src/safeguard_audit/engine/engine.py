"""
safeguard-audit — rule engine

File: src/safeguard_audit/engine/engine.py

Purpose
- Turn a request ("run everything enabled" or "run environment X's rules") into
  an ordered tuple of rule outcomes.

Normative behavior
- Enablement is fail-closed: a rule id absent from ``rules`` (or mapped to any
  value other than ``True``) is disabled.
- Environment selection intersects the named profile with rule applicability and
  enablement; a missing, empty or malformed profile falls back to the enabled set.
- Every selected rule runs inside a fault boundary. N selected rules always
  yield exactly N outcomes, in registry order, with no sorting or dedup.
- Parallel variants keep the same ordering and never cancel sibling rules.
"""

from __future__ import annotations

import time
import traceback
from collections import Counter
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Final

import structlog

from safeguard_audit.engine.registry import RuleRegistry
from safeguard_audit.engine.result import JSONValue, Result, Severity, max_severity
from safeguard_audit.engine.rule import Rule, RuleContext, lookup
from safeguard_audit.utils.concurrency import run_blocking_bounded

DEFAULT_ENVIRONMENT: Final[str] = "production"
DEFAULT_MAX_CONCURRENCY: Final[int] = 4
MAX_ERROR_TEXT: Final[int] = 2_000

ContextFactory = Callable[[str], RuleContext]


@dataclass(frozen=True, slots=True)
class RuleOutcome:
    """One engine result entry: rule identity plus its ``Result``."""

    rule: str
    description: str
    severity: Severity
    result: Result
    environment: str = ""
    duration_ms: int = 0
    errored: bool = False

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "rule": self.rule,
            "description": self.description,
            "severity": self.severity.value,
            "result": self.result.to_dict(),
            "environment": self.environment,
            "duration_ms": self.duration_ms,
            "errored": self.errored,
        }


@dataclass(frozen=True, slots=True)
class RunSummary:
    """Aggregate counters over one batch of outcomes."""

    total: int
    passed: int
    failed: int
    warnings: int
    blocking_failures: int
    errored: int
    max_severity: Severity
    counts_by_severity: dict[str, int] = field(default_factory=dict)
    fail_on_warning: bool = False

    @property
    def ok(self) -> bool:
        if self.blocking_failures:
            return False
        return not (self.fail_on_warning and self.warnings)

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "total": self.total,
            "passed": self.passed,
            "failed": self.failed,
            "warnings": self.warnings,
            "blocking_failures": self.blocking_failures,
            "errored": self.errored,
            "max_severity": self.max_severity.value,
            "counts_by_severity": dict(self.counts_by_severity),
            "ok": self.ok,
        }


class RuleEngine:
    """
    Sequential rule engine with per-rule fault isolation.

    Pluggability
    - Rules are supplied already instantiated via ``register_rule``; discovery
      lives in ``safeguard_audit.engine.discovery``.
    - The ``RuleContext`` handed to each rule can be replaced via ``context_factory``.
    """

    def __init__(
        self,
        config: Mapping[str, object] | None = None,
        *,
        app_config: Mapping[str, object] | None = None,
        base_path: Path | str | None = None,
        environ: Mapping[str, str] | None = None,
        testing: bool = False,
        clock: Callable[[], datetime] | None = None,
        registry: RuleRegistry | None = None,
        context_factory: ContextFactory | None = None,
        logger: Any | None = None,
    ) -> None:
        self._config: Mapping[str, object] = dict(config or {})
        self._app_config: Mapping[str, object] = dict(app_config or {})
        self._base_path = Path(base_path) if base_path is not None else Path.cwd()
        self._environ: Mapping[str, str] = dict(environ or {})
        self._testing = testing
        self._clock = clock if clock is not None else _utc_now
        self._logger = logger if logger is not None else structlog.get_logger(__name__)
        self._registry = registry if registry is not None else RuleRegistry(logger=self._logger)
        self._context_factory = context_factory

    @property
    def registry(self) -> RuleRegistry:
        return self._registry

    @property
    def config(self) -> Mapping[str, object]:
        return self._config

    def register_rule(self, rule: Rule) -> RuleEngine:
        self._registry.register(rule)
        return self

    def register_rules(self, rules: Iterable[Rule]) -> RuleEngine:
        for rule in rules:
            self._registry.register(rule)
        return self

    def get_rules(self) -> tuple[Rule, ...]:
        return self._registry.rules()

    def get_rule(self, rule_id: str) -> Rule | None:
        return self._registry.get(rule_id)

    def get_enabled_rules(self) -> tuple[Rule, ...]:
        enablement = self._enablement_map()
        return tuple(
            rule
            for rule_id, rule in zip(self._registry.rule_ids(), self._registry.rules(), strict=True)
            if enablement.get(rule_id) is True
        )

    def get_rules_for_environment(self, environment: str) -> tuple[Rule, ...]:
        profile = self._environment_profile(environment)
        if not profile:
            return self.get_enabled_rules()

        enablement = self._enablement_map()
        selected: list[Rule] = []
        for rule_id, rule in zip(self._registry.rule_ids(), self._registry.rules(), strict=True):
            if rule_id not in profile or enablement.get(rule_id) is not True:
                continue
            if self._applies(rule_id, rule, environment):
                selected.append(rule)
        return tuple(selected)

    def run_checks(self, environment: str | None = None) -> tuple[RuleOutcome, ...]:
        """Run every enabled rule; ``environment`` only labels the run."""

        resolved = self.resolve_environment(environment)
        return self._run_sequential(self.get_enabled_rules(), resolved)

    def run_checks_for_environment(self, environment: str) -> tuple[RuleOutcome, ...]:
        resolved = self.resolve_environment(environment)
        return self._run_sequential(self.get_rules_for_environment(resolved), resolved)

    async def run_checks_async(
        self,
        environment: str | None = None,
        *,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
    ) -> tuple[RuleOutcome, ...]:
        resolved = self.resolve_environment(environment)
        return await self._run_parallel(self.get_enabled_rules(), resolved, max_concurrency)

    async def run_checks_for_environment_async(
        self,
        environment: str,
        *,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
    ) -> tuple[RuleOutcome, ...]:
        resolved = self.resolve_environment(environment)
        return await self._run_parallel(
            self.get_rules_for_environment(resolved), resolved, max_concurrency
        )

    def resolve_environment(self, environment: str | None = None) -> str:
        """Explicit name, else ``app.env``, else config ``environment``, else production."""

        if isinstance(environment, str) and environment.strip():
            return environment.strip()
        for candidate in (
            lookup(self._app_config, "app.env"),
            self._config.get("environment"),
        ):
            if isinstance(candidate, str) and candidate.strip():
                return candidate.strip()
        return DEFAULT_ENVIRONMENT

    def build_context(self, environment: str) -> RuleContext:
        if self._context_factory is not None:
            return self._context_factory(environment)
        return RuleContext(
            environment=environment,
            config=self._config,
            app_config=self._app_config,
            base_path=self._base_path,
            environ=self._environ,
            testing=self._testing,
            now=self._clock(),
        )

    def _run_sequential(
        self, rules: Sequence[Rule], environment: str
    ) -> tuple[RuleOutcome, ...]:
        started = time.perf_counter()
        context = self._safe_context(environment)
        outcomes = tuple(self._execute(rule, context, environment) for rule in rules)
        self._log_run(outcomes, environment, started, parallel=False)
        return outcomes

    async def _run_parallel(
        self,
        rules: Sequence[Rule],
        environment: str,
        max_concurrency: int,
    ) -> tuple[RuleOutcome, ...]:
        if max_concurrency <= 0:
            raise ValueError("max_concurrency must be > 0")
        started = time.perf_counter()
        context = self._safe_context(environment)
        calls = [
            (lambda bound=rule: self._execute(bound, context, environment)) for rule in rules
        ]
        outcomes = tuple(await run_blocking_bounded(calls, max_concurrency=max_concurrency))
        self._log_run(outcomes, environment, started, parallel=True)
        return outcomes

    def _execute(
        self, rule: Rule, context: RuleContext | BaseException, environment: str
    ) -> RuleOutcome:
        start = time.perf_counter()
        rule_id = _safe_text(rule, "rule_id", default=type(rule).__name__)
        description = _safe_text(rule, "description", default=rule_id)
        self._logger.debug("safeguard_rule_started", rule_id=rule_id, environment=environment)

        try:
            if isinstance(context, BaseException):
                raise context
            severity = Severity.coerce(rule.severity)
            result = rule.check(context)
            if not isinstance(result, Result):
                raise TypeError(
                    f"check() must return Result, got {type(result).__name__}"
                )
        except (Exception, SystemExit) as exc:  # noqa: BLE001
            duration_ms = _duration_ms(start)
            self._logger.warning(
                "safeguard_rule_faulted",
                rule_id=rule_id,
                environment=environment,
                exception_type=type(exc).__name__,
                error=_clip(_exception_text(exc)),
                duration_ms=duration_ms,
            )
            return RuleOutcome(
                rule=rule_id,
                description=description,
                severity=Severity.ERROR,
                result=_fault_result(exc),
                environment=environment,
                duration_ms=duration_ms,
                errored=True,
            )

        duration_ms = _duration_ms(start)
        self._logger.debug(
            "safeguard_rule_completed",
            rule_id=rule_id,
            environment=environment,
            passed=result.passed,
            severity=result.severity.value,
            duration_ms=duration_ms,
        )
        return RuleOutcome(
            rule=rule_id,
            description=description,
            severity=severity,
            result=result,
            environment=environment,
            duration_ms=duration_ms,
        )

    def _safe_context(self, environment: str) -> RuleContext | BaseException:
        # A broken context factory degrades every selected rule to an error outcome.
        try:
            return self.build_context(environment)
        except (Exception, SystemExit) as exc:  # noqa: BLE001
            self._logger.error(
                "safeguard_context_failed",
                environment=environment,
                exception_type=type(exc).__name__,
                error=_clip(_exception_text(exc)),
            )
            return exc

    def _applies(self, rule_id: str, rule: Rule, environment: str) -> bool:
        try:
            return bool(rule.applies_to_environment(environment))
        except (Exception, SystemExit) as exc:  # noqa: BLE001
            self._logger.warning(
                "safeguard_rule_applicability_failed",
                rule_id=rule_id,
                environment=environment,
                error=_clip(_exception_text(exc)),
            )
            return False

    def _enablement_map(self) -> Mapping[str, object]:
        raw = self._config.get("rules")
        if not isinstance(raw, Mapping):
            return {}
        return raw

    def _environment_profile(self, environment: str) -> frozenset[str]:
        profiles = self._config.get("environments")
        if not isinstance(profiles, Mapping):
            return frozenset()
        raw = profiles.get(environment)
        if raw is None:
            return frozenset()
        if isinstance(raw, (str, bytes)) or not isinstance(raw, Iterable):
            self._logger.warning(
                "safeguard_environment_profile_malformed",
                environment=environment,
                value_type=type(raw).__name__,
            )
            return frozenset()
        entries = list(raw)
        rule_ids = [item.strip() for item in entries if isinstance(item, str) and item.strip()]
        if len(rule_ids) != len(entries):
            self._logger.warning(
                "safeguard_environment_profile_malformed",
                environment=environment,
                value_type="mixed",
            )
            return frozenset()
        return frozenset(rule_ids)

    def _log_run(
        self,
        outcomes: Sequence[RuleOutcome],
        environment: str,
        started: float,
        *,
        parallel: bool,
    ) -> None:
        summary = summarize(outcomes)
        self._logger.info(
            "safeguard_run_completed",
            environment=environment,
            parallel=parallel,
            duration_ms=_duration_ms(started),
            **summary.to_dict(),
        )


def summarize(
    outcomes: Iterable[RuleOutcome],
    *,
    fail_on_warning: bool = False,
) -> RunSummary:
    """Reduce outcomes to counters; ``info``/``warning`` failures are non-blocking."""

    items = tuple(outcomes)
    failed = [item for item in items if not item.result.passed]
    counts = Counter(item.result.severity.value for item in failed)
    warnings = sum(1 for item in failed if not item.result.severity.is_blocking)
    return RunSummary(
        total=len(items),
        passed=len(items) - len(failed),
        failed=len(failed),
        warnings=warnings,
        blocking_failures=len(failed) - warnings,
        errored=sum(1 for item in items if item.errored),
        max_severity=max_severity(item.result.severity for item in failed),
        counts_by_severity={key: counts[key] for key in sorted(counts)},
        fail_on_warning=fail_on_warning,
    )


def _fault_result(exc: BaseException) -> Result:
    """Error result for a faulted rule; must not raise whatever ``exc`` carries."""

    error = _clip(_exception_text(exc))
    details: dict[str, object] = {
        "error": error,
        "exception_type": type(exc).__name__,
    }
    frames = traceback.extract_tb(exc.__traceback__)
    if frames:
        details["file"] = _clip(frames[-1].filename)
        details["line"] = frames[-1].lineno
    try:
        return Result.fail(f"Rule execution failed: {error}", Severity.ERROR, details)
    except ValueError:
        return Result.fail(
            "Rule execution failed", Severity.ERROR, {"exception_type": type(exc).__name__}
        )


def _exception_text(exc: BaseException) -> str:
    try:
        return str(exc)
    except Exception:  # noqa: BLE001
        return f"<unprintable {type(exc).__name__}>"


def _clip(text: str, limit: int = MAX_ERROR_TEXT) -> str:
    return text if len(text) <= limit else f"{text[: limit - 3]}..."


def _safe_text(rule: object, attribute: str, *, default: str) -> str:
    try:
        value = getattr(rule, attribute)
    except (Exception, SystemExit):  # noqa: BLE001
        return default
    if isinstance(value, str) and value.strip():
        return value.strip()
    return default


def _duration_ms(start: float) -> int:
    return max(int(round((time.perf_counter() - start) * 1000)), 0)


def _utc_now() -> datetime:
    return datetime.now(UTC)


__all__ = [
    "DEFAULT_ENVIRONMENT",
    "DEFAULT_MAX_CONCURRENCY",
    "MAX_ERROR_TEXT",
    "ContextFactory",
    "RuleEngine",
    "RuleOutcome",
    "RunSummary",
    "summarize",
]
