"""
safeguard-audit — filesystem rule discovery

File: src/safeguard_audit/engine/discovery.py

Purpose
- Load custom rules from a directory of ``.py`` files, outside the engine, and
  return instances ready for ``RuleEngine.register_rules``.

Functional requirements
- Every concrete class declared in a loaded file that satisfies the ``Rule``
  protocol and has a zero-arg constructor is instantiated once.
- A file that fails to import, or a class that fails to instantiate, is skipped
  with a logged warning; discovery itself never raises for those.
- Output order is deterministic: sorted file path, then class declaration order.
"""

from __future__ import annotations

import inspect
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import structlog

from safeguard_audit.engine.registry import validate_zero_arg_constructor
from safeguard_audit.engine.rule import Rule
from safeguard_audit.utils.imports import load_module_from_path

_MODULE_PREFIX = "_safeguard_custom_rule"


@dataclass(frozen=True, slots=True)
class DiscoverySkip:
    path: str
    target: str
    reason: str


@dataclass(frozen=True, slots=True)
class DiscoveryReport:
    rules: tuple[Rule, ...]
    skipped: tuple[DiscoverySkip, ...] = ()


def discover_rules(
    directories: Iterable[str | Path],
    *,
    logger: Any | None = None,
) -> DiscoveryReport:
    log = logger if logger is not None else structlog.get_logger(__name__)
    rules: list[Rule] = []
    skipped: list[DiscoverySkip] = []

    for directory in directories:
        root = Path(directory)
        if not root.is_dir():
            log.debug("rule_directory_missing", directory=str(root))
            continue
        for file_path in sorted(root.glob("*.py")):
            if file_path.name.startswith("_"):
                continue
            _load_file(file_path, rules, skipped, log)

    log.info("rule_discovery_completed", discovered=len(rules), skipped=len(skipped))
    return DiscoveryReport(rules=tuple(rules), skipped=tuple(skipped))


def load_rules_from_directory(
    directory: str | Path,
    *,
    logger: Any | None = None,
) -> tuple[Rule, ...]:
    return discover_rules([directory], logger=logger).rules


def _load_file(
    file_path: Path,
    rules: list[Rule],
    skipped: list[DiscoverySkip],
    log: Any,
) -> None:
    try:
        module = load_module_from_path(file_path, prefix=_MODULE_PREFIX)
    except (Exception, SystemExit) as exc:  # noqa: BLE001
        reason = f"{type(exc).__name__}: {exc}"
        skipped.append(DiscoverySkip(path=file_path.as_posix(), target="<module>", reason=reason))
        log.warning("rule_module_import_failed", path=str(file_path), error=reason)
        return

    for cls in _declared_classes(module):
        if inspect.isabstract(cls) or not _looks_like_rule(cls):
            continue
        try:
            validate_zero_arg_constructor(cls, rule_id=cls.__qualname__)
            instance = cls()
        except (Exception, SystemExit) as exc:  # noqa: BLE001
            reason = f"{type(exc).__name__}: {exc}"
            skipped.append(
                DiscoverySkip(path=file_path.as_posix(), target=cls.__qualname__, reason=reason)
            )
            log.warning(
                "rule_instantiation_failed",
                path=str(file_path),
                rule_class=cls.__qualname__,
                error=reason,
            )
            continue
        if not isinstance(instance, Rule):
            continue
        rules.append(instance)


def _declared_classes(module: object) -> list[type]:
    name = getattr(module, "__name__", "")
    namespace = vars(module)
    # vars() preserves definition order.
    return [
        value
        for value in namespace.values()
        if inspect.isclass(value) and value.__module__ == name
    ]


def _looks_like_rule(cls: type) -> bool:
    return all(
        callable(getattr(cls, method, None)) for method in ("check", "applies_to_environment")
    ) and hasattr(cls, "rule_id")


__all__ = [
    "DiscoveryReport",
    "DiscoverySkip",
    "discover_rules",
    "load_rules_from_directory",
]
