"""
safeguard-audit — rule registry

File: src/safeguard_audit/engine/registry.py

Purpose
- ``RuleRegistry``: id -> rule instance mapping owned by the engine.
- ``RuleCatalog``: factory catalogue for built-in and external rule classes, with
  a decorator for deterministic built-in registration.

Normative behavior
- Registering a rule whose id is already present replaces the previous instance
  (last registration wins) and emits a ``rule_registration_replaced`` warning.
- Catalog registration is strict: duplicate factory ids are rejected.
"""

from __future__ import annotations

import inspect
from collections.abc import Callable, Iterator, Mapping
from dataclasses import dataclass
from typing import Any, Literal, NoReturn, TypeVar

import structlog

from safeguard_audit.engine.rule import Rule

RuleSource = Literal["builtin", "external"]
RuleFactory = Callable[[], Rule]

_MAX_RULE_ID_LENGTH = 128


class RuleRegistry:
    """Insertion-ordered rule registry keyed by rule id."""

    def __init__(self, *, logger: Any | None = None) -> None:
        self._rules: dict[str, Rule] = {}
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    def register(self, rule: Rule) -> Rule | None:
        """Add or replace ``rule``; return the replaced instance, if any."""

        if not isinstance(rule, Rule):
            _fail("rule", f"{type(rule).__name__} does not implement the Rule protocol")
        rule_id = normalize_rule_id(rule.rule_id)

        previous = self._rules.get(rule_id)
        if previous is not None and previous is not rule:
            self._logger.warning(
                "rule_registration_replaced",
                rule_id=rule_id,
                previous=type(previous).__qualname__,
                replacement=type(rule).__qualname__,
            )
        self._rules[rule_id] = rule
        return previous if previous is not rule else None

    def get(self, rule_id: str) -> Rule | None:
        return self._rules.get(rule_id.strip())

    def contains(self, rule_id: str) -> bool:
        return rule_id.strip() in self._rules

    def rule_ids(self) -> tuple[str, ...]:
        return tuple(self._rules)

    def rules(self) -> tuple[Rule, ...]:
        return tuple(self._rules.values())

    def __contains__(self, rule_id: object) -> bool:
        return isinstance(rule_id, str) and self.contains(rule_id)

    def __iter__(self) -> Iterator[Rule]:
        return iter(tuple(self._rules.values()))

    def __len__(self) -> int:
        return len(self._rules)


@dataclass(frozen=True, slots=True)
class RuleRegistration:
    rule_id: str
    source: RuleSource
    factory: RuleFactory


class RuleCatalog:
    """Deterministic rule factory catalogue."""

    def __init__(self) -> None:
        self._registrations: dict[str, RuleRegistration] = {}

    def register(self, rule_id: str, factory: RuleFactory, *, source: RuleSource) -> None:
        normalized_id = normalize_rule_id(rule_id)
        if not callable(factory):
            _fail("factory", "must be callable")

        existing = self._registrations.get(normalized_id)
        if existing is not None:
            _fail(
                "rule_id",
                f"already registered by {existing.source} rule '{existing.rule_id}'",
            )

        self._registrations[normalized_id] = RuleRegistration(
            rule_id=normalized_id,
            source=source,
            factory=factory,
        )

    def register_builtin(self, rule_id: str, factory: RuleFactory) -> None:
        self.register(rule_id, factory, source="builtin")

    def register_external(self, rule_id: str, factory: RuleFactory) -> None:
        self.register(rule_id, factory, source="external")

    def register_external_plugins(self, plugins: Mapping[str, RuleFactory]) -> None:
        for rule_id in sorted(plugins):
            self.register_external(rule_id, plugins[rule_id])

    def contains(self, rule_id: str) -> bool:
        return normalize_rule_id(rule_id) in self._registrations

    def get_registration(self, rule_id: str) -> RuleRegistration:
        normalized_id = normalize_rule_id(rule_id)
        registration = self._registrations.get(normalized_id)
        if registration is None:
            known = ", ".join(self.registered_ids())
            _fail("rule_id", f"unknown rule {normalized_id!r}; registered: [{known}]")
        return registration

    def create(self, rule_id: str) -> Rule:
        rule = self.get_registration(rule_id).factory()
        if not isinstance(rule, Rule):
            _fail("factory", f"'{rule_id}' factory did not return a Rule")
        return rule

    def create_all(self) -> tuple[Rule, ...]:
        """Instantiate every catalogued rule in registration order."""

        return tuple(self.create(rule_id) for rule_id in self._registrations)

    def registered_ids(self) -> tuple[str, ...]:
        return tuple(self._registrations)

    def registrations(self) -> tuple[RuleRegistration, ...]:
        return tuple(self._registrations.values())


RuleType = TypeVar("RuleType")

DEFAULT_RULE_CATALOG = RuleCatalog()


def register_builtin_rule(
    rule_id: str,
    *,
    catalog: RuleCatalog | None = None,
) -> Callable[[type[RuleType]], type[RuleType]]:
    """Decorator that catalogues built-in rule classes in declaration order."""

    target = catalog if catalog is not None else DEFAULT_RULE_CATALOG
    normalized_id = normalize_rule_id(rule_id)

    def decorator(rule_cls: type[RuleType]) -> type[RuleType]:
        declared = getattr(rule_cls, "rule_id", None)
        if declared != normalized_id:
            _fail(
                "rule_cls",
                f"{rule_cls.__qualname__}.rule_id is {declared!r}, expected {normalized_id!r}",
            )
        validate_zero_arg_constructor(rule_cls, rule_id=normalized_id)
        target.register_builtin(normalized_id, factory=lambda: rule_cls())  # type: ignore[arg-type,return-value]
        return rule_cls

    return decorator


def normalize_rule_id(value: object) -> str:
    if not isinstance(value, str):
        _fail("rule_id", f"expected string, got {type(value).__name__}")
    normalized = value.strip()
    if not normalized:
        _fail("rule_id", "must not be empty")
    if len(normalized) > _MAX_RULE_ID_LENGTH:
        _fail("rule_id", f"must be <= {_MAX_RULE_ID_LENGTH} characters")
    return normalized


def validate_zero_arg_constructor(rule_cls: type[object], *, rule_id: str) -> None:
    signature = inspect.signature(rule_cls)
    for parameter in signature.parameters.values():
        if (
            parameter.kind
            in {
                inspect.Parameter.POSITIONAL_ONLY,
                inspect.Parameter.POSITIONAL_OR_KEYWORD,
                inspect.Parameter.KEYWORD_ONLY,
            }
            and parameter.default is inspect.Signature.empty
        ):
            _fail(
                "rule_cls",
                (
                    f"{rule_id!r} rule requires a zero-arg constructor; "
                    f"parameter '{parameter.name}' is required"
                ),
            )


def _fail(path: str, message: str) -> NoReturn:
    raise ValueError(f"{path}: {message}")


__all__ = [
    "DEFAULT_RULE_CATALOG",
    "RuleCatalog",
    "RuleFactory",
    "RuleRegistration",
    "RuleRegistry",
    "RuleSource",
    "normalize_rule_id",
    "register_builtin_rule",
    "validate_zero_arg_constructor",
]
