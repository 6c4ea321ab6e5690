"""Shared parameter helpers for built-in rules."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from pathlib import Path

from safeguard_audit.engine.result import Severity
from safeguard_audit.engine.rule import RuleContext

PRODUCTION_ENVIRONMENTS = frozenset({"production", "prod"})
_TRUTHY_WORDS = frozenset({"1", "true", "yes", "on"})


def string_list(raw: object, *, default: Sequence[str] = ()) -> tuple[str, ...]:
    """Coerce ``raw`` into a tuple of non-empty strings, else ``default``."""

    if isinstance(raw, str):
        return (raw.strip(),) if raw.strip() else tuple(default)
    if isinstance(raw, Sequence) and not isinstance(raw, (bytes, bytearray)):
        values = tuple(item.strip() for item in raw if isinstance(item, str) and item.strip())
        return values
    return tuple(default)


def mapping(raw: object) -> Mapping[str, object]:
    return raw if isinstance(raw, Mapping) else {}


def positive_int(raw: object, *, default: int) -> int:
    if isinstance(raw, bool) or not isinstance(raw, int) or raw <= 0:
        return default
    return raw


def truthy(raw: object) -> bool:
    """``True``, ``1`` or one of ``1/true/yes/on`` in any case."""

    if isinstance(raw, bool):
        return raw
    if isinstance(raw, int):
        return raw == 1
    if isinstance(raw, str):
        return raw.strip().lower() in _TRUTHY_WORDS
    return False


def resolve_paths(context: RuleContext, raw: Sequence[str]) -> tuple[Path, ...]:
    return tuple(context.resolve_path(item) for item in raw)


def strictest(severities: Sequence[Severity]) -> Severity:
    """critical > error > warning, the roll-up used by issue-list rules."""

    if Severity.CRITICAL in severities:
        return Severity.CRITICAL
    if Severity.ERROR in severities:
        return Severity.ERROR
    return Severity.WARNING


__all__ = [
    "PRODUCTION_ENVIRONMENTS",
    "mapping",
    "positive_int",
    "resolve_paths",
    "string_list",
    "strictest",
    "truthy",
]
