"""
safeguard-audit — audit config loader.

File: src/safeguard_audit/config/loader.py

Purpose
- Build the effective audit config by layering built-in defaults, an optional
  ``safeguard.toml``, ``SAFEGUARD_*`` environment variables and caller overrides.

Functional requirements
- Later layers win: overrides > environment > file > defaults.
- An explicitly named config file must exist; the implicit ``./safeguard.toml``
  is optional.
- Every scalar or string-list leaf of the file-level config is bindable from
  the environment. Rule ids map with hyphens replaced, so
  ``SAFEGUARD_RULES_CSRF_ENABLED=false`` disables ``rules.csrf-enabled``.
  String lists are comma separated.
- Custom rule directories and the vulnerability table path are anchored to the
  directory holding the config file. Scan, entity and manifest paths stay
  relative to the audited app root.
- Each layer is validated before the next one is applied.
"""

from __future__ import annotations

import json
import os
import tomllib
from collections.abc import Callable, Iterator, Mapping
from pathlib import Path
from typing import Any, Final, NamedTuple

from safeguard_audit.config.schema import (
    PATH_FIELDS,
    PATH_LIST_FIELDS,
    assert_valid_config,
    default_config,
    merge_config,
    redact_config,
)

DEFAULT_CONFIG_FILE: Final[str] = "safeguard.toml"
ENV_PREFIX: Final[str] = "SAFEGUARD_"

_TRUTHY: Final[frozenset[str]] = frozenset({"1", "true", "t", "yes", "y", "on"})
_FALSY: Final[frozenset[str]] = frozenset({"0", "false", "f", "no", "n", "off"})

# Optional leaves absent from the defaults that should still be settable.
_EXTRA_STRING_KEYS: Final[tuple[tuple[str, ...], ...]] = (("dependencies", "vulnerability_table"),)


class ConfigLoadError(ValueError):
    """Raised when config cannot be loaded or overrides cannot be coerced."""


class _EnvBinding(NamedTuple):
    key: tuple[str, ...]
    coerce: Callable[[str, str], object]


def load_config(
    config_path: str | Path | None = None,
    *,
    cli_overrides: Mapping[str, object] | None = None,
    environ: Mapping[str, str] | None = None,
) -> dict[str, Any]:
    """Return the validated effective config for ``config_path``.

    ``environ`` defaults to ``os.environ``; pass an explicit mapping in tests.
    """

    if config_path is None:
        source = Path.cwd() / DEFAULT_CONFIG_FILE
    else:
        source = Path(config_path).expanduser()
    source = source.resolve()

    layered = assert_valid_config(
        merge_config(default_config(), _read_toml(source, required=config_path is not None))
    )

    env = os.environ if environ is None else environ
    layered = merge_config(layered, _environment_layer(layered, env))
    layered = merge_config(layered, _override_layer(cli_overrides or {}))
    layered = assert_valid_config(layered)

    return assert_valid_config(normalize_paths(layered, base_dir=source.parent))


def load_config_file(path: str | Path) -> dict[str, Any]:
    """Load config from a specific TOML file path."""

    return load_config(path)


def normalize_paths(config: Mapping[str, object], *, base_dir: Path) -> dict[str, Any]:
    """Return a copy of ``config`` with config-relative path fields made absolute."""

    out = merge_config({}, config)
    for key in PATH_FIELDS:
        raw = _lookup(out, key)
        if isinstance(raw, str):
            _assign(out, key, _anchor(raw, base_dir))
    for key in PATH_LIST_FIELDS:
        raw = _lookup(out, key)
        if isinstance(raw, list):
            _assign(
                out,
                key,
                [_anchor(item, base_dir) if isinstance(item, str) else item for item in raw],
            )
    return out


def effective_config(config: Mapping[str, object]) -> dict[str, Any]:
    """Return a redacted effective config representation suitable for logging."""

    return redact_config(config)


def dump_effective_config(config: Mapping[str, object]) -> str:
    return json.dumps(
        effective_config(config), sort_keys=True, separators=(",", ":"), ensure_ascii=False
    )


def _read_toml(path: Path, *, required: bool) -> dict[str, Any]:
    if not path.is_file():
        if required:
            raise ConfigLoadError(f"config file not found: {path}")
        return {}
    try:
        document = tomllib.loads(path.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as exc:
        raise ConfigLoadError(f"invalid TOML in {path}: {exc}") from exc
    except (OSError, UnicodeDecodeError) as exc:
        raise ConfigLoadError(f"unable to read config file {path}: {exc}") from exc
    return document


def _environment_layer(config: Mapping[str, object], env: Mapping[str, str]) -> dict[str, Any]:
    layer: dict[str, Any] = {}
    bindings = _bindings_for(config)
    for name in sorted(bindings):
        if name not in env:
            continue
        binding = bindings[name]
        _assign(layer, binding.key, binding.coerce(env[name].strip(), name))
    return layer


def _bindings_for(config: Mapping[str, object]) -> dict[str, _EnvBinding]:
    bindings: dict[str, _EnvBinding] = {}
    for key, value in _leaves(config):
        coerce = _coercer_for(value, key)
        if coerce is not None:
            bindings[env_name_for(key)] = _EnvBinding(key, coerce)
    for key in _EXTRA_STRING_KEYS:
        bindings.setdefault(env_name_for(key), _EnvBinding(key, _as_text))
    return bindings


def _leaves(
    payload: Mapping[str, object], parent: tuple[str, ...] = ()
) -> Iterator[tuple[tuple[str, ...], object]]:
    for name, value in payload.items():
        key = (*parent, name)
        if isinstance(value, Mapping):
            yield from _leaves(value, key)
        else:
            yield key, value


def _coercer_for(value: object, key: tuple[str, ...]) -> Callable[[str, str], object] | None:
    dotted = ".".join(key)
    if isinstance(value, bool):
        return lambda raw, name: _as_flag(raw, name, dotted)
    if isinstance(value, int):
        return lambda raw, name: _as_int(raw, name, dotted)
    if isinstance(value, str):
        return _as_text
    if isinstance(value, list) and all(isinstance(item, str) for item in value):
        return _as_csv
    return None


def _as_text(raw: str, _name: str) -> str:
    return raw


def _as_csv(raw: str, _name: str) -> list[str]:
    return [part.strip() for part in raw.split(",") if part.strip()]


def _as_int(raw: str, name: str, dotted: str) -> int:
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigLoadError(f"{name} -> {dotted} must be an integer, got {raw!r}") from exc


def _as_flag(raw: str, name: str, dotted: str) -> bool:
    word = raw.lower()
    if word in _TRUTHY:
        return True
    if word in _FALSY:
        return False
    raise ConfigLoadError(
        f"{name} -> {dotted} must be a boolean (true/false/1/0/yes/no/on/off), got {raw!r}"
    )


def _override_layer(overrides: Mapping[str, object]) -> dict[str, Any]:
    """Expand dotted keys (``scan.max_file_size_bytes``) into nested tables."""

    layer: dict[str, Any] = {}
    for raw_key in sorted(overrides):
        key = tuple(part for part in raw_key.split(".") if part)
        if not key:
            raise ConfigLoadError(f"invalid CLI override key {raw_key!r}")
        value = overrides[raw_key]
        if isinstance(value, Mapping):
            value = merge_config(_lookup_table(layer, key), value)
        _assign(layer, key, value)
    return layer


def _lookup_table(payload: Mapping[str, object], key: tuple[str, ...]) -> dict[str, Any]:
    found = _lookup(payload, key)
    return dict(found) if isinstance(found, Mapping) else {}


def _lookup(payload: Mapping[str, object], key: tuple[str, ...]) -> object | None:
    node: object = payload
    for part in key:
        if not isinstance(node, Mapping) or part not in node:
            return None
        node = node[part]
    return node


def _assign(payload: dict[str, Any], key: tuple[str, ...], value: object) -> None:
    *parents, leaf = key
    node = payload
    for part in parents:
        child = node.get(part)
        if not isinstance(child, dict):
            child = node[part] = {}
        node = child
    node[leaf] = value


def _anchor(raw: str, base_dir: Path) -> str:
    path = Path(os.path.expandvars(raw)).expanduser()
    if not path.is_absolute():
        path = base_dir / path
    return Path(os.path.normpath(path)).as_posix()


def env_name_for(key: tuple[str, ...]) -> str:
    """``("rules", "csrf-enabled")`` -> ``SAFEGUARD_RULES_CSRF_ENABLED``."""

    return ENV_PREFIX + "_".join(part.upper().replace("-", "_") for part in key)


__all__ = [
    "ConfigLoadError",
    "DEFAULT_CONFIG_FILE",
    "ENV_PREFIX",
    "dump_effective_config",
    "effective_config",
    "env_name_for",
    "load_config",
    "load_config_file",
    "normalize_paths",
]
