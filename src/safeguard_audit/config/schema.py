"""
safeguard-audit — configuration schema and validation.

File: src/safeguard_audit/config/schema.py

Purpose
- Built-in audit defaults (rule enablement, environment profiles, scanner,
  entity, dependency and CSRF inputs) and strict validation of user config.

Functional requirements
- Every failure is reported with a dotted field path, e.g.
  ``rules.csrf-enabled: expected boolean, got int``.
- Enablement values are booleans; profiles are lists of kebab-case rule ids.
- Secret-looking keys are rejected outright; audit config never holds credentials.
"""

from __future__ import annotations

import copy
import re
from collections.abc import Callable, Collection, Iterable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Final, Literal, NotRequired, TypedDict

_CAMEL_CASE_BOUNDARY = re.compile(r"([a-z0-9])([A-Z])")
_NON_ALNUM = re.compile(r"[^a-z0-9]+")
_RULE_ID_PATTERN = re.compile(r"^[a-z0-9][a-z0-9-]*$")
_ENV_VAR_PATTERN = re.compile(r"^[A-Z_][A-Z0-9_]*$")

_SENSITIVE_KEY_TOKENS: Final[frozenset[str]] = frozenset(
    {"secret", "token", "password", "passwd", "apikey", "private", "credential", "credentials"}
)
_SENSITIVE_KEY_PHRASES: Final[tuple[str, ...]] = (
    "api_key",
    "access_token",
    "client_secret",
    "private_key",
    "password",
)
# Sections keyed by rule id or holding scanner vocabulary are never redacted.
_REDACTION_EXEMPT_KEYS: Final[frozenset[str]] = frozenset(
    {"rules", "environments", "secret_patterns", "sensitive_keywords", "required_env_vars"}
)

# Config paths that should be normalized relative to config file location.
PATH_FIELDS: Final[tuple[tuple[str, ...], ...]] = (("dependencies", "vulnerability_table"),)
PATH_LIST_FIELDS: Final[tuple[tuple[str, ...], ...]] = (("custom_rule_paths",),)


class ScanConfig(TypedDict):
    paths: list[str]
    secret_patterns: list[str]
    extensions: list[str]
    excluded_dirs: list[str]
    max_file_size_bytes: int


class EntitiesConfig(TypedDict):
    paths: list[str]
    migration_paths: list[str]
    sensitive_keywords: list[str]


class FrameworkConfig(TypedDict):
    package: str
    supported_versions: list[str]
    latest_lts: str
    latest_stable: str


class DependenciesConfig(TypedDict):
    manifest: str
    vulnerability_table: NotRequired[str]
    framework: FrameworkConfig


class CsrfConfig(TypedDict):
    markers: list[str]


class ObservabilityConfig(TypedDict):
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"]
    log_format: Literal["json", "text"]
    redact_secrets: bool


class SafeguardConfig(TypedDict):
    environment: str
    rules: dict[str, bool]
    environments: dict[str, list[str]]
    scan: ScanConfig
    entities: EntitiesConfig
    dependencies: DependenciesConfig
    csrf: CsrfConfig
    required_env_vars: list[str]
    custom_rule_paths: list[str]
    observability: ObservabilityConfig


DEFAULT_CONFIG: Final[SafeguardConfig] = {
    "environment": "production",
    "rules": {
        "app-debug-false-in-production": True,
        "env-has-all-required-keys": True,
        "env-file-permissions": True,
        "app-key-is-set": True,
        "csrf-enabled": True,
        "no-secrets-in-code": True,
        "dependency-package-security": True,
        "database-connection-encrypted": True,
        "database-credentials-not-default": True,
        "sensitive-data-encryption": True,
    },
    "environments": {
        "production": [
            "app-debug-false-in-production",
            "app-key-is-set",
            "env-file-permissions",
            "database-connection-encrypted",
            "database-credentials-not-default",
        ],
        "staging": [
            "app-debug-false-in-production",
            "app-key-is-set",
            "csrf-enabled",
            "database-connection-encrypted",
        ],
        "local": [
            "app-key-is-set",
            "env-has-all-required-keys",
        ],
    },
    "scan": {
        "paths": ["app/", "config/", "src/"],
        "secret_patterns": [
            "*_KEY",
            "*_SECRET",
            "*_TOKEN",
            "*_PASSWORD",
            "API_*",
            "AWS_*",
            "STRIPE_*",
            "PAYPAL_*",
            "TWILIO_*",
            "MAILGUN_*",
        ],
        "extensions": [".py"],
        "excluded_dirs": ["vendor", "site-packages", ".venv", "node_modules"],
        "max_file_size_bytes": 1_048_576,
    },
    "entities": {
        "paths": ["app/models"],
        "migration_paths": ["migrations"],
        "sensitive_keywords": [
            "password",
            "secret",
            "token",
            "key",
            "ssn",
            "social_security",
            "credit_card",
            "card_number",
            "cvv",
            "cvv2",
            "expiry",
            "bank_account",
            "iban",
            "swift",
            "routing_number",
            "phone",
            "email",
            "address",
            "postal_code",
            "zip_code",
            "date_of_birth",
            "birth_date",
            "dob",
            "age",
            "salary",
            "income",
            "tax_id",
            "passport",
            "license",
            "medical_record",
            "health_record",
            "diagnosis",
            "api_key",
            "access_token",
            "refresh_token",
            "oauth",
            "private_key",
            "public_key",
            "certificate",
        ],
    },
    "dependencies": {
        "manifest": "packages.lock.json",
        "framework": {
            "package": "django",
            "supported_versions": ["5.2", "6.0"],
            "latest_lts": "5.2",
            "latest_stable": "6.0",
        },
    },
    "csrf": {
        "markers": ["csrf"],
    },
    "required_env_vars": [
        "APP_KEY",
        "APP_ENV",
        "APP_DEBUG",
        "DB_CONNECTION",
        "DB_HOST",
        "DB_PORT",
        "DB_DATABASE",
    ],
    "custom_rule_paths": [],
    "observability": {
        "log_level": "INFO",
        "log_format": "json",
        "redact_secrets": True,
    },
}


@dataclass(frozen=True, slots=True)
class ConfigValidationIssue:
    path: str
    message: str


@dataclass(frozen=True, slots=True)
class ConfigValidationResult:
    """Outcome of ``validate_config``; ``config`` is set only when there are no issues."""

    config: dict[str, Any] | None
    issues: tuple[ConfigValidationIssue, ...]

    @property
    def is_valid(self) -> bool:
        return self.config is not None and not self.issues


class ConfigValidationError(ValueError):
    """Raised by ``assert_valid_config``; ``issues`` lists every failure found."""

    def __init__(self, issues: Sequence[ConfigValidationIssue]) -> None:
        self.issues = tuple(issues)
        lines = [f"- {issue.path}: {issue.message}" for issue in self.issues]
        super().__init__("invalid config:\n" + ("\n".join(lines) or "unknown validation failure"))


def default_config() -> SafeguardConfig:
    return copy.deepcopy(DEFAULT_CONFIG)


def merge_config(base: Mapping[str, object], overlay: Mapping[str, object]) -> dict[str, Any]:
    """Deep-merge ``overlay`` onto a copy of ``base``.

    Tables merge key by key; lists and scalars in ``overlay`` replace the base value.
    Neither argument is mutated.
    """

    merged = _copy_tree(base)
    _overlay_tree(merged, overlay)
    return merged


def validate_config(config: Mapping[str, object] | object) -> ConfigValidationResult:
    checker = _Checker()
    root = checker.table(config, "<root>")
    normalized = _check_root(root, checker) if root is not None else None
    if checker.issues:
        return ConfigValidationResult(config=None, issues=tuple(checker.issues))
    return ConfigValidationResult(config=normalized, issues=())


def assert_valid_config(config: Mapping[str, object] | object) -> dict[str, Any]:
    """Return the normalized config or raise ``ConfigValidationError``."""

    result = validate_config(config)
    if result.config is None:
        raise ConfigValidationError(result.issues)
    return result.config


def redact_config(config: Mapping[str, object] | object) -> dict[str, Any]:
    """Mask secret-looking keys for dumps; rule maps and scanner vocabulary are kept."""

    if not isinstance(config, Mapping):
        return {}
    return _redact_tree(config)


class _Checker:
    """Accumulates issues while coercing raw TOML values."""

    __slots__ = ("issues",)

    def __init__(self) -> None:
        self.issues: list[ConfigValidationIssue] = []

    def fail(self, path: str, message: str) -> None:
        self.issues.append(ConfigValidationIssue(path=path, message=message))

    def table(self, value: object, path: str) -> dict[str, object] | None:
        if not isinstance(value, Mapping):
            self.fail(path, f"expected object, got {type(value).__name__}")
            return None
        table: dict[str, object] = {}
        for key, item in value.items():
            if isinstance(key, str):
                table[key] = item
            else:
                self.fail(path, f"object key must be string, got {type(key).__name__}")
        return table

    def text(self, value: object, path: str) -> str | None:
        if not isinstance(value, str):
            self.fail(path, f"expected string, got {type(value).__name__}")
            return None
        if not value.strip():
            self.fail(path, "must not be empty")
            return None
        return value.strip()

    def texts(self, value: object, path: str) -> list[str] | None:
        if isinstance(value, (str, bytes)) or not isinstance(value, Sequence):
            self.fail(path, f"expected array of strings, got {type(value).__name__}")
            return None
        parsed = (self.text(item, f"{path}[{index}]") for index, item in enumerate(value))
        return [item for item in parsed if item is not None]

    def flag(self, value: object, path: str) -> bool | None:
        if not isinstance(value, bool):
            self.fail(path, f"expected boolean, got {type(value).__name__}")
            return None
        return value

    def count(self, value: object, path: str, *, minimum: int) -> int | None:
        if isinstance(value, bool) or not isinstance(value, int):
            self.fail(path, f"expected integer, got {type(value).__name__}")
            return None
        if value < minimum:
            self.fail(path, f"must be >= {minimum}")
            return None
        return value

    def choice(self, value: object, path: str, allowed: tuple[str, ...]) -> str | None:
        parsed = self.text(value, path)
        if parsed is not None and parsed not in allowed:
            self.fail(path, f"invalid value {parsed!r}; expected one of: {', '.join(sorted(allowed))}")
            return None
        return parsed

    def known_keys(self, payload: Mapping[str, object], allowed: Collection[str], path: str) -> None:
        for key in sorted(set(payload) - set(allowed)):
            if looks_sensitive_key(key):
                self.fail(_dotted(path, key), "embedded secret values are forbidden in audit config")
            else:
                self.fail(_dotted(path, key), "unknown field")

    def pick(
        self,
        payload: Mapping[str, object],
        path: str,
        coerce: Callable[[object, str], object | None],
        keys: Iterable[str],
        into: dict[str, Any],
    ) -> None:
        for key in keys:
            if key in payload:
                parsed = coerce(payload[key], _dotted(path, key))
                if parsed is not None:
                    into[key] = parsed


def _check_root(root: Mapping[str, object], checker: _Checker) -> dict[str, Any]:
    checker.known_keys(root, DEFAULT_CONFIG.keys(), "")
    out: dict[str, Any] = {}

    checker.pick(root, "", checker.text, ("environment",), out)
    checker.pick(root, "", checker.texts, ("custom_rule_paths",), out)
    checker.pick(root, "", checker.texts, ("required_env_vars",), out)
    for index, name in enumerate(out.get("required_env_vars", [])):
        if not _ENV_VAR_PATTERN.fullmatch(name):
            checker.fail(f"required_env_vars[{index}]", "must be an env var name")

    for key, check_section in _SECTION_CHECKS.items():
        if root.get(key) is None:
            continue
        section = checker.table(root[key], key)
        if section is not None:
            out[key] = check_section(section, key, checker)
    return out


def _check_rules(payload: Mapping[str, object], path: str, checker: _Checker) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for rule_id in sorted(payload):
        if _RULE_ID_PATTERN.fullmatch(rule_id):
            checker.pick(payload, path, checker.flag, (rule_id,), out)
        else:
            checker.fail(_dotted(path, rule_id), "rule id must be kebab-case")
    return out


def _check_environments(
    payload: Mapping[str, object], path: str, checker: _Checker
) -> dict[str, Any]:
    out: dict[str, Any] = {}
    checker.pick(payload, path, checker.texts, sorted(payload), out)
    for environment, rule_ids in out.items():
        for index, rule_id in enumerate(rule_ids):
            if not _RULE_ID_PATTERN.fullmatch(rule_id):
                checker.fail(f"{_dotted(path, environment)}[{index}]", "rule id must be kebab-case")
    return out


def _check_scan(payload: Mapping[str, object], path: str, checker: _Checker) -> dict[str, Any]:
    checker.known_keys(payload, DEFAULT_CONFIG["scan"].keys(), path)
    out: dict[str, Any] = {}
    checker.pick(
        payload, path, checker.texts, ("paths", "secret_patterns", "extensions", "excluded_dirs"), out
    )
    checker.pick(
        payload,
        path,
        lambda value, where: checker.count(value, where, minimum=1),
        ("max_file_size_bytes",),
        out,
    )
    return out


def _check_entities(payload: Mapping[str, object], path: str, checker: _Checker) -> dict[str, Any]:
    checker.known_keys(payload, DEFAULT_CONFIG["entities"].keys(), path)
    out: dict[str, Any] = {}
    checker.pick(payload, path, checker.texts, ("paths", "migration_paths", "sensitive_keywords"), out)
    return out


def _check_dependencies(
    payload: Mapping[str, object], path: str, checker: _Checker
) -> dict[str, Any]:
    checker.known_keys(payload, ("manifest", "vulnerability_table", "framework"), path)
    out: dict[str, Any] = {}
    checker.pick(payload, path, _path_text(checker), ("manifest", "vulnerability_table"), out)

    framework_path = _dotted(path, "framework")
    framework = checker.table(payload["framework"], framework_path) if "framework" in payload else None
    if framework is not None:
        checker.known_keys(framework, DEFAULT_CONFIG["dependencies"]["framework"].keys(), framework_path)
        parsed: dict[str, Any] = {}
        checker.pick(framework, framework_path, checker.text, ("package", "latest_lts", "latest_stable"), parsed)
        checker.pick(framework, framework_path, checker.texts, ("supported_versions",), parsed)
        out["framework"] = parsed
    return out


def _check_csrf(payload: Mapping[str, object], path: str, checker: _Checker) -> dict[str, Any]:
    checker.known_keys(payload, ("markers",), path)
    out: dict[str, Any] = {}
    checker.pick(payload, path, checker.texts, ("markers",), out)
    return out


def _check_observability(
    payload: Mapping[str, object], path: str, checker: _Checker
) -> dict[str, Any]:
    checker.known_keys(payload, DEFAULT_CONFIG["observability"].keys(), path)
    out: dict[str, Any] = {}
    checker.pick(
        payload,
        path,
        lambda value, where: checker.choice(value, where, ("DEBUG", "INFO", "WARNING", "ERROR")),
        ("log_level",),
        out,
    )
    checker.pick(
        payload,
        path,
        lambda value, where: checker.choice(value, where, ("json", "text")),
        ("log_format",),
        out,
    )
    checker.pick(payload, path, checker.flag, ("redact_secrets",), out)
    return out


_SECTION_CHECKS: Final[
    dict[str, Callable[[Mapping[str, object], str, _Checker], dict[str, Any]]]
] = {
    "rules": _check_rules,
    "environments": _check_environments,
    "scan": _check_scan,
    "entities": _check_entities,
    "dependencies": _check_dependencies,
    "csrf": _check_csrf,
    "observability": _check_observability,
}


def _path_text(checker: _Checker) -> Callable[[object, str], str | None]:
    def coerce(value: object, path: str) -> str | None:
        parsed = checker.text(value, path)
        if parsed is not None and "\x00" in parsed:
            checker.fail(path, "must not contain NUL bytes")
            return None
        return parsed

    return coerce


def looks_sensitive_key(key: str) -> bool:
    """True for keys such as ``apiToken``, ``client_secret`` or ``db-password``."""

    snake = _NON_ALNUM.sub("_", _CAMEL_CASE_BOUNDARY.sub(r"\1_\2", key.strip()).lower()).strip("_")
    if any(phrase in snake for phrase in _SENSITIVE_KEY_PHRASES):
        return True
    return not _SENSITIVE_KEY_TOKENS.isdisjoint(snake.split("_"))


def _dotted(path: str, key: str) -> str:
    return f"{path}.{key}" if path else key


def _copy_tree(value: Mapping[str, object]) -> dict[str, Any]:
    return {key: _copy_value(value[key]) for key in sorted(value) if isinstance(key, str)}


def _copy_value(value: object) -> Any:
    if isinstance(value, Mapping):
        return _copy_tree(value)
    if isinstance(value, (list, tuple)):
        return [_copy_value(item) for item in value]
    return copy.deepcopy(value)


def _overlay_tree(target: dict[str, Any], overlay: Mapping[str, object]) -> None:
    for key in sorted(overlay):
        value = overlay[key]
        if not isinstance(value, Mapping):
            target[key] = _copy_value(value)
            continue
        if not isinstance(target.get(key), dict):
            target[key] = {}
        _overlay_tree(target[key], value)


def _redact_tree(value: Mapping[str, object]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for key in sorted(value):
        item = value[key]
        if key in _REDACTION_EXEMPT_KEYS:
            out[key] = _copy_value(item)
        elif looks_sensitive_key(key):
            out[key] = "<redacted>"
        elif isinstance(item, Mapping):
            out[key] = _redact_tree(item)
        elif isinstance(item, (list, tuple)):
            out[key] = [_redact_tree(entry) if isinstance(entry, Mapping) else entry for entry in item]
        else:
            out[key] = item
    return out


__all__ = [
    "ConfigValidationError",
    "ConfigValidationIssue",
    "ConfigValidationResult",
    "DEFAULT_CONFIG",
    "PATH_FIELDS",
    "PATH_LIST_FIELDS",
    "SafeguardConfig",
    "assert_valid_config",
    "default_config",
    "looks_sensitive_key",
    "merge_config",
    "redact_config",
    "validate_config",
]
