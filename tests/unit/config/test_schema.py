"""
safeguard-audit — unit tests for config schema validation

File: tests/unit/config/test_schema.py

Purpose
- Validate strict config schema behavior, structured errors and redaction.

What this test file should cover
- Validates the repository's sample safeguard.toml successfully.
- Rejects unknown keys and invalid types with actionable paths.
- Rejects embedded secrets.
- Ensures redaction keeps rule maps and scanner vocabulary intact.
"""

from __future__ import annotations

import tomllib
from pathlib import Path

import pytest

from safeguard_audit.config.schema import (
    ConfigValidationError,
    assert_valid_config,
    default_config,
    merge_config,
    redact_config,
    validate_config,
)
from safeguard_audit.rules import builtin_rule_ids

REPO_ROOT = Path(__file__).resolve().parents[3]


def _load_toml(path: Path) -> dict[str, object]:
    with path.open("rb") as handle:
        data = tomllib.load(handle)
    assert isinstance(data, dict)
    return data


def _messages(config: object) -> dict[str, str]:
    result = validate_config(config)
    assert not result.is_valid
    return {item.path: item.message for item in result.issues}


def test_sample_safeguard_toml_validates_successfully() -> None:
    config = _load_toml(REPO_ROOT / "safeguard.toml")

    result = validate_config(merge_config(default_config(), config))

    assert result.is_valid, result.issues


def test_defaults_enable_every_builtin_rule() -> None:
    defaults = assert_valid_config(default_config())

    assert set(defaults["rules"]) == set(builtin_rule_ids())
    assert all(value is True for value in defaults["rules"].values())
    for profile in defaults["environments"].values():
        assert set(profile) <= set(builtin_rule_ids())


def test_default_config_is_a_deep_copy() -> None:
    first = default_config()
    first["scan"]["paths"].append("mutated/")

    assert "mutated/" not in default_config()["scan"]["paths"]


def test_merge_replaces_lists_and_merges_mappings() -> None:
    merged = merge_config(
        default_config(),
        {"scan": {"paths": ["lib/"]}, "rules": {"csrf-enabled": False}},
    )

    assert merged["scan"]["paths"] == ["lib/"]
    assert merged["scan"]["extensions"] == [".py"]
    assert merged["rules"]["csrf-enabled"] is False
    assert merged["rules"]["app-key-is-set"] is True


@pytest.mark.parametrize(
    ("overlay", "path", "message"),
    [
        ({"rules": {"csrf-enabled": 1}}, "rules.csrf-enabled", "expected boolean, got int"),
        ({"rules": {"CsrfEnabled": True}}, "rules.CsrfEnabled", "rule id must be kebab-case"),
        ({"environments": {"production": "app-key-is-set"}}, "environments.production", "expected array of strings, got str"),
        ({"environments": {"local": ["Bad Id"]}}, "environments.local[0]", "rule id must be kebab-case"),
        ({"scan": {"max_file_size_bytes": 0}}, "scan.max_file_size_bytes", "must be >= 1"),
        ({"scan": {"depth": 3}}, "scan.depth", "unknown field"),
        ({"required_env_vars": ["app_key"]}, "required_env_vars[0]", "must be an env var name"),
        ({"observability": {"log_format": "xml"}}, "observability.log_format", "invalid value 'xml'; expected one of: json, text"),
        ({"dependencies": {"manifest": ""}}, "dependencies.manifest", "must not be empty"),
        ({"telemetry": True}, "telemetry", "unknown field"),
    ],
)
def test_invalid_values_report_field_paths(overlay: dict[str, object], path: str, message: str) -> None:
    messages = _messages(merge_config(default_config(), overlay))

    assert messages[path] == message


def test_embedded_secrets_are_rejected() -> None:
    messages = _messages(merge_config(default_config(), {"dependencies": {"apiToken": "abc"}}))

    assert messages["dependencies.apiToken"] == "embedded secret values are forbidden in audit config"


def test_assert_valid_config_raises_with_all_issues() -> None:
    with pytest.raises(ConfigValidationError) as excinfo:
        assert_valid_config({"rules": {"a": "no"}, "environment": ""})

    paths = {item.path for item in excinfo.value.issues}
    assert paths == {"rules.a", "environment"}


def test_non_mapping_root_is_rejected() -> None:
    assert _messages(["not", "a", "mapping"]) == {"<root>": "expected object, got list"}


def test_redaction_preserves_rule_maps_and_vocabulary() -> None:
    config = merge_config(default_config(), {"dependencies": {"vulnerability_table": "t.yaml"}})
    config["dependencies"]["client_secret"] = "s3cr3t"

    redacted = redact_config(config)

    assert redacted["dependencies"]["client_secret"] == "<redacted>"
    assert redacted["rules"] == config["rules"]
    assert redacted["scan"]["secret_patterns"] == config["scan"]["secret_patterns"]
    assert redacted["entities"]["sensitive_keywords"] == config["entities"]["sensitive_keywords"]
    assert config["dependencies"]["client_secret"] == "s3cr3t"
