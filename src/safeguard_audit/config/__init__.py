"""
safeguard-audit config package public API.

File: src/safeguard_audit/config/__init__.py

Purpose
- Export config loading/validation entrypoints and public error types.

Functional requirements
- Support loading from ``safeguard.toml`` + ``SAFEGUARD_`` env overrides.
- Fail fast with clear structured validation/load errors.
"""

from safeguard_audit.config.loader import (
    DEFAULT_CONFIG_FILE,
    ENV_PREFIX,
    ConfigLoadError,
    dump_effective_config,
    effective_config,
    env_name_for,
    load_config,
    load_config_file,
    normalize_paths,
)
from safeguard_audit.config.schema import (
    DEFAULT_CONFIG,
    PATH_FIELDS,
    PATH_LIST_FIELDS,
    ConfigValidationError,
    ConfigValidationIssue,
    ConfigValidationResult,
    SafeguardConfig,
    assert_valid_config,
    default_config,
    merge_config,
    redact_config,
    validate_config,
)

__all__ = [
    "ConfigLoadError",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "ConfigValidationResult",
    "DEFAULT_CONFIG",
    "DEFAULT_CONFIG_FILE",
    "ENV_PREFIX",
    "PATH_FIELDS",
    "PATH_LIST_FIELDS",
    "SafeguardConfig",
    "assert_valid_config",
    "default_config",
    "dump_effective_config",
    "effective_config",
    "env_name_for",
    "load_config",
    "load_config_file",
    "merge_config",
    "normalize_paths",
    "redact_config",
    "validate_config",
]
