"""
Environment rules: debug mode, required variables, ``.env`` permissions.
"""

from __future__ import annotations

import os
import stat
from collections.abc import Mapping
from types import MappingProxyType
from typing import Final

from safeguard_audit.engine.registry import register_builtin_rule
from safeguard_audit.engine.result import Result, Severity
from safeguard_audit.engine.rule import RuleContext
from safeguard_audit.rules.support import string_list, truthy

DEFAULT_REQUIRED_ENV_VARS: Final[tuple[str, ...]] = (
    "APP_KEY",
    "APP_ENV",
    "APP_DEBUG",
    "DB_CONNECTION",
    "DB_HOST",
    "DB_PORT",
    "DB_DATABASE",
)

# ``{connection}`` is replaced by the name found at ``database.default``.
ENV_VAR_CONFIG_KEYS: Final[Mapping[str, str]] = MappingProxyType(
    {
        "APP_NAME": "app.name",
        "APP_ENV": "app.env",
        "APP_KEY": "app.key",
        "APP_DEBUG": "app.debug",
        "APP_URL": "app.url",
        "DB_CONNECTION": "database.default",
        "DB_HOST": "database.connections.{connection}.host",
        "DB_PORT": "database.connections.{connection}.port",
        "DB_DATABASE": "database.connections.{connection}.database",
        "DB_USERNAME": "database.connections.{connection}.username",
        "DB_PASSWORD": "database.connections.{connection}.password",
        "MAIL_HOST": "mail.host",
        "MAIL_PORT": "mail.port",
        "MAIL_USERNAME": "mail.username",
        "MAIL_PASSWORD": "mail.password",
    }
)

_DEBUG_WARNING_ENVIRONMENTS: Final[frozenset[str]] = frozenset({"staging", "prod"})


@register_builtin_rule("app-debug-false-in-production")
class AppDebugFalseInProduction:
    rule_id = "app-debug-false-in-production"
    description = "Ensures debug mode is off in production environment"
    severity = Severity.CRITICAL

    def applies_to_environment(self, environment: str) -> bool:
        return environment in {"production", "staging", "prod"}

    def check(self, context: RuleContext) -> Result:
        environment = context.environment
        debug_enabled = truthy(context.setting("app.debug", False))

        if environment == "production" and debug_enabled:
            return Result.critical(
                "Debug mode is enabled in production environment",
                {
                    "current_env": environment,
                    "debug_value": debug_enabled,
                    "recommendation": "Set APP_DEBUG=false for production",
                },
            )
        if debug_enabled and environment in _DEBUG_WARNING_ENVIRONMENTS:
            return Result.warning(
                f"Debug mode is enabled in {environment} environment",
                {"current_env": environment, "debug_value": debug_enabled},
            )
        return Result.pass_(
            "Debug mode is properly configured for this environment",
            {
                "current_environment": environment,
                "debug_status": "enabled" if debug_enabled else "disabled",
            },
        )


@register_builtin_rule("env-has-all-required-keys")
class EnvHasAllRequiredKeys:
    rule_id = "env-has-all-required-keys"
    description = "Verifies that all required environment variables are present"
    severity = Severity.ERROR

    def applies_to_environment(self, environment: str) -> bool:
        return True

    def check(self, context: RuleContext) -> Result:
        required = string_list(
            context.audit_setting("required_env_vars"),
            default=DEFAULT_REQUIRED_ENV_VARS,
        )
        missing = [name for name in required if not _is_present(context, name)]

        if missing:
            return Result.fail(
                "Missing required environment variables: " + ", ".join(missing),
                Severity.ERROR,
                {
                    "missing_variables": missing,
                    "total_required": len(required),
                    "recommendation": "Add these variables to your .env file",
                },
            )
        return Result.pass_(
            "All required environment variables are present",
            {"required_variables": list(required), "all_present": True},
        )


@register_builtin_rule("env-file-permissions")
class EnvFilePermissions:
    rule_id = "env-file-permissions"
    description = "Checks that .env file has appropriate permissions (not world-readable)"
    severity = Severity.ERROR

    def applies_to_environment(self, environment: str) -> bool:
        return os.name != "nt"

    def check(self, context: RuleContext) -> Result:
        env_file = context.base_path / ".env"
        if not env_file.is_file():
            return Result.warning(
                ".env file not found",
                {
                    "file_path": str(env_file),
                    "recommendation": "Create a .env file from .env.example",
                },
            )

        mode = stat.S_IMODE(env_file.stat().st_mode)
        permissions = f"{mode:04o}"
        if mode & stat.S_IROTH:
            return Result.warning(
                "Environment file has overly permissive permissions",
                {
                    "current_permissions": permissions,
                    "recommended_permissions": "600 (rw-------)",
                    "security_risk": "Environment variables may be readable by other users",
                    "recommendation": f"Run: chmod 600 {env_file}",
                },
            )
        return Result.pass_(
            "Environment file permissions are secure",
            {"permissions": permissions, "file_path": str(env_file)},
        )


def _is_present(context: RuleContext, name: str) -> bool:
    """Mapped names resolve through app config first, then the environment map."""

    template = ENV_VAR_CONFIG_KEYS.get(name)
    if template is not None:
        connection = context.setting("database.default")
        key = template.format(connection=connection if isinstance(connection, str) else "default")
        if context.setting(key) is not None:
            return True
    value = context.environ.get(name)
    return isinstance(value, str) and value != ""


__all__ = [
    "DEFAULT_REQUIRED_ENV_VARS",
    "ENV_VAR_CONFIG_KEYS",
    "AppDebugFalseInProduction",
    "EnvFilePermissions",
    "EnvHasAllRequiredKeys",
]
