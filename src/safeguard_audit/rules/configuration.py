"""
Application configuration rules: application key and CSRF protection.
"""

from __future__ import annotations

from typing import Final

from safeguard_audit.engine.registry import register_builtin_rule
from safeguard_audit.engine.result import Result, Severity
from safeguard_audit.engine.rule import RuleContext
from safeguard_audit.rules.support import string_list

MIN_APP_KEY_LENGTH: Final[int] = 10
SUSPICIOUS_APP_KEYS: Final[frozenset[str]] = frozenset(
    {
        "SomeRandomString",
        "YourAppKeyHere",
        "base64:AAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAA=",
        "django-insecure-change-me",
        "changeme",
    }
)
DEFAULT_CSRF_MARKERS: Final[tuple[str, ...]] = ("csrf",)


@register_builtin_rule("app-key-is-set")
class AppKeyIsSet:
    rule_id = "app-key-is-set"
    description = "Verifies that the application key is generated and not empty"
    severity = Severity.CRITICAL

    def applies_to_environment(self, environment: str) -> bool:
        return True

    def check(self, context: RuleContext) -> Result:
        raw = context.setting("app.key")
        key = raw if isinstance(raw, str) else ""

        if not key:
            return Result.critical(
                "Application key is not set - application encryption will not work",
                {
                    "recommendation": "Generate an application key and set APP_KEY",
                    "security_impact": (
                        "Without an application key, sessions and encrypted data "
                        "cannot be secured"
                    ),
                },
            )
        if key == "base64:" or len(key) < MIN_APP_KEY_LENGTH:
            return Result.fail(
                "Application key appears to be invalid or too short",
                Severity.ERROR,
                {
                    "current_key_length": len(key),
                    "recommendation": "Generate a new application key",
                },
            )
        if key in SUSPICIOUS_APP_KEYS:
            return Result.fail(
                "Application key appears to be a default/example value",
                Severity.ERROR,
                {"recommendation": "Generate a unique application key"},
            )
        return Result.pass_(
            "Application key is properly configured",
            {"key_length": len(key), "has_base64_prefix": key.startswith("base64:")},
        )


@register_builtin_rule("csrf-enabled")
class CsrfEnabled:
    rule_id = "csrf-enabled"
    description = "Verifies that CSRF protection is enabled"
    severity = Severity.ERROR

    def applies_to_environment(self, environment: str) -> bool:
        return True

    def check(self, context: RuleContext) -> Result:
        middleware = string_list(context.setting("app.middleware"))
        markers = tuple(
            item.lower()
            for item in string_list(
                context.audit_setting("csrf.markers"), default=DEFAULT_CSRF_MARKERS
            )
        )
        matched = [item for item in middleware if any(mark in item.lower() for mark in markers)]

        if not matched:
            return Result.fail(
                "CSRF protection is disabled",
                Severity.ERROR,
                {
                    "current_setting": "disabled",
                    "recommendation": "Enable CSRF middleware in your application configuration",
                    "security_impact": (
                        "Without CSRF protection, your application is vulnerable to "
                        "cross-site request forgery attacks"
                    ),
                },
            )
        return Result.pass_(
            "CSRF protection is properly enabled",
            {"csrf_status": "enabled", "middleware": matched},
        )


__all__ = [
    "DEFAULT_CSRF_MARKERS",
    "MIN_APP_KEY_LENGTH",
    "SUSPICIOUS_APP_KEYS",
    "AppKeyIsSet",
    "CsrfEnabled",
]
