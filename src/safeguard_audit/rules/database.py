"""
Database rules: transport encryption and default/weak credentials.
"""

from __future__ import annotations

from collections.abc import Mapping
from types import MappingProxyType
from typing import Final

from safeguard_audit.engine.registry import register_builtin_rule
from safeguard_audit.engine.result import Result, Severity
from safeguard_audit.engine.rule import RuleContext
from safeguard_audit.rules.support import mapping, strictest

DEFAULT_CREDENTIALS: Final[Mapping[str, tuple[str, ...]]] = MappingProxyType(
    {
        "root": ("", "root", "password", "admin", "toor"),
        "admin": ("admin", "password", "", "123456"),
        "sa": ("", "sa", "password", "admin"),
        "postgres": ("", "postgres", "password"),
        "mysql": ("", "mysql", "password"),
        "test": ("test", "password", ""),
        "demo": ("demo", "password", ""),
        "guest": ("guest", "password", ""),
    }
)
WEAK_PASSWORDS: Final[frozenset[str]] = frozenset(
    {
        "password",
        "123456",
        "admin",
        "root",
        "test",
        "demo",
        "guest",
        "user",
        "pass",
        "1234",
        "12345",
        "123456789",
        "qwerty",
        "abc123",
        "password123",
        "admin123",
    }
)
MIN_PASSWORD_LENGTH: Final[int] = 12

_DRIVER_FAMILIES: Final[Mapping[str, str]] = MappingProxyType(
    {
        "mysql": "mysql",
        "mariadb": "mysql",
        "pgsql": "postgresql",
        "postgres": "postgresql",
        "postgresql": "postgresql",
        "sqlsrv": "mssql",
        "mssql": "mssql",
        "sqlite": "sqlite",
        "sqlite3": "sqlite",
    }
)
_MYSQL_SSL_OPTIONS: Final[tuple[str, ...]] = ("ssl", "ssl_ca", "ssl_cert", "ssl_key")
_POSTGRES_SECURE_MODES: Final[frozenset[str]] = frozenset({"require", "verify-ca", "verify-full"})
_INSECURE_REASONS: Final[Mapping[str, str]] = MappingProxyType(
    {
        "mysql": "No SSL options configured (missing sslmode or ssl_* options)",
        "postgresql": "SSL mode not set to require, verify-ca, or verify-full",
        "mssql": "Encryption not enabled or TrustServerCertificate not properly configured",
    }
)


@register_builtin_rule("database-connection-encrypted")
class DatabaseConnectionEncrypted:
    rule_id = "database-connection-encrypted"
    description = "Verifies that database connections use SSL/TLS encryption"
    severity = Severity.CRITICAL

    def applies_to_environment(self, environment: str) -> bool:
        return True

    def check(self, context: RuleContext) -> Result:
        connections = mapping(context.setting("database.connections"))
        vulnerable: list[dict[str, object]] = []
        secure: list[str] = []

        for name, raw in connections.items():
            config = mapping(raw)
            if is_connection_encrypted(config):
                secure.append(str(name))
                continue
            driver = config.get("driver")
            family = driver_family(driver)
            vulnerable.append(
                {
                    "connection": str(name),
                    "driver": driver if isinstance(driver, str) else "unknown",
                    "reason": _INSECURE_REASONS.get(
                        family, "Unknown driver or encryption not configured"
                    ),
                }
            )

        if vulnerable:
            return Result.critical(
                "Database connections without proper encryption detected",
                {
                    "vulnerable_connections": vulnerable,
                    "secure_connections": secure,
                    "recommendation": (
                        "Enable SSL/TLS for all database connections in production environments"
                    ),
                    "security_impact": (
                        "Unencrypted database connections expose sensitive data to "
                        "network interception"
                    ),
                },
            )
        return Result.pass_(
            "All database connections are properly encrypted",
            {"secure_connections": secure, "total_connections": len(connections)},
        )


@register_builtin_rule("database-credentials-not-default")
class DatabaseCredentialsNotDefault:
    rule_id = "database-credentials-not-default"
    description = "Detects default or weak database credentials that pose security risks"
    severity = Severity.CRITICAL

    def applies_to_environment(self, environment: str) -> bool:
        return True

    def check(self, context: RuleContext) -> Result:
        connections = mapping(context.setting("database.connections"))
        issues: list[dict[str, object]] = []

        for name, raw in connections.items():
            config = mapping(raw)
            username = _text(config.get("username"))
            password = _text(config.get("password"))
            issue = credential_issue(username, password)
            if issue is None:
                continue
            kind, severity, message = issue
            issues.append(
                {
                    "connection": str(name),
                    "type": kind,
                    "username": username,
                    "severity": severity.value,
                    "message": message,
                }
            )

        if issues:
            severity = strictest([Severity(str(item["severity"])) for item in issues])
            return Result.fail(
                "Vulnerable database credentials detected",
                severity,
                {
                    "vulnerable_connections": list(
                        dict.fromkeys(str(item["connection"]) for item in issues)
                    ),
                    "issues": issues,
                    "total_connections": len(connections),
                    "recommendations": [
                        "Use strong, unique passwords for all database users",
                        "Avoid default usernames like root, admin, sa",
                        "Use environment variables for credentials",
                        "Consider using database-specific authentication methods",
                        "Implement password rotation policies",
                    ],
                },
            )
        return Result.pass_(
            "Database credentials appear secure",
            {"checked_connections": len(connections), "all_secure": True},
        )


def driver_family(driver: object) -> str:
    if not isinstance(driver, str):
        return ""
    return _DRIVER_FAMILIES.get(driver.strip().lower(), "")


def is_connection_encrypted(config: Mapping[str, object]) -> bool:
    family = driver_family(config.get("driver"))
    if family == "sqlite":
        return True
    if family == "mysql":
        options = mapping(config.get("options"))
        return any(options.get(key) for key in _MYSQL_SSL_OPTIONS) or (
            config.get("sslmode") == "require"
        )
    if family == "postgresql":
        return config.get("sslmode") in _POSTGRES_SECURE_MODES
    if family == "mssql":
        return config.get("encrypt") is True or config.get("trust_server_certificate") is False
    return False


def credential_issue(username: str, password: str) -> tuple[str, Severity, str] | None:
    """Classify one credential pair; default beats weak beats short."""

    defaults = DEFAULT_CREDENTIALS.get(username.lower())
    if defaults is not None and password in defaults:
        return (
            "default_credentials",
            Severity.CRITICAL,
            f"Default credentials detected for user '{username}'",
        )
    if password.lower() in WEAK_PASSWORDS:
        return (
            "weak_password",
            Severity.ERROR,
            f"Weak password detected for user '{username}'",
        )
    if 0 < len(password) < MIN_PASSWORD_LENGTH:
        return (
            "short_password",
            Severity.WARNING,
            f"Password too short for user '{username}' "
            f"(minimum {MIN_PASSWORD_LENGTH} characters recommended)",
        )
    return None


def _text(value: object) -> str:
    if value is None:
        return ""
    return value if isinstance(value, str) else str(value)


__all__ = [
    "DEFAULT_CREDENTIALS",
    "MIN_PASSWORD_LENGTH",
    "WEAK_PASSWORDS",
    "DatabaseConnectionEncrypted",
    "DatabaseCredentialsNotDefault",
    "credential_issue",
    "driver_family",
    "is_connection_encrypted",
]
