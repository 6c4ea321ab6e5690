"""Built-in security rules.

Importing this package registers every built-in rule class in
``DEFAULT_RULE_CATALOG`` in a fixed order.
"""

from __future__ import annotations

from safeguard_audit.engine.registry import DEFAULT_RULE_CATALOG
from safeguard_audit.engine.rule import Rule
from safeguard_audit.rules import (  # noqa: F401
    configuration,
    database,
    dependencies,
    encryption,
    environment,
    secrets,
)
from safeguard_audit.rules.configuration import AppKeyIsSet, CsrfEnabled
from safeguard_audit.rules.database import (
    DatabaseConnectionEncrypted,
    DatabaseCredentialsNotDefault,
)
from safeguard_audit.rules.dependencies import DependencyPackageSecurity
from safeguard_audit.rules.encryption import SensitiveDataEncryption
from safeguard_audit.rules.environment import (
    AppDebugFalseInProduction,
    EnvFilePermissions,
    EnvHasAllRequiredKeys,
)
from safeguard_audit.rules.secrets import NoSecretsInCode


def builtin_rules() -> tuple[Rule, ...]:
    """Fresh instances of every built-in rule, in catalog order."""

    return DEFAULT_RULE_CATALOG.create_all()


def builtin_rule_ids() -> tuple[str, ...]:
    return DEFAULT_RULE_CATALOG.registered_ids()


__all__ = [
    "AppDebugFalseInProduction",
    "AppKeyIsSet",
    "CsrfEnabled",
    "DatabaseConnectionEncrypted",
    "DatabaseCredentialsNotDefault",
    "DependencyPackageSecurity",
    "EnvFilePermissions",
    "EnvHasAllRequiredKeys",
    "NoSecretsInCode",
    "SensitiveDataEncryption",
    "builtin_rule_ids",
    "builtin_rules",
]
