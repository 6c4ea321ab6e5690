"""
Sensitive data encryption rule.

Functional requirements:
- Classifies fields of entity classes found under the configured entity roots.
- Fails at the highest issue severity when any sensitive field is unprotected.
- Reports installed encryption packages, custom encryption helpers and
  migrations that mention sensitive field names alongside the field issues.
"""

from __future__ import annotations

from typing import Final

from safeguard_audit.analysis.dependencies import (
    DEFAULT_MANIFEST_PATH,
    JsonLockManifestReader,
    ManifestError,
)
from safeguard_audit.analysis.entities import (
    DEFAULT_SENSITIVE_KEYWORDS,
    EncryptionSupport,
    EntityIntrospector,
    SensitiveFieldClassifier,
    detect_encryption_support,
    scan_migrations,
)
from safeguard_audit.engine.registry import register_builtin_rule
from safeguard_audit.engine.result import Result, Severity, max_severity
from safeguard_audit.engine.rule import RuleContext
from safeguard_audit.rules.support import resolve_paths, string_list

DEFAULT_ENTITY_PATHS: Final[tuple[str, ...]] = ("app/models",)
DEFAULT_MIGRATION_PATHS: Final[tuple[str, ...]] = ("migrations",)


@register_builtin_rule("sensitive-data-encryption")
class SensitiveDataEncryption:
    rule_id = "sensitive-data-encryption"
    description = "Scans entities for sensitive fields that should be encrypted"
    severity = Severity.ERROR

    def applies_to_environment(self, environment: str) -> bool:
        return True

    def check(self, context: RuleContext) -> Result:
        keywords = string_list(
            context.audit_setting("entities.sensitive_keywords"),
            default=DEFAULT_SENSITIVE_KEYWORDS,
        )
        entity_roots = resolve_paths(
            context,
            string_list(context.audit_setting("entities.paths"), default=DEFAULT_ENTITY_PATHS),
        )
        migration_roots = resolve_paths(
            context,
            string_list(
                context.audit_setting("entities.migration_paths"),
                default=DEFAULT_MIGRATION_PATHS,
            ),
        )

        support = _encryption_support(context)
        entities = EntityIntrospector().discover(entity_roots)
        report = SensitiveFieldClassifier(keywords).classify(
            entities,
            encryption_available=support.available,
        )
        migrations = scan_migrations(migration_roots, keywords)

        scan_results = report.scan_results()
        scan_results["encryption_packages"] = list(support.packages)
        scan_results["custom_encryption"] = list(support.custom_helpers)
        scan_results["suspicious_migrations"] = [item.to_dict() for item in migrations]

        if not report.issues:
            return Result.pass_(
                "Sensitive data encryption appears properly implemented",
                {
                    "scan_results": scan_results,
                    "security_level": report.security_level.value,
                },
            )

        issues: list[dict[str, object]] = [item.to_dict() for item in report.issues]
        recommendations = [
            "Implement field-level encryption for sensitive data",
            "Use an encrypted field type or cast for sensitive columns",
            "Use accessors/mutators for automatic encryption and decryption",
        ]
        if not support.packages:
            issues.append(
                {
                    "type": "no_encryption_package",
                    "severity": Severity.WARNING.value,
                    "message": "Sensitive fields detected but no encryption package installed",
                    "risk": "Manual encryption implementation may be error-prone",
                }
            )
            recommendations.append(
                "Install a field-level encryption package for robust encryption"
            )
            if not support.custom_helpers:
                issues.append(
                    {
                        "type": "no_encryption_implementation",
                        "severity": Severity.ERROR.value,
                        "message": "No encryption implementation detected for sensitive data",
                    }
                )
        if migrations:
            issues.append(
                {
                    "type": "sensitive_data_in_migrations",
                    "severity": Severity.INFO.value,
                    "message": "Migration files contain potentially sensitive field names",
                    "count": len(migrations),
                }
            )
            recommendations.append("Review migration files for sensitive data handling")

        severity = max_severity(str(issue["severity"]) for issue in issues)
        return Result.fail(
            "Sensitive data encryption issues detected",
            severity,
            {
                "issues": issues,
                "recommendations": recommendations,
                "scan_results": scan_results,
                "security_level": report.security_level.value,
                "total_issues": len(issues),
            },
        )


def _encryption_support(context: RuleContext) -> EncryptionSupport:
    manifest = context.resolve_path(
        str(context.audit_setting("dependencies.manifest", DEFAULT_MANIFEST_PATH))
    )
    names: tuple[str, ...] = ()
    if manifest.is_file():
        try:
            names = tuple(record.name for record in JsonLockManifestReader().read(manifest))
        except ManifestError:
            names = ()
    return detect_encryption_support(context.base_path, names)


__all__ = ["DEFAULT_ENTITY_PATHS", "DEFAULT_MIGRATION_PATHS", "SensitiveDataEncryption"]
