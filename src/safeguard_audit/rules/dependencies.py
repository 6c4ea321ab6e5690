"""
Dependency package security rule.

Functional requirements:
- Reads the lock manifest at ``dependencies.manifest`` (relative to the app root).
- Missing or unparseable manifest fails at ``critical``; an empty manifest passes.
- Otherwise audits vulnerabilities, staleness, abandonment, development packages
  in production and the framework support window, rolling up issue severities.
"""

from __future__ import annotations

from collections.abc import Mapping

from safeguard_audit.analysis.dependencies import (
    DEFAULT_FRAMEWORK_POLICY,
    DEFAULT_MANIFEST_PATH,
    DependencyAuditor,
    FrameworkPolicy,
    JsonLockManifestReader,
    ManifestError,
    load_vulnerability_table,
)
from safeguard_audit.engine.registry import register_builtin_rule
from safeguard_audit.engine.result import Result, Severity
from safeguard_audit.engine.rule import RuleContext
from safeguard_audit.rules.support import mapping, string_list


@register_builtin_rule("dependency-package-security")
class DependencyPackageSecurity:
    rule_id = "dependency-package-security"
    description = (
        "Audits installed packages for security vulnerabilities, outdated versions "
        "and abandoned packages"
    )
    severity = Severity.WARNING

    def applies_to_environment(self, environment: str) -> bool:
        return True

    def check(self, context: RuleContext) -> Result:
        manifest_setting = context.audit_setting("dependencies.manifest", DEFAULT_MANIFEST_PATH)
        manifest = context.resolve_path(str(manifest_setting))
        if not manifest.is_file():
            return Result.critical(
                "Lock file not found: cannot audit without a lock file",
                {
                    "issues": [
                        {
                            "type": "missing_lock_file",
                            "severity": Severity.CRITICAL.value,
                            "message": f"{manifest_setting} not found",
                            "file": str(manifest_setting),
                        }
                    ],
                    "recommendations": ["Generate and commit a lock file for reproducible builds"],
                },
            )

        try:
            packages = JsonLockManifestReader().read(manifest)
        except ManifestError as exc:
            return Result.critical(
                "Lock file could not be parsed",
                {"error": str(exc), "file": str(manifest_setting)},
            )

        if not packages:
            return Result.pass_("No packages to audit", {"packages_analyzed": 0})

        table_setting = context.audit_setting("dependencies.vulnerability_table")
        table = load_vulnerability_table(
            context.resolve_path(table_setting) if isinstance(table_setting, str) else None
        )
        auditor = DependencyAuditor(
            table,
            framework_policy=_framework_policy(context.audit_setting("dependencies.framework")),
            now=context.now,
        )
        report = auditor.audit(packages, environment=context.environment)

        if report.issues:
            return Result.fail(
                "Dependency package security issues detected",
                report.severity,
                {
                    "issues": [issue.to_dict() for issue in report.issues],
                    "recommendations": list(report.recommendations),
                    "package_audit": dict(report.package_audit),
                    "dev_packages_in_production": list(report.dev_packages),
                    "total_packages": report.total_packages,
                    "total_issues": len(report.issues),
                },
            )

        return Result.pass_(
            "Dependency packages appear secure and up-to-date",
            {
                "package_audit": dict(report.package_audit),
                "total_packages": report.total_packages,
                "security_level": report.security_level,
            },
        )


def _framework_policy(raw: object) -> FrameworkPolicy:
    section: Mapping[str, object] = mapping(raw)
    if not section:
        return DEFAULT_FRAMEWORK_POLICY
    package = section.get("package")
    latest_lts = section.get("latest_lts")
    latest_stable = section.get("latest_stable")
    return FrameworkPolicy(
        package=package if isinstance(package, str) else DEFAULT_FRAMEWORK_POLICY.package,
        supported_versions=string_list(
            section.get("supported_versions"),
            default=DEFAULT_FRAMEWORK_POLICY.supported_versions,
        ),
        latest_lts=latest_lts if isinstance(latest_lts, str) else DEFAULT_FRAMEWORK_POLICY.latest_lts,
        latest_stable=(
            latest_stable if isinstance(latest_stable, str) else DEFAULT_FRAMEWORK_POLICY.latest_stable
        ),
    )


__all__ = ["DependencyPackageSecurity"]
