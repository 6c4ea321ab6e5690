"""
Hard-coded secret rule.

Functional requirements:
- Scans the configured source roots with the configured wildcard patterns.
- Any finding fails the rule at ``critical`` with per-line findings, capped in count.
- Dependency directories are skipped unless the audit runs in testing mode.
"""

from __future__ import annotations

from typing import Final

from safeguard_audit.analysis.secrets import (
    DEFAULT_EXCLUDED_DIRS,
    DEFAULT_EXTENSIONS,
    DEFAULT_SECRET_PATTERNS,
    SecretScanner,
)
from safeguard_audit.engine.registry import register_builtin_rule
from safeguard_audit.engine.result import Result, Severity
from safeguard_audit.engine.rule import RuleContext
from safeguard_audit.rules.support import positive_int, string_list

DEFAULT_SCAN_PATHS: Final[tuple[str, ...]] = ("app/", "config/", "src/")
# Findings beyond this are counted, not listed.
MAX_REPORTED_FINDINGS: Final[int] = 500


@register_builtin_rule("no-secrets-in-code")
class NoSecretsInCode:
    rule_id = "no-secrets-in-code"
    description = "Scans codebase for potentially hardcoded secrets"
    severity = Severity.CRITICAL

    def applies_to_environment(self, environment: str) -> bool:
        return True

    def check(self, context: RuleContext) -> Result:
        scan_paths = string_list(context.audit_setting("scan.paths"), default=DEFAULT_SCAN_PATHS)
        patterns = string_list(
            context.audit_setting("scan.secret_patterns"),
            default=DEFAULT_SECRET_PATTERNS,
        )
        scanner = SecretScanner(
            patterns,
            extensions=string_list(
                context.audit_setting("scan.extensions"), default=DEFAULT_EXTENSIONS
            ),
            excluded_dirs=string_list(
                context.audit_setting("scan.excluded_dirs"), default=DEFAULT_EXCLUDED_DIRS
            ),
            include_excluded=context.testing,
            max_file_size_bytes=positive_int(
                context.audit_setting("scan.max_file_size_bytes"), default=1_048_576
            ),
        )
        report = scanner.scan(scan_paths, base_path=context.base_path)

        if report.findings:
            reported = report.findings[:MAX_REPORTED_FINDINGS]
            return Result.critical(
                "Potential secrets found in code files",
                {
                    "findings": [finding.to_dict() for finding in reported],
                    "total_findings": len(report.findings),
                    "truncated": len(reported) < len(report.findings),
                    "recommendation": (
                        "Move secrets to environment variables and remove them from code"
                    ),
                },
            )

        return Result.pass_(
            "No hardcoded secrets detected in codebase",
            {
                "scanned_paths": list(scan_paths),
                "patterns_checked": list(patterns),
                "files_scanned": len(report.scanned_files),
                "missing_paths": list(report.skipped_roots),
            },
        )


__all__ = ["DEFAULT_SCAN_PATHS", "MAX_REPORTED_FINDINGS", "NoSecretsInCode"]
