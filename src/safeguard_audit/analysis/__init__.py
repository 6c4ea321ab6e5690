"""Analysis toolkit used by built-in rules: secrets, entity fields, dependencies."""

from safeguard_audit.analysis.dependencies import (
    DependencyAuditor,
    DependencyAuditReport,
    DependencyIssue,
    FrameworkPolicy,
    JsonLockManifestReader,
    ManifestError,
    PackageRecord,
    Vulnerability,
    load_vulnerability_table,
)
from safeguard_audit.analysis.entities import (
    ClassificationReport,
    EntityDescriptor,
    EntityIntrospector,
    SensitiveFieldClassifier,
)
from safeguard_audit.analysis.secrets import Finding, ScanReport, SecretScanner

__all__ = [
    "ClassificationReport",
    "DependencyAuditReport",
    "DependencyAuditor",
    "DependencyIssue",
    "EntityDescriptor",
    "EntityIntrospector",
    "Finding",
    "FrameworkPolicy",
    "JsonLockManifestReader",
    "ManifestError",
    "PackageRecord",
    "ScanReport",
    "SecretScanner",
    "SensitiveFieldClassifier",
    "Vulnerability",
    "load_vulnerability_table",
]
