"""
safeguard-audit — dependency manifest auditor

File: src/safeguard_audit/analysis/dependencies.py

Purpose
- Read an installed-package lock manifest and audit it for known
  vulnerabilities, staleness, abandonment, development packages in production
  and unsupported framework versions.

Functional requirements
- Version constraints are a deliberately small subset: ``<X`` or ``>=X,<Y``.
  Anything else never matches.
- Versions compare numerically segment by segment; missing segments are zero.
- A package with no usable update timestamp counts as maximally stale.
- Issue roll-up: critical if any issue is critical, else high if any is high,
  else warning.

Non-functional requirements
- Pure computation over parsed records; the only I/O is manifest and table loading.
"""

from __future__ import annotations

import json
import re
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from importlib import resources
from pathlib import Path
from typing import Final, NoReturn, Protocol, runtime_checkable

import yaml

from safeguard_audit.engine.result import Severity

MISSING_TIMESTAMP_DAYS: Final[int] = 9999
VERY_OUTDATED_DAYS: Final[int] = 730
POTENTIALLY_OUTDATED_DAYS: Final[int] = 365
DEFAULT_MANIFEST_PATH: Final[str] = "packages.lock.json"
VULNERABILITY_TABLE_RESOURCE: Final[str] = "vulnerabilities.yaml"

_VERSION_PREFIX = re.compile(r"^[vV]")
_VERSION_SUFFIX = re.compile(r"[-+].*$")
_LEADING_DIGITS = re.compile(r"^(\d+)")
_MAJOR_MINOR = re.compile(r"^v?(\d+)\.(\d+)", re.IGNORECASE)


class ManifestError(ValueError):
    """Raised when a lock manifest cannot be read or parsed."""


class PackageKind(StrEnum):
    PRODUCTION = "production"
    DEVELOPMENT = "development"


@dataclass(frozen=True, slots=True)
class PackageRecord:
    name: str
    version: str
    kind: PackageKind = PackageKind.PRODUCTION
    last_updated: datetime | None = None
    abandoned: bool = False
    replacement: str | None = None
    description: str = ""

    def __post_init__(self) -> None:
        if not isinstance(self.name, str) or not self.name.strip():
            _fail("PackageRecord.name", "must be a non-empty string")
        object.__setattr__(self, "kind", PackageKind(self.kind))


@dataclass(frozen=True, slots=True)
class Vulnerability:
    title: str
    description: str
    affected_versions: tuple[str, ...]
    fixed_versions: tuple[str, ...] = ()
    severity: Severity = Severity.HIGH
    cve: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "affected_versions", tuple(self.affected_versions))
        object.__setattr__(self, "fixed_versions", tuple(self.fixed_versions))
        object.__setattr__(self, "severity", Severity.coerce(self.severity))

    def to_dict(self) -> dict[str, object]:
        return {
            "title": self.title,
            "description": self.description,
            "affected_versions": list(self.affected_versions),
            "fixed_versions": list(self.fixed_versions),
            "severity": self.severity.value,
            "cve": self.cve,
        }


VulnerabilityTable = Mapping[str, tuple[Vulnerability, ...]]
# Package name -> audit flags for that package.
PackageAudit = dict[str, dict[str, object]]


@dataclass(frozen=True, slots=True)
class FrameworkPolicy:
    """Support window of the application framework package."""

    package: str = "django"
    supported_versions: tuple[str, ...] = ("5.2", "6.0")
    latest_lts: str = "5.2"
    latest_stable: str = "6.0"

    def analyze(self, version: str) -> dict[str, object]:
        match = _MAJOR_MINOR.match(version.strip())
        major_minor = f"{match.group(1)}.{match.group(2)}" if match else version
        return {
            "major_minor": major_minor,
            "is_supported": major_minor in self.supported_versions
            or compare_versions(major_minor, self.latest_lts) >= 0,
            "is_latest_lts": compare_versions(major_minor, self.latest_lts) >= 0,
            "latest_lts": self.latest_lts,
            "latest_stable": self.latest_stable,
        }


@dataclass(frozen=True, slots=True)
class DependencyIssue:
    kind: str
    severity: Severity
    message: str
    package: str | None = None
    version: str | None = None
    extra: Mapping[str, object] = field(default_factory=dict)

    def to_dict(self) -> dict[str, object]:
        payload: dict[str, object] = {
            "type": self.kind,
            "severity": self.severity.value,
            "message": self.message,
        }
        if self.package is not None:
            payload["package"] = self.package
        if self.version is not None:
            payload["version"] = self.version
        payload.update(self.extra)
        return payload


@dataclass(frozen=True, slots=True)
class DependencyAuditReport:
    issues: tuple[DependencyIssue, ...]
    recommendations: tuple[str, ...]
    package_audit: Mapping[str, Mapping[str, object]]
    total_packages: int
    dev_packages: tuple[str, ...] = ()

    @property
    def severity(self) -> Severity:
        return roll_up_severity(self.issues)

    @property
    def security_level(self) -> str:
        return security_level(self.package_audit)


@runtime_checkable
class ManifestReader(Protocol):
    def read(self, path: Path) -> tuple[PackageRecord, ...]: ...


class JsonLockManifestReader:
    """Reads ``{"packages": [...], "packages-dev": [...]}`` lock files."""

    def read(self, path: Path) -> tuple[PackageRecord, ...]:
        try:
            payload = json.loads(Path(path).read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError) as exc:
            raise ManifestError(f"{path}: unreadable lock file: {exc}") from exc
        except json.JSONDecodeError as exc:
            raise ManifestError(f"{path}: invalid JSON: {exc.msg} (line {exc.lineno})") from exc
        if not isinstance(payload, Mapping):
            raise ManifestError(f"{path}: lock file root must be an object")

        # Keyed by name; a development entry replaces a production entry of the same name.
        records: dict[str, PackageRecord] = {}
        for section, kind in (
            ("packages", PackageKind.PRODUCTION),
            ("packages-dev", PackageKind.DEVELOPMENT),
        ):
            entries = payload.get(section, [])
            if not isinstance(entries, list):
                raise ManifestError(f"{path}: '{section}' must be an array")
            for index, entry in enumerate(entries):
                record = _package_from_entry(entry, kind, f"{path}:{section}[{index}]")
                records[record.name] = record
        return tuple(records.values())


def parse_version(text: str) -> tuple[int, ...]:
    """``"v4.4.5-beta+1"`` -> ``(4, 4, 5)``; non-numeric segments become 0."""

    cleaned = _VERSION_SUFFIX.sub("", _VERSION_PREFIX.sub("", text.strip()))
    if not cleaned:
        return (0,)
    segments: list[int] = []
    for part in cleaned.split("."):
        match = _LEADING_DIGITS.match(part)
        segments.append(int(match.group(1)) if match else 0)
    return tuple(segments)


def has_version_number(text: str) -> bool:
    """True when ``text`` carries a numeric version; ``"unknown"`` or ``"dev-main"`` do not."""

    cleaned = _VERSION_PREFIX.sub("", text.strip())
    return _LEADING_DIGITS.match(cleaned) is not None


def compare_versions(left: str, right: str) -> int:
    a = parse_version(left)
    b = parse_version(right)
    width = max(len(a), len(b))
    a = a + (0,) * (width - len(a))
    b = b + (0,) * (width - len(b))
    return (a > b) - (a < b)


def version_matches_constraint(version: str, constraint: str) -> bool:
    token = constraint.replace(" ", "")
    if token.startswith(">="):
        parts = token.split(",")
        if len(parts) != 2 or not parts[1].startswith("<") or parts[1].startswith("<="):
            return False
        lower = parts[0][2:]
        upper = parts[1][1:]
        if not lower or not upper:
            return False
        return compare_versions(version, lower) >= 0 and compare_versions(version, upper) < 0
    if token.startswith("<") and not token.startswith("<=") and "," not in token:
        upper = token[1:]
        return bool(upper) and compare_versions(version, upper) < 0
    return False


def is_version_affected(version: str, constraints: Iterable[str]) -> bool:
    return any(version_matches_constraint(version, constraint) for constraint in constraints)


def vulnerability_table_from_mapping(raw: object) -> dict[str, tuple[Vulnerability, ...]]:
    if not isinstance(raw, Mapping):
        _fail("vulnerabilities", "expected mapping of package name to entries")
    table: dict[str, tuple[Vulnerability, ...]] = {}
    for package in sorted(raw):
        entries = raw[package]
        path = f"vulnerabilities.{package}"
        if not isinstance(entries, list):
            _fail(path, "expected list of entries")
        parsed: list[Vulnerability] = []
        for index, entry in enumerate(entries):
            entry_path = f"{path}[{index}]"
            if not isinstance(entry, Mapping):
                _fail(entry_path, "expected mapping")
            affected = entry.get("affected_versions")
            if not isinstance(affected, list) or not all(isinstance(i, str) for i in affected):
                _fail(f"{entry_path}.affected_versions", "expected list of strings")
            fixed = entry.get("fixed_versions", entry.get("fixed_in", []))
            if not isinstance(fixed, list):
                _fail(f"{entry_path}.fixed_versions", "expected list")
            parsed.append(
                Vulnerability(
                    title=str(entry.get("title", "")),
                    description=str(entry.get("description", "")),
                    affected_versions=tuple(affected),
                    fixed_versions=tuple(str(item) for item in fixed),
                    severity=entry.get("severity", Severity.HIGH),
                    cve=entry.get("cve") if isinstance(entry.get("cve"), str) else None,
                )
            )
        table[_normalize_name(str(package))] = tuple(parsed)
    return table


def load_vulnerability_table(path: str | Path | None = None) -> dict[str, tuple[Vulnerability, ...]]:
    """Load a YAML vulnerability table; the packaged table when ``path`` is None."""

    if path is None:
        text = (
            resources.files("safeguard_audit.data")
            .joinpath(VULNERABILITY_TABLE_RESOURCE)
            .read_text(encoding="utf-8")
        )
    else:
        text = Path(path).read_text(encoding="utf-8")
    return vulnerability_table_from_mapping(yaml.safe_load(text) or {})


class DependencyAuditor:
    def __init__(
        self,
        vulnerabilities: VulnerabilityTable,
        *,
        framework_policy: FrameworkPolicy | None = None,
        now: datetime | None = None,
    ) -> None:
        self._vulnerabilities = {
            _normalize_name(name): tuple(entries) for name, entries in vulnerabilities.items()
        }
        self._framework = framework_policy if framework_policy is not None else FrameworkPolicy()
        self._now = now

    def audit(
        self,
        packages: Sequence[PackageRecord],
        *,
        environment: str,
    ) -> DependencyAuditReport:
        now = self._now if self._now is not None else datetime.now(UTC)
        issues: list[DependencyIssue] = []
        recommendations: list[str] = []
        audit: PackageAudit = {}
        dev_packages: list[str] = []

        self._check_vulnerabilities(packages, issues, recommendations, audit)
        self._check_staleness(packages, now, issues, recommendations, audit)
        self._check_abandoned(packages, issues, recommendations, audit)
        if environment.strip().lower() in {"production", "prod"}:
            dev_packages = self._check_dev_packages(packages, issues, recommendations)
        self._check_framework(packages, issues, recommendations, audit)

        return DependencyAuditReport(
            issues=tuple(issues),
            recommendations=tuple(dict.fromkeys(recommendations)),
            package_audit=audit,
            total_packages=len(packages),
            dev_packages=tuple(dev_packages),
        )

    def _check_vulnerabilities(
        self,
        packages: Sequence[PackageRecord],
        issues: list[DependencyIssue],
        recommendations: list[str],
        audit: PackageAudit,
    ) -> None:
        found = False
        for package in packages:
            if not has_version_number(package.version):
                continue
            for entry in self._vulnerabilities.get(_normalize_name(package.name), ()):
                if not is_version_affected(package.version, entry.affected_versions):
                    continue
                found = True
                issues.append(
                    DependencyIssue(
                        kind="security_vulnerability",
                        severity=entry.severity,
                        message=f"{package.name} {package.version} is affected by {entry.title}",
                        package=package.name,
                        version=package.version,
                        extra={
                            "vulnerability": entry.title,
                            "description": entry.description,
                            "cve": entry.cve,
                            "fixed_in": list(entry.fixed_versions),
                        },
                    )
                )
                _audit_entry(audit, package.name).setdefault("vulnerabilities", []).append(
                    entry.to_dict()
                )
        if found:
            recommendations.append("Update vulnerable packages to their latest secure versions")
            recommendations.append("Run pip-audit to check for additional security advisories")

    def _check_staleness(
        self,
        packages: Sequence[PackageRecord],
        now: datetime,
        issues: list[DependencyIssue],
        recommendations: list[str],
        audit: PackageAudit,
    ) -> None:
        found = False
        for package in packages:
            days = days_since_update(package.last_updated, now=now)
            if days >= VERY_OUTDATED_DAYS:
                found = True
                issues.append(
                    DependencyIssue(
                        kind="very_outdated_package",
                        severity=Severity.WARNING,
                        message=f"Package {package.name} hasn't been updated in {days} days",
                        package=package.name,
                        version=package.version,
                        extra={
                            "last_update": _isoformat(package.last_updated),
                            "days_since_update": days,
                        },
                    )
                )
                entry = _audit_entry(audit, package.name)
                entry["outdated"] = True
                entry["days_since_update"] = days
            elif days >= POTENTIALLY_OUTDATED_DAYS:
                entry = _audit_entry(audit, package.name)
                entry["potentially_outdated"] = True
                entry["days_since_update"] = days
        if found:
            recommendations.append(
                "Review and update packages that haven't been updated in over 2 years"
            )
            recommendations.append(
                "Consider finding alternative packages for very outdated dependencies"
            )

    def _check_abandoned(
        self,
        packages: Sequence[PackageRecord],
        issues: list[DependencyIssue],
        recommendations: list[str],
        audit: PackageAudit,
    ) -> None:
        found = False
        for package in packages:
            if not package.abandoned:
                continue
            found = True
            issues.append(
                DependencyIssue(
                    kind="abandoned_package",
                    severity=Severity.WARNING,
                    message=f"Package {package.name} has been abandoned by its maintainer",
                    package=package.name,
                    version=package.version,
                    extra={"replacement": package.replacement},
                )
            )
            entry = _audit_entry(audit, package.name)
            entry["abandoned"] = True
            entry["replacement"] = package.replacement
        if found:
            recommendations.append("Replace abandoned packages with maintained alternatives")
            recommendations.append(
                "Fork abandoned packages if no alternatives exist and they are critical"
            )

    def _check_dev_packages(
        self,
        packages: Sequence[PackageRecord],
        issues: list[DependencyIssue],
        recommendations: list[str],
    ) -> list[str]:
        dev_names = [item.name for item in packages if item.kind is PackageKind.DEVELOPMENT]
        if not dev_names:
            return dev_names
        issues.append(
            DependencyIssue(
                kind="dev_packages_in_production",
                severity=Severity.WARNING,
                message="Development packages detected in production environment",
                extra={"packages": dev_names, "count": len(dev_names)},
            )
        )
        recommendations.append("Install without development extras in production")
        return dev_names

    def _check_framework(
        self,
        packages: Sequence[PackageRecord],
        issues: list[DependencyIssue],
        recommendations: list[str],
        audit: PackageAudit,
    ) -> None:
        target = _normalize_name(self._framework.package)
        package = next((item for item in packages if _normalize_name(item.name) == target), None)
        if package is None or not has_version_number(package.version):
            return
        info = self._framework.analyze(package.version)
        if not info["is_supported"]:
            issues.append(
                DependencyIssue(
                    kind="unsupported_framework_version",
                    severity=Severity.HIGH,
                    message=f"{package.name} {package.version} is no longer supported",
                    package=package.name,
                    version=package.version,
                    extra={
                        "latest_lts": self._framework.latest_lts,
                        "latest_stable": self._framework.latest_stable,
                    },
                )
            )
            entry = _audit_entry(audit, package.name)
            entry["unsupported"] = True
            entry["version_info"] = info
            recommendations.append(
                f"Upgrade {package.name} to a supported version "
                f"(latest LTS: {self._framework.latest_lts})"
            )
        elif not info["is_latest_lts"]:
            entry = _audit_entry(audit, package.name)
            entry["upgrade_available"] = True
            entry["version_info"] = info


def days_since_update(updated: datetime | None, *, now: datetime) -> int:
    if updated is None:
        return MISSING_TIMESTAMP_DAYS
    if updated.tzinfo is None:
        updated = updated.replace(tzinfo=UTC)
    if now.tzinfo is None:
        now = now.replace(tzinfo=UTC)
    # Timestamps ahead of the clock count as updated today.
    return max((now - updated).days, 0)


def roll_up_severity(issues: Iterable[DependencyIssue]) -> Severity:
    severities = {issue.severity for issue in issues}
    if Severity.CRITICAL in severities:
        return Severity.CRITICAL
    if Severity.HIGH in severities:
        return Severity.HIGH
    return Severity.WARNING


def security_level(package_audit: Mapping[str, Mapping[str, object]]) -> str:
    vulnerabilities = 0
    outdated = 0
    abandoned = 0
    for entry in package_audit.values():
        if not isinstance(entry, Mapping):
            continue
        found = entry.get("vulnerabilities")
        if isinstance(found, list):
            vulnerabilities += len(found)
        if entry.get("outdated") is True:
            outdated += 1
        if entry.get("abandoned") is True:
            abandoned += 1
    if vulnerabilities:
        return "vulnerable"
    if outdated > 5 or abandoned > 2:
        return "needs_attention"
    if outdated or abandoned:
        return "good"
    return "excellent"


def parse_timestamp(raw: object) -> datetime | None:
    if not isinstance(raw, str) or raw.strip() in {"", "0"}:
        return None
    try:
        parsed = datetime.fromisoformat(raw.strip())
    except ValueError:
        return None
    return parsed if parsed.tzinfo is not None else parsed.replace(tzinfo=UTC)


def _package_from_entry(entry: object, kind: PackageKind, path: str) -> PackageRecord:
    if not isinstance(entry, Mapping):
        raise ManifestError(f"{path}: expected object")
    name = entry.get("name")
    if not isinstance(name, str) or not name.strip():
        raise ManifestError(f"{path}: missing package name")
    version = entry.get("version")
    abandoned_raw = entry.get("abandoned", False)
    replacement = (abandoned_raw.strip() or None) if isinstance(abandoned_raw, str) else None
    description = entry.get("description")
    return PackageRecord(
        name=name.strip(),
        version=version if isinstance(version, str) and version.strip() else "unknown",
        kind=kind,
        last_updated=parse_timestamp(entry.get("time")),
        abandoned=bool(abandoned_raw),
        replacement=replacement,
        description=description if isinstance(description, str) else "",
    )


def _audit_entry(audit: PackageAudit, name: str) -> dict[str, object]:
    return audit.setdefault(name, {})


def _normalize_name(name: str) -> str:
    return name.strip().lower().replace("_", "-")


def _isoformat(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _fail(path: str, message: str) -> NoReturn:
    raise ValueError(f"{path}: {message}")


DEFAULT_FRAMEWORK_POLICY: Final[FrameworkPolicy] = FrameworkPolicy()


__all__ = [
    "DEFAULT_FRAMEWORK_POLICY",
    "DEFAULT_MANIFEST_PATH",
    "MISSING_TIMESTAMP_DAYS",
    "POTENTIALLY_OUTDATED_DAYS",
    "VERY_OUTDATED_DAYS",
    "DependencyAuditReport",
    "DependencyAuditor",
    "DependencyIssue",
    "FrameworkPolicy",
    "JsonLockManifestReader",
    "ManifestError",
    "ManifestReader",
    "PackageAudit",
    "PackageKind",
    "PackageRecord",
    "Vulnerability",
    "VulnerabilityTable",
    "compare_versions",
    "days_since_update",
    "has_version_number",
    "is_version_affected",
    "load_vulnerability_table",
    "parse_timestamp",
    "parse_version",
    "roll_up_severity",
    "security_level",
    "version_matches_constraint",
    "vulnerability_table_from_mapping",
]
