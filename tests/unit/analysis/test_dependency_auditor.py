"""
safeguard-audit — unit tests for the dependency manifest auditor

File: tests/unit/analysis/test_dependency_auditor.py

Purpose
- Validate version comparison, constraint matching and each audit pass
  (vulnerabilities, staleness, abandonment, dev packages, framework window).
- Validate lock manifest parsing and vulnerability table loading.
"""

from __future__ import annotations

import json
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from safeguard_audit.analysis.dependencies import (
    MISSING_TIMESTAMP_DAYS,
    DependencyAuditor,
    DependencyIssue,
    FrameworkPolicy,
    JsonLockManifestReader,
    ManifestError,
    PackageKind,
    PackageRecord,
    Vulnerability,
    compare_versions,
    days_since_update,
    has_version_number,
    load_vulnerability_table,
    parse_version,
    roll_up_severity,
    version_matches_constraint,
    vulnerability_table_from_mapping,
)
from safeguard_audit.engine.result import Severity

NOW = datetime(2026, 6, 1, tzinfo=UTC)

_TABLE = {
    "acme-http": (
        Vulnerability(
            title="Header injection",
            description="CRLF in header values",
            affected_versions=("<4.4.13",),
            fixed_versions=("4.4.13",),
            severity=Severity.HIGH,
            cve="CVE-2099-0001",
        ),
    ),
    "acme-orm": (
        Vulnerability(
            title="SQL injection",
            description="raw alias",
            affected_versions=(">=2.0,<2.3",),
            severity=Severity.CRITICAL,
        ),
    ),
}


def _fresh(name: str, version: str, **kwargs: object) -> PackageRecord:
    kwargs.setdefault("last_updated", NOW - timedelta(days=10))
    return PackageRecord(name=name, version=version, **kwargs)  # type: ignore[arg-type]


def _auditor(**kwargs: object) -> DependencyAuditor:
    return DependencyAuditor(_TABLE, now=NOW, **kwargs)  # type: ignore[arg-type]


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        ("4.4.5", (4, 4, 5)),
        ("v1.2", (1, 2)),
        ("2.0.0-beta+7", (2, 0, 0)),
        ("1.x.3", (1, 0, 3)),
        ("", (0,)),
    ],
)
def test_parse_version(text: str, expected: tuple[int, ...]) -> None:
    assert parse_version(text) == expected


def test_compare_versions_pads_missing_segments() -> None:
    assert compare_versions("1.2", "1.2.0") == 0
    assert compare_versions("1.10", "1.9") == 1
    assert compare_versions("4.4.5", "4.4.13") == -1


@pytest.mark.parametrize(
    ("version", "constraint", "expected"),
    [
        ("4.4.5", "<4.4.13", True),
        ("4.4.13", "<4.4.13", False),
        ("2.1", ">=2.0,<2.3", True),
        ("2.0", ">= 2.0, < 2.3", True),
        ("2.3", ">=2.0,<2.3", False),
        ("1.9", ">=2.0,<2.3", False),
        ("1.0", "<=2.0", False),
        ("1.0", "^1.0", False),
        ("1.0", ">=1.0", False),
        ("1.0", "<", False),
    ],
)
def test_version_matches_constraint(version: str, constraint: str, expected: bool) -> None:
    assert version_matches_constraint(version, constraint) is expected


def test_vulnerable_version_is_flagged_and_fixed_version_is_not() -> None:
    auditor = _auditor()

    vulnerable = auditor.audit([_fresh("acme-http", "4.4.5")], environment="local")
    fixed = auditor.audit([_fresh("acme-http", "4.4.13")], environment="local")

    assert [item.kind for item in vulnerable.issues] == ["security_vulnerability"]
    issue = vulnerable.issues[0]
    assert issue.severity is Severity.HIGH
    assert issue.to_dict()["cve"] == "CVE-2099-0001"
    assert issue.to_dict()["fixed_in"] == ["4.4.13"]
    assert vulnerable.security_level == "vulnerable"
    assert fixed.issues == ()
    assert fixed.security_level == "excellent"


def test_package_names_are_matched_case_and_separator_insensitively() -> None:
    report = _auditor().audit([_fresh("Acme_ORM", "2.1")], environment="local")

    assert [(item.package, item.severity) for item in report.issues] == [
        ("Acme_ORM", Severity.CRITICAL)
    ]


def test_roll_up_prefers_critical_over_warning() -> None:
    issues = [
        DependencyIssue(kind="a", severity=Severity.WARNING, message="w"),
        DependencyIssue(kind="b", severity=Severity.CRITICAL, message="c"),
        DependencyIssue(kind="c", severity=Severity.HIGH, message="h"),
    ]

    assert roll_up_severity(issues) is Severity.CRITICAL
    assert roll_up_severity(issues[::2]) is Severity.HIGH
    assert roll_up_severity(issues[:1]) is Severity.WARNING


def test_staleness_thresholds() -> None:
    packages = [
        _fresh("ancient", "1.0", last_updated=NOW - timedelta(days=800)),
        _fresh("aging", "1.0", last_updated=NOW - timedelta(days=400)),
        _fresh("fresh", "1.0"),
        PackageRecord(name="undated", version="1.0"),
    ]

    report = _auditor().audit(packages, environment="local")

    outdated = [item.package for item in report.issues if item.kind == "very_outdated_package"]
    assert outdated == ["ancient", "undated"]
    assert report.package_audit["aging"] == {"potentially_outdated": True, "days_since_update": 400}
    assert "fresh" not in report.package_audit
    assert report.severity is Severity.WARNING
    assert report.security_level == "good"


def test_days_since_update_handles_missing_and_naive_timestamps() -> None:
    assert days_since_update(None, now=NOW) == MISSING_TIMESTAMP_DAYS
    assert days_since_update(datetime(2026, 5, 22), now=NOW) == 10


def test_abandoned_package_reports_replacement() -> None:
    package = _fresh("old-lib", "1.0", abandoned=True, replacement="new-lib")

    report = _auditor().audit([package], environment="local")

    (issue,) = report.issues
    assert issue.kind == "abandoned_package"
    assert issue.to_dict()["replacement"] == "new-lib"
    assert "Replace abandoned packages with maintained alternatives" in report.recommendations


def test_dev_packages_only_flagged_in_production() -> None:
    packages = [_fresh("app", "1.0"), _fresh("pytest", "8.0", kind=PackageKind.DEVELOPMENT)]

    production = _auditor().audit(packages, environment="production")
    local = _auditor().audit(packages, environment="local")

    assert [item.kind for item in production.issues] == ["dev_packages_in_production"]
    assert production.issues[0].to_dict()["packages"] == ["pytest"]
    assert local.issues == ()


@pytest.mark.parametrize(
    ("version", "kind", "audit_flag"),
    [
        ("4.2.11", "unsupported_framework_version", "unsupported"),
        ("5.2.3", None, None),
        ("6.0.1", None, None),
    ],
)
def test_framework_support_window(version: str, kind: str | None, audit_flag: str | None) -> None:
    report = _auditor().audit([_fresh("Django", version)], environment="local")

    assert [item.kind for item in report.issues] == ([kind] if kind else [])
    if audit_flag:
        assert report.package_audit["Django"][audit_flag] is True  # type: ignore[index]
        assert report.issues[0].severity is Severity.HIGH


def test_framework_upgrade_available_between_supported_and_lts() -> None:
    policy = FrameworkPolicy(package="flask", supported_versions=("2.3", "3.0"), latest_lts="3.0")

    report = _auditor(framework_policy=policy).audit([_fresh("flask", "2.3.1")], environment="local")

    assert report.issues == ()
    assert report.package_audit["flask"]["upgrade_available"] is True  # type: ignore[index]


def test_lock_manifest_reader_parses_both_sections(tmp_path: Path) -> None:
    manifest = tmp_path / "packages.lock.json"
    manifest.write_text(
        json.dumps(
            {
                "packages": [
                    {"name": "requests", "version": "2.30.0", "time": "2023-05-01T00:00:00+00:00"},
                    {"name": "legacy", "version": "0.1", "abandoned": "modern"},
                ],
                "packages-dev": [{"name": "pytest", "version": "8.1.0", "time": "0"}],
            }
        ),
        encoding="utf-8",
    )

    records = JsonLockManifestReader().read(manifest)

    by_name = {item.name: item for item in records}
    assert by_name["requests"].last_updated == datetime(2023, 5, 1, tzinfo=UTC)
    assert by_name["legacy"].abandoned and by_name["legacy"].replacement == "modern"
    assert by_name["pytest"].kind is PackageKind.DEVELOPMENT
    assert by_name["pytest"].last_updated is None


@pytest.mark.parametrize(
    ("content", "match"),
    [
        ("{not json", "invalid JSON"),
        ("[]", "root must be an object"),
        ('{"packages": {}}', "'packages' must be an array"),
        ('{"packages": [{"version": "1.0"}]}', "missing package name"),
    ],
)
def test_lock_manifest_reader_rejects_malformed_files(tmp_path: Path, content: str, match: str) -> None:
    manifest = tmp_path / "packages.lock.json"
    manifest.write_text(content, encoding="utf-8")

    with pytest.raises(ManifestError, match=match):
        JsonLockManifestReader().read(manifest)


def test_lock_manifest_reader_reports_missing_file(tmp_path: Path) -> None:
    with pytest.raises(ManifestError, match="unreadable lock file"):
        JsonLockManifestReader().read(tmp_path / "absent.json")


def test_packaged_vulnerability_table_loads() -> None:
    table = load_vulnerability_table()

    assert "django" in table
    assert all(isinstance(entry, Vulnerability) for entries in table.values() for entry in entries)
    assert table["requests"][0].severity is Severity.WARNING


def test_vulnerability_table_from_yaml_file(tmp_path: Path) -> None:
    path = tmp_path / "table.yaml"
    path.write_text(
        "Acme_Lib:\n"
        "  - title: Bad thing\n"
        "    affected_versions: ['<1.0']\n"
        "    fixed_in: ['1.0']\n"
        "    severity: critical\n",
        encoding="utf-8",
    )

    table = load_vulnerability_table(path)

    (entry,) = table["acme-lib"]
    assert entry.fixed_versions == ("1.0",)
    assert entry.severity is Severity.CRITICAL


@pytest.mark.parametrize(
    ("raw", "match"),
    [
        ([], "expected mapping of package name"),
        ({"pkg": {}}, "vulnerabilities.pkg: expected list"),
        ({"pkg": ["x"]}, r"pkg\[0\]: expected mapping"),
        ({"pkg": [{"affected_versions": "<1"}]}, "affected_versions: expected list of strings"),
    ],
)
def test_vulnerability_table_rejects_malformed_entries(raw: object, match: str) -> None:
    with pytest.raises(ValueError, match=match):
        vulnerability_table_from_mapping(raw)


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        ("4.4.5", True),
        ("v2.0", True),
        ("  10 ", True),
        ("unknown", False),
        ("dev-main", False),
        ("", False),
    ],
)
def test_has_version_number(text: str, expected: bool) -> None:
    assert has_version_number(text) is expected


def test_unversioned_packages_are_not_matched_against_advisories(tmp_path: Path) -> None:
    manifest = tmp_path / "packages.lock.json"
    manifest.write_text(
        json.dumps(
            {"packages": [{"name": "acme-http"}, {"name": "Django", "version": "dev-main"}]}
        ),
        encoding="utf-8",
    )
    packages = JsonLockManifestReader().read(manifest)

    report = _auditor().audit(
        [_fresh(item.name, item.version) for item in packages], environment="local"
    )

    assert report.issues == ()
    assert report.security_level == "excellent"


def test_dev_package_rollup_cannot_collide_with_package_names() -> None:
    packages = [
        _fresh("dev_packages_in_production", "1.0", last_updated=NOW - timedelta(days=800)),
        _fresh("pytest", "8.0", kind=PackageKind.DEVELOPMENT),
    ]

    report = _auditor().audit(packages, environment="production")

    assert report.dev_packages == ("pytest",)
    assert report.package_audit["dev_packages_in_production"]["outdated"] is True
    assert [item.kind for item in report.issues] == [
        "very_outdated_package",
        "dev_packages_in_production",
    ]


def test_future_timestamps_count_as_fresh() -> None:
    ahead = NOW + timedelta(days=3 * 365)
    package = _fresh("clock-skew", "1.0", last_updated=ahead)

    report = _auditor().audit([package], environment="local")

    assert days_since_update(ahead, now=NOW) == 0
    assert report.issues == ()
    assert "clock-skew" not in report.package_audit
