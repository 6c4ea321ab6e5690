"""
safeguard-audit — unit tests for the sensitive entity field classifier

File: tests/unit/analysis/test_entity_classifier.py

Purpose
- Validate sensitivity matching, protection detection, severity tiers and the
  aggregate security level.
- Validate reflection of entity classes loaded from a source tree.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from safeguard_audit.analysis.entities import (
    EntityDescriptor,
    EntityIntrospector,
    Protection,
    SecurityLevel,
    SensitiveFieldClassifier,
    detect_encryption_support,
    field_severity,
    is_sensitive,
    protection_for,
    scan_migrations,
    security_level,
)
from safeguard_audit.engine.result import Severity


def _write(path: Path, text: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


def test_unprotected_password_yields_one_critical_issue() -> None:
    entity = EntityDescriptor(name="User", fields=("name", "password"))

    report = SensitiveFieldClassifier().classify([entity], encryption_available=False)

    assert len(report.issues) == 1
    issue = report.issues[0]
    assert (issue.entity, issue.field, issue.severity) == ("User", "password", Severity.CRITICAL)
    assert issue.message == "Potentially sensitive field not encrypted: User.password"
    assert report.max_severity is Severity.CRITICAL


def test_hidden_field_is_protected() -> None:
    entity = EntityDescriptor(name="User", fields=("name", "password"), hidden=("password",))

    report = SensitiveFieldClassifier().classify([entity], encryption_available=False)

    assert report.issues == ()
    assert [(item.field, item.protection) for item in report.protected] == [
        ("password", Protection.HIDDEN)
    ]


@pytest.mark.parametrize(
    ("descriptor", "expected"),
    [
        (
            EntityDescriptor(name="A", fields=("ssn",), casts={"ssn": "EncryptedString"}),
            Protection.ENCRYPTED_CAST,
        ),
        (
            EntityDescriptor(
                name="A",
                fields=("ssn",),
                source_text="class A(Encryptable):\n    fillable = ['ssn']\n",
            ),
            Protection.ENCRYPTION_INDICATOR,
        ),
        (
            EntityDescriptor(
                name="A",
                fields=("ssn",),
                accessors={"ssn": "def get_ssn_attribute(self, value):\n    return decrypt(value)"},
            ),
            Protection.ACCESSOR,
        ),
        (EntityDescriptor(name="A", fields=("ssn",), casts={"ssn": "str"}), None),
    ],
)
def test_protection_detection(descriptor: EntityDescriptor, expected: Protection | None) -> None:
    assert protection_for(descriptor, "ssn") is expected


@pytest.mark.parametrize(
    ("name", "severity"),
    [
        ("password", Severity.CRITICAL),
        ("API_TOKEN", Severity.CRITICAL),
        ("credit_card_number", Severity.CRITICAL),
        ("phone", Severity.ERROR),
        ("contact_email", Severity.ERROR),
        ("bank_account", Severity.ERROR),
        ("address", Severity.WARNING),
        ("date_of_birth", Severity.WARNING),
    ],
)
def test_severity_tiers(name: str, severity: Severity) -> None:
    assert is_sensitive(name)
    assert field_severity(name) is severity


def test_non_sensitive_fields_are_ignored() -> None:
    entity = EntityDescriptor(name="Post", fields=("title", "body", "published"))

    report = SensitiveFieldClassifier().classify([entity], encryption_available=True)

    assert report.sensitive_total == 0
    assert report.security_level is SecurityLevel.EXCELLENT
    assert report.max_severity is Severity.INFO


def test_custom_keywords_replace_defaults() -> None:
    entity = EntityDescriptor(name="Patient", fields=("password", "blood_type"))

    report = SensitiveFieldClassifier(keywords=["blood"]).classify(
        [entity], encryption_available=False
    )

    assert [(item.field, item.severity) for item in report.issues] == [
        ("blood_type", Severity.WARNING)
    ]


@pytest.mark.parametrize(
    ("protected", "total", "available", "level"),
    [
        (0, 0, True, SecurityLevel.EXCELLENT),
        (0, 0, False, SecurityLevel.GOOD),
        (4, 4, False, SecurityLevel.GOOD),
        (3, 4, True, SecurityLevel.GOOD),
        (3, 4, False, SecurityLevel.FAIR),
        (2, 4, True, SecurityLevel.FAIR),
        (2, 4, False, SecurityLevel.POOR),
        (1, 4, True, SecurityLevel.POOR),
        (1, 4, False, SecurityLevel.CRITICAL),
        (0, 4, True, SecurityLevel.CRITICAL),
    ],
)
def test_security_level_bands(protected: int, total: int, available: bool, level: SecurityLevel) -> None:
    assert security_level(protected, total, encryption_available=available) is level


def test_report_scan_results_summarize_entities() -> None:
    entities = [
        EntityDescriptor(name="User", fields=("email", "password"), hidden=("password",)),
        EntityDescriptor(name="Post", fields=("title",)),
    ]

    report = SensitiveFieldClassifier().classify(entities, encryption_available=False)

    assert report.scan_results() == {
        "entities_scanned": 2,
        "entities_with_issues": 1,
        "sensitive_fields": 2,
        "protected_fields": [{"entity": "User", "field": "password", "protection": "hidden"}],
        "unencrypted_fields": [{"entity": "User", "field": "email"}],
    }
    assert report.security_level is SecurityLevel.POOR


_MODELS = '''
import abc


class BaseModel:
    def __init__(self, **attributes):
        raise RuntimeError("constructors must not run during reflection")


class User(BaseModel):
    fillable = ["name", "password", "phone"]
    hidden = ["password"]
    casts = {"phone": "str"}


class Card(BaseModel):
    def get_fillable(self):
        return ["card_number", "holder"]

    def get_card_number_attribute(self, value):
        return vault.unhash(value)


class Abstract(BaseModel, abc.ABC):
    fillable = ["secret"]

    @abc.abstractmethod
    def save(self):
        ...


class Helper:
    value = 1
'''


def test_introspector_reflects_entities_without_running_constructors(tmp_path: Path) -> None:
    _write(tmp_path / "app" / "models" / "core.py", _MODELS)
    _write(tmp_path / "app" / "models" / "broken.py", "raise ImportError('missing dependency')\n")

    descriptors = EntityIntrospector().discover([tmp_path / "app" / "models"])

    by_name = {item.name: item for item in descriptors}
    assert sorted(by_name) == ["Card", "User"]
    assert by_name["User"].fields == ("name", "password", "phone")
    assert by_name["User"].hidden == ("password",)
    assert dict(by_name["User"].casts) == {"phone": "str"}
    assert by_name["Card"].fields == ("card_number", "holder")
    assert "unhash" in by_name["Card"].accessors["card_number"]
    assert by_name["Card"].path is not None and by_name["Card"].path.endswith("core.py")


def test_introspector_skips_model_module_that_exits(tmp_path: Path) -> None:
    _write(tmp_path / "models" / "a_exits.py", "import sys\n\nsys.exit(0)\n")
    _write(tmp_path / "models" / "core.py", _MODELS)

    descriptors = EntityIntrospector().discover([tmp_path / "models"])

    assert sorted(item.name for item in descriptors) == ["Card", "User"]


def test_introspected_entities_classify_end_to_end(tmp_path: Path) -> None:
    _write(tmp_path / "models" / "core.py", _MODELS)

    descriptors = EntityIntrospector().discover([tmp_path / "models", tmp_path / "missing"])
    report = SensitiveFieldClassifier().classify(descriptors, encryption_available=False)

    assert [(item.entity, item.field, item.severity) for item in report.issues] == [
        ("User", "phone", Severity.ERROR)
    ]
    assert {(item.entity, item.field, item.protection) for item in report.protected} == {
        ("Card", "card_number", Protection.ACCESSOR),
        ("User", "password", Protection.HIDDEN),
    }


def test_detect_encryption_support_from_packages_and_helpers(tmp_path: Path) -> None:
    assert not detect_encryption_support(tmp_path, ["requests"]).available

    _write(tmp_path / "app" / "encryption.py", "def encrypt(value): ...\n")
    support = detect_encryption_support(tmp_path, ["Django_Cryptography", "requests"])

    assert support.packages == ("Django Cryptography",)
    assert support.custom_helpers == ("app/encryption.py",)
    assert support.available


def test_scan_migrations_reports_first_keyword_per_file(tmp_path: Path) -> None:
    _write(tmp_path / "migrations" / "0002_profile.py", "AddField('profile', 'phone')\n")
    _write(tmp_path / "migrations" / "0001_initial.py", "CreateModel('user', password=...)\n")
    _write(tmp_path / "migrations" / "0003_noop.py", "pass\n")

    hits = scan_migrations([tmp_path / "migrations", tmp_path / "absent"])

    assert [(item.file, item.keyword) for item in hits] == [
        ("0001_initial.py", "password"),
        ("0002_profile.py", "phone"),
    ]
