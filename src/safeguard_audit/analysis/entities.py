"""
safeguard-audit — sensitive entity field classifier

File: src/safeguard_audit/analysis/entities.py

Purpose
- Infer which declared fields of data entities look sensitive and whether each
  one appears protected (hidden, encrypted cast, encryption helper, accessor).

Functional requirements
- Entities are read through safe reflection: the class is instantiated with
  ``cls.__new__`` so its constructor never runs.
- Entities that cannot be imported or reflected are skipped, never reported.
- Issue severity is tiered by keyword class; the aggregate security level is
  derived from the protected ratio and whether any encryption mechanism exists.
"""

from __future__ import annotations

import inspect
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path
from types import MappingProxyType
from typing import Any, Final

import structlog

from safeguard_audit.engine.result import Severity, max_severity
from safeguard_audit.utils.imports import load_module_from_path

DEFAULT_SENSITIVE_KEYWORDS: Final[tuple[str, ...]] = (
    "password",
    "secret",
    "token",
    "key",
    "ssn",
    "social_security",
    "credit_card",
    "card_number",
    "cvv",
    "cvv2",
    "expiry",
    "bank_account",
    "iban",
    "swift",
    "routing_number",
    "phone",
    "email",
    "address",
    "postal_code",
    "zip_code",
    "date_of_birth",
    "birth_date",
    "dob",
    "age",
    "salary",
    "income",
    "tax_id",
    "passport",
    "license",
    "medical_record",
    "health_record",
    "diagnosis",
    "api_key",
    "access_token",
    "refresh_token",
    "oauth",
    "private_key",
    "public_key",
    "certificate",
)
DEFAULT_ENCRYPTION_INDICATORS: Final[tuple[str, ...]] = (
    "encrypted",
    "hashed",
    "cipher",
    "crypt",
    "encode",
    "Encryptable",
    "Encrypted",
    "HasEncrypted",
)
CRITICAL_FIELD_KEYWORDS: Final[tuple[str, ...]] = (
    "password",
    "secret",
    "token",
    "key",
    "credit_card",
    "ssn",
)
ERROR_FIELD_KEYWORDS: Final[tuple[str, ...]] = ("phone", "email", "bank", "tax_id")

# Python distributions that provide field-level encryption, keyed by normalized name.
ENCRYPTION_PACKAGES: Final[Mapping[str, str]] = MappingProxyType(
    {
        "cryptography": "cryptography (Fernet)",
        "sqlalchemy-utils": "SQLAlchemy-Utils EncryptedType",
        "django-cryptography": "Django Cryptography",
        "django-fernet-fields": "Django Fernet Fields",
        "django-encrypted-model-fields": "Django Encrypted Model Fields",
    }
)
CUSTOM_ENCRYPTION_PATHS: Final[tuple[str, ...]] = (
    "app/encryption.py",
    "app/services/encryption_service.py",
    "app/mixins/encryptable.py",
)

_ACCESSOR_TOKENS: Final[tuple[str, ...]] = ("encrypt", "decrypt", "hash")


class Protection(StrEnum):
    HIDDEN = "hidden"
    ENCRYPTED_CAST = "encrypted_cast"
    ENCRYPTION_INDICATOR = "encryption_indicator"
    ACCESSOR = "accessor"


class SecurityLevel(StrEnum):
    EXCELLENT = "excellent"
    GOOD = "good"
    FAIR = "fair"
    POOR = "poor"
    CRITICAL = "critical"


@dataclass(frozen=True, slots=True)
class EntityDescriptor:
    """Pure metadata view of one data entity."""

    name: str
    fields: tuple[str, ...]
    casts: Mapping[str, str] = field(default_factory=dict)
    hidden: tuple[str, ...] = ()
    source_text: str = ""
    accessors: Mapping[str, str] = field(default_factory=dict)
    path: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "fields", tuple(self.fields))
        object.__setattr__(self, "hidden", tuple(self.hidden))
        object.__setattr__(self, "casts", MappingProxyType(dict(self.casts)))
        object.__setattr__(self, "accessors", MappingProxyType(dict(self.accessors)))


@dataclass(frozen=True, slots=True)
class FieldIssue:
    entity: str
    field: str
    severity: Severity
    risk: str

    @property
    def message(self) -> str:
        return f"Potentially sensitive field not encrypted: {self.entity}.{self.field}"

    def to_dict(self) -> dict[str, str]:
        return {
            "type": "unencrypted_sensitive_field",
            "severity": self.severity.value,
            "message": self.message,
            "entity": self.entity,
            "field": self.field,
            "risk": self.risk,
        }


@dataclass(frozen=True, slots=True)
class FieldProtection:
    entity: str
    field: str
    protection: Protection

    def to_dict(self) -> dict[str, str]:
        return {"entity": self.entity, "field": self.field, "protection": self.protection.value}


@dataclass(frozen=True, slots=True)
class ClassificationReport:
    issues: tuple[FieldIssue, ...]
    protected: tuple[FieldProtection, ...]
    entities_scanned: int
    entities_with_issues: int
    encryption_available: bool

    @property
    def sensitive_total(self) -> int:
        return len(self.issues) + len(self.protected)

    @property
    def protected_total(self) -> int:
        return len(self.protected)

    @property
    def max_severity(self) -> Severity:
        return max_severity(issue.severity for issue in self.issues)

    @property
    def security_level(self) -> SecurityLevel:
        return security_level(
            self.protected_total,
            self.sensitive_total,
            encryption_available=self.encryption_available,
        )

    def scan_results(self) -> dict[str, object]:
        return {
            "entities_scanned": self.entities_scanned,
            "entities_with_issues": self.entities_with_issues,
            "sensitive_fields": self.sensitive_total,
            "protected_fields": [item.to_dict() for item in self.protected],
            "unencrypted_fields": [
                {"entity": item.entity, "field": item.field} for item in self.issues
            ],
        }


@dataclass(frozen=True, slots=True)
class EncryptionSupport:
    packages: tuple[str, ...] = ()
    custom_helpers: tuple[str, ...] = ()

    @property
    def available(self) -> bool:
        return bool(self.packages or self.custom_helpers)


@dataclass(frozen=True, slots=True)
class MigrationHit:
    file: str
    keyword: str

    def to_dict(self) -> dict[str, str]:
        return {"file": self.file, "keyword": self.keyword}


def is_sensitive(name: str, keywords: Iterable[str] = DEFAULT_SENSITIVE_KEYWORDS) -> bool:
    normalized = name.lower()
    return any(keyword.lower() in normalized for keyword in keywords)


def field_severity(name: str) -> Severity:
    normalized = name.lower()
    if any(keyword in normalized for keyword in CRITICAL_FIELD_KEYWORDS):
        return Severity.CRITICAL
    if any(keyword in normalized for keyword in ERROR_FIELD_KEYWORDS):
        return Severity.ERROR
    return Severity.WARNING


def field_risk(name: str) -> str:
    normalized = name.lower()
    if "password" in normalized or "secret" in normalized:
        return "Authentication bypass, unauthorized access"
    if "credit_card" in normalized or "bank" in normalized:
        return "Financial fraud, identity theft"
    if "ssn" in normalized or "tax_id" in normalized:
        return "Identity theft, compliance violations"
    if "phone" in normalized or "email" in normalized:
        return "Privacy violations, spam, social engineering"
    return "Privacy violations, data breaches"


def protection_for(
    descriptor: EntityDescriptor,
    field_name: str,
    *,
    indicators: Sequence[str] = DEFAULT_ENCRYPTION_INDICATORS,
) -> Protection | None:
    """Return the first protection that applies to ``field_name``, if any."""

    if field_name in descriptor.hidden:
        return Protection.HIDDEN
    cast = descriptor.casts.get(field_name, "")
    if isinstance(cast, str) and "encrypt" in cast.lower():
        return Protection.ENCRYPTED_CAST
    source = descriptor.source_text
    if source and field_name in source and any(token in source for token in indicators):
        return Protection.ENCRYPTION_INDICATOR
    body = descriptor.accessors.get(field_name, "")
    if body and any(token in body.lower() for token in _ACCESSOR_TOKENS):
        return Protection.ACCESSOR
    return None


def security_level(protected: int, total: int, *, encryption_available: bool) -> SecurityLevel:
    if total <= 0 or protected >= total:
        return SecurityLevel.EXCELLENT if encryption_available else SecurityLevel.GOOD
    ratio = protected / total
    if ratio >= 0.75:
        return SecurityLevel.GOOD if encryption_available else SecurityLevel.FAIR
    if ratio >= 0.5:
        return SecurityLevel.FAIR if encryption_available else SecurityLevel.POOR
    if ratio > 0:
        return SecurityLevel.POOR if encryption_available else SecurityLevel.CRITICAL
    return SecurityLevel.CRITICAL


class SensitiveFieldClassifier:
    def __init__(
        self,
        keywords: Iterable[str] = DEFAULT_SENSITIVE_KEYWORDS,
        indicators: Iterable[str] = DEFAULT_ENCRYPTION_INDICATORS,
    ) -> None:
        self._keywords = tuple(item.lower() for item in keywords if item.strip())
        self._indicators = tuple(item for item in indicators if item.strip())

    @property
    def keywords(self) -> tuple[str, ...]:
        return self._keywords

    def classify(
        self,
        entities: Iterable[EntityDescriptor],
        *,
        encryption_available: bool,
    ) -> ClassificationReport:
        issues: list[FieldIssue] = []
        protected: list[FieldProtection] = []
        scanned = 0
        with_issues = 0

        for entity in entities:
            scanned += 1
            entity_issue_count = len(issues)
            for name in entity.fields:
                if not is_sensitive(name, self._keywords):
                    continue
                protection = protection_for(entity, name, indicators=self._indicators)
                if protection is not None:
                    protected.append(FieldProtection(entity.name, name, protection))
                    continue
                issues.append(
                    FieldIssue(
                        entity=entity.name,
                        field=name,
                        severity=field_severity(name),
                        risk=field_risk(name),
                    )
                )
            if len(issues) > entity_issue_count:
                with_issues += 1

        return ClassificationReport(
            issues=tuple(issues),
            protected=tuple(protected),
            entities_scanned=scanned,
            entities_with_issues=with_issues,
            encryption_available=encryption_available,
        )


class EntityIntrospector:
    """Discover entity classes under source roots and describe them."""

    def __init__(self, *, logger: Any | None = None) -> None:
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    def discover(self, roots: Iterable[str | Path]) -> tuple[EntityDescriptor, ...]:
        descriptors: list[EntityDescriptor] = []
        for root in roots:
            path = Path(root)
            if path.is_file():
                files = [path] if path.suffix == ".py" else []
            elif path.is_dir():
                files = sorted(item for item in path.rglob("*.py") if item.is_file())
            else:
                self._logger.debug("entity_root_missing", root=str(path))
                continue
            for file_path in files:
                descriptors.extend(self._describe_file(file_path))
        return tuple(descriptors)

    def describe(
        self,
        cls: type,
        *,
        source_text: str | None = None,
        path: str | None = None,
    ) -> EntityDescriptor:
        """Reflect ``cls`` without running its constructor."""

        instance = cls.__new__(cls)
        fields = _read_names(instance, "get_fillable", "fillable")
        if source_text is None:
            source_text = _module_source(cls)
        return EntityDescriptor(
            name=cls.__qualname__,
            fields=fields,
            casts=_read_casts(instance),
            hidden=_read_names(instance, "get_hidden", "hidden"),
            source_text=source_text,
            accessors=_accessor_sources(cls, fields),
            path=path,
        )

    def _describe_file(self, file_path: Path) -> list[EntityDescriptor]:
        try:
            source_text = file_path.read_text(encoding="utf-8", errors="replace")
            module = load_module_from_path(file_path, prefix="_safeguard_entity")
        except (Exception, SystemExit) as exc:  # noqa: BLE001
            self._logger.debug(
                "entity_module_skipped",
                path=str(file_path),
                exception_type=type(exc).__name__,
                error=str(exc),
            )
            return []

        descriptors: list[EntityDescriptor] = []
        for _, cls in inspect.getmembers(module, inspect.isclass):
            if cls.__module__ != module.__name__ or not _declares_fields(cls):
                continue
            if inspect.isabstract(cls):
                continue
            try:
                descriptors.append(
                    self.describe(cls, source_text=source_text, path=file_path.as_posix())
                )
            except (Exception, SystemExit) as exc:  # noqa: BLE001
                self._logger.debug(
                    "entity_reflection_skipped",
                    entity=cls.__qualname__,
                    path=str(file_path),
                    exception_type=type(exc).__name__,
                    error=str(exc),
                )
        return descriptors


def detect_encryption_support(
    base_path: str | Path,
    manifest_packages: Iterable[str] = (),
) -> EncryptionSupport:
    installed = {_normalize_package_name(name) for name in manifest_packages}
    packages = tuple(
        label for name, label in ENCRYPTION_PACKAGES.items() if name in installed
    )
    base = Path(base_path)
    helpers = tuple(rel for rel in CUSTOM_ENCRYPTION_PATHS if (base / rel).is_file())
    return EncryptionSupport(packages=packages, custom_helpers=helpers)


def scan_migrations(
    roots: Iterable[str | Path],
    keywords: Iterable[str] = DEFAULT_SENSITIVE_KEYWORDS,
) -> tuple[MigrationHit, ...]:
    """Flag migration files mentioning a sensitive keyword; first keyword per file."""

    ordered = tuple(item.lower() for item in keywords)
    hits: list[MigrationHit] = []
    for root in roots:
        path = Path(root)
        if not path.is_dir():
            continue
        for file_path in sorted(item for item in path.iterdir() if item.is_file()):
            try:
                content = file_path.read_text(encoding="utf-8", errors="replace").lower()
            except OSError:
                continue
            for keyword in ordered:
                if keyword in content:
                    hits.append(MigrationHit(file=file_path.name, keyword=keyword))
                    break
    return tuple(hits)


def _declares_fields(cls: type) -> bool:
    return hasattr(cls, "fillable") or callable(getattr(cls, "get_fillable", None))


def _read_names(instance: object, method_name: str, attribute: str) -> tuple[str, ...]:
    method = getattr(instance, method_name, None)
    raw = method() if callable(method) else getattr(instance, attribute, ())
    if isinstance(raw, str) or not isinstance(raw, Iterable):
        return ()
    return tuple(item for item in raw if isinstance(item, str))


def _read_casts(instance: object) -> dict[str, str]:
    method = getattr(instance, "get_casts", None)
    raw = method() if callable(method) else getattr(instance, "casts", {})
    if not isinstance(raw, Mapping):
        return {}
    return {
        str(key): value if isinstance(value, str) else getattr(value, "__name__", str(value))
        for key, value in raw.items()
    }


def _accessor_sources(cls: type, fields: Sequence[str]) -> dict[str, str]:
    accessors: dict[str, str] = {}
    for name in fields:
        chunks: list[str] = []
        for candidate in (f"get_{name}_attribute", f"set_{name}_attribute"):
            chunks.extend(_function_source(inspect.getattr_static(cls, candidate, None)))
        attribute = inspect.getattr_static(cls, name, None)
        if isinstance(attribute, property):
            chunks.extend(_function_source(attribute.fget))
            chunks.extend(_function_source(attribute.fset))
        if chunks:
            accessors[name] = "\n".join(chunks)
    return accessors


def _function_source(value: object) -> list[str]:
    if isinstance(value, (staticmethod, classmethod)):
        value = value.__func__
    if not callable(value):
        return []
    try:
        return [inspect.getsource(value)]
    except (OSError, TypeError):
        return []


def _module_source(cls: type) -> str:
    module = inspect.getmodule(cls)
    if module is None:
        return ""
    try:
        return inspect.getsource(module)
    except (OSError, TypeError):
        return ""


def _normalize_package_name(name: str) -> str:
    return name.strip().lower().replace("_", "-").replace(".", "-")


__all__ = [
    "CRITICAL_FIELD_KEYWORDS",
    "CUSTOM_ENCRYPTION_PATHS",
    "DEFAULT_ENCRYPTION_INDICATORS",
    "DEFAULT_SENSITIVE_KEYWORDS",
    "ENCRYPTION_PACKAGES",
    "ERROR_FIELD_KEYWORDS",
    "ClassificationReport",
    "EncryptionSupport",
    "EntityDescriptor",
    "EntityIntrospector",
    "FieldIssue",
    "FieldProtection",
    "MigrationHit",
    "Protection",
    "SecurityLevel",
    "SensitiveFieldClassifier",
    "detect_encryption_support",
    "field_risk",
    "field_severity",
    "is_sensitive",
    "protection_for",
    "scan_migrations",
    "security_level",
]
