"""
safeguard-audit — hard-coded secret scanner

File: src/safeguard_audit/analysis/secrets.py

Purpose
- Report source lines that assign a quoted literal to an identifier matching one
  of the configured wildcard patterns (``*_KEY``, ``API_*`` ...).

Functional requirements
- Wildcard ``*`` matches any run of characters other than quotes; every other
  pattern character is literal.
- Blank lines and lines that start with a comment marker are never reported.
- For one line the first matching pattern wins; one line yields at most one finding.
- Malformed patterns never raise; they simply never match.

Non-functional requirements
- Deterministic: files are visited in sorted order and reported with POSIX paths.
- Binary, oversized and unreadable files are skipped without failing the scan.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Final

import structlog

DEFAULT_SECRET_PATTERNS: Final[tuple[str, ...]] = (
    "*_KEY",
    "*_SECRET",
    "*_TOKEN",
    "*_PASSWORD",
    "API_*",
    "AWS_*",
    "STRIPE_*",
    "PAYPAL_*",
    "TWILIO_*",
    "MAILGUN_*",
)
DEFAULT_EXTENSIONS: Final[tuple[str, ...]] = (".py",)
DEFAULT_EXCLUDED_DIRS: Final[tuple[str, ...]] = (
    "vendor",
    "site-packages",
    ".venv",
    "node_modules",
)
COMMENT_MARKERS: Final[tuple[str, ...]] = ("#", "//", "/*", "*", "--")

MAX_CONTENT_PREVIEW: Final[int] = 200

_DEFAULT_MAX_FILE_SIZE: Final[int] = 1_048_576
_BINARY_SNIFF_BYTES: Final[int] = 8_192
_WILDCARD_CLASS: Final[str] = "[^'\"]*"
_ASSIGNED_LITERAL: Final[str] = r"\s*=\s*['\"][^'\"\s]+['\"]"

logger = structlog.get_logger(__name__)


@dataclass(frozen=True, slots=True)
class Finding:
    """One reported line."""

    file: str
    line: int
    pattern: str
    content: str

    def __post_init__(self) -> None:
        if self.line < 1:
            raise ValueError(f"Finding.line: must be >= 1, got {self.line}")

    def to_dict(self) -> dict[str, str | int]:
        return {
            "file": self.file,
            "line": self.line,
            "pattern": self.pattern,
            "content": self.content,
        }


@dataclass(frozen=True, slots=True)
class ScanReport:
    findings: tuple[Finding, ...]
    scanned_files: tuple[str, ...]
    skipped_roots: tuple[str, ...] = ()

    @property
    def clean(self) -> bool:
        return not self.findings


@dataclass(frozen=True, slots=True)
class CompiledPattern:
    pattern: str
    regex: re.Pattern[str] | None

    def matches(self, line: str) -> bool:
        return self.regex is not None and self.regex.search(line) is not None


def compile_secret_pattern(pattern: object) -> re.Pattern[str] | None:
    """Build the assignment regex for a wildcard ``pattern``; ``None`` if unusable."""

    if not isinstance(pattern, str):
        return None
    token = pattern.strip()
    if not token:
        return None
    body = _WILDCARD_CLASS.join(re.escape(part) for part in token.split("*"))
    try:
        return re.compile(rf"(?<![\w$])\$?{body}{_ASSIGNED_LITERAL}", re.IGNORECASE)
    except (re.error, RecursionError, OverflowError):
        return None


def compile_secret_patterns(patterns: Iterable[object]) -> tuple[CompiledPattern, ...]:
    compiled: list[CompiledPattern] = []
    for pattern in patterns:
        regex = compile_secret_pattern(pattern)
        if regex is None:
            logger.debug("secret_pattern_unusable", pattern=repr(pattern))
        compiled.append(CompiledPattern(pattern=str(pattern), regex=regex))
    return tuple(compiled)


def is_comment_or_blank(line: str) -> bool:
    stripped = line.strip()
    return not stripped or stripped.startswith(COMMENT_MARKERS)


def line_contains_secret(
    line: str,
    patterns: Sequence[CompiledPattern],
) -> tuple[str, str] | None:
    """Return ``(pattern, trimmed_line)`` for the first matching pattern."""

    if is_comment_or_blank(line):
        return None
    stripped = line.strip()
    for compiled in patterns:
        if compiled.matches(stripped):
            return compiled.pattern, stripped
    return None


class SecretScanner:
    """Line-oriented scanner over one or more source roots."""

    def __init__(
        self,
        patterns: Iterable[object] = DEFAULT_SECRET_PATTERNS,
        *,
        extensions: Iterable[str] = DEFAULT_EXTENSIONS,
        excluded_dirs: Iterable[str] = DEFAULT_EXCLUDED_DIRS,
        include_excluded: bool = False,
        max_file_size_bytes: int = _DEFAULT_MAX_FILE_SIZE,
        logger: Any | None = None,
    ) -> None:
        if max_file_size_bytes <= 0:
            raise ValueError("max_file_size_bytes must be > 0")
        self._patterns = compile_secret_patterns(patterns)
        self._extensions = frozenset(_normalize_extension(item) for item in extensions)
        self._excluded_dirs = frozenset(item.strip() for item in excluded_dirs if item.strip())
        self._include_excluded = include_excluded
        self._max_file_size = max_file_size_bytes
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    @property
    def patterns(self) -> tuple[str, ...]:
        return tuple(item.pattern for item in self._patterns)

    def scan_text(self, text: str, *, file: str) -> list[Finding]:
        findings: list[Finding] = []
        for line_no, line in enumerate(text.splitlines(), start=1):
            hit = line_contains_secret(line, self._patterns)
            if hit is None:
                continue
            pattern, content = hit
            findings.append(
                Finding(file=file, line=line_no, pattern=pattern, content=_preview(content))
            )
        return findings

    def scan(self, roots: Iterable[str | Path], *, base_path: str | Path) -> ScanReport:
        base = Path(base_path).resolve(strict=False)
        findings: list[Finding] = []
        scanned: list[str] = []
        skipped: list[str] = []

        for raw_root in roots:
            root = Path(raw_root)
            if not root.is_absolute():
                root = base / root
            if not root.exists():
                skipped.append(str(raw_root))
                self._logger.debug("secret_scan_root_missing", root=str(root))
                continue

            for file_path in self._collect_files(root):
                text = self._read_text(file_path)
                if text is None:
                    continue
                rel = _display_path(file_path, base=base, root=root)
                scanned.append(rel)
                findings.extend(self.scan_text(text, file=rel))

        self._logger.debug(
            "secret_scan_completed",
            files=len(scanned),
            findings=len(findings),
            skipped_roots=len(skipped),
        )
        return ScanReport(
            findings=tuple(findings),
            scanned_files=tuple(scanned),
            skipped_roots=tuple(skipped),
        )

    def _collect_files(self, root: Path) -> list[Path]:
        if root.is_file():
            return [root] if self._wanted(root, root.parent) else []
        candidates = (path for path in root.rglob("*") if path.is_file())
        return sorted(path for path in candidates if self._wanted(path, root))

    def _wanted(self, path: Path, root: Path) -> bool:
        if self._extensions and path.suffix.lower() not in self._extensions:
            return False
        if self._include_excluded:
            return True
        try:
            parts = path.relative_to(root).parts[:-1]
        except ValueError:
            parts = path.parts[:-1]
        return not any(part in self._excluded_dirs for part in parts)

    def _read_text(self, path: Path) -> str | None:
        try:
            if path.stat().st_size > self._max_file_size:
                return None
            raw = path.read_bytes()
        except OSError:
            return None
        if b"\x00" in raw[:_BINARY_SNIFF_BYTES]:
            return None
        return raw.decode("utf-8", errors="replace")


def _preview(content: str) -> str:
    if len(content) <= MAX_CONTENT_PREVIEW:
        return content
    return f"{content[: MAX_CONTENT_PREVIEW - 3]}..."


def _normalize_extension(value: str) -> str:
    token = value.strip().lower()
    if token and not token.startswith("."):
        token = f".{token}"
    return token


def _display_path(path: Path, *, base: Path, root: Path) -> str:
    resolved = path.resolve(strict=False)
    for anchor in (base, root.resolve(strict=False)):
        try:
            return resolved.relative_to(anchor).as_posix()
        except ValueError:
            continue
    return resolved.as_posix()


__all__ = [
    "COMMENT_MARKERS",
    "DEFAULT_EXCLUDED_DIRS",
    "DEFAULT_EXTENSIONS",
    "DEFAULT_SECRET_PATTERNS",
    "MAX_CONTENT_PREVIEW",
    "CompiledPattern",
    "Finding",
    "ScanReport",
    "SecretScanner",
    "compile_secret_pattern",
    "compile_secret_patterns",
    "is_comment_or_blank",
    "line_contains_secret",
]
