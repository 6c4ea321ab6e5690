"""
safeguard-audit — structured audit logging

File: src/safeguard_audit/observability/logging.py

Purpose
- Route structlog events emitted by the engine, rules and loaders into stdlib
  handlers as JSON lines (default) or ``LEVEL logger event key=value`` text.

Functional requirements
- Extra event fields are nested under ``fields`` in JSON output.
- Secret-looking keys, ``key=value`` assignments, bearer tokens and
  ``base64:`` app keys are masked unless ``redact_secrets`` is false.
- One setup is active at a time; a new setup closes the previous handlers.
- An optional file sink always writes JSON lines.
"""

from __future__ import annotations

import json
import logging
import math
import re
import sys
import threading
from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import IO, Final, Literal

import structlog

JSONScalar = str | int | float | bool | None
JSONValue = JSONScalar | list["JSONValue"] | dict[str, "JSONValue"]
LogRedactor = Callable[[JSONValue], JSONValue]
LogFormat = Literal["json", "text"]

MASK: Final[str] = "***REDACTED***"
DEFAULT_LOGGER_NAME: Final[str] = "safeguard_audit"

_SECRET_KEY_PARTS: Final[tuple[str, ...]] = (
    "secret",
    "token",
    "password",
    "passphrase",
    "api_key",
    "apikey",
    "app_key",
    "authorization",
    "credential",
    "cookie",
    "private_key",
)

# Secret scan findings carry the offending source line in ``content``.
_ASSIGNMENT_RE: Final[re.Pattern[str]] = re.compile(
    r"(?i)\b(\w*(?:api[_-]?key|key|token|password|secret|authorization))\b"
    r"(\s*[:=]\s*)(['\"]?)([^\s,;'\"]+)\3"
)
_BEARER_RE: Final[re.Pattern[str]] = re.compile(r"(?i)\bbearer\s+[A-Za-z0-9._~+/-]+=*")
_APP_KEY_RE: Final[re.Pattern[str]] = re.compile(r"\bbase64:[A-Za-z0-9+/]{16,}={0,2}")

# Attributes every LogRecord carries; anything else arrived through ``extra``.
_RECORD_ATTRS: Final[frozenset[str]] = frozenset(
    logging.LogRecord("", logging.INFO, "", 0, "", None, None).__dict__
) | {"message", "asctime", "taskName"}


@dataclass(frozen=True, slots=True)
class LoggingConfig:
    """Handler setup for one audit run."""

    logger_name: str = DEFAULT_LOGGER_NAME
    level: int | str = "INFO"
    log_format: LogFormat = "json"
    stream: IO[str] | None = None
    log_path: Path | str | None = None
    redactor: LogRedactor | None = None


class _AuditFormatter(logging.Formatter):
    def __init__(self, log_format: LogFormat, redactor: LogRedactor) -> None:
        super().__init__()
        self._log_format = log_format
        self._redact = redactor

    def format(self, record: logging.LogRecord) -> str:
        event = _as_text(self._redact(record.getMessage()))
        fields = self._redact(
            {
                key: _jsonable(value)
                for key, value in record.__dict__.items()
                if key not in _RECORD_ATTRS and not key.startswith("_")
            }
        )
        error = self.formatException(record.exc_info) if record.exc_info else None

        if self._log_format == "text":
            pairs = sorted(fields.items()) if isinstance(fields, dict) else []
            line = " ".join(
                [record.levelname, record.name, event]
                + [f"{key}={_as_text(value)}" for key, value in pairs]
            )
            return line if error is None else f"{line}\n{error}"

        payload: dict[str, JSONValue] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC)
            .isoformat(timespec="milliseconds")
            .replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "event": event,
        }
        if fields:
            payload["fields"] = fields
        if error is not None:
            payload["exception"] = _as_text(self._redact(error))
        return json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


class LoggingHandle:
    """Handlers attached by one setup call; ``shutdown`` is idempotent."""

    def __init__(self, *, logger: logging.Logger, handlers: tuple[logging.Handler, ...]) -> None:
        self.logger = logger
        self.handlers = handlers
        self._lock = threading.Lock()
        self._closed = False

    @property
    def is_shutdown(self) -> bool:
        return self._closed

    def flush(self) -> None:
        for handler in self.handlers:
            handler.flush()

    def shutdown(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            for handler in self.handlers:
                self.logger.removeHandler(handler)
                handler.close()


_active_lock = threading.Lock()
_active: LoggingHandle | None = None


def setup_logging(
    observability_config: Mapping[str, object] | None = None,
    *,
    stream: IO[str] | None = None,
    log_path: Path | str | None = None,
    logger_name: str = DEFAULT_LOGGER_NAME,
) -> logging.Logger:
    """Configure logging from an ``[observability]`` table and return the logger."""

    section = observability_config or {}
    level = section.get("log_level", "INFO")
    config = LoggingConfig(
        logger_name=logger_name,
        level=level if isinstance(level, (int, str)) else "INFO",
        log_format="text" if section.get("log_format") == "text" else "json",
        stream=stream,
        log_path=log_path,
        redactor=None if section.get("redact_secrets", True) else _passthrough,
    )
    return setup_structured_logging(config).logger


def setup_structured_logging(config: LoggingConfig) -> LoggingHandle:
    global _active

    shutdown_logging()

    name = config.logger_name.strip() if isinstance(config.logger_name, str) else ""
    if not name:
        raise ValueError("logger_name must not be empty")
    level = _level_number(config.level)
    redactor = config.redactor or default_log_redactor

    console = logging.StreamHandler(config.stream or sys.stderr)
    console.setFormatter(_AuditFormatter(config.log_format, redactor))
    handlers: list[logging.Handler] = [console]
    if config.log_path is not None:
        target = Path(config.log_path)
        target.parent.mkdir(parents=True, exist_ok=True)
        sink = logging.FileHandler(target, encoding="utf-8")
        sink.setFormatter(_AuditFormatter("json", redactor))
        handlers.append(sink)

    logger = logging.getLogger(name)
    for stale in list(logger.handlers):
        logger.removeHandler(stale)
        stale.close()
    logger.setLevel(level)
    logger.propagate = False
    for handler in handlers:
        handler.setLevel(level)
        logger.addHandler(handler)

    configure_structlog()

    handle = LoggingHandle(logger=logger, handlers=tuple(handlers))
    with _active_lock:
        _active = handle
    return handle


def configure_structlog() -> None:
    """Hand structlog events to stdlib loggers, event name as message and the rest as extras."""

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.processors.format_exc_info,
            structlog.stdlib.render_to_log_kwargs,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )


def shutdown_logging(handle: LoggingHandle | None = None) -> None:
    global _active

    with _active_lock:
        target = handle if handle is not None else _active
        if target is not None and target is _active:
            _active = None
    if target is not None:
        target.shutdown()


def get_active_logging_handle() -> LoggingHandle | None:
    with _active_lock:
        return _active


@contextmanager
def audit_scope(**fields: str) -> Iterator[None]:
    """Attach ``fields`` (e.g. ``environment``) to every structlog event inside the block."""

    with structlog.contextvars.bound_contextvars(**fields):
        yield


def default_log_redactor(value: JSONValue) -> JSONValue:
    """Return a masked copy of ``value``; the input is never mutated."""

    if isinstance(value, dict):
        return {
            key: MASK if _is_secret_key(key) else default_log_redactor(item)
            for key, item in value.items()
        }
    if isinstance(value, list):
        return [default_log_redactor(item) for item in value]
    if isinstance(value, str):
        masked = _ASSIGNMENT_RE.sub(lambda m: f"{m[1]}{m[2]}{m[3]}{MASK}{m[3]}", value)
        masked = _BEARER_RE.sub(f"Bearer {MASK}", masked)
        return _APP_KEY_RE.sub(MASK, masked)
    return value


def _passthrough(value: JSONValue) -> JSONValue:
    return value


def _is_secret_key(key: str) -> bool:
    lowered = key.lower()
    return any(part in lowered for part in _SECRET_KEY_PARTS)


def _level_number(level: int | str) -> int:
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(str(level).strip().upper())
    if not isinstance(resolved, int):
        raise ValueError(f"unsupported logging level {level!r}")
    return resolved


def _as_text(value: JSONValue) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, (str, int, float)):
        return str(value)
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def _jsonable(value: object) -> JSONValue:
    if value is None or isinstance(value, (bool, int, str)):
        return value
    if isinstance(value, float):
        return value if math.isfinite(value) else str(value)
    if isinstance(value, datetime):
        aware = value if value.tzinfo is not None else value.replace(tzinfo=UTC)
        return aware.astimezone(UTC).isoformat().replace("+00:00", "Z")
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    if isinstance(value, Path):
        return value.as_posix()
    if isinstance(value, Mapping):
        return {str(key): _jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(item) for item in value]
    if isinstance(value, (set, frozenset)):
        return sorted((_jsonable(item) for item in value), key=repr)
    return repr(value)


__all__ = [
    "DEFAULT_LOGGER_NAME",
    "JSONScalar",
    "JSONValue",
    "LogFormat",
    "LogRedactor",
    "LoggingConfig",
    "LoggingHandle",
    "MASK",
    "audit_scope",
    "configure_structlog",
    "default_log_redactor",
    "get_active_logging_handle",
    "setup_logging",
    "setup_structured_logging",
    "shutdown_logging",
]
