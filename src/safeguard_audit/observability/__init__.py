"""Public observability primitives: structured logging setup and redaction."""

from safeguard_audit.observability.logging import (
    LoggingConfig,
    LoggingHandle,
    LogRedactor,
    audit_scope,
    configure_structlog,
    default_log_redactor,
    get_active_logging_handle,
    setup_logging,
    setup_structured_logging,
    shutdown_logging,
)

__all__ = [
    "LogRedactor",
    "LoggingConfig",
    "LoggingHandle",
    "audit_scope",
    "configure_structlog",
    "default_log_redactor",
    "get_active_logging_handle",
    "setup_logging",
    "setup_structured_logging",
    "shutdown_logging",
]
