"""Public observability primitives: structured logging and structlog routing."""

from patchgate.observability.logging import (
    LoggingConfig,
    LogRedactor,
    StructuredLoggingHandle,
    configure_structlog,
    default_log_redactor,
    setup_structured_logging,
)

__all__ = [
    "LogRedactor",
    "LoggingConfig",
    "StructuredLoggingHandle",
    "configure_structlog",
    "default_log_redactor",
    "setup_structured_logging",
]
