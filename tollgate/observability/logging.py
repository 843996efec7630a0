"""Structured logging configuration using structlog.

Provides JSON logging for production and console logging for development,
with contextvar binding and redaction of raw telemetry payloads.
"""

import sys
from collections.abc import MutableMapping
from typing import Any, cast

import structlog
from structlog.types import EventDict, WrappedLogger

# Keys whose values carry raw device payloads or credentials
REDACTED_KEYS: frozenset[str] = frozenset({
    "payload",
    "body",
    "raw",
    "message_body",
    "password",
    "secret",
    "token",
    "api_key",
    "authorization",
    "credentials",
})

# Longer string values are truncated before rendering
MAX_VALUE_LENGTH = 512


class PayloadRedactor:
    """Processor that keeps device payloads out of log output.

    Fingerprints and identifiers are logged verbatim; payload bodies and
    credentials are replaced by a placeholder, and oversized strings are
    truncated so a malformed message cannot flood the log pipeline.
    """

    def __call__(
        self,
        _logger: WrappedLogger,
        _method_name: str,
        event_dict: EventDict,
    ) -> EventDict:
        """Redact payloads from event dictionary."""
        return cast(EventDict, self._redact_dict(event_dict))

    def _redact_dict(self, data: MutableMapping[str, Any]) -> dict[str, Any]:
        result: dict[str, Any] = {}
        for key, value in data.items():
            if key.lower() in REDACTED_KEYS:
                result[key] = "[REDACTED]"
            elif isinstance(value, dict):
                result[key] = self._redact_dict(value)
            elif isinstance(value, str):
                result[key] = self._truncate(value)
            else:
                result[key] = value
        return result

    def _truncate(self, value: str) -> str:
        if len(value) <= MAX_VALUE_LENGTH:
            return value
        return f"{value[:MAX_VALUE_LENGTH]}...[{len(value) - MAX_VALUE_LENGTH} more]"


def setup_logging(
    level: str = "INFO",
    format: str = "json",
    redact_payloads: bool = True,
) -> None:
    """Configure structured logging.

    Args:
        level: Minimum log level (DEBUG, INFO, WARNING, ERROR)
        format: Output format - "json" for production, "console" for development
        redact_payloads: Whether to strip payload bodies from log events
    """
    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    if redact_payloads:
        processors.append(PayloadRedactor())

    if format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    level_map = {
        "DEBUG": 10,
        "INFO": 20,
        "WARNING": 30,
        "ERROR": 40,
        "CRITICAL": 50,
    }
    level_num = level_map.get(level.upper(), 20)

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level_num),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(sys.stderr),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a logger instance bound to the given name.

    Args:
        name: Logger name (typically __name__ of the module)

    Returns:
        A bound structlog logger
    """
    return cast(structlog.stdlib.BoundLogger, structlog.get_logger(name))
