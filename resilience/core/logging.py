"""
Structured logging configuration.

Readable text logs in DEBUG, JSON logs with request ids in production.
Emails and secrets are masked before they reach the log stream since login
throttling logs are full of them.
"""
import logging
import re
import sys
from typing import Any

import structlog
from pythonjsonlogger import jsonlogger

from resilience.core.config import settings

SENSITIVE_FIELDS = (
    "password",
    "token",
    "api_key",
    "secret",
    "service_role",
    "authorization",
    "cookie",
)

EMAIL_PATTERN = re.compile(r"([A-Za-z0-9._%+-])[A-Za-z0-9._%+-]*@([A-Za-z0-9.-]+\.[A-Za-z]{2,})")

QUIET_LOGGERS = ("sqlalchemy.engine", "sqlalchemy.pool", "apscheduler", "httpx")


def setup_logging() -> None:
    """
    Configure logging for the application.

    In production: JSON format with timestamps and request IDs
    In development: Readable text format
    """
    log_level = getattr(logging, settings.LOG_LEVEL)

    if settings.DEBUG:
        configure_development_logging(log_level)
    else:
        configure_production_logging(log_level)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(log_level, logging.WARNING))


def configure_development_logging(level: int) -> None:
    """Configure logging for development (readable format)."""
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S',
        stream=sys.stdout,
    )


def configure_production_logging(level: int) -> None:
    """
    Configure logging for production (JSON format).

    Modules log through the stdlib, so the root handler renders JSON with
    python-json-logger. structlog is configured with the same redaction for
    code that asks for a structlog logger, and owns the request context.
    """
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            redact_sensitive_data,
            structlog.processors.JSONRenderer(),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        jsonlogger.JsonFormatter(
            '%(asctime)s %(name)s %(levelname)s %(message)s',
            timestamp=True
        )
    )
    handler.addFilter(RequestContextFilter())

    root_logger = logging.getLogger()
    root_logger.handlers = [handler]
    root_logger.setLevel(level)


class RequestContextFilter(logging.Filter):
    """Copies structlog's bound context (request_id) onto stdlib records and masks the message."""

    def filter(self, record: logging.LogRecord) -> bool:
        for key, value in structlog.contextvars.get_contextvars().items():
            setattr(record, key, value)
        record.msg = redact_string(record.getMessage())
        record.args = ()
        return True


def redact_sensitive_data(
    logger: logging.Logger,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """
    Redact sensitive data from structlog event dicts.

    Secret-looking keys are replaced outright; string values have email
    addresses and long tokens masked.
    """
    redacted = event_dict.copy()

    for key, value in redacted.items():
        if isinstance(key, str):
            key_lower = key.lower()
            if any(sensitive in key_lower for sensitive in SENSITIVE_FIELDS):
                redacted[key] = "***REDACTED***"
            elif isinstance(value, str):
                redacted[key] = redact_string(value)

    return redacted


def redact_string(value: str) -> str:
    """
    Redact sensitive patterns from strings.

    Patterns:
    - Email addresses (first character and domain are kept)
    - API keys / tokens (long alphanumeric strings)
    """
    if '@' in value:
        value = EMAIL_PATTERN.sub(r"\1***@\2", value)

    if len(value) > 20 and value.replace('_', '').replace('-', '').isalnum():
        return f"{value[:8]}...{value[-4:]}"

    return value
