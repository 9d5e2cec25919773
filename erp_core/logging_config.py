"""
Structured Logging Configuration Module

Provides JSON-formatted structured logging for all ERP operations. Every
record carries the correlation id of the request (or job) it belongs to,
and resources are written as "<table>:<record id>".
"""

import contextvars
import json
import logging
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator, Optional


CORRELATION_HEADER = "X-Correlation-ID"

_correlation_id = contextvars.ContextVar('correlation_id', default=None)


def get_correlation_id() -> Optional[str]:
    """Correlation id of the current context, if any"""
    return _correlation_id.get()


@contextmanager
def correlation_context(correlation_id: Optional[str] = None) -> Iterator[str]:
    """
    Bind a correlation id to everything logged inside the block

    A fresh id is generated when none (or a blank one) is given.
    """
    correlation_id = (correlation_id or "").strip() or uuid.uuid4().hex
    token = _correlation_id.set(correlation_id)
    try:
        yield correlation_id
    finally:
        _correlation_id.reset(token)


def resource_ref(table: str, record_id: Optional[str] = None) -> str:
    """Resource label for a table or one of its records"""
    if record_id is None:
        return table
    return f"{table}:{record_id}"


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging"""

    def format(self, record):
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "correlation_id": getattr(record, 'correlation_id', None) or get_correlation_id(),
            "user_id": getattr(record, 'user_id', None),
            "action": getattr(record, 'action', None),
            "resource": getattr(record, 'resource', None),
            "extra": getattr(record, 'extra', None)
        }

        log_entry = {k: v for k, v in log_entry.items() if v is not None}

        if record.exc_info:
            log_entry['exception'] = self.formatException(record.exc_info)

        # Decimal amounts and dates are written as strings
        return json.dumps(log_entry, default=str, ensure_ascii=False)


def setup_logging(level: str = "INFO", logger_name: str = "erp",
                  log_file: Optional[str] = None) -> logging.Logger:
    """
    Attach a JSON handler to the application logger.

    Module loggers ("erp.obligations", "erp.codes", ...) propagate to it.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        logger_name: Name of the root application logger
        log_file: Optional file path; logs go to stderr when omitted

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(logger_name)

    for handler in logger.handlers[:]:
        logger.removeHandler(handler)
        handler.close()

    handler = logging.FileHandler(log_file, encoding="utf-8") if log_file else logging.StreamHandler()
    handler.setFormatter(JSONFormatter())

    logger.addHandler(handler)
    logger.setLevel(getattr(logging, level.upper()))
    logger.propagate = False

    return logger


def get_logger(name: str = "erp") -> logging.Logger:
    """Get logger instance"""
    return logging.getLogger(name)


def log_action(logger: logging.Logger, level: str, message: str,
               user_id: Optional[str] = None, action: Optional[str] = None,
               resource: Optional[str] = None, correlation_id: Optional[str] = None,
               extra: Optional[dict] = None):
    """
    Log a business action with structured fields.

    Args:
        logger: Logger instance
        level: Log level (info, warning, error, etc.)
        message: Log message
        user_id: ID of the user performing the action
        action: Action being performed, e.g. "register_payment"
        resource: Resource acted upon, see resource_ref()
        correlation_id: Overrides the id bound by correlation_context()
        extra: Additional structured data
    """
    levelno = getattr(logging, level.upper())
    if not logger.isEnabledFor(levelno):
        return

    record = logger.makeRecord(logger.name, levelno, __name__, 0, message, (), None)

    record.correlation_id = correlation_id or get_correlation_id()
    if user_id:
        record.user_id = user_id
    if action:
        record.action = action
    if resource:
        record.resource = resource
    if extra:
        record.extra = extra

    logger.handle(record)
