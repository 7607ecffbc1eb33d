#!/usr/bin/env python3
"""
=====================================================================
signald-webhook Logging Utilities
=====================================================================
Configures process-wide logging for the webhook service.

- Plain text by default:
    2025-01-09 12:00:00 - INFO - [correlation_id] - message
- NDJSON (one JSON object per line) when LOG_JSON_ENABLED=true
- Every record carries a correlation_id: the current Flask request's
  ID, or "system" for startup and the connection supervisor thread

Usage:
    from signald_webhook.logging_utils import setup_json_logging

    logger = setup_json_logging(service_name="signald-webhook", version="1.0.0")
    logger.info("Service started")

Environment Variables:
    LOG_JSON_ENABLED: Enable JSON logging (default: false)
    LOG_LEVEL: Logging level (default: INFO)
=====================================================================
"""

import os
import json
import logging
import threading
from datetime import datetime, timezone
from typing import Any, Dict

from flask import g, has_request_context

TEXT_FORMAT = "%(asctime)s - %(levelname)s - [%(correlation_id)s] - %(message)s"

# LogRecord attributes that are not user supplied `extra` fields
_RESERVED_ATTRS = frozenset([
    "name", "msg", "args", "created", "filename", "funcName", "levelname",
    "levelno", "lineno", "module", "msecs", "message", "pathname", "process",
    "processName", "relativeCreated", "thread", "threadName", "exc_info",
    "exc_text", "stack_info", "taskName", "correlation_id",
])


class CorrelationIdFilter(logging.Filter):
    """Automatically adds correlation ID to all log records."""

    def filter(self, record):
        if has_request_context():
            record.correlation_id = getattr(g, "correlation_id", "system")
        else:
            # Startup, supervisor thread, signal handlers
            record.correlation_id = "system"
        return True


class NDJSONFormatter(logging.Formatter):
    """
    Formats log records as single-line JSON objects.

    Fields: timestamp, level, message, logger, module, function, line,
    thread, service, version, correlation_id, error (when an exception is
    attached) and any `extra={}` fields passed to the log call.
    """

    def __init__(self, service_name: str, version: str):
        super().__init__()
        self.service_name = service_name
        self.version = version

    def format(self, record: logging.LogRecord) -> str:
        log_entry: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
            "thread": threading.get_ident(),
            "service": self.service_name,
            "version": self.version,
            "correlation_id": getattr(record, "correlation_id", None) or "system",
        }

        if record.exc_info:
            log_entry["error"] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else None,
                "message": str(record.exc_info[1]) if record.exc_info[1] else None,
                "traceback": self.formatException(record.exc_info),
            }

        for key, value in record.__dict__.items():
            if key in _RESERVED_ATTRS:
                continue
            try:
                json.dumps(value)
                log_entry[key] = value
            except (TypeError, ValueError):
                log_entry[key] = str(value)

        return json.dumps(log_entry, default=str)


def setup_json_logging(
    service_name: str,
    version: str,
    level: str = "INFO",
) -> logging.Logger:
    """
    Configure the root logger for the service.

    Idempotent: existing root handlers are replaced, so calling it twice
    (e.g. once from tests, once from main) does not duplicate output.

    Args:
        service_name: Name reported in JSON records
        version: Service version reported in JSON records
        level: Default level, overridden by LOG_LEVEL

    Returns:
        The configured root logger
    """
    json_enabled = os.getenv("LOG_JSON_ENABLED", "false").lower() in (
        "true",
        "1",
        "yes",
        "on",
    )
    log_level = os.getenv("LOG_LEVEL", level).upper()

    logger = logging.getLogger()
    logger.handlers.clear()
    logger.setLevel(getattr(logging, log_level, logging.INFO))

    handler = logging.StreamHandler()
    handler.setLevel(logger.level)
    # Filter on the handler so records propagated from module loggers get it too
    handler.addFilter(CorrelationIdFilter())

    if json_enabled:
        handler.setFormatter(NDJSONFormatter(service_name=service_name, version=version))
    else:
        handler.setFormatter(logging.Formatter(TEXT_FORMAT))

    logger.addHandler(handler)

    if json_enabled:
        logger.info(f"JSON logging enabled for service={service_name} version={version}")
    else:
        logger.info(f"Standard logging enabled for service={service_name}")

    return logger
