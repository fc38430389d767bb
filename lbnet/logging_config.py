"""Logging setup for the port manager service.

Records are written to stdout either as one JSON object per line (the
default, for log aggregation) or as plain text. Both formats carry:
- the correlation ID of the controller request being served
- the resource fields the port manager passes with ``extra=``
  (port_id, floating_ip_id, operation), so a leaked or failed resource can
  be found by its ID
"""
from __future__ import annotations

import json
import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from lbnet.config import settings

# Correlation ID of the request being served, if any
correlation_id_var: ContextVar[str | None] = ContextVar("correlation_id", default=None)

RESOURCE_FIELDS = ("port_id", "floating_ip_id", "operation")

# Per-request chatter from the HTTP stack
QUIET_LOGGERS = ("uvicorn.access", "httpx", "httpcore")


def generate_correlation_id() -> str:
    return uuid4().hex


@contextmanager
def correlation_scope(correlation_id: str) -> Iterator[str]:
    """Bind a correlation ID to every record logged inside the block."""
    token = correlation_id_var.set(correlation_id)
    try:
        yield correlation_id
    finally:
        correlation_id_var.reset(token)


def record_context(record: logging.LogRecord) -> dict[str, Any]:
    """Collect the correlation ID and resource fields of a record."""
    context: dict[str, Any] = {}
    correlation_id = correlation_id_var.get()
    if correlation_id:
        context["correlation_id"] = correlation_id
    for name in RESOURCE_FIELDS:
        value = getattr(record, name, None)
        if value is not None:
            context[name] = value
    return context


class JSONFormatter(logging.Formatter):
    """Formats a record as a single-line JSON object.

    Keys: timestamp, level, logger, message, service, then the correlation
    ID and resource fields when present, and exception on errors.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "service": "lbnet",
        }
        entry.update(record_context(record))
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class TextFormatter(logging.Formatter):
    """Formats a record for reading in a terminal.

    2026-01-05 10:00:00 WARNING lbnet.port_manager [correlation_id=3f2a port_id=p1] message
    """

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created, timezone.utc).strftime("%Y-%m-%d %H:%M:%S")
        context = record_context(record)
        if "correlation_id" in context:
            context["correlation_id"] = context["correlation_id"][:8]
        fields = " ".join(f"{key}={value}" for key, value in context.items())

        line = f"{timestamp} {record.levelname} {record.name}"
        if fields:
            line += f" [{fields}]"
        line += f" {record.getMessage()}"
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def setup_logging(log_format: str | None = None, log_level: str | None = None) -> None:
    """Install a single stdout handler on the root logger.

    Arguments default to the LBNET_LOG_FORMAT and LBNET_LOG_LEVEL settings.
    """
    log_format = (log_format or settings.log_format).lower()
    log_level = (log_level or settings.log_level).upper()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter() if log_format == "json" else TextFormatter())

    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(getattr(logging, log_level, logging.INFO))

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
