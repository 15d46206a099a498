"""Logging utilities for change-stream conversion.

Provides structured JSON logging option for production environments.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

__all__ = [
    "setup_logging",
    "JSONFormatter",
    "TableLogger",
    "get_table_logger",
]

_RESERVED = frozenset(logging.LogRecord("", 0, "", 0, "", (), None).__dict__) | {"message", "asctime"}


class JSONFormatter(logging.Formatter):
    """Formatter that outputs log records as JSON.

    Example output:
        {"timestamp": "2025-01-15T10:30:00.123Z", "level": "INFO",
         "logger": "changestream.dispatcher", "message": "Ignored change event of type drop"}
    """

    def __init__(
        self,
        include_fields: Optional[list[str]] = None,
        exclude_fields: Optional[list[str]] = None,
    ):
        """Initialize JSON formatter.

        Args:
            include_fields: Extra fields to promote to the top level
            exclude_fields: Fields to exclude from output
        """
        super().__init__()
        self.include_fields = include_fields or []
        self.exclude_fields = exclude_fields or []

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if record.pathname:
            log_data["source"] = {
                "file": record.pathname,
                "line": record.lineno,
                "function": record.funcName,
            }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        for field in self.include_fields:
            if hasattr(record, field):
                log_data[field] = getattr(record, field)

        # Anything passed through extra=
        extra_attrs = {
            k: v
            for k, v in record.__dict__.items()
            if k not in _RESERVED and k not in self.exclude_fields and k not in self.include_fields
        }
        if extra_attrs:
            log_data["extra"] = extra_attrs

        return json.dumps(log_data, default=str)


class TableLogger:
    """Logger that stamps every record with the table it is converting for.

    Example:
        logger = TableLogger("changestream.processor")
        logger.set_context(table="orders", namespace="shop.orders")
        logger.warning("Skipping event")  # Includes table and namespace
    """

    def __init__(self, name: str):
        self._logger = logging.getLogger(name)
        self._context: Dict[str, Any] = {}

    @property
    def logger(self) -> logging.Logger:
        return self._logger

    def set_context(self, **kwargs: Any) -> None:
        self._context.update({k: v for k, v in kwargs.items() if v is not None})

    def clear_context(self) -> None:
        self._context.clear()

    def isEnabledFor(self, level: int) -> bool:
        return self._logger.isEnabledFor(level)

    def _log(self, level: int, msg: str, *args: Any, **kwargs: Any) -> None:
        extra = dict(kwargs.pop("extra", {}) or {})
        extra.update(self._context)
        self._logger.log(level, msg, *args, extra=extra, **kwargs)

    def debug(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._log(logging.DEBUG, msg, *args, **kwargs)

    def info(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._log(logging.INFO, msg, *args, **kwargs)

    def warning(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._log(logging.WARNING, msg, *args, **kwargs)

    def error(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._log(logging.ERROR, msg, *args, **kwargs)

    def metric(self, name: str, value: Any, unit: Optional[str] = None, **tags: Any) -> None:
        """Log a metric value.

        Args:
            name: Metric name (e.g., "rows_emitted")
            value: Metric value
            unit: Optional unit (e.g., "rows", "events")
            **tags: Additional tags for the metric
        """
        extra: Dict[str, Any] = {
            "metric_name": name,
            "metric_value": value,
        }
        if unit:
            extra["metric_unit"] = unit
        extra.update(tags)
        self._log(logging.INFO, f"METRIC {name}={value}", extra=extra)


def get_table_logger(name: str, **context: Any) -> TableLogger:
    """Get a table logger with initial context."""
    table_logger = TableLogger(name)
    table_logger.set_context(**context)
    return table_logger


def setup_logging(
    verbose: bool = False,
    json_format: bool = False,
    log_file: Optional[str] = None,
) -> None:
    """Configure logging for a conversion run.

    Args:
        verbose: Enable debug-level logging (shows ignored administrative events)
        json_format: Use JSON output format (for log aggregation)
        log_file: Optional file path to write logs to
    """
    level = logging.DEBUG if verbose else logging.INFO

    if json_format:
        formatter: logging.Formatter = JSONFormatter()
    else:
        formatter = logging.Formatter(
            "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    # Remove existing handlers to avoid duplicates
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)
