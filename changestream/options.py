"""Source options for a change-stream table.

Keys use the connector's dotted names so a table declaration reads the same
as the connector DDL:

    options:
      uri: mongodb://localhost:27017
      database: shop
      collection: orders
      errors.tolerance: all
      errors.log.enable: true
      poll.max.batch.size: 500

Values may be given as native YAML scalars or as strings (``"500"``,
``"true"``).
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from changestream.errors import ConfigurationError

__all__ = ["ErrorTolerance", "ChangeStreamOptions", "OPTION_KEYS"]


class ErrorTolerance(str, Enum):
    """How per-event conversion failures are handled."""

    NONE = "none"
    ALL = "all"

    @classmethod
    def choices(cls) -> List[str]:
        return [tolerance.value for tolerance in cls]

    @classmethod
    def normalize(cls, value: "str | ErrorTolerance | None") -> "ErrorTolerance":
        if value is None:
            return cls.NONE
        if isinstance(value, cls):
            return value
        candidate = str(value).strip().lower()
        for tolerance in cls:
            if tolerance.value == candidate:
                return tolerance
        raise ConfigurationError(
            f"Invalid error tolerance '{value}'. Valid options: {', '.join(cls.choices())}",
            key="errors.tolerance",
        )

    def describe(self) -> str:
        descriptions = {
            self.NONE: "Stop on the first event that fails to convert",
            self.ALL: "Skip events that fail to convert and continue",
        }
        return descriptions.get(self, self.value)


def _ensure_str(raw: Dict[str, Any], key: str, required: bool = False) -> Optional[str]:
    value = raw.get(key)
    if value is None:
        if required:
            raise ConfigurationError(f"Option '{key}' is required", key=key)
        return None
    if not isinstance(value, str) or not value.strip():
        raise ConfigurationError(f"Option '{key}' must be a non-empty string", key=key)
    return value


def _ensure_bool(raw: Dict[str, Any], key: str, default: bool) -> bool:
    value = raw.get(key, default)
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in ("true", "false"):
        return value.strip().lower() == "true"
    raise ConfigurationError(f"Option '{key}' must be a boolean", key=key)


def _ensure_int(raw: Dict[str, Any], key: str, default: Optional[int], minimum: int) -> Optional[int]:
    value = raw.get(key, default)
    if value is None:
        return None
    if isinstance(value, str) and value.strip().isdigit():
        value = int(value.strip())
    if isinstance(value, bool) or not isinstance(value, int) or value < minimum:
        raise ConfigurationError(f"Option '{key}' must be an integer >= {minimum}", key=key)
    return value


def _ensure_pipeline(raw: Dict[str, Any], key: str) -> Optional[str]:
    value = raw.get(key)
    if value is None:
        return None
    if isinstance(value, list):
        value = json.dumps(value)
    if not isinstance(value, str):
        raise ConfigurationError(f"Option '{key}' must be a JSON array of stages", key=key)
    try:
        stages = json.loads(value)
    except ValueError as exc:
        raise ConfigurationError(f"Option '{key}' is not valid JSON: {exc}", key=key) from exc
    if not isinstance(stages, list) or not all(isinstance(stage, dict) for stage in stages):
        raise ConfigurationError(f"Option '{key}' must be a JSON array of objects", key=key)
    return value


def _ensure_time_zone(raw: Dict[str, Any], key: str) -> str:
    value = _ensure_str(raw, key) or "UTC"
    try:
        ZoneInfo(value)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ConfigurationError(f"Option '{key}' is not a known time zone: {value}", key=key) from exc
    return value


OPTION_KEYS = (
    "uri",
    "database",
    "collection",
    "errors.tolerance",
    "errors.log.enable",
    "copy.existing",
    "copy.existing.pipeline",
    "copy.existing.max.threads",
    "copy.existing.queue.size",
    "poll.max.batch.size",
    "poll.await.time.ms",
    "heartbeat.interval.ms",
    "local-time-zone",
)


@dataclass
class ChangeStreamOptions:
    """Validated connector options.

    Only ``errors.tolerance``, ``errors.log.enable`` and ``local-time-zone``
    affect conversion; the rest describe the upstream reader and are carried
    through for it.
    """

    uri: str
    database: str
    collection: str
    errors_tolerance: ErrorTolerance = ErrorTolerance.NONE
    errors_log_enable: bool = True
    copy_existing: bool = True
    copy_existing_pipeline: Optional[str] = None
    copy_existing_max_threads: Optional[int] = None
    copy_existing_queue_size: Optional[int] = None
    poll_max_batch_size: int = 1000
    poll_await_time_ms: int = 1500
    heartbeat_interval_ms: Optional[int] = None
    local_time_zone: str = "UTC"

    @classmethod
    def from_dict(cls, raw: Optional[Dict[str, Any]]) -> "ChangeStreamOptions":
        """Build options from a mapping of dotted keys.

        Raises:
            ConfigurationError: On unknown keys, missing required keys, or bad values
        """
        if raw is None:
            raw = {}
        if not isinstance(raw, dict):
            raise ConfigurationError("Options must be a mapping of option names to values")

        unknown = sorted(set(raw) - set(OPTION_KEYS))
        if unknown:
            raise ConfigurationError(
                f"Unsupported options: {', '.join(unknown)}",
                suggestion=f"Supported options: {', '.join(OPTION_KEYS)}",
            )

        return cls(
            uri=_ensure_str(raw, "uri", required=True),
            database=_ensure_str(raw, "database", required=True),
            collection=_ensure_str(raw, "collection", required=True),
            errors_tolerance=ErrorTolerance.normalize(raw.get("errors.tolerance")),
            errors_log_enable=_ensure_bool(raw, "errors.log.enable", True),
            copy_existing=_ensure_bool(raw, "copy.existing", True),
            copy_existing_pipeline=_ensure_pipeline(raw, "copy.existing.pipeline"),
            copy_existing_max_threads=_ensure_int(raw, "copy.existing.max.threads", None, 1),
            copy_existing_queue_size=_ensure_int(raw, "copy.existing.queue.size", None, 1),
            poll_max_batch_size=_ensure_int(raw, "poll.max.batch.size", 1000, 1),
            poll_await_time_ms=_ensure_int(raw, "poll.await.time.ms", 1500, 1),
            heartbeat_interval_ms=_ensure_int(raw, "heartbeat.interval.ms", None, 0),
            local_time_zone=_ensure_time_zone(raw, "local-time-zone"),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Dotted-key mapping; unset optional values are omitted."""
        values = {
            "uri": self.uri,
            "database": self.database,
            "collection": self.collection,
            "errors.tolerance": self.errors_tolerance.value,
            "errors.log.enable": self.errors_log_enable,
            "copy.existing": self.copy_existing,
            "copy.existing.pipeline": self.copy_existing_pipeline,
            "copy.existing.max.threads": self.copy_existing_max_threads,
            "copy.existing.queue.size": self.copy_existing_queue_size,
            "poll.max.batch.size": self.poll_max_batch_size,
            "poll.await.time.ms": self.poll_await_time_ms,
            "heartbeat.interval.ms": self.heartbeat_interval_ms,
            "local-time-zone": self.local_time_zone,
        }
        return {key: value for key, value in values.items() if value is not None}

    @property
    def namespace(self) -> str:
        return f"{self.database}.{self.collection}"

    @property
    def copy_existing_stages(self) -> List[Dict[str, Any]]:
        if not self.copy_existing_pipeline:
            return []
        return json.loads(self.copy_existing_pipeline)
