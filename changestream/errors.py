"""Structured exception hierarchy for change-stream conversion.

Build-time failures (a schema the engine cannot convert into) surface as
``UnsupportedTypeError`` or ``SchemaError`` before any event is processed.
Per-event failures surface as ``ConversionError`` or ``ChangeEventError``
and propagate to whoever drives the dispatcher.
"""

from __future__ import annotations

from typing import Any, Dict, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from changestream.schema import LogicalType
    from changestream.values import DynamicValue

__all__ = [
    "ChangeStreamError",
    "ConversionError",
    "UnsupportedTypeError",
    "SchemaError",
    "ChangeEventError",
    "ConfigurationError",
]


class ChangeStreamError(Exception):
    """Base exception for all change-stream errors.

    Provides structured error information for debugging.
    """

    def __init__(
        self,
        message: str,
        *,
        namespace: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        self.message = message
        self.namespace = namespace
        self.details = details or {}
        self.suggestion = suggestion

        parts = [f"[{namespace}] {message}" if namespace else message]

        if self.details:
            detail_lines = [f"  {k}: {v}" for k, v in self.details.items()]
            parts.append("\nDetails:")
            parts.extend(detail_lines)

        if suggestion:
            parts.append(f"\nSuggestion: {suggestion}")

        super().__init__("\n".join(parts))

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for structured logging."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "namespace": self.namespace,
            "details": self.details,
            "suggestion": self.suggestion,
        }


class ConversionError(ChangeStreamError, ValueError):
    """A dynamic value could not be converted to the declared logical type.

    Raised per event, never caught inside the converters.
    """

    def __init__(
        self,
        target: str,
        value: Optional["DynamicValue"],
        *,
        reason: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        self.target = target
        self.value = value
        self.wire_type = value.wire_type.value if value is not None else None

        if reason:
            message = (
                f"Unable to convert to {target} from value '{value}' "
                f"of type {self.wire_type}: {reason}"
            )
        else:
            message = (
                f"Unable to convert to {target} from unexpected value '{value}' "
                f"of type {self.wire_type}"
            )
        super().__init__(message, **kwargs)

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result["target"] = self.target
        result["wire_type"] = self.wire_type
        return result


class UnsupportedTypeError(ChangeStreamError):
    """The target schema uses a logical type no converter exists for."""

    def __init__(self, logical_type: "LogicalType", reason: Optional[str] = None, **kwargs: Any) -> None:
        self.logical_type = logical_type
        message = f"Unsupported type: {logical_type}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message, **kwargs)


class SchemaError(ChangeStreamError):
    """The target row schema declaration is invalid."""


class ChangeEventError(ChangeStreamError):
    """A change event is malformed (bad document text, missing key, ...)."""


class ConfigurationError(ChangeStreamError):
    """Source options or the YAML table declaration are invalid."""

    def __init__(self, message: str, *, key: Optional[str] = None, config_path: Optional[str] = None, **kwargs: Any) -> None:
        self.key = key
        self.config_path = config_path
        details = kwargs.pop("details", {}) or {}
        if config_path:
            details["config_path"] = config_path
        if key:
            details["config_key"] = key
        super().__init__(message, details=details, **kwargs)
