"""Dynamic value model for change-stream documents.

Incoming documents are open and self-describing: every field carries its own
wire type. This module represents them as a closed set of frozen dataclasses,
one per wire type, so converters can dispatch on the concrete class and
anything they do not accept falls through to an explicit error.

Example:
    doc = from_python({"_id": 1, "name": "a"})
    doc.get("_id")       # Int32Value(value=1)
    doc.get("missing")   # None
"""

from __future__ import annotations

import re
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone, tzinfo
from decimal import Decimal
from enum import Enum
from typing import Any, ClassVar, Dict, Iterator, List, Mapping, Optional, Tuple, Union

__all__ = [
    "WireType",
    "DynamicValue",
    "NullValue",
    "BooleanValue",
    "Int32Value",
    "Int64Value",
    "DoubleValue",
    "Decimal128Value",
    "StringValue",
    "BinaryValue",
    "ObjectIdValue",
    "DateTimeValue",
    "TimestampValue",
    "RegexValue",
    "MinKeyValue",
    "MaxKeyValue",
    "SymbolValue",
    "JavaScriptValue",
    "JavaScriptWithScopeValue",
    "DBPointerValue",
    "UndefinedValue",
    "DocumentValue",
    "ArrayValue",
    "from_python",
    "datetime_from_millis",
    "datetime_to_millis",
    "format_instant",
    "INT32_MIN",
    "INT32_MAX",
    "INT64_MIN",
    "INT64_MAX",
    "UINT32_MAX",
]

INT32_MIN = -(2**31)
INT32_MAX = 2**31 - 1
INT64_MIN = -(2**63)
INT64_MAX = 2**63 - 1
UINT32_MAX = 2**32 - 1

UUID_SUBTYPES = (3, 4)

_OBJECT_ID = re.compile(r"^[0-9a-fA-F]{24}$")
_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class WireType(str, Enum):
    """Wire-level type tag carried by every dynamic value."""

    NULL = "null"
    BOOLEAN = "boolean"
    INT32 = "int32"
    INT64 = "int64"
    DOUBLE = "double"
    DECIMAL128 = "decimal128"
    STRING = "string"
    BINARY = "binary"
    OBJECT_ID = "objectId"
    DATE_TIME = "dateTime"
    TIMESTAMP = "timestamp"
    REGULAR_EXPRESSION = "regularExpression"
    MIN_KEY = "minKey"
    MAX_KEY = "maxKey"
    SYMBOL = "symbol"
    JAVASCRIPT = "javascript"
    JAVASCRIPT_WITH_SCOPE = "javascriptWithScope"
    DB_POINTER = "dbPointer"
    UNDEFINED = "undefined"
    DOCUMENT = "document"
    ARRAY = "array"

    @classmethod
    def choices(cls) -> List[str]:
        return [wire_type.value for wire_type in cls]


@dataclass(frozen=True)
class NullValue:
    wire_type: ClassVar[WireType] = WireType.NULL


@dataclass(frozen=True)
class BooleanValue:
    value: bool
    wire_type: ClassVar[WireType] = WireType.BOOLEAN


@dataclass(frozen=True)
class Int32Value:
    value: int
    wire_type: ClassVar[WireType] = WireType.INT32

    def __post_init__(self) -> None:
        if isinstance(self.value, bool) or not INT32_MIN <= self.value <= INT32_MAX:
            raise ValueError(f"int32 value out of range: {self.value!r}")


@dataclass(frozen=True)
class Int64Value:
    value: int
    wire_type: ClassVar[WireType] = WireType.INT64

    def __post_init__(self) -> None:
        if isinstance(self.value, bool) or not INT64_MIN <= self.value <= INT64_MAX:
            raise ValueError(f"int64 value out of range: {self.value!r}")


@dataclass(frozen=True)
class DoubleValue:
    value: float
    wire_type: ClassVar[WireType] = WireType.DOUBLE


@dataclass(frozen=True)
class Decimal128Value:
    """High-precision decimal; may be NaN or infinite."""

    value: Decimal
    wire_type: ClassVar[WireType] = WireType.DECIMAL128

    @property
    def is_nan(self) -> bool:
        return self.value.is_nan()

    @property
    def is_finite(self) -> bool:
        return self.value.is_finite()

    @property
    def is_negative(self) -> bool:
        return self.value.is_signed()


@dataclass(frozen=True)
class StringValue:
    value: str
    wire_type: ClassVar[WireType] = WireType.STRING


@dataclass(frozen=True)
class BinaryValue:
    data: bytes
    subtype: int = 0
    wire_type: ClassVar[WireType] = WireType.BINARY

    def __post_init__(self) -> None:
        if not 0 <= self.subtype <= 0xFF:
            raise ValueError(f"binary subtype out of range: {self.subtype!r}")

    @property
    def is_uuid(self) -> bool:
        return self.subtype in UUID_SUBTYPES and len(self.data) == 16


@dataclass(frozen=True)
class ObjectIdValue:
    hex: str
    wire_type: ClassVar[WireType] = WireType.OBJECT_ID

    def __post_init__(self) -> None:
        if not _OBJECT_ID.match(self.hex):
            raise ValueError(f"invalid object id: {self.hex!r}")
        object.__setattr__(self, "hex", self.hex.lower())


@dataclass(frozen=True)
class DateTimeValue:
    """UTC instant as milliseconds since the epoch."""

    millis: int
    wire_type: ClassVar[WireType] = WireType.DATE_TIME

    def __post_init__(self) -> None:
        if isinstance(self.millis, bool) or not INT64_MIN <= self.millis <= INT64_MAX:
            raise ValueError(f"date-time millis out of range: {self.millis!r}")


@dataclass(frozen=True)
class TimestampValue:
    """Replication timestamp: epoch seconds plus an ordinal within the second."""

    seconds: int
    ordinal: int = 0
    wire_type: ClassVar[WireType] = WireType.TIMESTAMP

    def __post_init__(self) -> None:
        for part in (self.seconds, self.ordinal):
            if isinstance(part, bool) or not 0 <= part <= UINT32_MAX:
                raise ValueError(f"timestamp part out of range: {part!r}")


@dataclass(frozen=True)
class RegexValue:
    pattern: str
    options: str = ""
    wire_type: ClassVar[WireType] = WireType.REGULAR_EXPRESSION


@dataclass(frozen=True)
class MinKeyValue:
    wire_type: ClassVar[WireType] = WireType.MIN_KEY


@dataclass(frozen=True)
class MaxKeyValue:
    wire_type: ClassVar[WireType] = WireType.MAX_KEY


@dataclass(frozen=True)
class SymbolValue:
    symbol: str
    wire_type: ClassVar[WireType] = WireType.SYMBOL


@dataclass(frozen=True)
class JavaScriptValue:
    code: str
    wire_type: ClassVar[WireType] = WireType.JAVASCRIPT


@dataclass(frozen=True)
class JavaScriptWithScopeValue:
    code: str
    scope: "DocumentValue"
    wire_type: ClassVar[WireType] = WireType.JAVASCRIPT_WITH_SCOPE


@dataclass(frozen=True)
class DBPointerValue:
    namespace: str
    oid: ObjectIdValue
    wire_type: ClassVar[WireType] = WireType.DB_POINTER


@dataclass(frozen=True)
class UndefinedValue:
    wire_type: ClassVar[WireType] = WireType.UNDEFINED


@dataclass(frozen=True)
class DocumentValue:
    """Ordered mapping of field name to dynamic value.

    Lookups are exact string matches; a missing field yields ``None``.
    """

    fields: Mapping[str, "DynamicValue"] = field(default_factory=dict)
    wire_type: ClassVar[WireType] = WireType.DOCUMENT

    def get(self, name: str) -> Optional["DynamicValue"]:
        return self.fields.get(name)

    def keys(self) -> List[str]:
        return list(self.fields.keys())

    def items(self) -> List[Tuple[str, "DynamicValue"]]:
        return list(self.fields.items())

    def __contains__(self, name: object) -> bool:
        return name in self.fields

    def __iter__(self) -> Iterator[str]:
        return iter(self.fields)

    def __len__(self) -> int:
        return len(self.fields)


@dataclass(frozen=True)
class ArrayValue:
    items: Tuple["DynamicValue", ...] = ()
    wire_type: ClassVar[WireType] = WireType.ARRAY

    def __iter__(self) -> Iterator["DynamicValue"]:
        return iter(self.items)

    def __len__(self) -> int:
        return len(self.items)

    def __getitem__(self, index: int) -> "DynamicValue":
        return self.items[index]


DynamicValue = Union[
    NullValue,
    BooleanValue,
    Int32Value,
    Int64Value,
    DoubleValue,
    Decimal128Value,
    StringValue,
    BinaryValue,
    ObjectIdValue,
    DateTimeValue,
    TimestampValue,
    RegexValue,
    MinKeyValue,
    MaxKeyValue,
    SymbolValue,
    JavaScriptValue,
    JavaScriptWithScopeValue,
    DBPointerValue,
    UndefinedValue,
    DocumentValue,
    ArrayValue,
]

_DYNAMIC_TYPES = DynamicValue.__args__  # type: ignore[attr-defined]


def datetime_to_millis(value: datetime) -> int:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    delta = value - _EPOCH
    return (delta.days * 86_400 + delta.seconds) * 1000 + delta.microseconds // 1000


def from_python(obj: Any) -> DynamicValue:
    """Convert a plain Python value into a dynamic value.

    Dynamic values pass through unchanged. Integers become int32 when they fit
    and int64 otherwise; naive datetimes are interpreted as UTC.

    Raises:
        TypeError: If the object has no dynamic representation
    """
    if isinstance(obj, _DYNAMIC_TYPES):
        return obj
    if obj is None:
        return NullValue()
    if isinstance(obj, bool):
        return BooleanValue(obj)
    if isinstance(obj, int):
        if INT32_MIN <= obj <= INT32_MAX:
            return Int32Value(obj)
        return Int64Value(obj)
    if isinstance(obj, float):
        return DoubleValue(obj)
    if isinstance(obj, Decimal):
        return Decimal128Value(obj)
    if isinstance(obj, str):
        return StringValue(obj)
    if isinstance(obj, (bytes, bytearray, memoryview)):
        return BinaryValue(bytes(obj))
    if isinstance(obj, uuid.UUID):
        return BinaryValue(obj.bytes, 4)
    if isinstance(obj, datetime):
        return DateTimeValue(datetime_to_millis(obj))
    if isinstance(obj, date):
        return DateTimeValue(datetime_to_millis(datetime(obj.year, obj.month, obj.day)))
    if isinstance(obj, Mapping):
        fields: Dict[str, DynamicValue] = {}
        for key, value in obj.items():
            if not isinstance(key, str):
                raise TypeError(f"Document keys must be strings, got {type(key).__name__}")
            fields[key] = from_python(value)
        return DocumentValue(fields)
    if isinstance(obj, (list, tuple)):
        return ArrayValue(tuple(from_python(item) for item in obj))
    raise TypeError(f"Cannot represent {type(obj).__name__} as a dynamic value")


def datetime_from_millis(millis: int, tz: tzinfo = timezone.utc) -> datetime:
    """Aware datetime for an epoch-millisecond instant, expressed in ``tz``.

    Raises:
        OverflowError: If the instant is outside the datetime range
    """
    moment = _EPOCH + timedelta(milliseconds=millis)
    if tz is not timezone.utc:
        moment = moment.astimezone(tz)
    return moment


def format_instant(moment: datetime) -> str:
    """ISO-8601 text with offset, milliseconds only when present, ``Z`` for UTC."""
    timespec = "milliseconds" if moment.microsecond else "seconds"
    text = moment.isoformat(timespec=timespec)
    if text.endswith("+00:00"):
        text = text[:-6] + "Z"
    return text
