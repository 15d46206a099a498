"""Type-directed converters from dynamic values to typed field values.

``ConverterBuilder.build`` walks a logical type once and returns a tree of
small closures. Converters hold no mutable state, so a converter built for a
schema can be shared across threads and reused for every event.

Every converter returned by ``build`` is wrapped by ``nullable``: a missing
value, an explicit null, an undefined marker or a NaN decimal all convert to
``None`` without reaching the type rule.

Example:
    convert = ConverterBuilder().build(DecimalType(10, 2))
    convert(Decimal128Value(Decimal("-Infinity")))   # Decimal('-99999999.99')
    convert(None)                                     # None
"""

from __future__ import annotations

import math
import re
import struct
import uuid
from datetime import datetime, time, timezone, tzinfo
from decimal import ROUND_HALF_UP, Context, Decimal
from typing import Any, Callable, Dict, List, Optional

from changestream.errors import ConversionError, UnsupportedTypeError
from changestream.events import Row
from changestream.extjson import to_relaxed_json
from changestream.schema import (
    ArrayType,
    DecimalType,
    LogicalType,
    MapType,
    RowType,
    TypeRoot,
    is_string_compatible,
)
from changestream.values import (
    ArrayValue,
    BinaryValue,
    BooleanValue,
    DateTimeValue,
    DBPointerValue,
    Decimal128Value,
    DocumentValue,
    DoubleValue,
    DynamicValue,
    Int32Value,
    Int64Value,
    JavaScriptValue,
    JavaScriptWithScopeValue,
    MaxKeyValue,
    MinKeyValue,
    NullValue,
    ObjectIdValue,
    RegexValue,
    StringValue,
    SymbolValue,
    TimestampValue,
    UndefinedValue,
    datetime_from_millis,
    format_instant,
)

__all__ = [
    "Converter",
    "ConverterBuilder",
    "nullable",
    "FLOAT32_MAX",
    "FLOAT64_MAX",
]

Converter = Callable[[Optional[DynamicValue]], Any]

FLOAT32_MAX = 3.4028234663852886e38
FLOAT64_MAX = 1.7976931348623157e308

_INTEGER_LITERAL = re.compile(r"^[+-]?[0-9]+\Z")
_FLOAT_LITERAL = re.compile(
    r"^\s*[+-]?(?:NaN|Infinity|(?:[0-9]+\.?[0-9]*|\.[0-9]+)(?:[eE][+-]?[0-9]+)?)[fFdD]?\s*$"
)
_DECIMAL_LITERAL = re.compile(r"^[+-]?(?:[0-9]+\.?[0-9]*|\.[0-9]+)(?:[eE][+-]?[0-9]+)?\Z")


def nullable(converter: Converter) -> Converter:
    """Wrap a converter so every "no value" input short-circuits to ``None``."""

    def convert(value: Optional[DynamicValue]) -> Any:
        if value is None or isinstance(value, (NullValue, UndefinedValue)):
            return None
        if isinstance(value, Decimal128Value) and value.is_nan:
            return None
        return converter(value)

    return convert


# ---------------------------------------------------------------------------
# Integer narrowing
# ---------------------------------------------------------------------------


def _bounds(bits: int) -> tuple:
    return -(1 << (bits - 1)), (1 << (bits - 1)) - 1


def _wrap(value: int, bits: int) -> int:
    """Two's-complement narrowing to ``bits`` (low-order bits kept)."""
    value &= (1 << bits) - 1
    if value >= 1 << (bits - 1):
        value -= 1 << bits
    return value


def _truncate_double(value: float, bits: int) -> int:
    """Truncate toward zero, saturating at the ``bits`` range; NaN gives 0."""
    if math.isnan(value):
        return 0
    low, high = _bounds(bits)
    if value <= low:
        return low
    if value >= high:
        return high
    return int(value)


def _clamp(value: int, bits: int) -> int:
    low, high = _bounds(bits)
    return max(low, min(high, value))


def _div_toward_zero(dividend: int, divisor: int) -> int:
    quotient = abs(dividend) // divisor
    return -quotient if dividend < 0 else quotient


def _integer_converter(name: str, bits: int, temporal: bool = False) -> Converter:
    """Rule shared by int8/int16/int32/int64 (and the interval types).

    Doubles narrow through 32 bits for targets of 32 bits or fewer, and
    through 64 bits otherwise, before wrapping to the target width.
    """
    low, high = _bounds(bits)
    double_bits = 64 if bits == 64 else 32

    def convert(value: DynamicValue) -> int:
        if isinstance(value, BooleanValue):
            return 1 if value.value else 0
        if isinstance(value, (Int32Value, Int64Value)):
            return _wrap(value.value, bits)
        if isinstance(value, DoubleValue):
            return _wrap(_truncate_double(value.value, double_bits), bits)
        if isinstance(value, Decimal128Value):
            if value.is_finite:
                return _clamp(int(value.value), bits)
            return low if value.is_negative else high
        if temporal and isinstance(value, DateTimeValue):
            if bits == 64:
                return value.millis
            seconds = _div_toward_zero(value.millis, 1000)
            if not low <= seconds <= high:
                raise ConversionError(name, value, reason="integer overflow")
            return seconds
        if temporal and isinstance(value, TimestampValue):
            if bits == 64:
                return value.seconds * 1000
            return _wrap(value.seconds, bits)
        if isinstance(value, StringValue):
            text = value.value
            if not _INTEGER_LITERAL.match(text):
                raise ConversionError(name, value, reason=f"'{text}' is not a valid {name} literal")
            parsed = int(text)
            if not low <= parsed <= high:
                raise ConversionError(name, value, reason=f"value {parsed} is out of range for {name}")
            return parsed
        raise ConversionError(name, value)

    return convert


# ---------------------------------------------------------------------------
# Floating point
# ---------------------------------------------------------------------------


def _to_float32(value: float) -> float:
    try:
        return struct.unpack("<f", struct.pack("<f", value))[0]
    except OverflowError:
        return math.copysign(math.inf, value)


def _parse_float_literal(name: str, value: StringValue) -> float:
    text = value.value
    if not _FLOAT_LITERAL.match(text):
        raise ConversionError(name, value, reason=f"'{text}' is not a valid {name} literal")
    text = text.strip().rstrip("fFdD")
    return float(text)


def _float_converter(name: str, single: bool) -> Converter:
    maximum = FLOAT32_MAX if single else FLOAT64_MAX
    narrow = _to_float32 if single else float

    def convert(value: DynamicValue) -> float:
        if isinstance(value, BooleanValue):
            return 1.0 if value.value else 0.0
        if isinstance(value, (Int32Value, Int64Value, DoubleValue)):
            return narrow(float(value.value))
        if isinstance(value, Decimal128Value):
            if value.is_finite:
                return narrow(float(value.value))
            return -maximum if value.is_negative else maximum
        if isinstance(value, StringValue):
            return narrow(_parse_float_literal(name, value))
        raise ConversionError(name, value)

    return convert


# ---------------------------------------------------------------------------
# Decimal
# ---------------------------------------------------------------------------


def _decimal_converter(decimal_type: DecimalType) -> Converter:
    precision, scale = decimal_type.precision, decimal_type.scale
    exponent = Decimal(1).scaleb(-scale)
    context = Context(prec=precision + 2)
    maximum = context.subtract(context.power(Decimal(10), precision - scale), exponent)
    minimum = -maximum
    name = "decimal"

    def fit(number: Decimal) -> Decimal:
        if number > maximum:
            return maximum
        if number < minimum:
            return minimum
        rounded = number.quantize(exponent, rounding=ROUND_HALF_UP, context=context)
        return max(minimum, min(maximum, rounded))

    def convert(value: DynamicValue) -> Decimal:
        if isinstance(value, BooleanValue):
            return fit(Decimal(1 if value.value else 0))
        if isinstance(value, (Int32Value, Int64Value)):
            return fit(Decimal(value.value))
        if isinstance(value, DoubleValue):
            if not math.isfinite(value.value):
                raise ConversionError(name, value, reason="non-finite double has no decimal value")
            return fit(Decimal(repr(value.value)))
        if isinstance(value, Decimal128Value):
            if value.is_finite:
                return fit(value.value)
            return minimum if value.is_negative else maximum
        if isinstance(value, StringValue):
            if not _DECIMAL_LITERAL.match(value.value):
                raise ConversionError(name, value, reason=f"'{value.value}' is not a valid decimal literal")
            return fit(Decimal(value.value))
        raise ConversionError(name, value)

    return convert


# ---------------------------------------------------------------------------
# Boolean, string, binary
# ---------------------------------------------------------------------------


def _convert_boolean(value: DynamicValue) -> bool:
    if isinstance(value, BooleanValue):
        return value.value
    if isinstance(value, (Int32Value, Int64Value)):
        return value.value == 1
    if isinstance(value, Decimal128Value):
        return value.value == 1
    if isinstance(value, StringValue):
        return value.value.lower() == "true"
    raise ConversionError("boolean", value)


def _instant_millis(value: DynamicValue) -> Optional[int]:
    if isinstance(value, DateTimeValue):
        return value.millis
    if isinstance(value, TimestampValue):
        return value.seconds * 1000
    return None


def _render_double(number: float) -> str:
    """Render a double as plain decimal in [1e-3, 1e7), scientific (``1.0E16``) outside it."""
    if math.isnan(number):
        return "NaN"
    if math.isinf(number):
        return "Infinity" if number > 0 else "-Infinity"
    if number == 0 or 1e-3 <= abs(number) < 1e7:
        return repr(number)
    sign, digits, exponent = Decimal(repr(number)).as_tuple()
    text = "".join(map(str, digits)).rstrip("0")
    exponent += len(digits) - 1
    mantissa = text[0] + "." + (text[1:] or "0")
    return f"{'-' if sign else ''}{mantissa}E{exponent}"


def _render_instant(name: str, value: DynamicValue, millis: int) -> str:
    try:
        return format_instant(datetime_from_millis(millis))
    except OverflowError as exc:
        raise ConversionError(name, value, reason="instant is outside the supported date range") from exc


def _convert_string(value: DynamicValue) -> str:
    name = "string"
    if isinstance(value, StringValue):
        return value.value
    if isinstance(value, BinaryValue):
        if value.is_uuid:
            return str(uuid.UUID(bytes=value.data))
        return value.data.hex()
    if isinstance(value, ObjectIdValue):
        return value.hex
    if isinstance(value, (Int32Value, Int64Value)):
        return str(value.value)
    if isinstance(value, DoubleValue):
        return _render_double(value.value)
    if isinstance(value, Decimal128Value):
        return str(value.value)
    if isinstance(value, BooleanValue):
        return "true" if value.value else "false"
    if isinstance(value, (DateTimeValue, TimestampValue)):
        return _render_instant(name, value, _instant_millis(value))
    if isinstance(value, RegexValue):
        return f"/{value.pattern}/{value.options}"
    if isinstance(value, (JavaScriptValue, JavaScriptWithScopeValue)):
        return value.code
    if isinstance(value, SymbolValue):
        return value.symbol
    if isinstance(value, DBPointerValue):
        return value.oid.hex
    if isinstance(value, MinKeyValue):
        return "MIN_KEY"
    if isinstance(value, MaxKeyValue):
        return "MAX_KEY"
    if isinstance(value, (DocumentValue, ArrayValue)):
        return to_relaxed_json(value)
    raise ConversionError(name, value)


def _convert_binary(value: DynamicValue) -> bytes:
    if isinstance(value, BinaryValue):
        return value.data
    raise ConversionError("binary", value)


# ---------------------------------------------------------------------------
# Builder
# ---------------------------------------------------------------------------


class ConverterBuilder:
    """Builds converters for logical types.

    Date and time rules interpret instants in ``time_zone`` (UTC unless
    configured otherwise).

    Args:
        time_zone: Zone used to derive dates, times of day and wall-clock
            timestamps from instants
    """

    def __init__(self, time_zone: tzinfo = timezone.utc):
        self.time_zone = time_zone

    def build(self, logical_type: LogicalType) -> Converter:
        """Build a null-safe converter for ``logical_type``.

        Raises:
            UnsupportedTypeError: If the type (or a nested type) cannot be
                converted into
        """
        return nullable(self._build_not_null(logical_type))

    def _build_not_null(self, logical_type: LogicalType) -> Converter:
        root = logical_type.root

        if root is TypeRoot.NULL:
            return lambda value: None
        if root is TypeRoot.BOOLEAN:
            return _convert_boolean
        if root is TypeRoot.TINYINT:
            return _integer_converter("tinyint", 8)
        if root is TypeRoot.SMALLINT:
            return _integer_converter("smallint", 16)
        if root in (TypeRoot.INTEGER, TypeRoot.INTERVAL_YEAR_MONTH):
            return _integer_converter("integer", 32, temporal=True)
        if root in (TypeRoot.BIGINT, TypeRoot.INTERVAL_DAY_TIME):
            return _integer_converter("long", 64, temporal=True)
        if root is TypeRoot.FLOAT:
            return _float_converter("float", single=True)
        if root is TypeRoot.DOUBLE:
            return _float_converter("double", single=False)
        if root is TypeRoot.DECIMAL:
            return _decimal_converter(logical_type)
        if root in (TypeRoot.CHAR, TypeRoot.VARCHAR):
            return _convert_string
        if root in (TypeRoot.BINARY, TypeRoot.VARBINARY):
            return _convert_binary
        if root is TypeRoot.DATE:
            return self._temporal_converter("date", lambda moment: moment.date())
        if root is TypeRoot.TIME_WITHOUT_TIME_ZONE:
            return self._temporal_converter(
                "time", lambda moment: time(moment.hour, moment.minute, moment.second)
            )
        if root is TypeRoot.TIMESTAMP_WITHOUT_TIME_ZONE:
            return self._temporal_converter("timestamp", lambda moment: moment.replace(tzinfo=None))
        if root is TypeRoot.TIMESTAMP_WITH_LOCAL_TIME_ZONE:
            return self._local_zoned_timestamp_converter()
        if root is TypeRoot.ROW:
            return self._row_converter(logical_type)
        if root is TypeRoot.ARRAY:
            return self._array_converter(logical_type)
        if root is TypeRoot.MAP:
            return self._map_converter(logical_type)
        raise UnsupportedTypeError(logical_type)

    def _temporal_converter(self, name: str, project: Callable[[datetime], Any]) -> Converter:
        zone = self.time_zone

        def convert(value: DynamicValue) -> Any:
            millis = _instant_millis(value)
            if millis is None:
                raise ConversionError(name, value)
            try:
                return project(datetime_from_millis(millis, zone))
            except OverflowError as exc:
                raise ConversionError(name, value, reason="instant is outside the supported date range") from exc

        return convert

    @staticmethod
    def _local_zoned_timestamp_converter() -> Converter:
        name = "timestamp with local timezone"

        def convert(value: DynamicValue) -> datetime:
            millis = _instant_millis(value)
            if millis is None:
                raise ConversionError(name, value)
            try:
                return datetime_from_millis(millis)
            except OverflowError as exc:
                raise ConversionError(name, value, reason="instant is outside the supported date range") from exc

        return convert

    def _row_converter(self, row_type: RowType) -> Converter:
        field_converters: List[Converter] = [self.build(field.type) for field in row_type.fields]
        field_names = tuple(row_type.field_names)

        def convert(value: DynamicValue) -> Row:
            if not isinstance(value, DocumentValue):
                raise ConversionError("row", value)
            return Row(
                tuple(
                    field_converter(value.get(field_name))
                    for field_name, field_converter in zip(field_names, field_converters)
                ),
                field_names,
            )

        return convert

    def _array_converter(self, array_type: ArrayType) -> Converter:
        element_converter = self.build(array_type.element)

        def convert(value: DynamicValue) -> List[Any]:
            if not isinstance(value, ArrayValue):
                raise ConversionError("array", value)
            return [element_converter(item) for item in value]

        return convert

    def _map_converter(self, map_type: MapType) -> Converter:
        if not is_string_compatible(map_type.key):
            raise UnsupportedTypeError(map_type, reason="map keys must be string-compatible")
        value_converter = self.build(map_type.value)

        def convert(value: DynamicValue) -> Dict[str, Any]:
            if not isinstance(value, DocumentValue):
                raise ConversionError("map", value)
            return {key: value_converter(item) for key, item in value.items()}

        return convert
