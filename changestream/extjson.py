"""Extended JSON codec for change-stream documents.

Change events frequently carry their post-image and key documents as
Extended JSON text. ``decode`` understands canonical and relaxed v2 Extended
JSON plus the legacy ``$binary``/``$type``, ``$regex``/``$options`` and
``$uuid`` forms; ``to_relaxed_json`` renders a dynamic value back to text.

Usage:
    doc = parse_document('{"_id": {"$numberLong": "1"}, "name": "a"}')
    doc.get("_id")  # Int64Value(value=1)
"""

from __future__ import annotations

import base64
import binascii
import json
import math
import uuid
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, FrozenSet, Mapping, Union

from changestream.errors import ChangeEventError
from changestream.values import (
    INT32_MAX,
    INT32_MIN,
    INT64_MAX,
    INT64_MIN,
    UINT32_MAX,
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
    datetime_to_millis,
    format_instant,
)

__all__ = ["decode", "parse_document", "to_relaxed_json", "encode"]

# Largest instant relaxed mode still renders as an ISO-8601 string (9999-12-31T23:59:59.999Z).
_MAX_ISO_MILLIS = 253402300799999


def _invalid(message: str, raw: Any) -> ChangeEventError:
    return ChangeEventError(f"Invalid extended JSON: {message}", details={"value": raw})


def _require_str(raw: Mapping[str, Any], key: str) -> str:
    value = raw[key]
    if not isinstance(value, str):
        raise _invalid(f"{key} must be a string", raw)
    return value


def _parse_int(text: str, raw: Any) -> int:
    try:
        return int(text)
    except (TypeError, ValueError):
        raise _invalid(f"'{text}' is not an integer", raw) from None


def _decode_oid(raw: Mapping[str, Any]) -> DynamicValue:
    try:
        return ObjectIdValue(_require_str(raw, "$oid"))
    except ValueError as exc:
        raise _invalid(str(exc), raw) from None


def _decode_number_int(raw: Mapping[str, Any]) -> DynamicValue:
    value = _parse_int(_require_str(raw, "$numberInt"), raw)
    if not INT32_MIN <= value <= INT32_MAX:
        raise _invalid("$numberInt out of range", raw)
    return Int32Value(value)


def _decode_number_long(raw: Mapping[str, Any]) -> DynamicValue:
    value = _parse_int(_require_str(raw, "$numberLong"), raw)
    if not INT64_MIN <= value <= INT64_MAX:
        raise _invalid("$numberLong out of range", raw)
    return Int64Value(value)


def _decode_number_double(raw: Mapping[str, Any]) -> DynamicValue:
    text = _require_str(raw, "$numberDouble")
    try:
        return DoubleValue(float(text))
    except ValueError:
        raise _invalid(f"'{text}' is not a double", raw) from None


def _decode_number_decimal(raw: Mapping[str, Any]) -> DynamicValue:
    text = _require_str(raw, "$numberDecimal")
    try:
        return Decimal128Value(Decimal(text))
    except InvalidOperation:
        raise _invalid(f"'{text}' is not a decimal", raw) from None


def _b64decode(text: Any, raw: Any) -> bytes:
    if not isinstance(text, str):
        raise _invalid("binary payload must be a base64 string", raw)
    try:
        return base64.b64decode(text, validate=True)
    except (binascii.Error, ValueError):
        raise _invalid("binary payload is not valid base64", raw) from None


def _subtype(text: Any, raw: Any) -> int:
    if not isinstance(text, str):
        raise _invalid("binary subType must be a hex string", raw)
    try:
        value = int(text, 16)
    except ValueError:
        raise _invalid(f"binary subType '{text}' is not hex", raw) from None
    if not 0 <= value <= 0xFF:
        raise _invalid("binary subType out of range", raw)
    return value


def _decode_binary(raw: Mapping[str, Any]) -> DynamicValue:
    payload = raw["$binary"]
    if isinstance(payload, Mapping):
        if set(payload) != {"base64", "subType"}:
            raise _invalid("$binary requires base64 and subType", raw)
        return BinaryValue(_b64decode(payload["base64"], raw), _subtype(payload["subType"], raw))
    # Legacy form: {"$binary": "<base64>", "$type": "<hex>"}
    if "$type" not in raw:
        raise _invalid("legacy $binary requires $type", raw)
    return BinaryValue(_b64decode(payload, raw), _subtype(raw["$type"], raw))


def _decode_uuid(raw: Mapping[str, Any]) -> DynamicValue:
    text = _require_str(raw, "$uuid")
    try:
        return BinaryValue(uuid.UUID(text).bytes, 4)
    except ValueError:
        raise _invalid(f"'{text}' is not a UUID", raw) from None


def _decode_date(raw: Mapping[str, Any]) -> DynamicValue:
    millis = _date_millis(raw)
    if not INT64_MIN <= millis <= INT64_MAX:
        raise _invalid("$date out of range", raw)
    return DateTimeValue(millis)


def _date_millis(raw: Mapping[str, Any]) -> int:
    payload = raw["$date"]
    if isinstance(payload, Mapping):
        if set(payload) != {"$numberLong"}:
            raise _invalid("$date object must hold $numberLong", raw)
        return _parse_int(_require_str(payload, "$numberLong"), raw)
    if isinstance(payload, bool):
        raise _invalid("$date must be a string, integer or $numberLong", raw)
    if isinstance(payload, int):
        return payload
    if isinstance(payload, str):
        text = payload[:-1] + "+00:00" if payload.endswith("Z") else payload
        try:
            moment = datetime.fromisoformat(text)
        except ValueError:
            raise _invalid(f"'{payload}' is not an ISO-8601 date", raw) from None
        return datetime_to_millis(moment)
    raise _invalid("$date must be a string, integer or $numberLong", raw)


def _decode_timestamp(raw: Mapping[str, Any]) -> DynamicValue:
    payload = raw["$timestamp"]
    if not isinstance(payload, Mapping) or set(payload) != {"t", "i"}:
        raise _invalid("$timestamp requires t and i", raw)
    seconds, ordinal = payload["t"], payload["i"]
    if not all(isinstance(part, int) and not isinstance(part, bool) and part >= 0 for part in (seconds, ordinal)):
        raise _invalid("$timestamp t and i must be non-negative integers", raw)
    if seconds > UINT32_MAX or ordinal > UINT32_MAX:
        raise _invalid("$timestamp t and i must fit in 32 bits", raw)
    return TimestampValue(seconds, ordinal)


def _decode_regular_expression(raw: Mapping[str, Any]) -> DynamicValue:
    payload = raw["$regularExpression"]
    if not isinstance(payload, Mapping) or set(payload) != {"pattern", "options"}:
        raise _invalid("$regularExpression requires pattern and options", raw)
    return RegexValue(_require_str(payload, "pattern"), _require_str(payload, "options"))


def _decode_legacy_regex(raw: Mapping[str, Any]) -> DynamicValue:
    return RegexValue(_require_str(raw, "$regex"), _require_str(raw, "$options"))


def _decode_min_key(raw: Mapping[str, Any]) -> DynamicValue:
    if raw["$minKey"] != 1:
        raise _invalid("$minKey must be 1", raw)
    return MinKeyValue()


def _decode_max_key(raw: Mapping[str, Any]) -> DynamicValue:
    if raw["$maxKey"] != 1:
        raise _invalid("$maxKey must be 1", raw)
    return MaxKeyValue()


def _decode_symbol(raw: Mapping[str, Any]) -> DynamicValue:
    return SymbolValue(_require_str(raw, "$symbol"))


def _decode_code(raw: Mapping[str, Any]) -> DynamicValue:
    code = _require_str(raw, "$code")
    if "$scope" not in raw:
        return JavaScriptValue(code)
    scope = decode(raw["$scope"])
    if not isinstance(scope, DocumentValue):
        raise _invalid("$scope must be a document", raw)
    return JavaScriptWithScopeValue(code, scope)


def _decode_db_pointer(raw: Mapping[str, Any]) -> DynamicValue:
    payload = raw["$dbPointer"]
    if not isinstance(payload, Mapping) or set(payload) != {"$ref", "$id"}:
        raise _invalid("$dbPointer requires $ref and $id", raw)
    oid = decode(payload["$id"])
    if not isinstance(oid, ObjectIdValue):
        raise _invalid("$dbPointer $id must be an $oid", raw)
    return DBPointerValue(_require_str(payload, "$ref"), oid)


def _decode_undefined(raw: Mapping[str, Any]) -> DynamicValue:
    if raw["$undefined"] is not True:
        raise _invalid("$undefined must be true", raw)
    return UndefinedValue()


Decoder = Callable[[Mapping[str, Any]], DynamicValue]

# Key set of each wrapper object -> decoder.
_WRAPPERS: Dict[FrozenSet[str], Decoder] = {
    frozenset({"$oid"}): _decode_oid,
    frozenset({"$numberInt"}): _decode_number_int,
    frozenset({"$numberLong"}): _decode_number_long,
    frozenset({"$numberDouble"}): _decode_number_double,
    frozenset({"$numberDecimal"}): _decode_number_decimal,
    frozenset({"$binary"}): _decode_binary,
    frozenset({"$binary", "$type"}): _decode_binary,
    frozenset({"$uuid"}): _decode_uuid,
    frozenset({"$date"}): _decode_date,
    frozenset({"$timestamp"}): _decode_timestamp,
    frozenset({"$regularExpression"}): _decode_regular_expression,
    frozenset({"$regex", "$options"}): _decode_legacy_regex,
    frozenset({"$minKey"}): _decode_min_key,
    frozenset({"$maxKey"}): _decode_max_key,
    frozenset({"$symbol"}): _decode_symbol,
    frozenset({"$code"}): _decode_code,
    frozenset({"$code", "$scope"}): _decode_code,
    frozenset({"$dbPointer"}): _decode_db_pointer,
    frozenset({"$undefined"}): _decode_undefined,
}

_WRAPPER_KEYS = frozenset().union(*_WRAPPERS)


def decode(obj: Any) -> DynamicValue:
    """Decode a parsed JSON structure into a dynamic value.

    Raises:
        ChangeEventError: If a wrapper object is malformed or the value has no
            JSON representation
    """
    if obj is None:
        return NullValue()
    if isinstance(obj, bool):
        return BooleanValue(obj)
    if isinstance(obj, int):
        if INT32_MIN <= obj <= INT32_MAX:
            return Int32Value(obj)
        if INT64_MIN <= obj <= INT64_MAX:
            return Int64Value(obj)
        raise _invalid("integer does not fit in 64 bits", obj)
    if isinstance(obj, float):
        return DoubleValue(obj)
    if isinstance(obj, str):
        return StringValue(obj)
    if isinstance(obj, (list, tuple)):
        return ArrayValue(tuple(decode(item) for item in obj))
    if isinstance(obj, Mapping):
        keys = frozenset(obj)
        wrapper = _WRAPPERS.get(keys)
        if wrapper is not None:
            return wrapper(obj)
        if keys & _WRAPPER_KEYS:
            raise _invalid(f"unexpected keys {sorted(keys)}", obj)
        return DocumentValue({str(key): decode(value) for key, value in obj.items()})
    raise _invalid(f"unsupported JSON value of type {type(obj).__name__}", obj)


def parse_document(text: Union[str, bytes]) -> DocumentValue:
    """Parse Extended JSON text whose top level must be an object.

    Raises:
        ChangeEventError: If the text is not valid JSON or not a document
    """
    try:
        parsed = json.loads(text)
    except ValueError as exc:
        raise ChangeEventError(f"Document is not valid JSON: {exc}") from exc

    value = decode(parsed)
    if not isinstance(value, DocumentValue):
        raise ChangeEventError(
            f"Expected a JSON document, got {value.wire_type.value}",
            suggestion="Post-image and key documents must be JSON objects.",
        )
    return value


def _encode_double(value: float) -> Any:
    if math.isfinite(value):
        return value
    if math.isnan(value):
        return {"$numberDouble": "NaN"}
    return {"$numberDouble": "Infinity" if value > 0 else "-Infinity"}


def _encode_date(millis: int) -> Any:
    if 0 <= millis <= _MAX_ISO_MILLIS:
        return {"$date": format_instant(datetime_from_millis(millis))}
    return {"$date": {"$numberLong": str(millis)}}


def encode(value: DynamicValue) -> Any:
    """Relaxed Extended JSON structure for a dynamic value (ready for ``json.dumps``)."""
    if isinstance(value, (NullValue, UndefinedValue)):
        return None if isinstance(value, NullValue) else {"$undefined": True}
    if isinstance(value, (BooleanValue, Int32Value, Int64Value, StringValue)):
        return value.value
    if isinstance(value, DoubleValue):
        return _encode_double(value.value)
    if isinstance(value, Decimal128Value):
        return {"$numberDecimal": str(value.value)}
    if isinstance(value, BinaryValue):
        return {
            "$binary": {
                "base64": base64.b64encode(value.data).decode("ascii"),
                "subType": f"{value.subtype:02x}",
            }
        }
    if isinstance(value, ObjectIdValue):
        return {"$oid": value.hex}
    if isinstance(value, DateTimeValue):
        return _encode_date(value.millis)
    if isinstance(value, TimestampValue):
        return {"$timestamp": {"t": value.seconds, "i": value.ordinal}}
    if isinstance(value, RegexValue):
        return {"$regularExpression": {"pattern": value.pattern, "options": value.options}}
    if isinstance(value, MinKeyValue):
        return {"$minKey": 1}
    if isinstance(value, MaxKeyValue):
        return {"$maxKey": 1}
    if isinstance(value, SymbolValue):
        return {"$symbol": value.symbol}
    if isinstance(value, JavaScriptValue):
        return {"$code": value.code}
    if isinstance(value, JavaScriptWithScopeValue):
        return {"$code": value.code, "$scope": encode(value.scope)}
    if isinstance(value, DBPointerValue):
        return {"$dbPointer": {"$ref": value.namespace, "$id": {"$oid": value.oid.hex}}}
    if isinstance(value, DocumentValue):
        return {key: encode(item) for key, item in value.fields.items()}
    if isinstance(value, ArrayValue):
        return [encode(item) for item in value.items]
    raise TypeError(f"Not a dynamic value: {value!r}")


def to_relaxed_json(value: DynamicValue) -> str:
    """Render a dynamic value as relaxed Extended JSON text."""
    return json.dumps(encode(value), ensure_ascii=False)
