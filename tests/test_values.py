"""Tests for the dynamic value model."""

from __future__ import annotations

import uuid
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest

from changestream.values import (
    INT32_MAX,
    INT64_MAX,
    INT64_MIN,
    UINT32_MAX,
    ArrayValue,
    BinaryValue,
    BooleanValue,
    DateTimeValue,
    Decimal128Value,
    DocumentValue,
    DoubleValue,
    Int32Value,
    Int64Value,
    NullValue,
    ObjectIdValue,
    StringValue,
    TimestampValue,
    WireType,
    datetime_from_millis,
    datetime_to_millis,
    format_instant,
    from_python,
)


class TestWireTypes:
    def test_every_variant_carries_its_tag(self) -> None:
        assert Int32Value(1).wire_type is WireType.INT32
        assert DocumentValue({}).wire_type is WireType.DOCUMENT
        assert ObjectIdValue("0" * 24).wire_type.value == "objectId"

    def test_choices(self) -> None:
        choices = WireType.choices()
        assert "decimal128" in choices
        assert "javascriptWithScope" in choices
        assert len(choices) == 21


class TestValidation:
    def test_int32_range(self) -> None:
        Int32Value(INT32_MAX)
        with pytest.raises(ValueError, match="int32"):
            Int32Value(INT32_MAX + 1)

    def test_int64_rejects_bool(self) -> None:
        with pytest.raises(ValueError):
            Int64Value(True)

    def test_object_id_is_normalized(self) -> None:
        assert ObjectIdValue("ABCDEF0123456789ABCDEF01").hex == "abcdef0123456789abcdef01"
        with pytest.raises(ValueError, match="object id"):
            ObjectIdValue("xyz")

    def test_date_time_millis_range(self) -> None:
        DateTimeValue(INT64_MAX)
        with pytest.raises(ValueError, match="date-time"):
            DateTimeValue(INT64_MAX + 1)
        with pytest.raises(ValueError, match="date-time"):
            DateTimeValue(INT64_MIN - 1)

    def test_timestamp_parts_are_uint32(self) -> None:
        TimestampValue(UINT32_MAX, UINT32_MAX)
        with pytest.raises(ValueError, match="timestamp"):
            TimestampValue(UINT32_MAX + 1)
        with pytest.raises(ValueError, match="timestamp"):
            TimestampValue(0, -1)

    def test_binary_subtype_range(self) -> None:
        with pytest.raises(ValueError):
            BinaryValue(b"", 256)

    def test_uuid_detection(self) -> None:
        assert BinaryValue(bytes(16), 4).is_uuid
        assert BinaryValue(bytes(16), 3).is_uuid
        assert not BinaryValue(bytes(16), 0).is_uuid
        assert not BinaryValue(bytes(8), 4).is_uuid

    def test_decimal_flags(self) -> None:
        assert Decimal128Value(Decimal("NaN")).is_nan
        assert not Decimal128Value(Decimal("Infinity")).is_finite
        assert Decimal128Value(Decimal("-Infinity")).is_negative
        assert Decimal128Value(Decimal("1.5")).is_finite


class TestDocumentValue:
    def test_lookup_is_exact(self) -> None:
        doc = DocumentValue({"Name": StringValue("a")})
        assert doc.get("Name") == StringValue("a")
        assert doc.get("name") is None
        assert "Name" in doc
        assert "name" not in doc

    def test_order_is_preserved(self) -> None:
        doc = from_python({"b": 1, "a": 2, "c": 3})
        assert doc.keys() == ["b", "a", "c"]
        assert list(doc) == ["b", "a", "c"]
        assert len(doc) == 3


class TestFromPython:
    def test_scalars(self) -> None:
        assert from_python(None) == NullValue()
        assert from_python(True) == BooleanValue(True)
        assert from_python(5) == Int32Value(5)
        assert from_python(2**40) == Int64Value(2**40)
        assert from_python(1.5) == DoubleValue(1.5)
        assert from_python(Decimal("2.5")) == Decimal128Value(Decimal("2.5"))
        assert from_python("x") == StringValue("x")
        assert from_python(b"\x00") == BinaryValue(b"\x00", 0)

    def test_uuid_becomes_standard_binary(self) -> None:
        identifier = uuid.uuid4()
        assert from_python(identifier) == BinaryValue(identifier.bytes, 4)

    def test_datetimes(self) -> None:
        assert from_python(datetime(1970, 1, 1, 0, 0, 1)) == DateTimeValue(1000)
        aware = datetime(1970, 1, 1, 2, 0, tzinfo=timezone(timedelta(hours=2)))
        assert from_python(aware) == DateTimeValue(0)
        assert from_python(date(1970, 1, 2)) == DateTimeValue(86_400_000)

    def test_containers(self) -> None:
        value = from_python({"a": [1, {"b": None}]})
        assert isinstance(value, DocumentValue)
        inner = value.get("a")
        assert isinstance(inner, ArrayValue)
        assert inner[0] == Int32Value(1)
        assert inner[1].get("b") == NullValue()

    def test_dynamic_values_pass_through(self) -> None:
        value = Int64Value(3)
        assert from_python(value) is value

    def test_non_string_keys_rejected(self) -> None:
        with pytest.raises(TypeError, match="keys must be strings"):
            from_python({1: "a"})

    def test_unsupported_object(self) -> None:
        with pytest.raises(TypeError):
            from_python(object())


class TestInstantHelpers:
    def test_millis_round_trip(self) -> None:
        moment = datetime(2020, 9, 13, 12, 26, 40, 123000, tzinfo=timezone.utc)
        assert datetime_to_millis(moment) == 1_600_000_000_123
        assert datetime_from_millis(1_600_000_000_123) == moment

    def test_negative_millis(self) -> None:
        assert datetime_to_millis(datetime(1969, 12, 31, 23, 59, 59, 999000)) == -1

    def test_format_instant(self) -> None:
        assert format_instant(datetime_from_millis(0)) == "1970-01-01T00:00:00Z"
        assert format_instant(datetime_from_millis(1)) == "1970-01-01T00:00:00.001Z"

    def test_out_of_range(self) -> None:
        with pytest.raises(OverflowError):
            datetime_from_millis(10**16)
