"""Tests for the change-event dispatcher."""

from __future__ import annotations

import logging
from decimal import Decimal

import pytest

from changestream.dispatcher import ChangeEventDispatcher
from changestream.errors import ChangeEventError, ConversionError, SchemaError, UnsupportedTypeError
from changestream.events import ChangeEvent, OperationType, RowKind
from changestream.schema import (
    ArrayType,
    BigIntType,
    DecimalType,
    IntType,
    MapType,
    RowType,
    VarCharType,
)
from changestream.values import Decimal128Value


class TestEndToEnd:
    """The four reference conversions, driven through the dispatcher."""

    def test_insert_emits_insert_row(self, dispatcher, sink) -> None:
        assert dispatcher.emit(ChangeEvent.insert({"_id": 1, "name": "a"}), sink)
        assert len(sink) == 1
        row = sink.rows[0]
        assert row.kind is RowKind.INSERT
        assert row.values == (1, "a")

    def test_delete_emits_key_only_row(self, dispatcher, sink) -> None:
        assert dispatcher.emit(ChangeEvent.delete({"_id": 1}), sink)
        row = sink.rows[0]
        assert row.kind is RowKind.DELETE
        assert row.values == (1, None)

    def test_negative_infinite_decimal_saturates(self, sink) -> None:
        dispatcher = ChangeEventDispatcher(RowType.of(_id=BigIntType(), amount=DecimalType(10, 2)))
        event = ChangeEvent.insert({"_id": 1, "amount": Decimal128Value(Decimal("-Infinity"))})
        dispatcher.emit(event, sink)
        assert sink.rows[0]["amount"] == Decimal("-99999999.99")

    def test_array_from_scalar_fails(self) -> None:
        dispatcher = ChangeEventDispatcher(RowType.of(_id=BigIntType(), tags=ArrayType(VarCharType())))
        with pytest.raises(ConversionError) as exc_info:
            dispatcher.convert(ChangeEvent.insert({"_id": 1, "tags": "solo"}))
        assert exc_info.value.target == "array"
        assert exc_info.value.wire_type == "string"
        assert "Unable to convert to array" in str(exc_info.value)


class TestOperationMapping:
    def test_delete_with_other_key_value(self, dispatcher) -> None:
        row = dispatcher.convert(ChangeEvent.delete({"_id": 42}))
        assert row.kind is RowKind.DELETE
        assert row.as_dict() == {"_id": 42, "name": None}

    def test_update_emits_update_after(self, dispatcher) -> None:
        row = dispatcher.convert(ChangeEvent.update({"_id": 1, "name": "b"}, key={"_id": 1}))
        assert row.kind is RowKind.UPDATE_AFTER
        assert row.values == (1, "b")

    def test_replace_emits_update_after(self, dispatcher) -> None:
        row = dispatcher.convert(ChangeEvent.replace({"_id": 2, "name": "c"}))
        assert row.kind is RowKind.UPDATE_AFTER

    def test_extra_document_fields_are_ignored(self, dispatcher) -> None:
        row = dispatcher.convert(ChangeEvent.insert({"name": "x", "_id": 3, "other": True}))
        assert row.values == (3, "x")

    def test_update_without_post_image_is_dropped(self, dispatcher, sink, caplog) -> None:
        with caplog.at_level(logging.INFO, logger="changestream.dispatcher"):
            emitted = dispatcher.emit(ChangeEvent.update(None, key={"_id": 1}, position="tok-1"), sink)
        assert emitted is False
        assert len(sink) == 0
        record = caplog.records[-1]
        assert record.levelno == logging.INFO
        assert "Full document of update event is absent" in record.getMessage()
        assert record.position == "tok-1"

    @pytest.mark.parametrize(
        "operation",
        [OperationType.INVALIDATE, OperationType.DROP, OperationType.RENAME, OperationType.OTHER],
    )
    def test_other_operations_are_dropped(self, dispatcher, sink, caplog, operation) -> None:
        with caplog.at_level(logging.DEBUG, logger="changestream.dispatcher"):
            assert dispatcher.convert(ChangeEvent(operation)) is None
        assert any(
            record.levelno == logging.DEBUG and operation.value in record.getMessage()
            for record in caplog.records
        )

    def test_events_are_emitted_in_arrival_order(self, dispatcher, sink) -> None:
        events = [
            ChangeEvent.insert({"_id": 1, "name": "a"}),
            ChangeEvent.update(None, key={"_id": 1}),
            ChangeEvent.replace({"_id": 1, "name": "b"}),
            ChangeEvent.delete({"_id": 1}),
        ]
        results = [dispatcher.emit(event, sink) for event in events]
        assert results == [True, False, True, True]
        assert [row.kind.short_string for row in sink.rows] == ["+I", "+U", "-D"]


class TestDispatchFailures:
    def test_delete_without_key(self, dispatcher) -> None:
        with pytest.raises(ChangeEventError, match="no document key") as exc_info:
            dispatcher.convert(ChangeEvent.delete(None, namespace="shop.people", position=9))
        assert exc_info.value.namespace == "shop.people"
        assert exc_info.value.details == {"position": 9}

    def test_insert_without_post_image(self, dispatcher) -> None:
        with pytest.raises(ConversionError, match="insert event carries no post-image"):
            dispatcher.convert(ChangeEvent(OperationType.INSERT))

    def test_field_type_mismatch(self, dispatcher) -> None:
        with pytest.raises(ConversionError) as exc_info:
            dispatcher.convert(ChangeEvent.insert({"_id": [1], "name": "a"}))
        assert exc_info.value.target == "long"
        assert exc_info.value.wire_type == "array"

    def test_sink_untouched_on_failure(self, dispatcher, sink) -> None:
        with pytest.raises(ConversionError):
            dispatcher.emit(ChangeEvent.insert({"_id": "abc", "name": "a"}), sink)
        assert len(sink) == 0


class TestConstruction:
    def test_target_must_be_row(self) -> None:
        with pytest.raises(SchemaError, match="row type"):
            ChangeEventDispatcher(IntType())

    def test_unsupported_schema_fails_before_events(self) -> None:
        with pytest.raises(UnsupportedTypeError, match="map keys must be string-compatible"):
            ChangeEventDispatcher(RowType.of(_id=BigIntType(), attrs=MapType(IntType(), IntType())))

    def test_custom_logger(self, people_type, caplog) -> None:
        custom = logging.getLogger("tests.dispatcher")
        dispatcher = ChangeEventDispatcher(people_type, logger=custom)
        with caplog.at_level(logging.DEBUG, logger="tests.dispatcher"):
            dispatcher.convert(ChangeEvent(OperationType.DROP))
        assert [record.name for record in caplog.records] == ["tests.dispatcher"]
