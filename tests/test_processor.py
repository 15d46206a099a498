"""Tests for the event processor and its error policy."""

from __future__ import annotations

import json
import logging

import pytest

from changestream.config_loader import load_table_config
from changestream.errors import ChangeEventError, ConversionError
from changestream.events import ChangeEvent, RowKind
from changestream.logging import TableLogger
from changestream.options import ErrorTolerance
from changestream.processor import ChangeStreamProcessor, ProcessingStats
from changestream.sink import CollectingSink


def _change(operation: str, **fields) -> str:
    document = {"operationType": operation, "ns": {"db": "shop", "coll": "orders"}}
    document.update(fields)
    return json.dumps(document)


class TestProcessingStats:
    def test_to_dict(self) -> None:
        stats = ProcessingStats(events_received=2, rows_emitted=1)
        assert stats.to_dict() == {
            "events_received": 2,
            "rows_emitted": 1,
            "events_dropped": 0,
            "events_failed": 0,
            "last_position": None,
        }


class TestProcess:
    def test_counts_emitted_and_dropped(self, dispatcher, sink) -> None:
        processor = ChangeStreamProcessor(dispatcher, sink)
        assert processor.process(ChangeEvent.insert({"_id": 1, "name": "a"}, position="p1"))
        assert not processor.process(ChangeEvent.update(None, key={"_id": 1}, position="p2"))
        assert processor.stats.rows_emitted == 1
        assert processor.stats.events_dropped == 1
        assert processor.stats.last_position == "p2"

    def test_raw_documents_are_parsed(self, dispatcher, sink) -> None:
        processor = ChangeStreamProcessor(dispatcher, sink)
        processor.process(_change("insert", _id={"_data": "01"}, fullDocument={"_id": 5, "name": "x"}))
        processor.process({"operationType": "delete", "documentKey": {"_id": 5}})
        assert [row.kind for row in sink.rows] == [RowKind.INSERT, RowKind.DELETE]
        assert sink.rows[0].values == (5, "x")

    def test_tolerance_none_propagates(self, dispatcher, sink, caplog) -> None:
        processor = ChangeStreamProcessor(dispatcher, sink, errors_tolerance="none")
        with pytest.raises(ConversionError):
            processor.process(ChangeEvent.insert({"_id": "abc", "name": "a"}, position="bad"))
        assert processor.stats.events_failed == 1
        assert processor.stats.last_position == "bad"
        record = caplog.records[-1]
        assert record.levelno == logging.ERROR
        assert record.error["error_type"] == "ConversionError"
        assert record.position == "bad"

    def test_tolerance_all_skips(self, dispatcher, sink, caplog) -> None:
        processor = ChangeStreamProcessor(dispatcher, sink, errors_tolerance=ErrorTolerance.ALL)
        events = [
            ChangeEvent.insert({"_id": "abc", "name": "a"}),
            ChangeEvent.delete(None),
            "{not json",
            ChangeEvent.insert({"_id": 2, "name": "b"}),
        ]
        stats = processor.process_all(events)
        assert stats.events_received == 4
        assert stats.events_failed == 3
        assert stats.rows_emitted == 1
        assert len(sink) == 1
        warnings = [record for record in caplog.records if record.levelno == logging.WARNING]
        assert len(warnings) == 3

    def test_out_of_range_date_is_skipped_with_tolerance(self, dispatcher, sink) -> None:
        processor = ChangeStreamProcessor(dispatcher, sink, errors_tolerance="all")
        events = [
            _change("insert", fullDocument={"_id": 1, "name": {"$date": 2**70}}),
            _change("insert", fullDocument={"_id": 2, "name": "b"}),
        ]
        stats = processor.process_all(events)
        assert stats.events_failed == 1
        assert [row.values for row in sink.rows] == [(2, "b")]

    def test_malformed_document_propagates_without_tolerance(self, dispatcher, sink) -> None:
        processor = ChangeStreamProcessor(dispatcher, sink)
        with pytest.raises(ChangeEventError, match="operationType"):
            processor.process({"fullDocument": {"_id": 1}})

    def test_logging_can_be_disabled(self, dispatcher, sink, caplog) -> None:
        processor = ChangeStreamProcessor(
            dispatcher, sink, errors_tolerance="all", errors_log_enable=False
        )
        assert not processor.process(ChangeEvent.delete(None))
        assert processor.stats.events_failed == 1
        assert not [record for record in caplog.records if record.name == "changestream.processor"]


class TestFromTable:
    def test_wires_options(self, write_table_config) -> None:
        table = load_table_config(write_table_config(tolerance="all"))
        processor = ChangeStreamProcessor.from_table(table)
        assert isinstance(processor.sink, CollectingSink)
        assert isinstance(processor.logger, TableLogger)
        assert processor.errors_tolerance is ErrorTolerance.ALL
        assert processor.dispatcher.row_type == table.row_type

    def test_records_carry_table_context(self, write_table_config, caplog) -> None:
        table = load_table_config(write_table_config(tolerance="all"))
        processor = ChangeStreamProcessor.from_table(table)
        processor.process(_change("insert", fullDocument={"_id": 1, "name": "a", "total": "many"}))
        record = caplog.records[-1]
        assert record.levelno == logging.WARNING
        assert record.table == "orders"
        assert record.namespace == "shop.orders"

    def test_process_all_logs_metrics(self, write_table_config, caplog) -> None:
        table = load_table_config(write_table_config())
        processor = ChangeStreamProcessor.from_table(table)
        lines = [
            _change("insert", fullDocument={"_id": 1, "name": "a", "total": {"$numberDecimal": "12.345"}}),
            _change("drop"),
        ]
        with caplog.at_level(logging.INFO):
            stats = processor.process_all(lines)
        assert stats.rows_emitted == 1
        assert stats.events_dropped == 1
        assert str(processor.sink.rows[0]["total"]) == "12.35"
        metrics = [record.getMessage() for record in caplog.records if record.getMessage().startswith("METRIC")]
        assert metrics == ["METRIC rows_emitted=1", "METRIC events_failed=0"]
