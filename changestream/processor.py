"""Drive a dispatcher over a stream of change events.

The processor applies the table's error policy around the dispatcher:

* ``errors.tolerance: none``: a failing event is logged (when
  ``errors.log.enable`` is set) and the error propagates, stopping the run.
* ``errors.tolerance: all``: a failing event is skipped; a warning is logged
  only when ``errors.log.enable`` is set.

Raw change documents (mappings or JSON text) are parsed inside the same
policy, so a malformed line is handled like any other bad event.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Any, Dict, Iterable, Mapping, Optional, Union

from changestream.config_loader import ChangeStreamTable
from changestream.dispatcher import ChangeEventDispatcher
from changestream.errors import ChangeEventError, ChangeStreamError, ConversionError
from changestream.events import ChangeEvent
from changestream.logging import TableLogger, get_table_logger
from changestream.options import ErrorTolerance
from changestream.sink import CollectingSink, RowSink

__all__ = ["ChangeStreamProcessor", "ProcessingStats"]

EventLike = Union[ChangeEvent, Mapping[str, Any], str, bytes]


@dataclass
class ProcessingStats:
    """Counters for one processor."""

    events_received: int = 0
    rows_emitted: int = 0
    events_dropped: int = 0
    events_failed: int = 0
    last_position: Any = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class ChangeStreamProcessor:
    """Feeds events through a dispatcher into a sink under an error policy.

    Example:
        table = load_table_config("orders.yaml")
        processor = ChangeStreamProcessor.from_table(table)
        stats = processor.process_all(events)
        processor.sink.to_pandas(table.schema)
    """

    def __init__(
        self,
        dispatcher: ChangeEventDispatcher,
        sink: RowSink,
        *,
        errors_tolerance: Union[ErrorTolerance, str] = ErrorTolerance.NONE,
        errors_log_enable: bool = True,
        logger: Optional[Union[logging.Logger, TableLogger]] = None,
    ):
        self.dispatcher = dispatcher
        self.sink = sink
        self.errors_tolerance = ErrorTolerance.normalize(errors_tolerance)
        self.errors_log_enable = errors_log_enable
        self.logger = logger or logging.getLogger(__name__)
        self.stats = ProcessingStats()

    @classmethod
    def from_table(
        cls,
        table: ChangeStreamTable,
        sink: Optional[RowSink] = None,
    ) -> "ChangeStreamProcessor":
        """Wire a processor from a table declaration (options + schema)."""
        table_logger = get_table_logger(__name__, table=table.name, namespace=table.options.namespace)
        return cls(
            table.create_dispatcher(logger=table_logger),
            sink if sink is not None else CollectingSink(),
            errors_tolerance=table.options.errors_tolerance,
            errors_log_enable=table.options.errors_log_enable,
            logger=table_logger,
        )

    def process(self, event: EventLike) -> bool:
        """Process one event; True when a row was emitted.

        Raises:
            ConversionError: With tolerance ``none``, when the event does not convert
            ChangeEventError: With tolerance ``none``, when the event is malformed
        """
        self.stats.events_received += 1
        position = event.position if isinstance(event, ChangeEvent) else None
        try:
            if not isinstance(event, ChangeEvent):
                event = ChangeEvent.from_change_document(event)
                position = event.position
            emitted = self.dispatcher.emit(event, self.sink)
        except (ConversionError, ChangeEventError) as e:
            self.stats.events_failed += 1
            self.stats.last_position = position
            self._report_failure(e, position)
            if self.errors_tolerance is ErrorTolerance.NONE:
                raise
            return False

        if emitted:
            self.stats.rows_emitted += 1
        else:
            self.stats.events_dropped += 1
        self.stats.last_position = position
        return emitted

    def process_all(self, events: Iterable[EventLike]) -> ProcessingStats:
        """Process events in order and return the cumulative stats."""
        for event in events:
            self.process(event)
        if isinstance(self.logger, TableLogger):
            self.logger.metric("rows_emitted", self.stats.rows_emitted, unit="rows")
            self.logger.metric("events_failed", self.stats.events_failed, unit="events")
        return self.stats

    def _report_failure(self, error: ChangeStreamError, position: Any) -> None:
        if not self.errors_log_enable:
            return
        extra = {"error": error.to_dict(), "position": position}
        if self.errors_tolerance is ErrorTolerance.NONE:
            self.logger.error("Failed to process change event: %s", error, extra=extra)
        else:
            self.logger.warning("Skipping change event that failed to convert: %s", error, extra=extra)
