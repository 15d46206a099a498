"""Change-event dispatcher.

Selects the sub-document an event carries for its operation kind, converts it
with the row converter built for the target schema, and tags the result with
a change kind:

    insert   -> post-image       -> INSERT
    update   -> post-image       -> UPDATE_AFTER (dropped if post-image is gone)
    replace  -> post-image       -> UPDATE_AFTER
    delete   -> identifying key  -> DELETE
    anything else                -> dropped

Each event yields at most one row, synchronously, in arrival order.
"""

from __future__ import annotations

import logging
from datetime import timezone, tzinfo
from typing import Any, Optional, Union

from changestream.converters import Converter, ConverterBuilder
from changestream.errors import ChangeEventError, ConversionError, SchemaError
from changestream.events import ChangeEvent, OperationType, Row, RowKind
from changestream.logging import TableLogger
from changestream.schema import RowType
from changestream.sink import RowSink
from changestream.values import DocumentValue

__all__ = ["ChangeEventDispatcher"]


class ChangeEventDispatcher:
    """Turns change events into typed, change-kind-tagged rows.

    The row converter is built once at construction; an unsupported schema
    fails here, before any event is seen.

    Args:
        row_type: Target row schema
        time_zone: Zone for date/time rules (UTC by default)
        logger: Logger for dropped events; defaults to this module's logger

    Raises:
        SchemaError: If ``row_type`` is not a row type
        UnsupportedTypeError: If the schema contains a type with no converter
    """

    def __init__(
        self,
        row_type: RowType,
        *,
        time_zone: tzinfo = timezone.utc,
        logger: Optional[Union[logging.Logger, TableLogger]] = None,
    ):
        if not isinstance(row_type, RowType):
            raise SchemaError(f"Dispatcher target must be a row type, got {row_type}")
        self.row_type = row_type
        self.time_zone = time_zone
        self.logger = logger or logging.getLogger(__name__)
        self._converter: Converter = ConverterBuilder(time_zone).build(row_type)

    def convert(self, event: ChangeEvent) -> Optional[Row]:
        """Convert one event, or return ``None`` when the event is dropped.

        Raises:
            ConversionError: If the selected document does not fit the schema,
                or an insert/replace carries no post-image
            ChangeEventError: If a delete carries no identifying key
        """
        operation = event.operation

        if operation is OperationType.INSERT:
            return self._extract(event, event.full_document, RowKind.INSERT)

        if operation is OperationType.DELETE:
            if event.document_key is None:
                raise ChangeEventError(
                    "Delete event has no document key",
                    namespace=event.namespace,
                    details={"position": event.position},
                )
            return self._extract(event, event.document_key, RowKind.DELETE)

        if operation is OperationType.UPDATE:
            if event.full_document is None:
                # Document was deleted before the post-image lookup completed.
                self.logger.info(
                    "Full document of update event is absent, skipping",
                    extra={"position": event.position, "event_namespace": event.namespace},
                )
                return None
            return self._extract(event, event.full_document, RowKind.UPDATE_AFTER)

        if operation is OperationType.REPLACE:
            return self._extract(event, event.full_document, RowKind.UPDATE_AFTER)

        self.logger.debug(
            "Ignored change event of type %s",
            operation.value,
            extra={"position": event.position, "event_namespace": event.namespace},
        )
        return None

    def emit(self, event: ChangeEvent, sink: RowSink) -> bool:
        """Convert ``event`` and hand the row to ``sink``; False when dropped."""
        row = self.convert(event)
        if row is None:
            return False
        sink.collect(row)
        return True

    def _extract(self, event: ChangeEvent, document: Optional[DocumentValue], kind: RowKind) -> Row:
        if document is None:
            raise ConversionError(
                "row",
                None,
                reason=f"{event.operation.value} event carries no post-image",
                namespace=event.namespace,
            )
        row: Any = self._converter(document)
        return row.with_kind(kind)
