"""Row sinks: where the dispatcher hands emitted rows.

``CollectingSink`` keeps rows in arrival order and materializes them as a
pyarrow Table, a pandas DataFrame or a parquet file. Every output carries the
declared columns plus a ``row_kind`` column holding the short change-kind
strings (``+I``, ``+U``, ``-D``).
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Protocol, Union

import pandas as pd
import pyarrow as pa
import pyarrow.parquet as pq

from changestream.events import Row
from changestream.schema import (
    ArrayType,
    LogicalType,
    MapType,
    RowType,
    TableSchema,
    to_arrow_type,
)

logger = logging.getLogger(__name__)

__all__ = ["RowSink", "CollectingSink", "ROW_KIND_COLUMN"]

ROW_KIND_COLUMN = "row_kind"

SchemaLike = Union[TableSchema, RowType]


class RowSink(Protocol):
    """Anything that accepts emitted rows."""

    def collect(self, row: Row) -> None:
        ...


def _row_type(schema: SchemaLike) -> RowType:
    return schema.row_type if isinstance(schema, TableSchema) else schema


def _arrow_value(value: Any, logical_type: LogicalType) -> Any:
    """Shape a converted value the way pyarrow expects for its column type."""
    if value is None:
        return None
    if isinstance(logical_type, RowType):
        return {
            field.name: _arrow_value(item, field.type)
            for field, item in zip(logical_type.fields, value)
        }
    if isinstance(logical_type, ArrayType):
        return [_arrow_value(item, logical_type.element) for item in value]
    if isinstance(logical_type, MapType):
        return [(key, _arrow_value(item, logical_type.value)) for key, item in value.items()]
    return value


class CollectingSink:
    """In-memory sink keeping emitted rows in order."""

    def __init__(self) -> None:
        self.rows: List[Row] = []

    def collect(self, row: Row) -> None:
        self.rows.append(row)

    def clear(self) -> None:
        self.rows.clear()

    def __len__(self) -> int:
        return len(self.rows)

    def to_arrow(self, schema: SchemaLike) -> pa.Table:
        """Build a table with the declared columns plus ``row_kind``."""
        row_type = _row_type(schema)
        columns: Dict[str, pa.Array] = {}
        for index, field in enumerate(row_type.fields):
            columns[field.name] = pa.array(
                [_arrow_value(row[index], field.type) for row in self.rows],
                type=to_arrow_type(field.type),
            )
        columns[ROW_KIND_COLUMN] = pa.array(
            [row.kind.short_string for row in self.rows], type=pa.string()
        )
        return pa.table(columns)

    def to_pandas(self, schema: SchemaLike) -> pd.DataFrame:
        return self.to_arrow(schema).to_pandas()

    def write_parquet(self, path: Union[str, Path], schema: SchemaLike) -> Path:
        """Write collected rows to a parquet file and return its path."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        table = self.to_arrow(schema)
        pq.write_table(table, path)
        logger.info("Wrote %d rows to %s", table.num_rows, path)
        return path

    def write_csv(self, path: Union[str, Path], schema: SchemaLike) -> Path:
        """Write collected rows to a CSV file via pandas and return its path."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        frame = self.to_pandas(schema)
        frame.to_csv(path, index=False)
        logger.info("Wrote %d rows to %s", len(frame), path)
        return path
