"""Schema-directed conversion of change-stream events into typed rows.

    from changestream import ChangeEventDispatcher, CollectingSink, parse_type

    row_type = parse_type("row(_id int64, name varchar)")
    dispatcher = ChangeEventDispatcher(row_type)
    sink = CollectingSink()
    dispatcher.emit(ChangeEvent.insert({"_id": 1, "name": "a"}), sink)
"""

from changestream.config_loader import (
    ChangeStreamTable,
    load_table_config,
    load_table_from_dict,
    validate_yaml_config,
)
from changestream.converters import ConverterBuilder, nullable
from changestream.dispatcher import ChangeEventDispatcher
from changestream.errors import (
    ChangeEventError,
    ChangeStreamError,
    ConfigurationError,
    ConversionError,
    SchemaError,
    UnsupportedTypeError,
)
from changestream.events import ChangeEvent, OperationType, Row, RowKind
from changestream.options import ChangeStreamOptions, ErrorTolerance
from changestream.processor import ChangeStreamProcessor, ProcessingStats
from changestream.schema import Column, RowType, TableSchema
from changestream.sink import CollectingSink, RowSink
from changestream.type_parser import parse_type
from changestream.values import from_python

__version__ = "0.1.0"

__all__ = [
    "__version__",
    "ChangeEvent",
    "ChangeEventDispatcher",
    "ChangeEventError",
    "ChangeStreamError",
    "ChangeStreamOptions",
    "ChangeStreamProcessor",
    "ChangeStreamTable",
    "CollectingSink",
    "Column",
    "ConfigurationError",
    "ConversionError",
    "ConverterBuilder",
    "ErrorTolerance",
    "OperationType",
    "ProcessingStats",
    "Row",
    "RowKind",
    "RowSink",
    "RowType",
    "SchemaError",
    "TableSchema",
    "UnsupportedTypeError",
    "from_python",
    "load_table_config",
    "load_table_from_dict",
    "nullable",
    "parse_type",
    "validate_yaml_config",
]
