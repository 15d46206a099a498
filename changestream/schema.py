"""Target row schema: logical types and the table declaration.

Logical types form a closed set of frozen dataclasses. Each knows its
``TypeRoot`` and renders to the same token ``parse_type`` accepts, e.g.
``decimal(10,2)`` or ``row(_id int64, tags array(varchar))``.

Example:
    schema = TableSchema(
        columns=[Column("_id", BigIntType()), Column("name", VarCharType())],
        primary_key=("_id",),
    )
    schema.row_type      # RowType(fields=(...))
    schema.to_arrow_schema()
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import ClassVar, Dict, List, Sequence, Tuple

import pyarrow as pa

from changestream.errors import SchemaError

__all__ = [
    "TypeRoot",
    "LogicalType",
    "NullType",
    "BooleanType",
    "TinyIntType",
    "SmallIntType",
    "IntType",
    "BigIntType",
    "FloatType",
    "DoubleType",
    "DecimalType",
    "CharType",
    "VarCharType",
    "BinaryType",
    "VarBinaryType",
    "DateType",
    "TimeType",
    "TimestampType",
    "LocalZonedTimestampType",
    "YearMonthIntervalType",
    "DayTimeIntervalType",
    "RowField",
    "RowType",
    "ArrayType",
    "MapType",
    "MultisetType",
    "RawType",
    "Column",
    "TableSchema",
    "is_string_compatible",
    "to_arrow_type",
    "MAX_LENGTH",
]

MAX_LENGTH = 2147483647
MAX_DECIMAL_PRECISION = 38
MAX_TIME_PRECISION = 9


class TypeRoot(str, Enum):
    """Family of a logical type, used for converter dispatch."""

    NULL = "null"
    BOOLEAN = "boolean"
    TINYINT = "tinyint"
    SMALLINT = "smallint"
    INTEGER = "integer"
    BIGINT = "bigint"
    FLOAT = "float"
    DOUBLE = "double"
    DECIMAL = "decimal"
    CHAR = "char"
    VARCHAR = "varchar"
    BINARY = "binary"
    VARBINARY = "varbinary"
    DATE = "date"
    TIME_WITHOUT_TIME_ZONE = "time"
    TIMESTAMP_WITHOUT_TIME_ZONE = "timestamp"
    TIMESTAMP_WITH_LOCAL_TIME_ZONE = "timestamp_ltz"
    INTERVAL_YEAR_MONTH = "interval_year_month"
    INTERVAL_DAY_TIME = "interval_day_time"
    ROW = "row"
    ARRAY = "array"
    MAP = "map"
    MULTISET = "multiset"
    RAW = "raw"


class LogicalType:
    """Base of all logical types."""

    root: ClassVar[TypeRoot]

    def token(self) -> str:
        raise NotImplementedError

    def __str__(self) -> str:
        return self.token()


@dataclass(frozen=True)
class NullType(LogicalType):
    root: ClassVar[TypeRoot] = TypeRoot.NULL

    def token(self) -> str:
        return "null"


@dataclass(frozen=True)
class BooleanType(LogicalType):
    root: ClassVar[TypeRoot] = TypeRoot.BOOLEAN

    def token(self) -> str:
        return "boolean"


@dataclass(frozen=True)
class TinyIntType(LogicalType):
    root: ClassVar[TypeRoot] = TypeRoot.TINYINT

    def token(self) -> str:
        return "int8"


@dataclass(frozen=True)
class SmallIntType(LogicalType):
    root: ClassVar[TypeRoot] = TypeRoot.SMALLINT

    def token(self) -> str:
        return "int16"


@dataclass(frozen=True)
class IntType(LogicalType):
    root: ClassVar[TypeRoot] = TypeRoot.INTEGER

    def token(self) -> str:
        return "int32"


@dataclass(frozen=True)
class BigIntType(LogicalType):
    root: ClassVar[TypeRoot] = TypeRoot.BIGINT

    def token(self) -> str:
        return "int64"


@dataclass(frozen=True)
class FloatType(LogicalType):
    root: ClassVar[TypeRoot] = TypeRoot.FLOAT

    def token(self) -> str:
        return "float32"


@dataclass(frozen=True)
class DoubleType(LogicalType):
    root: ClassVar[TypeRoot] = TypeRoot.DOUBLE

    def token(self) -> str:
        return "float64"


@dataclass(frozen=True)
class DecimalType(LogicalType):
    """Fixed-point decimal with ``precision`` digits, ``scale`` of them fractional."""

    precision: int = 10
    scale: int = 0
    root: ClassVar[TypeRoot] = TypeRoot.DECIMAL

    def __post_init__(self) -> None:
        if not 1 <= self.precision <= MAX_DECIMAL_PRECISION:
            raise SchemaError(
                f"Decimal precision must be between 1 and {MAX_DECIMAL_PRECISION} (both inclusive), got {self.precision}"
            )
        if not 0 <= self.scale <= self.precision:
            raise SchemaError(
                f"Decimal scale must be between 0 and the precision {self.precision} (both inclusive), got {self.scale}"
            )

    def token(self) -> str:
        return f"decimal({self.precision},{self.scale})"


def _check_length(kind: str, length: int) -> None:
    if not 1 <= length <= MAX_LENGTH:
        raise SchemaError(f"{kind} length must be between 1 and {MAX_LENGTH} (both inclusive), got {length}")


@dataclass(frozen=True)
class CharType(LogicalType):
    length: int = 1
    root: ClassVar[TypeRoot] = TypeRoot.CHAR

    def __post_init__(self) -> None:
        _check_length("Char", self.length)

    def token(self) -> str:
        return f"char({self.length})"


@dataclass(frozen=True)
class VarCharType(LogicalType):
    length: int = MAX_LENGTH
    root: ClassVar[TypeRoot] = TypeRoot.VARCHAR

    def __post_init__(self) -> None:
        _check_length("Varchar", self.length)

    def token(self) -> str:
        return "varchar" if self.length == MAX_LENGTH else f"varchar({self.length})"


@dataclass(frozen=True)
class BinaryType(LogicalType):
    length: int = 1
    root: ClassVar[TypeRoot] = TypeRoot.BINARY

    def __post_init__(self) -> None:
        _check_length("Binary", self.length)

    def token(self) -> str:
        return f"binary({self.length})"


@dataclass(frozen=True)
class VarBinaryType(LogicalType):
    length: int = MAX_LENGTH
    root: ClassVar[TypeRoot] = TypeRoot.VARBINARY

    def __post_init__(self) -> None:
        _check_length("Varbinary", self.length)

    def token(self) -> str:
        return "varbinary" if self.length == MAX_LENGTH else f"varbinary({self.length})"


@dataclass(frozen=True)
class DateType(LogicalType):
    root: ClassVar[TypeRoot] = TypeRoot.DATE

    def token(self) -> str:
        return "date"


def _check_precision(kind: str, precision: int) -> None:
    if not 0 <= precision <= MAX_TIME_PRECISION:
        raise SchemaError(f"{kind} precision must be between 0 and {MAX_TIME_PRECISION} (both inclusive), got {precision}")


@dataclass(frozen=True)
class TimeType(LogicalType):
    precision: int = 0
    root: ClassVar[TypeRoot] = TypeRoot.TIME_WITHOUT_TIME_ZONE

    def __post_init__(self) -> None:
        _check_precision("Time", self.precision)

    def token(self) -> str:
        return "time" if self.precision == 0 else f"time({self.precision})"


@dataclass(frozen=True)
class TimestampType(LogicalType):
    precision: int = 6
    root: ClassVar[TypeRoot] = TypeRoot.TIMESTAMP_WITHOUT_TIME_ZONE

    def __post_init__(self) -> None:
        _check_precision("Timestamp", self.precision)

    def token(self) -> str:
        return "timestamp" if self.precision == 6 else f"timestamp({self.precision})"


@dataclass(frozen=True)
class LocalZonedTimestampType(LogicalType):
    precision: int = 6
    root: ClassVar[TypeRoot] = TypeRoot.TIMESTAMP_WITH_LOCAL_TIME_ZONE

    def __post_init__(self) -> None:
        _check_precision("Timestamp", self.precision)

    def token(self) -> str:
        base = "timestamp-with-local-zone"
        return base if self.precision == 6 else f"{base}({self.precision})"


@dataclass(frozen=True)
class YearMonthIntervalType(LogicalType):
    """Interval in months, carried as a 32-bit integer."""

    root: ClassVar[TypeRoot] = TypeRoot.INTERVAL_YEAR_MONTH

    def token(self) -> str:
        return "interval-year-month"


@dataclass(frozen=True)
class DayTimeIntervalType(LogicalType):
    """Interval in milliseconds, carried as a 64-bit integer."""

    root: ClassVar[TypeRoot] = TypeRoot.INTERVAL_DAY_TIME

    def token(self) -> str:
        return "interval-day-time"


@dataclass(frozen=True)
class RowField:
    name: str
    type: LogicalType

    def __str__(self) -> str:
        return f"{self.name} {self.type}"


@dataclass(frozen=True)
class RowType(LogicalType):
    """Nested row; field order is fixed and defines output order."""

    fields: Tuple[RowField, ...] = ()
    root: ClassVar[TypeRoot] = TypeRoot.ROW

    def __post_init__(self) -> None:
        object.__setattr__(self, "fields", tuple(self.fields))
        seen = set()
        for row_field in self.fields:
            if not row_field.name:
                raise SchemaError("Row field names must not be empty")
            if row_field.name in seen:
                raise SchemaError(f"Duplicate row field name '{row_field.name}'")
            seen.add(row_field.name)

    @classmethod
    def of(cls, **types: LogicalType) -> "RowType":
        """Build a row from keyword arguments, in argument order."""
        return cls(tuple(RowField(name, logical_type) for name, logical_type in types.items()))

    @property
    def field_names(self) -> List[str]:
        return [row_field.name for row_field in self.fields]

    @property
    def field_types(self) -> List[LogicalType]:
        return [row_field.type for row_field in self.fields]

    def token(self) -> str:
        return "row(" + ", ".join(str(row_field) for row_field in self.fields) + ")"


@dataclass(frozen=True)
class ArrayType(LogicalType):
    element: LogicalType
    root: ClassVar[TypeRoot] = TypeRoot.ARRAY

    def token(self) -> str:
        return f"array({self.element})"


@dataclass(frozen=True)
class MapType(LogicalType):
    key: LogicalType
    value: LogicalType
    root: ClassVar[TypeRoot] = TypeRoot.MAP

    def token(self) -> str:
        return f"map({self.key}, {self.value})"


@dataclass(frozen=True)
class MultisetType(LogicalType):
    element: LogicalType
    root: ClassVar[TypeRoot] = TypeRoot.MULTISET

    def token(self) -> str:
        return f"multiset({self.element})"


@dataclass(frozen=True)
class RawType(LogicalType):
    name: str = "object"
    root: ClassVar[TypeRoot] = TypeRoot.RAW

    def token(self) -> str:
        return f"raw({self.name})"


def is_string_compatible(logical_type: LogicalType) -> bool:
    """Whether values of this type can be created from a document field name."""
    return logical_type.root in (TypeRoot.CHAR, TypeRoot.VARCHAR)


def to_arrow_type(logical_type: LogicalType) -> pa.DataType:
    """Map a logical type to the pyarrow type emitted rows are stored as.

    Raises:
        SchemaError: For multiset and raw types, which have no arrow column form
    """
    root = logical_type.root
    if isinstance(logical_type, DecimalType):
        return pa.decimal128(logical_type.precision, logical_type.scale)
    if isinstance(logical_type, RowType):
        return pa.struct([pa.field(f.name, to_arrow_type(f.type)) for f in logical_type.fields])
    if isinstance(logical_type, ArrayType):
        return pa.list_(to_arrow_type(logical_type.element))
    if isinstance(logical_type, MapType):
        return pa.map_(to_arrow_type(logical_type.key), to_arrow_type(logical_type.value))
    if root in _ARROW_SCALARS:
        return _ARROW_SCALARS[root]
    raise SchemaError(f"No arrow representation for type {logical_type}")


_ARROW_SCALARS: Dict[TypeRoot, pa.DataType] = {
    TypeRoot.NULL: pa.null(),
    TypeRoot.BOOLEAN: pa.bool_(),
    TypeRoot.TINYINT: pa.int8(),
    TypeRoot.SMALLINT: pa.int16(),
    TypeRoot.INTEGER: pa.int32(),
    TypeRoot.BIGINT: pa.int64(),
    TypeRoot.FLOAT: pa.float32(),
    TypeRoot.DOUBLE: pa.float64(),
    TypeRoot.CHAR: pa.string(),
    TypeRoot.VARCHAR: pa.string(),
    TypeRoot.BINARY: pa.binary(),
    TypeRoot.VARBINARY: pa.binary(),
    TypeRoot.DATE: pa.date32(),
    TypeRoot.TIME_WITHOUT_TIME_ZONE: pa.time64("us"),
    TypeRoot.TIMESTAMP_WITHOUT_TIME_ZONE: pa.timestamp("us"),
    TypeRoot.TIMESTAMP_WITH_LOCAL_TIME_ZONE: pa.timestamp("us", tz="UTC"),
    TypeRoot.INTERVAL_YEAR_MONTH: pa.int32(),
    TypeRoot.INTERVAL_DAY_TIME: pa.int64(),
}


@dataclass(frozen=True)
class Column:
    name: str
    type: LogicalType


@dataclass
class TableSchema:
    """Declared output shape: ordered columns plus a single-column primary key.

    Example:
        schema = TableSchema(
            columns=[Column("_id", BigIntType()), Column("name", VarCharType())],
            primary_key=("_id",),
        )
    """

    columns: List[Column]
    primary_key: Tuple[str, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        self.columns = list(self.columns)
        if isinstance(self.primary_key, str):
            self.primary_key = (self.primary_key,)
        self.primary_key = tuple(self.primary_key)
        errors = self._validate()
        if errors:
            error_msg = "\n".join(f"  - {e}" for e in errors)
            raise SchemaError(f"Table schema errors:\n{error_msg}")

    def _validate(self) -> List[str]:
        errors = []

        if not self.columns:
            errors.append("at least one column is required")

        names = [column.name for column in self.columns]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            errors.append(f"duplicate column names: {', '.join(duplicates)}")
        if any(not name for name in names):
            errors.append("column names must not be empty")

        if not self.primary_key:
            errors.append("primary key must be present")
        elif len(self.primary_key) != 1:
            errors.append(
                f"primary key must consist of exactly one column, got {', '.join(self.primary_key)}"
            )
        elif self.primary_key[0] not in names:
            errors.append(f"primary key column '{self.primary_key[0]}' is not declared")

        return errors

    @classmethod
    def from_pairs(cls, pairs: Sequence[Tuple[str, LogicalType]], primary_key: str) -> "TableSchema":
        return cls([Column(name, logical_type) for name, logical_type in pairs], (primary_key,))

    @property
    def field_names(self) -> List[str]:
        return [column.name for column in self.columns]

    @property
    def row_type(self) -> RowType:
        return RowType(tuple(RowField(column.name, column.type) for column in self.columns))

    def to_arrow_schema(self) -> pa.Schema:
        return pa.schema([pa.field(column.name, to_arrow_type(column.type)) for column in self.columns])
