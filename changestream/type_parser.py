"""Parse textual logical-type declarations.

Accepted forms (case-insensitive type names):

    null, boolean, int8, int16, int32, int64, float32, float64
    decimal(p,s), char(n), varchar(n), binary(n), varbinary(n)
    date, time, timestamp, timestamp-with-local-zone
    row(name type, ...), array(type), map(key, value)

plus SQL aliases (``tinyint``, ``bigint``, ``string``, ``bytes``,
``timestamp_ltz``, ...). Composite arguments may use ``<...>`` instead of
``(...)``, e.g. ``array<map<string, int32>>``.
"""

from __future__ import annotations

import re
from typing import Callable, Dict, List, Optional, Tuple

from changestream.errors import SchemaError
from changestream.schema import (
    ArrayType,
    BigIntType,
    BinaryType,
    BooleanType,
    CharType,
    DateType,
    DayTimeIntervalType,
    DecimalType,
    DoubleType,
    FloatType,
    IntType,
    LocalZonedTimestampType,
    LogicalType,
    MapType,
    MultisetType,
    NullType,
    RawType,
    RowField,
    RowType,
    SmallIntType,
    TimestampType,
    TimeType,
    TinyIntType,
    VarBinaryType,
    VarCharType,
    YearMonthIntervalType,
)

__all__ = ["parse_type"]

_TOKEN = re.compile(
    r"\s*(?:"
    r"(?P<number>\d+)"
    r"|(?P<quoted>`[^`]+`|\"[^\"]+\")"
    r"|(?P<name>[A-Za-z_$][\w$.\-]*)"
    r"|(?P<punct>[()<>,:])"
    r")"
)

_CLOSING = {"(": ")", "<": ">"}

_SIMPLE: Dict[str, Callable[[], LogicalType]] = {
    "null": NullType,
    "boolean": BooleanType,
    "bool": BooleanType,
    "int8": TinyIntType,
    "tinyint": TinyIntType,
    "int16": SmallIntType,
    "smallint": SmallIntType,
    "int32": IntType,
    "int": IntType,
    "integer": IntType,
    "int64": BigIntType,
    "bigint": BigIntType,
    "float32": FloatType,
    "float": FloatType,
    "float64": DoubleType,
    "double": DoubleType,
    "date": DateType,
    "string": VarCharType,
    "bytes": VarBinaryType,
    "interval-year-month": YearMonthIntervalType,
    "interval_year_month": YearMonthIntervalType,
    "interval-day-time": DayTimeIntervalType,
    "interval_day_time": DayTimeIntervalType,
}

_LOCAL_ZONED = (
    "timestamp-with-local-zone",
    "timestamp_ltz",
    "timestamp_with_local_time_zone",
)


def _tokenize(text: str) -> List[Tuple[str, str]]:
    tokens = []
    pos = 0
    stripped = text.rstrip()
    while pos < len(stripped):
        match = _TOKEN.match(stripped, pos)
        if not match or match.end() == pos:
            raise SchemaError(f"Invalid type '{text}': unexpected character at position {pos}")
        kind = match.lastgroup
        value = match.group(kind)
        if kind == "quoted":
            kind, value = "name", value[1:-1]
        tokens.append((kind, value))
        pos = match.end()
    return tokens


class _TypeParser:
    """Recursive-descent parser over the token list of one declaration."""

    def __init__(self, text: str):
        self.text = text
        self.tokens = _tokenize(text)
        self.pos = 0

    def fail(self, message: str) -> SchemaError:
        return SchemaError(f"Invalid type '{self.text}': {message}")

    def peek(self) -> Optional[Tuple[str, str]]:
        if self.pos < len(self.tokens):
            return self.tokens[self.pos]
        return None

    def next(self) -> Tuple[str, str]:
        token = self.peek()
        if token is None:
            raise self.fail("unexpected end of input")
        self.pos += 1
        return token

    def expect(self, value: str) -> None:
        kind, actual = self.next()
        if actual != value:
            raise self.fail(f"expected '{value}' but found '{actual}'")

    def open_bracket(self) -> Optional[str]:
        token = self.peek()
        if token and token[1] in _CLOSING:
            self.pos += 1
            return _CLOSING[token[1]]
        return None

    def number(self) -> int:
        kind, value = self.next()
        if kind != "number":
            raise self.fail(f"expected a number but found '{value}'")
        return int(value)

    def numbers(self, low: int, high: int) -> List[int]:
        """Optional parenthesized list of between ``low`` and ``high`` integers."""
        token = self.peek()
        if not token or token[1] != "(":
            return []
        self.pos += 1
        values = [self.number()]
        while self.peek() and self.peek()[1] == ",":
            self.pos += 1
            values.append(self.number())
        self.expect(")")
        if not low <= len(values) <= high:
            raise self.fail(f"expected {low} to {high} arguments, got {len(values)}")
        return values

    def parse(self) -> LogicalType:
        result = self.logical_type()
        if self.peek() is not None:
            raise self.fail(f"unexpected trailing '{self.peek()[1]}'")
        return result

    def logical_type(self) -> LogicalType:
        kind, raw_name = self.next()
        if kind != "name":
            raise self.fail(f"expected a type name but found '{raw_name}'")
        name = raw_name.lower()

        if name in _SIMPLE:
            return _SIMPLE[name]()
        if name in ("decimal", "numeric", "dec"):
            return DecimalType(*self.numbers(1, 2))
        if name in ("char", "character"):
            return CharType(*self.numbers(1, 1))
        if name == "varchar":
            return VarCharType(*self.numbers(1, 1))
        if name == "binary":
            return BinaryType(*self.numbers(1, 1))
        if name == "varbinary":
            return VarBinaryType(*self.numbers(1, 1))
        if name == "time":
            return TimeType(*self.numbers(1, 1))
        if name == "timestamp":
            return TimestampType(*self.numbers(1, 1))
        if name in _LOCAL_ZONED:
            return LocalZonedTimestampType(*self.numbers(1, 1))
        if name == "row":
            return self.row()
        if name == "array":
            return ArrayType(self.single_argument())
        if name == "multiset":
            return MultisetType(self.single_argument())
        if name == "map":
            return self.map()
        if name == "raw":
            return self.raw()
        raise self.fail(f"unknown type '{raw_name}'")

    def single_argument(self) -> LogicalType:
        closing = self.open_bracket()
        if closing is None:
            raise self.fail("expected an element type in brackets")
        element = self.logical_type()
        self.expect(closing)
        return element

    def map(self) -> MapType:
        closing = self.open_bracket()
        if closing is None:
            raise self.fail("expected key and value types in brackets")
        key = self.logical_type()
        self.expect(",")
        value = self.logical_type()
        self.expect(closing)
        return MapType(key, value)

    def row(self) -> RowType:
        closing = self.open_bracket()
        if closing is None:
            raise self.fail("expected row fields in brackets")
        fields = []
        if self.peek() and self.peek()[1] == closing:
            self.pos += 1
            return RowType(())
        while True:
            kind, name = self.next()
            if kind != "name":
                raise self.fail(f"expected a field name but found '{name}'")
            if self.peek() and self.peek()[1] == ":":
                self.pos += 1
            fields.append(RowField(name, self.logical_type()))
            kind, value = self.next()
            if value == closing:
                break
            if value != ",":
                raise self.fail(f"expected ',' or '{closing}' but found '{value}'")
        return RowType(tuple(fields))

    def raw(self) -> RawType:
        closing = self.open_bracket()
        if closing is None:
            return RawType()
        kind, name = self.next()
        if kind != "name":
            raise self.fail(f"expected a class name but found '{name}'")
        self.expect(closing)
        return RawType(name)


def parse_type(text: str) -> LogicalType:
    """Parse a logical type declaration.

    Args:
        text: Declaration such as ``"decimal(10,2)"`` or ``"array<varchar>"``

    Returns:
        The parsed logical type

    Raises:
        SchemaError: If the text is not a valid declaration
    """
    if not isinstance(text, str) or not text.strip():
        raise SchemaError(f"Invalid type {text!r}: declaration must be a non-empty string")
    return _TypeParser(text).parse()
