"""Pytest configuration and fixtures."""

import logging
from pathlib import Path
from typing import Callable

import pytest

from changestream.converters import ConverterBuilder
from changestream.dispatcher import ChangeEventDispatcher
from changestream.schema import BigIntType, RowType, VarCharType
from changestream.sink import CollectingSink

TABLE_YAML = """\
name: orders
options:
  uri: mongodb://localhost:27017
  database: shop
  collection: orders
  errors.tolerance: {tolerance}
columns:
  - name: _id
    type: int64
  - name: name
    type: varchar
  - name: total
    type: decimal(10,2)
primary_key: _id
"""


@pytest.fixture
def builder() -> ConverterBuilder:
    return ConverterBuilder()


@pytest.fixture
def people_type() -> RowType:
    """The ``{_id: int64, name: varchar}`` schema used across dispatcher tests."""
    return RowType.of(_id=BigIntType(), name=VarCharType())


@pytest.fixture
def dispatcher(people_type: RowType) -> ChangeEventDispatcher:
    return ChangeEventDispatcher(people_type)


@pytest.fixture
def sink() -> CollectingSink:
    return CollectingSink()


@pytest.fixture
def write_table_config(tmp_path: Path) -> Callable[..., Path]:
    """Write a table declaration YAML and return its path."""

    def _write(content: str = None, tolerance: str = "none", name: str = "orders.yaml") -> Path:
        path = tmp_path / name
        path.write_text(content if content is not None else TABLE_YAML.format(tolerance=tolerance), encoding="utf-8")
        return path

    return _write


@pytest.fixture(autouse=True)
def reset_root_logging():
    """Keep handlers installed by setup_logging from leaking between tests."""
    root = logging.getLogger()
    handlers = root.handlers[:]
    level = root.level
    yield
    for handler in root.handlers[:]:
        if handler not in handlers:
            root.removeHandler(handler)
            handler.close()
    for handler in handlers:
        if handler not in root.handlers:
            root.addHandler(handler)
    root.setLevel(level)
