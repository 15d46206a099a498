"""YAML table declarations for change-stream conversion.

Example YAML (orders.yaml):
    name: orders
    options:
      uri: ${MONGO_URI}
      database: shop
      collection: orders
      errors.tolerance: all
    columns:
      - name: _id
        type: varchar
      - name: total
        type: decimal(10,2)
      - name: tags
        type: array<varchar>
    primary_key: _id

``columns`` may also be written as a mapping of column name to type, in
declaration order.

Usage:
    from changestream.config_loader import load_table_config
    table = load_table_config("./tables/orders.yaml")
    dispatcher = table.create_dispatcher()
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

from changestream.converters import ConverterBuilder
from changestream.dispatcher import ChangeEventDispatcher
from changestream.env import expand_options, unresolved_references
from changestream.errors import (
    ChangeStreamError,
    ConfigurationError,
    SchemaError,
    UnsupportedTypeError,
)
from changestream.options import ChangeStreamOptions
from changestream.schema import Column, RowType, TableSchema
from changestream.type_parser import parse_type

logger = logging.getLogger(__name__)

__all__ = [
    "ChangeStreamTable",
    "load_table_config",
    "load_table_from_dict",
    "validate_yaml_config",
    "REQUIRED_PRIMARY_KEY",
]

REQUIRED_PRIMARY_KEY = "_id"


@dataclass
class ChangeStreamTable:
    """A declared change-stream table: source options plus target schema."""

    name: str
    options: ChangeStreamOptions
    schema: TableSchema
    config_path: Optional[Path] = None

    @property
    def row_type(self) -> RowType:
        return self.schema.row_type

    def create_dispatcher(self, logger: Optional[Any] = None) -> ChangeEventDispatcher:
        """Build the dispatcher for this table.

        Date and time rules always interpret instants in UTC; the configured
        ``local-time-zone`` is carried on the options but not applied.
        """
        return ChangeEventDispatcher(self.row_type, time_zone=timezone.utc, logger=logger)


def _parse_columns(raw: Any, source: str) -> List[Column]:
    if isinstance(raw, dict):
        entries = [{"name": name, "type": declared} for name, declared in raw.items()]
    elif isinstance(raw, list):
        entries = raw
    else:
        raise ConfigurationError("'columns' must be a list or a mapping", key="columns", config_path=source)

    columns = []
    for index, entry in enumerate(entries):
        if not isinstance(entry, dict) or "name" not in entry or "type" not in entry:
            raise ConfigurationError(
                f"Column #{index + 1} must have 'name' and 'type'",
                key="columns",
                config_path=source,
            )
        name = entry["name"]
        if not isinstance(name, str):
            raise ConfigurationError(
                f"Column #{index + 1} name must be a string", key="columns", config_path=source
            )
        try:
            columns.append(Column(name, parse_type(str(entry["type"]))))
        except SchemaError as e:
            raise ConfigurationError(
                f"Column '{name}': {e.message}", key="columns", config_path=source
            ) from e
    return columns


def _parse_primary_key(raw: Any, source: str) -> tuple:
    if raw is None:
        raise ConfigurationError("Primary key must be present", key="primary_key", config_path=source)
    key = tuple(raw) if isinstance(raw, list) else (raw,)
    if key != (REQUIRED_PRIMARY_KEY,):
        raise ConfigurationError(
            f"Primary key must be {REQUIRED_PRIMARY_KEY} field, got {', '.join(map(str, key))}",
            key="primary_key",
            config_path=source,
            suggestion="Declare an '_id' column and use it as the only primary key column.",
        )
    return key


def load_table_from_dict(
    config: Dict[str, Any],
    *,
    config_path: Optional[Path] = None,
    strict_env: bool = False,
) -> ChangeStreamTable:
    """Build a table declaration from an already-parsed mapping.

    Raises:
        ConfigurationError: If any section is missing or invalid
    """
    source = str(config_path) if config_path else "<dict>"
    if not isinstance(config, dict):
        raise ConfigurationError("Table configuration must be a mapping", config_path=source)

    raw_options = config.get("options")
    if not isinstance(raw_options, dict):
        raise ConfigurationError("Missing 'options' section", key="options", config_path=source)
    try:
        options = ChangeStreamOptions.from_dict(expand_options(raw_options, strict=strict_env))
    except KeyError as e:
        raise ConfigurationError(str(e.args[0]), key="options", config_path=source) from e

    if "columns" not in config:
        raise ConfigurationError("Missing 'columns' section", key="columns", config_path=source)
    columns = _parse_columns(config["columns"], source)
    primary_key = _parse_primary_key(config.get("primary_key"), source)

    try:
        schema = TableSchema(columns, primary_key)
    except SchemaError as e:
        raise ConfigurationError(e.message, key="columns", config_path=source) from e

    name = config.get("name") or options.collection
    logger.debug("Loaded table %s with %d columns", name, len(columns))
    return ChangeStreamTable(name=str(name), options=options, schema=schema, config_path=config_path)


def load_table_config(config_path: Union[str, Path], *, strict_env: bool = False) -> ChangeStreamTable:
    """Load a table declaration from a YAML file.

    Args:
        config_path: Path to the YAML file
        strict_env: Fail on ``${VAR}`` references to unset variables

    Raises:
        ConfigurationError: If the configuration is invalid
        FileNotFoundError: If the file does not exist
    """
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, "r", encoding="utf-8") as f:
        try:
            config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML syntax: {e}", config_path=str(config_path)) from e

    if not config:
        raise ConfigurationError("Empty configuration file", config_path=str(config_path))

    return load_table_from_dict(config, config_path=config_path, strict_env=strict_env)


def validate_yaml_config(config_path: Union[str, Path]) -> List[str]:
    """Validate a table declaration.

    Beyond loading, checks that every column type is convertible and that no
    option still references an unset environment variable.

    Returns:
        List of validation errors (empty if valid)
    """
    errors: List[str] = []

    try:
        table = load_table_config(config_path)
        for key, var_name in unresolved_references(table.options.to_dict()):
            errors.append(f"option '{key}' references unset environment variable {var_name}")
        for column in table.schema.columns:
            try:
                ConverterBuilder().build(column.type)
            except UnsupportedTypeError as e:
                errors.append(f"column '{column.name}': {e.message}")
    except FileNotFoundError as e:
        errors.append(str(e))
    except ChangeStreamError as e:
        errors.append(e.message)

    return errors
