"""CLI entrypoint for changestream-rows.

Converts a file of raw change-stream documents (one JSON object per line)
into typed rows using a YAML table declaration:

    changestream-convert --config tables/orders.yaml --events changes.jsonl --output orders.parquet

Option values may reference ``${VAR}``; pass ``--env-file .env`` to seed them from a file.

Without ``--output`` the rows are written to stdout as JSON lines, each with
its ``row_kind``.
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import IO, Iterator, List, Optional

from changestream import __version__
from changestream.config_loader import ChangeStreamTable, load_table_config, validate_yaml_config
from changestream.env import load_env_file
from changestream.errors import ChangeStreamError
from changestream.logging import setup_logging
from changestream.processor import ChangeStreamProcessor
from changestream.sink import ROW_KIND_COLUMN, CollectingSink

logger = logging.getLogger(__name__)

OUTPUT_FORMATS = (".parquet", ".csv")


def _read_lines(stream: IO[str]) -> Iterator[str]:
    for line in stream:
        line = line.strip()
        if line:
            yield line


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        description="Convert change-stream documents into typed rows",
    )
    parser.add_argument(
        "--config",
        required=True,
        help="Path to the YAML table declaration",
    )
    parser.add_argument(
        "--events",
        help="Path to a JSON lines file of change documents ('-' for stdin)",
    )
    parser.add_argument(
        "--output",
        help=f"Output file ({', '.join(OUTPUT_FORMATS)}); rows go to stdout as JSON lines if omitted",
    )
    parser.add_argument(
        "--env-file",
        help="Load environment variables from this .env file before reading the config",
    )
    parser.add_argument(
        "--validate-only",
        action="store_true",
        help="Validate the table declaration and exit",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable debug logging (shows ignored administrative events)",
    )
    parser.add_argument(
        "--log-format",
        choices=["text", "json"],
        default="text",
        help="Log output format",
    )
    parser.add_argument(
        "--log-file",
        help="Also write logs to this file",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"changestream-rows {__version__}",
    )

    args = parser.parse_args(argv)
    setup_logging(verbose=args.verbose, json_format=args.log_format == "json", log_file=args.log_file)

    return ConvertCommand(parser, args).execute()


class ConvertCommand:
    """Encapsulates CLI workflows (validation, conversion, output)."""

    def __init__(self, parser: argparse.ArgumentParser, args: argparse.Namespace) -> None:
        self.parser = parser
        self.args = args

    def execute(self) -> int:
        if self.args.env_file:
            if not Path(self.args.env_file).is_file():
                logger.error(f"Env file not found: {self.args.env_file}")
                return 1
            load_env_file(self.args.env_file)
            logger.debug(f"Loaded environment from {self.args.env_file}")

        if self.args.validate_only:
            return self._validate()

        if not self.args.events:
            self.parser.error("--events is required unless --validate-only is given")
        if self.args.output and Path(self.args.output).suffix.lower() not in OUTPUT_FORMATS:
            self.parser.error(f"--output must end with one of: {', '.join(OUTPUT_FORMATS)}")

        try:
            table = load_table_config(self.args.config)
            return self._convert(table)
        except FileNotFoundError as exc:
            logger.error(str(exc))
            return 1
        except ChangeStreamError as exc:
            logger.error(f"Conversion failed: {exc}")
            return 1

    def _validate(self) -> int:
        logger.info(f"Validating table declaration: {self.args.config}")
        errors = validate_yaml_config(self.args.config)
        if errors:
            logger.error(f"  ✗ Config invalid: {self.args.config}")
            for error in errors:
                logger.error(f"    Error: {error}")
            return 1
        logger.info(f"  ✓ Config valid: {self.args.config}")
        return 0

    def _convert(self, table: ChangeStreamTable) -> int:
        sink = CollectingSink()
        processor = ChangeStreamProcessor.from_table(table, sink)
        logger.info(
            f"Converting {table.options.namespace} into table '{table.name}' "
            f"(errors.tolerance={table.options.errors_tolerance.value})"
        )

        if self.args.events == "-":
            stats = processor.process_all(_read_lines(sys.stdin))
        else:
            with open(self.args.events, "r", encoding="utf-8") as f:
                stats = processor.process_all(_read_lines(f))

        if self.args.output:
            output = Path(self.args.output)
            if output.suffix.lower() == ".parquet":
                sink.write_parquet(output, table.schema)
            else:
                sink.write_csv(output, table.schema)
        else:
            self._write_json_lines(sink, sys.stdout)

        logger.info(
            f"Processed {stats.events_received} events: {stats.rows_emitted} rows, "
            f"{stats.events_dropped} dropped, {stats.events_failed} failed"
        )
        return 0

    @staticmethod
    def _write_json_lines(sink: CollectingSink, stream: IO[str]) -> None:
        for row in sink.rows:
            record = row.as_dict()
            record[ROW_KIND_COLUMN] = row.kind.short_string
            stream.write(json.dumps(record, default=str) + "\n")


if __name__ == "__main__":
    try:
        sys.exit(main())
    except Exception as exc:
        logger.error(f"Fatal error: {exc}", exc_info=True)
        sys.exit(1)
