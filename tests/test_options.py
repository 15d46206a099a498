"""Tests for source options parsing."""

from __future__ import annotations

import pytest

from changestream.errors import ConfigurationError
from changestream.options import OPTION_KEYS, ChangeStreamOptions, ErrorTolerance

BASE = {"uri": "mongodb://localhost:27017", "database": "shop", "collection": "orders"}


def _options(**overrides):
    raw = dict(BASE)
    raw.update(overrides)
    return raw


class TestErrorTolerance:
    def test_normalize(self) -> None:
        assert ErrorTolerance.normalize(None) is ErrorTolerance.NONE
        assert ErrorTolerance.normalize(" ALL ") is ErrorTolerance.ALL
        assert ErrorTolerance.normalize(ErrorTolerance.ALL) is ErrorTolerance.ALL

    def test_invalid(self) -> None:
        with pytest.raises(ConfigurationError, match="Invalid error tolerance 'some'") as exc_info:
            ErrorTolerance.normalize("some")
        assert exc_info.value.key == "errors.tolerance"

    def test_describe(self) -> None:
        assert "Skip" in ErrorTolerance.ALL.describe()
        assert ErrorTolerance.choices() == ["none", "all"]


class TestChangeStreamOptions:
    def test_defaults(self) -> None:
        options = ChangeStreamOptions.from_dict(BASE)
        assert options.errors_tolerance is ErrorTolerance.NONE
        assert options.errors_log_enable is True
        assert options.copy_existing is True
        assert options.poll_max_batch_size == 1000
        assert options.poll_await_time_ms == 1500
        assert options.heartbeat_interval_ms is None
        assert options.local_time_zone == "UTC"
        assert options.namespace == "shop.orders"

    def test_string_values_are_coerced(self) -> None:
        options = ChangeStreamOptions.from_dict(
            _options(**{"errors.log.enable": "false", "poll.max.batch.size": "500", "heartbeat.interval.ms": "0"})
        )
        assert options.errors_log_enable is False
        assert options.poll_max_batch_size == 500
        assert options.heartbeat_interval_ms == 0

    def test_required_keys(self) -> None:
        with pytest.raises(ConfigurationError, match="Option 'collection' is required"):
            ChangeStreamOptions.from_dict({"uri": "mongodb://h", "database": "shop"})

    def test_unknown_keys(self) -> None:
        with pytest.raises(ConfigurationError, match="Unsupported options: scan.startup.mode") as exc_info:
            ChangeStreamOptions.from_dict(_options(**{"scan.startup.mode": "latest"}))
        assert "poll.max.batch.size" in exc_info.value.suggestion

    @pytest.mark.parametrize(
        "key,value",
        [
            ("poll.await.time.ms", 0),
            ("poll.max.batch.size", -1),
            ("copy.existing.max.threads", True),
            ("copy.existing.queue.size", "many"),
            ("errors.log.enable", "yes"),
            ("local-time-zone", "Mars/Olympus"),
            ("uri", ""),
        ],
    )
    def test_invalid_values(self, key, value) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            ChangeStreamOptions.from_dict(_options(**{key: value}))
        assert exc_info.value.key == key

    def test_copy_existing_pipeline(self) -> None:
        options = ChangeStreamOptions.from_dict(
            _options(**{"copy.existing.pipeline": [{"$match": {"closed": False}}]})
        )
        assert options.copy_existing_stages == [{"$match": {"closed": False}}]

    def test_copy_existing_pipeline_must_be_objects(self) -> None:
        with pytest.raises(ConfigurationError, match="array of objects"):
            ChangeStreamOptions.from_dict(_options(**{"copy.existing.pipeline": "[1, 2]"}))
        with pytest.raises(ConfigurationError, match="not valid JSON"):
            ChangeStreamOptions.from_dict(_options(**{"copy.existing.pipeline": "[{"}))

    def test_time_zone(self) -> None:
        options = ChangeStreamOptions.from_dict(_options(**{"local-time-zone": "Europe/Berlin"}))
        assert options.local_time_zone == "Europe/Berlin"

    def test_to_dict_round_trip(self) -> None:
        options = ChangeStreamOptions.from_dict(_options(**{"errors.tolerance": "all"}))
        data = options.to_dict()
        assert "heartbeat.interval.ms" not in data
        assert data["errors.tolerance"] == "all"
        assert set(data) <= set(OPTION_KEYS)
        assert ChangeStreamOptions.from_dict(data) == options

    def test_options_must_be_mapping(self) -> None:
        with pytest.raises(ConfigurationError, match="mapping"):
            ChangeStreamOptions.from_dict(["uri"])
