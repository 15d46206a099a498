"""Tests for environment variable expansion."""

from __future__ import annotations

import os

import pytest

from changestream.env import expand_env_vars, expand_options, load_env_file, unresolved_references


class TestExpandEnvVars:
    def test_braced_and_bare(self, monkeypatch) -> None:
        monkeypatch.setenv("CS_HOST", "db.internal")
        monkeypatch.setenv("CS_PORT", "27017")
        assert expand_env_vars("mongodb://${CS_HOST}:$CS_PORT") == "mongodb://db.internal:27017"

    def test_unset_is_left_alone(self, monkeypatch) -> None:
        monkeypatch.delenv("CS_UNSET", raising=False)
        assert expand_env_vars("x-${CS_UNSET}") == "x-${CS_UNSET}"

    def test_strict_raises(self, monkeypatch) -> None:
        monkeypatch.delenv("CS_UNSET", raising=False)
        with pytest.raises(KeyError, match="CS_UNSET"):
            expand_env_vars("${CS_UNSET}", strict=True)


class TestExpandOptions:
    def test_only_strings_are_expanded(self, monkeypatch) -> None:
        monkeypatch.setenv("CS_DB", "shop")
        options = {"database": "${CS_DB}", "poll.max.batch.size": 10, "nested": {"name": "$CS_DB"}}
        assert expand_options(options) == {
            "database": "shop",
            "poll.max.batch.size": 10,
            "nested": {"name": "shop"},
        }


class TestLoadEnvFile:
    def test_loads_file(self, tmp_path, monkeypatch) -> None:
        monkeypatch.delenv("CS_FROM_DOTENV", raising=False)
        env_file = tmp_path / ".env"
        env_file.write_text("CS_FROM_DOTENV=loaded\n", encoding="utf-8")
        assert load_env_file(env_file) is True
        assert os.environ["CS_FROM_DOTENV"] == "loaded"
        monkeypatch.delenv("CS_FROM_DOTENV")

    def test_does_not_override_by_default(self, tmp_path, monkeypatch) -> None:
        monkeypatch.setenv("CS_EXISTING", "original")
        env_file = tmp_path / ".env"
        env_file.write_text("CS_EXISTING=replaced\n", encoding="utf-8")
        load_env_file(env_file)
        assert os.environ["CS_EXISTING"] == "original"


class TestNestedExpansion:
    def test_lists_are_expanded(self, monkeypatch) -> None:
        monkeypatch.setenv("CS_STATUS", "open")
        options = {"copy.existing.pipeline": [{"$match": {"status": "${CS_STATUS}"}}]}
        assert expand_options(options) == {"copy.existing.pipeline": [{"$match": {"status": "open"}}]}


class TestUnresolvedReferences:
    def test_reports_unset_braced_references(self, monkeypatch) -> None:
        monkeypatch.setenv("CS_SET", "x")
        monkeypatch.delenv("CS_GONE", raising=False)
        options = {
            "uri": "mongodb://${CS_SET}@${CS_GONE}",
            "copy.existing.pipeline": '[{"$match": {"a": 1}}]',
            "poll.max.batch.size": 5,
        }
        assert unresolved_references(options) == [("uri", "CS_GONE")]
