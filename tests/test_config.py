"""Tests for vql.config."""

from __future__ import annotations

import os
import sys
from pathlib import Path
from unittest.mock import patch

import pytest

from vql.config import ACTIVITY_LOG_FILENAME, Config
from vql.errors import NotFound
from vql.rating import ExplicitRatingExtractor, KeywordRatingExtractor

ENV_KEYS = [
    "VQL_STORAGE_PATH",
    "VQL_LOG_PATH",
    "VQL_STRICT_IDENTIFIERS",
    "VQL_RATING_MODE",
    "VQL_DETECT_STALE",
    "VQL_CLI",
]


def _clean_env() -> dict:
    return {k: v for k, v in os.environ.items() if k not in ENV_KEYS}


class TestConfigDefaults:
    def test_default_values(self):
        config = Config()
        assert config.storage_path is None
        assert config.log_path is None
        assert config.strict_identifiers is True
        assert config.rating_mode == "explicit"
        assert config.detect_stale is False
        assert config.cli_command == [sys.executable, "-m", "vql"]

    def test_cli_commands_are_independent_copies(self):
        c1 = Config()
        c2 = Config()
        c1.cli_command.append("--extra")
        assert "--extra" not in c2.cli_command


class TestConfigLoad:
    def test_load_from_env(self):
        env = {
            "VQL_STORAGE_PATH": "/tmp/project/VQL/vql_storage.json",
            "VQL_LOG_PATH": "/tmp/activity.jsonl",
            "VQL_STRICT_IDENTIFIERS": "no",
            "VQL_RATING_MODE": "keyword",
            "VQL_DETECT_STALE": "TRUE",
            "VQL_CLI": "vql --verbose",
        }
        with patch.dict(os.environ, env, clear=False):
            config = Config.load()
        assert config.storage_path == Path("/tmp/project/VQL/vql_storage.json")
        assert config.log_path == Path("/tmp/activity.jsonl")
        assert config.strict_identifiers is False
        assert config.rating_mode == "keyword"
        assert config.detect_stale is True
        assert config.cli_command == ["vql", "--verbose"]

    def test_load_defaults_when_env_empty(self):
        with patch.dict(os.environ, _clean_env(), clear=True):
            config = Config.load()
        assert config.storage_path is None
        assert config.strict_identifiers is True
        assert config.rating_mode == "explicit"

    def test_unrecognized_flag_keeps_default(self):
        with patch.dict(os.environ, {"VQL_DETECT_STALE": "maybe"}, clear=False):
            config = Config.load()
        assert config.detect_stale is False


class TestConfigValidate:
    def test_valid(self):
        assert Config().validate() == []

    def test_unknown_rating_mode(self):
        issues = Config(rating_mode="llm").validate()
        assert len(issues) == 1
        assert "VQL_RATING_MODE" in issues[0]

    def test_empty_cli(self):
        assert Config(cli_command=[]).validate() == ["VQL_CLI is set but empty"]


class TestConfigResolution:
    def test_explicit_storage_path(self, tmp_path: Path):
        config = Config(storage_path=tmp_path / "s.json")
        assert config.resolve_storage_path() == tmp_path / "s.json"

    def test_discovered_storage_path(self, storage_path: Path, workspace: Path):
        assert Config().resolve_storage_path(workspace / "src") == storage_path.resolve()

    def test_discovery_failure(self, tmp_path: Path):
        with pytest.raises(NotFound):
            Config().resolve_storage_path(tmp_path)

    def test_log_path_next_to_storage(self, storage_path: Path):
        assert Config().resolve_log_path(storage_path) == storage_path.parent / ACTIVITY_LOG_FILENAME

    def test_explicit_log_path(self, tmp_path: Path):
        config = Config(log_path=tmp_path / "a.jsonl")
        assert config.resolve_log_path(tmp_path / "VQL" / "vql_storage.json") == tmp_path / "a.jsonl"

    def test_repository_uses_settings(self, storage_path: Path):
        repo = Config(rating_mode="keyword", strict_identifiers=False).repository(storage_path)
        assert isinstance(repo._extractor, KeywordRatingExtractor)
        assert repo._strict is False
        repo = Config().repository(storage_path)
        assert type(repo._extractor) is ExplicitRatingExtractor
