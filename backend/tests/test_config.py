"""Tests for trove/config.py — Settings validation."""
from __future__ import annotations

import os
from pathlib import Path
from unittest.mock import patch

import pytest

from trove.config import Settings


class TestSearchLimits:
    def test_defaults(self):
        s = Settings(_env_file=None, search_index_path=None)
        assert s.search_result_limit == 100
        assert s.search_snippet_tokens == 12
        assert s.reindex_on_startup is False

    @pytest.mark.parametrize("value", ["0", "-5"])
    def test_non_positive_result_limit_rejected(self, value):
        with patch.dict(os.environ, {"SEARCH_RESULT_LIMIT": value}):
            with pytest.raises(ValueError, match="SEARCH_RESULT_LIMIT must be > 0"):
                Settings(_env_file=None)

    def test_non_positive_snippet_tokens_rejected(self):
        with patch.dict(os.environ, {"SEARCH_SNIPPET_TOKENS": "0"}):
            with pytest.raises(ValueError, match="SEARCH_SNIPPET_TOKENS must be > 0"):
                Settings(_env_file=None)

    def test_values_read_from_environment(self):
        env = {"SEARCH_RESULT_LIMIT": "25", "REINDEX_ON_STARTUP": "true"}
        with patch.dict(os.environ, env):
            s = Settings(_env_file=None)
            assert s.search_result_limit == 25
            assert s.reindex_on_startup is True


class TestIndexPath:
    def test_defaults_under_data_dir(self):
        s = Settings(_env_file=None, data_dir=Path("/srv/trove"), search_index_path=None)
        assert s.index_path == Path("/srv/trove/search.sqlite")

    def test_explicit_path_wins(self):
        s = Settings(
            _env_file=None,
            data_dir=Path("/srv/trove"),
            search_index_path=Path("/fast/disk/index.sqlite"),
        )
        assert s.index_path == Path("/fast/disk/index.sqlite")


class TestLogLevel:
    def test_log_level_is_uppercased(self):
        s = Settings(_env_file=None, log_level=" debug ")
        assert s.log_level == "DEBUG"

    def test_blank_log_level_falls_back_to_info(self):
        s = Settings(_env_file=None, log_level="  ")
        assert s.log_level == "INFO"
