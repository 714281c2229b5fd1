"""
Tests for configuration loading, saving and environment overrides.
"""

import json
from pathlib import Path

import pytest

from readshelf.config import (
    INDEX_BACKEND_LOCAL, INDEX_BACKEND_REMOTE, ReadShelfConfig,
    apply_env_overrides, load_config, save_config
)


class TestReadShelfConfig:
    def test_defaults(self):
        config = ReadShelfConfig()
        assert config.index.backend == INDEX_BACKEND_LOCAL
        assert config.server.page_size == 18
        assert config.server.currently_reading_limit == 12
        assert config.index.fragment_size == 150

    def test_dict_round_trip(self):
        config = ReadShelfConfig()
        config.server.port = 9000
        config.index.backend = INDEX_BACKEND_REMOTE

        restored = ReadShelfConfig.from_dict(config.to_dict())
        assert restored == config

    def test_from_partial_dict(self):
        config = ReadShelfConfig.from_dict({"server": {"port": 1234}})
        assert config.server.port == 1234
        assert config.server.host == "0.0.0.0"
        assert config.index.backend == INDEX_BACKEND_LOCAL

    def test_library_paths(self, temp_dir):
        config = ReadShelfConfig.for_library(temp_dir)
        assert config.storage.upload_root == temp_dir / "uploads"
        assert config.storage.cover_root == temp_dir / "uploads" / "img"
        assert config.local_index_path == temp_dir / "lr_index.db"

    def test_absolute_upload_dir(self, temp_dir):
        config = ReadShelfConfig.for_library(temp_dir / "lib")
        config.storage.upload_dir = str(temp_dir / "elsewhere")
        assert config.storage.upload_root == temp_dir / "elsewhere"

    def test_index_options(self, temp_dir):
        config = ReadShelfConfig.for_library(temp_dir, backend=INDEX_BACKEND_REMOTE, timeout=2.5)
        assert config.index.backend == INDEX_BACKEND_REMOTE
        assert config.index.timeout == 2.5


class TestEnvironmentOverrides:
    def test_overrides_applied(self):
        config = apply_env_overrides(ReadShelfConfig(), {
            "READSHELF_LIBRARY_PATH": "/srv/books",
            "READSHELF_ES_PATH": "http://search:9200",
            "READSHELF_PORT": "8181",
            "READSHELF_WORKERS": "2",
        })
        assert config.storage.library_path == "/srv/books"
        assert config.index.remote_url == "http://search:9200"
        assert config.server.port == 8181
        assert config.tasks.max_workers == 2

    @pytest.mark.parametrize("flag,expected", [
        ("1", INDEX_BACKEND_REMOTE),
        ("0", INDEX_BACKEND_LOCAL),
    ])
    def test_elasticsearch_flag(self, flag, expected):
        config = ReadShelfConfig()
        config.index.backend = INDEX_BACKEND_REMOTE if expected == INDEX_BACKEND_LOCAL else INDEX_BACKEND_LOCAL

        assert apply_env_overrides(config, {"READSHELF_ELASTICSEARCH": flag}).index.backend == expected

    def test_invalid_value_ignored(self):
        config = apply_env_overrides(ReadShelfConfig(), {"READSHELF_PORT": "eighty"})
        assert config.server.port == 8080

    def test_blank_values_ignored(self):
        config = apply_env_overrides(ReadShelfConfig(), {"READSHELF_HOST": "  "})
        assert config.server.host == "0.0.0.0"


class TestLoadSave:
    def test_round_trip(self, temp_dir):
        path = temp_dir / "config" / "config.json"
        config = ReadShelfConfig.for_library(temp_dir)
        config.server.page_size = 24

        assert save_config(config, path) == path
        assert json.loads(path.read_text())["server"]["page_size"] == 24

        loaded = load_config(path, environ={})
        assert loaded.server.page_size == 24
        assert loaded.storage.library_root == Path(temp_dir)

    def test_missing_file_gives_defaults(self, temp_dir):
        assert load_config(temp_dir / "absent.json", environ={}) == ReadShelfConfig()

    def test_corrupt_file_gives_defaults(self, temp_dir):
        path = temp_dir / "config.json"
        path.write_text("{not json")
        assert load_config(path, environ={}) == ReadShelfConfig()

    def test_environment_wins_over_file(self, temp_dir):
        path = temp_dir / "config.json"
        save_config(ReadShelfConfig(), path)

        loaded = load_config(path, environ={"READSHELF_HOST": "127.0.0.1"})
        assert loaded.server.host == "127.0.0.1"
