"""Unit tests for the local cache, the SQLite key/value store and settings."""

import json
import logging

import pytest

from goalpost import state
from goalpost.config import DEFAULT_NAMESPACE, DEFAULT_REMOTE_URL, load_settings
from goalpost.log import JsonFormatter, get_logger, setup_logging
from goalpost.state import LocalCache
from goalpost.store import KeyValueStore


class TestLocalCache:
    """Test cases for the JSON-file cache."""

    def test_set_is_durable(self, tmp_path):
        path = tmp_path / "cache.json"
        LocalCache(path).set("k", {"a": [1, 2]})

        assert LocalCache(path).get("k") == {"a": [1, 2]}
        assert not path.with_suffix(".json.tmp").exists()

    def test_delete_and_contains(self, cache):
        cache.set("k", 1)
        assert "k" in cache

        cache.delete("k")
        cache.delete("never-there")

        assert "k" not in cache
        assert list(cache.keys()) == []

    def test_corrupt_file_reads_as_empty(self, tmp_path):
        path = tmp_path / "cache.json"
        path.write_text("{not json", encoding="utf-8")

        assert LocalCache(path).get("anything") is None

    def test_server_info_round_trip(self, tmp_path):
        state.write_server_info(tmp_path, {"pid": 42, "port": 8124})

        assert state.read_server_info(tmp_path) == {"pid": 42, "port": 8124}
        state.clear_server_info(tmp_path)
        assert state.read_server_info(tmp_path) is None


class TestKeyValueStore:
    """Test cases for the server-side SQLite store."""

    def test_get_missing_is_none(self, tmp_path):
        assert KeyValueStore(tmp_path / "kv.db").get("missing") is None

    def test_set_overwrites(self, tmp_path):
        store = KeyValueStore(tmp_path / "kv.db")

        store.set("k", [1])
        store.set("k", {"milestones": []})

        assert store.get("k") == {"milestones": []}
        assert store.keys() == ["k"]

    def test_delete(self, tmp_path):
        store = KeyValueStore(tmp_path / "kv.db")
        store.set("a", 1)
        store.set("b", 2)

        store.delete("a")

        assert store.keys() == ["b"]


class TestSettings:
    def test_defaults(self):
        settings = load_settings({})

        assert settings.namespace == DEFAULT_NAMESPACE
        assert settings.remote_url == DEFAULT_REMOTE_URL
        assert settings.debounce_seconds == 1.0
        assert settings.anthropic_api_key is None

    def test_overrides(self, tmp_path):
        settings = load_settings(
            {
                "GOALPOST_HOME": str(tmp_path),
                "GOALPOST_NAMESPACE": "alice",
                "GOALPOST_REMOTE_URL": "http://example.test:9000/",
                "GOALPOST_DEBOUNCE_SECONDS": "0.25",
                "ANTHROPIC_API_KEY": "sk-test",
            }
        )

        assert settings.cache_path == tmp_path / "cache.json"
        assert settings.store_path == tmp_path / "remote.db"
        assert settings.namespace == "alice"
        assert settings.remote_url == "http://example.test:9000"
        assert settings.debounce_seconds == 0.25
        assert settings.anthropic_api_key == "sk-test"

    def test_bad_number_names_the_variable(self):
        with pytest.raises(ValueError, match="GOALPOST_TIMEOUT_SECONDS"):
            load_settings({"GOALPOST_TIMEOUT_SECONDS": "soon"})

    def test_negative_debounce_rejected(self):
        with pytest.raises(ValueError, match="must not be negative"):
            load_settings({"GOALPOST_DEBOUNCE_SECONDS": "-1"})


class TestLogging:
    def test_json_formatter(self):
        record = logging.getLogger("goalpost.test").makeRecord(
            "goalpost.test", logging.WARNING, __file__, 1, "Push failed: %s", ("timeout",), None
        )

        data = json.loads(JsonFormatter().format(record))

        assert data["level"] == "WARNING"
        assert data["logger"] == "goalpost.test"
        assert data["message"] == "Push failed: timeout"

    def test_setup_logging_writes_json_file(self, tmp_path):
        log_file = tmp_path / "logs" / "goalpost.log"
        logger = setup_logging("INFO", log_file)

        get_logger("sync").info("pushed")
        for handler in logger.handlers:
            handler.flush()

        line = log_file.read_text(encoding="utf-8").strip().splitlines()[-1]
        assert json.loads(line)["logger"] == "goalpost.sync"
        setup_logging("WARNING")

    def test_get_logger_prefixes_names(self):
        assert get_logger("x").name == "goalpost.x"
        assert get_logger("goalpost.sync").name == "goalpost.sync"
