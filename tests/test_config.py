"""Tests for environment configuration and log formatting."""
import json
import logging
import sys

from gather.config import Config
from gather.logging_config import JSONFormatter


class TestConfig:
    def test_defaults(self, monkeypatch):
        for name in ("DATABASE_URL", "GATHER_LOG_FORMAT", "GATHER_LOG_LEVEL", "GATHER_SQL_ECHO"):
            monkeypatch.delenv(name, raising=False)

        config = Config.from_env()

        assert config == Config()
        assert config.database_url == "sqlite:///./gather.db"

    def test_heroku_style_postgres_url_is_rewritten(self, monkeypatch):
        monkeypatch.setenv("DATABASE_URL", "postgres://u:p@db:5432/gather")

        assert Config.from_env().database_url == "postgresql://u:p@db:5432/gather"

    def test_logging_and_echo_flags(self, monkeypatch):
        monkeypatch.setenv("GATHER_LOG_FORMAT", "json")
        monkeypatch.setenv("GATHER_LOG_LEVEL", "debug")
        monkeypatch.setenv("GATHER_SQL_ECHO", "true")

        config = Config.from_env()

        assert config.log_format == "json"
        assert config.log_level == "DEBUG"
        assert config.sql_echo is True


class TestJSONFormatter:
    def test_record_is_one_json_object_with_gather_extras(self):
        record = logging.LogRecord(
            name="gather.services.conflicts",
            level=logging.INFO,
            pathname=__file__,
            lineno=1,
            msg="Reopened conflict %s: %s",
            args=(7, "Guest count changed (20 → 25)"),
            exc_info=None,
        )
        record.gather_event_id = 3
        record.gather_conflict_id = 7

        entry = json.loads(JSONFormatter().format(record))

        assert entry["level"] == "INFO"
        assert entry["logger"] == "gather.services.conflicts"
        assert entry["message"] == "Reopened conflict 7: Guest count changed (20 → 25)"
        assert entry["gather_event_id"] == 3
        assert entry["gather_conflict_id"] == 7
        assert "exception" not in entry

    def test_exception_is_included(self):
        try:
            raise RuntimeError("listener failed")
        except RuntimeError:
            exc_info = sys.exc_info()

        record = logging.LogRecord("gather", logging.ERROR, __file__, 1, "boom", None, exc_info)

        entry = json.loads(JSONFormatter().format(record))

        assert "RuntimeError: listener failed" in entry["exception"]
