"""Tests for logger.py: setup_logging() and JsonFormatter.

basicConfig is patched throughout because pytest's log capture plugin
already owns the root logger.
"""

import json
import logging
import sys
from unittest.mock import patch

import pytest

from frontier_sync.logger import JsonFormatter, setup_logging


def _record(msg="Fetched %d objects", args=(12,), exc_info=None, level=logging.INFO):
    return logging.LogRecord(
        name="frontier_sync.sync.engine",
        level=level,
        pathname="engine.py",
        lineno=1,
        msg=msg,
        args=args,
        exc_info=exc_info,
    )


@pytest.fixture
def basic_config():
    with patch("frontier_sync.logger.logging.basicConfig") as mock_basic:
        yield mock_basic


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    monkeypatch.delenv("LOG_LEVEL", raising=False)
    monkeypatch.delenv("LOG_FILE", raising=False)


class TestCliMode:
    def test_logs_to_stderr_at_info(self, basic_config):
        setup_logging(mode="cli")

        kwargs = basic_config.call_args.kwargs
        assert kwargs["level"] == logging.INFO
        (handler,) = kwargs["handlers"]
        assert handler.stream is sys.stderr

    def test_log_file_adds_file_handler(self, basic_config, tmp_path):
        setup_logging(mode="cli", log_file=str(tmp_path / "sync.log"))

        handlers = basic_config.call_args.kwargs["handlers"]
        file_handlers = [h for h in handlers if isinstance(h, logging.FileHandler)]
        assert len(handlers) == 2
        assert len(file_handlers) == 1
        for h in file_handlers:
            h.close()

    def test_json_format(self, basic_config):
        setup_logging(mode="cli", debug_format="json")

        (handler,) = basic_config.call_args.kwargs["handlers"]
        assert isinstance(handler.formatter, JsonFormatter)


class TestBackgroundMode:
    def test_default_log_file_and_level(self, basic_config):
        setup_logging(mode="background")

        kwargs = basic_config.call_args.kwargs
        assert kwargs["filename"] == "/tmp/frontier-sync.log"
        assert kwargs["level"] == logging.WARNING
        assert "handlers" not in kwargs

    def test_log_file_env(self, basic_config, monkeypatch, tmp_path):
        path = str(tmp_path / "env.log")
        monkeypatch.setenv("LOG_FILE", path)
        setup_logging(mode="background")
        assert basic_config.call_args.kwargs["filename"] == path

    def test_explicit_log_file_beats_env(self, basic_config, monkeypatch, tmp_path):
        monkeypatch.setenv("LOG_FILE", str(tmp_path / "env.log"))
        explicit = str(tmp_path / "explicit.log")
        setup_logging(mode="background", log_file=explicit)
        assert basic_config.call_args.kwargs["filename"] == explicit


class TestLevels:
    def test_env_level(self, basic_config, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "error")
        setup_logging(mode="cli")
        assert basic_config.call_args.kwargs["level"] == logging.ERROR

    def test_debug_beats_env(self, basic_config, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "ERROR")
        setup_logging(mode="cli", debug=True)
        assert basic_config.call_args.kwargs["level"] == logging.DEBUG

    def test_unknown_level_falls_back_to_info(self, basic_config, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "CHATTY")
        setup_logging(mode="cli")
        assert basic_config.call_args.kwargs["level"] == logging.INFO

    def test_third_party_loggers_silenced(self, basic_config):
        for name in ("urllib3", "requests", "dulwich"):
            logging.getLogger(name).setLevel(logging.NOTSET)

        setup_logging(mode="cli")

        for name in ("urllib3", "requests", "dulwich"):
            assert logging.getLogger(name).level == logging.WARNING


class TestJsonFormatter:
    def test_fields(self):
        data = json.loads(JsonFormatter().format(_record()))
        assert data["level"] == "INFO"
        assert data["logger"] == "frontier_sync.sync.engine"
        assert data["msg"] == "Fetched 12 objects"
        assert "exc" not in data

    def test_exception_is_single_line(self):
        try:
            raise RuntimeError("push rejected")
        except RuntimeError:
            exc_info = sys.exc_info()

        output = JsonFormatter().format(
            _record("Push failed", (), exc_info, logging.ERROR)
        )

        assert "\n" not in output
        data = json.loads(output)
        assert "RuntimeError: push rejected" in data["exc"]
