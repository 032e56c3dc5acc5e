"""
日志配置测试
"""

import json
import logging

import pytest

from logging_config import (
    FILE_HANDLER_NAME,
    TRANSPORT_LOGGERS,
    JsonFormatter,
    _parse_level,
    setup_logging,
)


@pytest.fixture
def clean_root():
    root = logging.getLogger()
    saved = list(root.handlers)
    levels = {name: logging.getLogger(name).level for name in TRANSPORT_LOGGERS}
    yield root
    for handler in list(root.handlers):
        if handler not in saved:
            root.removeHandler(handler)
            handler.close()
    for name, level in levels.items():
        logging.getLogger(name).setLevel(level)


class TestParseLevel:
    @pytest.mark.parametrize("value,expected", [
        ("debug", logging.DEBUG),
        ("WARNING", logging.WARNING),
        ("", logging.INFO),
        ("nonsense", logging.INFO),
        (logging.ERROR, logging.ERROR),
    ])
    def test_levels(self, value, expected):
        assert _parse_level(value) == expected


class TestSetupLogging:
    """setup_logging 测试"""

    def test_file_handler_idempotent(self, clean_root, tmp_path):
        log_file = tmp_path / "hazel.log"
        setup_logging(log_file=str(log_file))
        setup_logging(log_file=str(log_file))
        names = [h.name for h in clean_root.handlers]
        assert names.count("hazel_file") == 1
        assert log_file.exists()

    def test_console_handler(self, clean_root, tmp_path):
        setup_logging(log_file=str(tmp_path / "a.log"), enable_console=True, console_level="ERROR")
        console = next(h for h in clean_root.handlers if h.name == "hazel_console")
        assert console.level == logging.ERROR

    def test_env_override(self, clean_root, tmp_path, monkeypatch):
        log_file = tmp_path / "env.log"
        monkeypatch.setenv("HAZEL_LOG_FILE", str(log_file))
        monkeypatch.setenv("HAZEL_LOG_LEVEL", "DEBUG")
        setup_logging()
        handler = next(h for h in clean_root.handlers if h.name == "hazel_file")
        assert handler.level == logging.DEBUG
        assert log_file.exists()


class TestJsonFormatter:
    def test_one_object_per_line(self):
        record = logging.LogRecord("hazel.connection", logging.INFO, __file__, 1,
                                   "Resending ack_id=%d", (5,), None)
        entry = json.loads(JsonFormatter().format(record))
        assert entry["message"] == "Resending ack_id=5"
        assert entry["level"] == "INFO"
        assert entry["logger"] == "hazel.connection"


class TestPacketTrace:
    """传输层逐包日志开关"""

    def test_default_holds_transport_at_info(self, clean_root, tmp_path):
        setup_logging(log_file=str(tmp_path / "a.log"))
        for name in TRANSPORT_LOGGERS:
            assert logging.getLogger(name).level == logging.INFO

    def test_trace_enables_debug(self, clean_root, tmp_path, monkeypatch):
        monkeypatch.setenv("HAZEL_PACKET_TRACE", "1")
        setup_logging(log_file=str(tmp_path / "a.log"))
        assert logging.getLogger("hazel.connection").level == logging.DEBUG


class TestFileHandlerPath:
    def test_new_path_replaces_handler(self, clean_root, tmp_path):
        setup_logging(log_file=str(tmp_path / "first.log"))
        setup_logging(log_file=str(tmp_path / "second.log"))
        handlers = [h for h in clean_root.handlers if h.name == FILE_HANDLER_NAME]
        assert len(handlers) == 1
        assert handlers[0].baseFilename == str(tmp_path / "second.log")
