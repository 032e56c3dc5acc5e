"""Logging setup for the Hazel client and tools.

Logs go to a rotating UTF-8 file; the console stays quiet unless asked for,
so CLI tables and dissector trees are not interleaved with log lines.
Per-packet transport tracing (every datagram sent/received, every resend)
is very chatty, so the ``hazel`` loggers are held at INFO unless packet
tracing is switched on.

Calling setup_logging() again reconfigures the handlers it created before
instead of adding new ones.

Environment overrides:
    HAZEL_LOG_LEVEL=DEBUG|INFO|WARNING|ERROR
    HAZEL_LOG_FILE=path/to/file.log
    HAZEL_PACKET_TRACE=1
"""

from __future__ import annotations

import json
import logging
import os
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

FILE_HANDLER_NAME = "hazel_file"
CONSOLE_HANDLER_NAME = "hazel_console"
DEFAULT_LOG_FILE = Path("logs") / "hazel.log"

# loggers whose DEBUG output is per-packet
TRANSPORT_LOGGERS = ("hazel.connection", "hazel.client", "hazel.server")

TEXT_FORMAT = "%(asctime)s %(levelname)-8s %(name)s:%(lineno)d | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class JsonFormatter(logging.Formatter):
    """One JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info and record.exc_info[1]:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


def _parse_level(level: str | int) -> int:
    if isinstance(level, int):
        return level
    name = (level or "").strip().upper()
    return logging._nameToLevel.get(name, logging.INFO)


def _env_flag(key: str) -> bool:
    return os.environ.get(key, "").strip().lower() in ("1", "true", "yes", "on")


def _resolve_path(log_file: str | None) -> Path:
    path = Path(log_file) if log_file else DEFAULT_LOG_FILE
    if not path.is_absolute():
        path = Path.cwd() / path
    return path


def _file_handler(root: logging.Logger, path: Path,
                  max_bytes: int, backup_count: int) -> logging.Handler:
    """Return our file handler for ``path``, replacing one that points elsewhere."""
    for handler in root.handlers:
        if handler.name != FILE_HANDLER_NAME:
            continue
        if Path(getattr(handler, "baseFilename", "")) == path:
            return handler
        root.removeHandler(handler)
        handler.close()
        break

    path.parent.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(
        str(path), maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8",
    )
    handler.name = FILE_HANDLER_NAME
    root.addHandler(handler)
    return handler


def _console_handler(root: logging.Logger) -> logging.Handler:
    for handler in root.handlers:
        if handler.name == CONSOLE_HANDLER_NAME:
            return handler
    handler = logging.StreamHandler()
    handler.name = CONSOLE_HANDLER_NAME
    root.addHandler(handler)
    return handler


def setup_logging(
    *,
    level: str | int = "INFO",
    log_file: str | None = None,
    enable_file: bool = True,
    enable_console: bool = False,
    console_level: str | int = "WARNING",
    json_format: bool = False,
    packet_trace: bool = False,
    max_bytes: int = 2 * 1024 * 1024,
    backup_count: int = 5,
) -> logging.Logger:
    """Configure the root logger and return it."""
    level = os.environ.get("HAZEL_LOG_LEVEL") or level
    log_file = os.environ.get("HAZEL_LOG_FILE") or log_file
    packet_trace = packet_trace or _env_flag("HAZEL_PACKET_TRACE")

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)  # handlers filter

    fmt: logging.Formatter
    if json_format:
        fmt = JsonFormatter()
    else:
        fmt = logging.Formatter(fmt=TEXT_FORMAT, datefmt=DATE_FORMAT)

    log_path = _resolve_path(log_file)
    if enable_file:
        handler = _file_handler(root, log_path, max_bytes, backup_count)
        handler.setFormatter(fmt)
        handler.setLevel(_parse_level(level))

    if enable_console:
        handler = _console_handler(root)
        handler.setFormatter(fmt)
        handler.setLevel(_parse_level(console_level))

    transport_level = logging.DEBUG if packet_trace else logging.INFO
    for name in TRANSPORT_LOGGERS:
        logging.getLogger(name).setLevel(transport_level)

    logging.getLogger(__name__).info(
        "Logging initialized | level=%s file=%s console=%s json=%s packet_trace=%s",
        level, log_path if enable_file else "-", enable_console, json_format, packet_trace,
    )
    return root
