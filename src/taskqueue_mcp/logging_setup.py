# src/taskqueue_mcp/logging_setup.py

from __future__ import annotations

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

APP_LOGGER = "taskqueue_mcp"
LOG_FILE_NAME = "taskqueue.log"
LOG_FILE_MAX_BYTES = 2 * 1024 * 1024
LOG_FILE_BACKUPS = 3

_LOG_FORMAT = "%(asctime)s.%(msecs)03d %(levelname)s %(name)s: %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Chatty even at INFO; capped everywhere, file included.
_CAPPED_LOGGERS = ("httpx", "httpcore", "openai", "mcp")


class _ConsoleNoiseFilter(logging.Filter):
    """
    stderr is shared with the MCP client (or the CLI user):
    - taskqueue_mcp logs pass at the handler level
    - everything else, captured warnings included, only at ERROR+
    """

    def filter(self, record: logging.LogRecord) -> bool:
        if record.name == APP_LOGGER or record.name.startswith(APP_LOGGER + "."):
            return True
        return record.levelno >= logging.ERROR


def _console_handler(level: int, fmt: logging.Formatter) -> logging.Handler:
    # Never stdout: it carries MCP frames / command output.
    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(fmt)
    handler.addFilter(_ConsoleNoiseFilter())
    return handler


def _file_handler(log_dir: Path, level: int, fmt: logging.Formatter) -> logging.Handler | None:
    try:
        log_dir.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(
            log_dir / LOG_FILE_NAME,
            maxBytes=LOG_FILE_MAX_BYTES,
            backupCount=LOG_FILE_BACKUPS,
            encoding="utf-8",
        )
    except OSError as e:
        # A read-only data dir must not stop the server from starting.
        logging.getLogger(__name__).warning("File logging disabled (%s): %s", log_dir, e)
        return None
    handler.setLevel(level)
    handler.setFormatter(fmt)
    return handler


def setup_logging(
    *,
    log_dir: str | Path | None = None,
    console_level: int = logging.INFO,
    file_level: int = logging.DEBUG,
) -> None:
    """
    Install the process-wide handlers: filtered stderr, plus a rotating
    `taskqueue.log` under log_dir when one is given.

    Call once per process, before the first log line. Calling again replaces
    the handlers instead of stacking them.
    """
    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    for old in list(root.handlers):
        root.removeHandler(old)

    fmt = logging.Formatter(fmt=_LOG_FORMAT, datefmt=_DATE_FORMAT)
    root.addHandler(_console_handler(console_level, fmt))

    if log_dir is not None:
        fh = _file_handler(Path(log_dir), file_level, fmt)
        if fh is not None:
            root.addHandler(fh)

    logging.captureWarnings(True)

    for name in _CAPPED_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
