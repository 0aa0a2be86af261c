"""A leveled file logger for the document database."""

from __future__ import annotations

import enum
import logging
import os
import re
import threading
import time
from typing import Any, TextIO

from ngmonitor.config import (
    LEVEL_DEBUG,
    LEVEL_ERROR,
    LEVEL_INFO,
    LEVEL_WARN,
    Config,
    ConfigError,
)

__all__ = ["LoggingLevel", "DocDBLogger", "init_logger"]

logger = logging.getLogger(__name__)

_VERB = re.compile(r"%[+#]?v")


class LoggingLevel(enum.IntEnum):
    """Verbosity levels, lowest first."""

    DEBUG = 0
    INFO = 1
    WARN = 2
    ERROR = 3


_LEVELS = {
    LEVEL_DEBUG: LoggingLevel.DEBUG,
    LEVEL_INFO: LoggingLevel.INFO,
    LEVEL_WARN: LoggingLevel.WARN,
    LEVEL_ERROR: LoggingLevel.ERROR,
}


def _format(fmt: str, args: tuple[Any, ...]) -> str:
    if not args:
        return fmt
    return _VERB.sub("%s", fmt) % args


class DocDBLogger:
    """Writes prefixed, timestamped lines at or above a level to a stream."""

    def __init__(self, stream: TextIO, level: LoggingLevel, prefix: str = "badger ") -> None:
        self._stream = stream
        self.level = LoggingLevel(level)
        self._prefix = prefix
        self._lock = threading.Lock()

    def _printf(self, fmt: str, args: tuple[Any, ...]) -> None:
        message = _format(fmt, args)
        if not message.endswith("\n"):
            message += "\n"
        stamp = time.strftime("%Y/%m/%d %H:%M:%S")
        with self._lock:
            self._stream.write(f"{self._prefix}{stamp} {message}")
            self._stream.flush()

    def errorf(self, fmt: str, *args: Any) -> None:
        """Log at ERROR level."""
        if self.level <= LoggingLevel.ERROR:
            self._printf("ERROR: " + fmt, args)

    def warningf(self, fmt: str, *args: Any) -> None:
        """Log at WARN level."""
        if self.level <= LoggingLevel.WARN:
            self._printf("WARN: " + fmt, args)

    def infof(self, fmt: str, *args: Any) -> None:
        """Log at INFO level."""
        if self.level <= LoggingLevel.INFO:
            self._printf("INFO: " + fmt, args)

    def debugf(self, fmt: str, *args: Any) -> None:
        """Log at DEBUG level."""
        if self.level <= LoggingLevel.DEBUG:
            self._printf("DEBUG: " + fmt, args)

    def close(self) -> None:
        """Close the underlying stream."""
        with self._lock:
            self._stream.close()


def init_logger(cfg: Config) -> DocDBLogger:
    """Open ``docdb.log`` in the log path, or in ``<storage>/docdb-log``."""
    if cfg.log.path:
        log_dir = cfg.log.path
    else:
        log_dir = os.path.join(cfg.storage.path, "docdb-log")
        os.makedirs(log_dir, exist_ok=True)

    file_name = os.path.join(log_dir, "docdb.log")
    try:
        stream = open(file_name, "a", encoding="utf-8")
    except OSError:
        logger.warning("Failed to init logger, filename=%s", file_name)
        raise

    level = _LEVELS.get(cfg.log.level)
    if level is None:
        stream.close()
        raise ConfigError(f"Unsupported log level: {cfg.log.level}")
    return DocDBLogger(stream, level)