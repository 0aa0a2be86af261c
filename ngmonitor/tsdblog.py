"""Logging for the time-series storage."""

from __future__ import annotations

import logging
import os

from ngmonitor.config import LEVEL_DEBUG, LEVEL_ERROR, LEVEL_INFO, LEVEL_WARN, Config

__all__ = ["LOGGER_NAME", "LOG_FILE_NAME", "map_log_level", "init_logger"]

LOGGER_NAME = "ngmonitor.tsdb"
LOG_FILE_NAME = "tsdb.log"

_PYTHON_LEVELS = {
    "INFO": logging.INFO,
    "WARN": logging.WARNING,
    "ERROR": logging.ERROR,
}


def map_log_level(level: str) -> str:
    """Map a server log level to the storage's coarser level."""
    if level in (LEVEL_DEBUG, LEVEL_INFO):
        return "INFO"
    if level == LEVEL_WARN:
        return "WARN"
    if level == LEVEL_ERROR:
        return "ERROR"
    return "INFO"


def init_logger(cfg: Config) -> logging.Logger:
    """Send time-series storage logs to ``tsdb.log`` in the log path or ``<storage>/tsdb-log``."""
    if cfg.log.path:
        log_dir = cfg.log.path
    else:
        log_dir = os.path.join(cfg.storage.path, "tsdb-log")
        os.makedirs(log_dir, exist_ok=True)

    handler = logging.FileHandler(os.path.join(log_dir, LOG_FILE_NAME), mode="a")
    handler.setFormatter(
        logging.Formatter("%(asctime)s\t%(levelname)s\t%(name)s\t%(message)s")
    )

    tsdb_logger = logging.getLogger(LOGGER_NAME)
    for old in list(tsdb_logger.handlers):
        tsdb_logger.removeHandler(old)
        old.close()
    tsdb_logger.addHandler(handler)
    tsdb_logger.setLevel(_PYTHON_LEVELS[map_log_level(cfg.log.level)])
    tsdb_logger.propagate = False
    return tsdb_logger