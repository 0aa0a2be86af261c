"""Periodic space reclamation for the document database."""

from __future__ import annotations

import logging
import re
import sqlite3
import threading
import time
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ngmonitor.docstore import DocumentStore

__all__ = [
    "LAST_FLATTEN_TS_KEY",
    "FLATTEN_INTERVAL",
    "GC_INTERVAL",
    "get_last_flatten_ts",
    "store_last_flatten_ts",
    "need_flatten",
    "try_flatten_if_needed",
    "run_gc",
    "gc_loop",
]

logger = logging.getLogger(__name__)

LAST_FLATTEN_TS_KEY = "last_flatten_ts"
FLATTEN_INTERVAL = 24 * 60 * 60
GC_INTERVAL = 10 * 60

_INT = re.compile(r"[+-]?[0-9]+")


def get_last_flatten_ts(db: "DocumentStore") -> int:
    """The Unix time of the last flatten, or 0 if none was recorded."""
    value = db.get_meta(LAST_FLATTEN_TS_KEY)
    if value is None:
        return 0
    if not _INT.fullmatch(value):
        raise ValueError(f"invalid last flatten timestamp: {value!r}")
    return int(value)


def store_last_flatten_ts(db: "DocumentStore", ts: int) -> None:
    """Record ``ts`` as the time of the last flatten."""
    db.set_meta(LAST_FLATTEN_TS_KEY, str(int(ts)))


def need_flatten(db: "DocumentStore") -> bool:
    """Whether a flatten interval has passed since the last flatten."""
    try:
        ts = get_last_flatten_ts(db)
    except (ValueError, sqlite3.Error) as exc:
        logger.error("get last flatten ts failed: %s", exc)
        ts = 0
    return int(time.time()) - ts >= FLATTEN_INTERVAL


def try_flatten_if_needed(db: "DocumentStore") -> bool:
    """Compact the database if due; return True when a flatten was done."""
    if not need_flatten(db):
        return False
    try:
        db.vacuum()
    except sqlite3.Error as exc:
        logger.error("flatten failed: %s", exc)
        return False
    ts = int(time.time())
    try:
        store_last_flatten_ts(db, ts)
    except sqlite3.Error as exc:
        logger.error("store last flatten ts failed: %s", exc)
        return False
    logger.info("flatten success, ts=%d", ts)
    return True


def _run_log_gc(db: "DocumentStore") -> None:
    try:
        rows = db.query("PRAGMA wal_checkpoint(TRUNCATE)")
    except sqlite3.Error as exc:
        logger.error("run log gc failed: %s", exc)
        return
    if rows and rows[0][0]:
        logger.info("log gc skipped, database is busy")
    else:
        logger.info("run log gc success")


def run_gc(db: "DocumentStore") -> None:
    """Flatten if due and reclaim log space, logging any failure."""
    try:
        try_flatten_if_needed(db)
        _run_log_gc(db)
    except Exception:  # noqa: BLE001 - the GC loop must survive
        logger.exception("panic when run gc")


def gc_loop(db: "DocumentStore", closed: threading.Event) -> None:
    """Run GC now and then every GC_INTERVAL seconds until ``closed`` is set."""
    logger.info("start to run gc loop")
    try:
        run_gc(db)
        while not closed.wait(GC_INTERVAL):
            run_gc(db)
    finally:
        logger.info("stop running gc loop")