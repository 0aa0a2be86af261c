"""The document database: a small SQL store with a key/value side table."""

from __future__ import annotations

import logging
import os
import sqlite3
import threading
from typing import Any

from ngmonitor.config import Config
from ngmonitor.doclog import DocDBLogger, init_logger
from ngmonitor.gc import gc_loop
from ngmonitor.misc import go_with_recovery

__all__ = ["DocumentStore", "init", "get", "stop"]

logger = logging.getLogger(__name__)

_DB_FILE_NAME = "data.db"
_META_TABLE = "__ngm_meta"
_STOP_JOIN_TIMEOUT = 5.0


class DocumentStore:
    """A SQL document store kept in one directory."""

    def __init__(self, path: str | os.PathLike) -> None:
        self._path = os.fspath(path)
        os.makedirs(self._path, exist_ok=True)
        self._lock = threading.RLock()
        self._conn = sqlite3.connect(
            os.path.join(self._path, _DB_FILE_NAME),
            check_same_thread=False,
            isolation_level=None,
        )
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute(
            f"CREATE TABLE IF NOT EXISTS {_META_TABLE} (key TEXT PRIMARY KEY, value TEXT)"
        )

    @property
    def path(self) -> str:
        """The directory holding the data."""
        return self._path

    def __enter__(self) -> "DocumentStore":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def execute(self, sql: str, *args: Any) -> int:
        """Run a statement and return the number of rows it changed."""
        with self._lock:
            cursor = self._conn.execute(sql, args)
            return cursor.rowcount

    def query(self, sql: str, *args: Any) -> list[tuple]:
        """Run a query and return all rows."""
        with self._lock:
            return self._conn.execute(sql, args).fetchall()

    def get_meta(self, key: str) -> str | None:
        """The value stored under ``key`` in the side table, or None."""
        rows = self.query(f"SELECT value FROM {_META_TABLE} WHERE key = ?", key)
        return rows[0][0] if rows else None

    def set_meta(self, key: str, value: str) -> None:
        """Store ``value`` under ``key`` in the side table."""
        self.execute(
            f"INSERT INTO {_META_TABLE} (key, value) VALUES (?, ?) "
            "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
            key,
            value,
        )

    def vacuum(self) -> None:
        """Rewrite the database file, dropping space held by old data."""
        with self._lock:
            self._conn.execute("VACUUM")

    def close(self) -> None:
        """Close the database."""
        with self._lock:
            self._conn.close()


_store: DocumentStore | None = None
_closed: threading.Event | None = None
_gc_thread: threading.Thread | None = None
_doc_logger: DocDBLogger | None = None


def init(cfg: Config) -> DocumentStore:
    """Open the document database under the storage path and start its GC loop."""
    global _store, _closed, _gc_thread, _doc_logger

    data_path = os.path.join(cfg.storage.path, "docdb")
    try:
        doc_logger: DocDBLogger | None = init_logger(cfg)
    except OSError:
        doc_logger = None

    store = DocumentStore(data_path)
    store.execute(f"PRAGMA synchronous={'FULL' if cfg.docdb.sync_writes else 'NORMAL'}")
    if cfg.docdb.block_cache_size > 0:
        store.execute(f"PRAGMA cache_size={-(cfg.docdb.block_cache_size // 1024)}")
    if doc_logger is not None:
        doc_logger.infof("opened document database at %s", data_path)

    closed = threading.Event()
    thread = threading.Thread(
        target=go_with_recovery,
        args=(lambda: gc_loop(store, closed),),
        name="docdb-gc",
        daemon=True,
    )
    thread.start()

    _store, _closed, _gc_thread, _doc_logger = store, closed, thread, doc_logger
    return store


def get() -> DocumentStore | None:
    """The document database opened by :func:`init`."""
    return _store


def stop() -> None:
    """Stop the GC loop and close the document database."""
    global _store, _closed, _gc_thread, _doc_logger
    if _store is None:
        return
    if _closed is not None:
        _closed.set()
    if _gc_thread is not None:
        _gc_thread.join(_STOP_JOIN_TIMEOUT)
    _store.close()
    if _doc_logger is not None:
        _doc_logger.infof("closed document database")
        _doc_logger.close()
    _store, _closed, _gc_thread, _doc_logger = None, None, None, None