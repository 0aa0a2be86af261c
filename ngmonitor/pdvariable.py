"""Cluster-wide variables read from PD's global config, with change notification."""

from __future__ import annotations

import dataclasses
import logging
import queue
import threading
import time
from dataclasses import dataclass
from typing import Callable, Iterable

__all__ = [
    "GLOBAL_CONFIG_PATH",
    "DEFAULT_RETRY_CNT",
    "DEFAULT_RETRY_INTERVAL",
    "PDVariable",
    "VariableLoader",
    "parse_global_config",
]

logger = logging.getLogger(__name__)

GLOBAL_CONFIG_PATH = "/global/config/"
DEFAULT_RETRY_CNT = 5
DEFAULT_RETRY_INTERVAL = 0.2

_ENABLE_RESOURCE_METERING = "enable_resource_metering"
_TRUE_WORDS = frozenset({"1", "t", "T", "TRUE", "true", "True"})
_FALSE_WORDS = frozenset({"0", "f", "F", "FALSE", "false", "False"})


@dataclass(frozen=True)
class PDVariable:
    """The variables the server reacts to."""

    enable_top_sql: bool = False


def _parse_bool(value: str) -> bool:
    if value in _TRUE_WORDS:
        return True
    if value in _FALSE_WORDS:
        return False
    raise ValueError(value)


def parse_global_config(key: str, value: str, variable: PDVariable) -> PDVariable:
    """Return ``variable`` updated with one global config entry.

    Unknown keys leave it unchanged; a malformed value raises ValueError.
    """
    if key.startswith(GLOBAL_CONFIG_PATH):
        key = key[len(GLOBAL_CONFIG_PATH):]
    if key == _ENABLE_RESOURCE_METERING:
        try:
            enabled = _parse_bool(value)
        except ValueError:
            raise ValueError(
                f"global config {_ENABLE_RESOURCE_METERING} has invalid value: {value}"
            ) from None
        return dataclasses.replace(variable, enable_top_sql=enabled)
    return variable


class VariableLoader:
    """Keeps the latest PD variables and tells subscribers when they change.

    ``fetch_all`` returns every (key, value) pair stored under the global
    config path.
    """

    def __init__(self, fetch_all: Callable[[], Iterable[tuple[str, str]]]) -> None:
        self._fetch_all = fetch_all
        self._lock = threading.Lock()
        self._variable = PDVariable()
        self._subscribers: list[queue.Queue] = []
        self._stopped = threading.Event()

    def load_all(self) -> PDVariable:
        """Fetch and parse all global config entries, retrying failed fetches."""
        last_error: Exception | None = None
        for _ in range(DEFAULT_RETRY_CNT):
            if self._stopped.is_set():
                raise RuntimeError("variable loader stopped")
            try:
                entries = list(self._fetch_all())
            except Exception as exc:  # noqa: BLE001 - any fetch failure is retried
                logger.debug("load global config failed: %s", exc)
                last_error = exc
                time.sleep(DEFAULT_RETRY_INTERVAL)
                continue
            variable = PDVariable()
            for key, value in entries:
                variable = parse_global_config(key, value, variable)
            return variable
        assert last_error is not None
        raise last_error

    def refresh(self) -> PDVariable:
        """Reload everything; store and notify if it changed. Returns the current value."""
        try:
            new_variable = self.load_all()
        except Exception as exc:  # noqa: BLE001 - a failed refresh keeps the old value
            logger.error("load global config failed: %s", exc)
            return self.current()
        if self._store(new_variable):
            logger.info("load global config: %s", new_variable)
        return self.current()

    def apply_events(self, events: Iterable[tuple[str, str]]) -> PDVariable:
        """Apply watched PUT events given as (key, value) pairs; returns the current value."""
        new_variable = self.current()
        for key, value in events:
            try:
                new_variable = parse_global_config(key, value, new_variable)
            except ValueError as exc:
                logger.error("load global config failed: %s", exc)
            logger.info("watch global config changed: %s", new_variable)
        self._store(new_variable)
        return self.current()

    def _store(self, variable: PDVariable) -> bool:
        with self._lock:
            if variable == self._variable:
                return False
            self._variable = variable
        self._notify()
        return True

    def subscribe(self) -> queue.Queue:
        """A queue that receives a getter of the latest value whenever it changes.

        One getter is already waiting right after subscribing. After
        :meth:`stop` the queue holds None.
        """
        ch: queue.Queue = queue.Queue(maxsize=1)
        with self._lock:
            self._subscribers.append(ch)
            ch.put_nowait(self.current)
        return ch

    def current(self) -> PDVariable:
        """The latest value."""
        with self._lock:
            return self._variable

    def _notify(self) -> None:
        if self._stopped.is_set():
            return
        with self._lock:
            for ch in self._subscribers:
                try:
                    ch.put_nowait(self.current_unlocked)
                except queue.Full:
                    pass

    def current_unlocked(self) -> PDVariable:
        """The latest value, read without taking the lock."""
        return self._variable

    def stop(self) -> None:
        """Stop loading and close every subscription."""
        self._stopped.set()
        with self._lock:
            for ch in self._subscribers:
                while True:
                    try:
                        ch.get_nowait()
                    except queue.Empty:
                        break
                ch.put_nowait(None)
            self._subscribers.clear()