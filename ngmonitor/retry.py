"""Generic retry helpers with fixed or exponential waiting."""

from __future__ import annotations

import threading
from typing import Callable

__all__ = ["with_retry", "with_retry_backoff"]


def _wait(stop: threading.Event | None, seconds: float) -> bool:
    """Sleep for ``seconds``; return True if ``stop`` was set meanwhile."""
    if stop is None:
        threading.Event().wait(seconds)
        return False
    return stop.wait(seconds)


def with_retry(
    stop: threading.Event | None,
    max_retry_times: int,
    duration: float,
    f: Callable[[int], bool],
) -> None:
    """Call ``f(retried)`` until it returns True, retries run out or ``stop`` is set.

    Between attempts the call waits ``duration`` seconds.
    """
    for retried in range(max_retry_times + 1):
        if f(retried):
            return
        if retried < max_retry_times and _wait(stop, duration):
            return


def with_retry_backoff(
    stop: threading.Event | None,
    max_retry_times: int,
    first_duration: float,
    f: Callable[[int], bool],
) -> None:
    """Like :func:`with_retry`, but the wait doubles after every attempt."""
    duration = first_duration
    for retried in range(max_retry_times + 1):
        if f(retried):
            return
        if retried < max_retry_times:
            if _wait(stop, duration):
                return
            duration *= 2