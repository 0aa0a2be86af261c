"""A fixed-capacity token limiter for bounding concurrency."""

from __future__ import annotations

import threading

__all__ = ["RedundantTokenError", "RateLimit"]

_POLL_INTERVAL = 0.01


class RedundantTokenError(RuntimeError):
    """Raised when a token is returned that was never taken."""


class RateLimit:
    """Hands out at most ``n`` tokens at a time."""

    def __init__(self, n: int) -> None:
        if n < 0:
            raise ValueError("capacity must not be negative")
        self._capacity = n
        self._taken = 0
        self._cond = threading.Condition()

    @property
    def capacity(self) -> int:
        """The number of tokens the limiter holds."""
        return self._capacity

    @property
    def in_use(self) -> int:
        """The number of tokens currently taken."""
        with self._cond:
            return self._taken

    def get_token(self, done: threading.Event | None) -> bool:
        """Take a token, blocking until one is free.

        Returns True if ``done`` was set before a token was obtained,
        False once a token is held.
        """
        with self._cond:
            while True:
                if done is not None and done.is_set():
                    return True
                if self._taken < self._capacity:
                    self._taken += 1
                    return False
                self._cond.wait(_POLL_INTERVAL if done is not None else None)

    def put_token(self) -> None:
        """Give a token back."""
        with self._cond:
            if self._taken == 0:
                raise RedundantTokenError("put a redundant token")
            self._taken -= 1
            self._cond.notify()