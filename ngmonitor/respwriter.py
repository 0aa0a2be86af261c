"""An in-memory HTTP response writer and reusable buffer pools."""

from __future__ import annotations

import io
import threading
from dataclasses import dataclass, field

__all__ = ["ResponseWriter", "BytesBufferPool", "HeaderPool"]


@dataclass
class ResponseWriter:
    """Collects a response body, headers and status code in memory."""

    body: io.BytesIO = field(default_factory=io.BytesIO)
    headers: dict[str, list[str]] = field(default_factory=dict)
    code: int = 200

    def write(self, data: bytes) -> int:
        """Append ``data`` to the body and return the number of bytes written."""
        return self.body.write(data)

    def write_header(self, status_code: int) -> None:
        """Record the response status code."""
        self.code = status_code


class BytesBufferPool:
    """A pool of reusable byte buffers."""

    def __init__(self) -> None:
        self._free: list[io.BytesIO] = []
        self._lock = threading.Lock()

    def get(self) -> io.BytesIO:
        """Take an empty buffer from the pool, or a new one."""
        with self._lock:
            if self._free:
                return self._free.pop()
        return io.BytesIO()

    def put(self, buf: io.BytesIO) -> None:
        """Empty ``buf`` and return it to the pool."""
        buf.seek(0)
        buf.truncate(0)
        with self._lock:
            self._free.append(buf)


class HeaderPool:
    """A pool of reusable header mappings."""

    def __init__(self) -> None:
        self._free: list[dict[str, list[str]]] = []
        self._lock = threading.Lock()

    def get(self) -> dict[str, list[str]]:
        """Take an empty header mapping from the pool, or a new one."""
        with self._lock:
            if self._free:
                return self._free.pop()
        return {}

    def put(self, headers: dict[str, list[str]]) -> None:
        """Clear ``headers`` and return it to the pool."""
        headers.clear()
        with self._lock:
            self._free.append(headers)