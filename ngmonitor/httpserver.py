"""The HTTP service: health check and configuration endpoints."""

from __future__ import annotations

import json
import logging
import os
import socket
import sys
import threading
import time
from http import HTTPStatus
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any, TextIO
from urllib.parse import urlsplit

from ngmonitor.config import Config, Log
from ngmonitor.configapi import handle_get_config, handle_post_config
from ngmonitor.misc import go_with_recovery

__all__ = ["create_server", "start", "stop"]

logger = logging.getLogger(__name__)

_STOP_JOIN_TIMEOUT = 5.0


def _encode_json(payload: Any, sort_keys: bool = False) -> bytes:
    text = json.dumps(payload, separators=(",", ":"), ensure_ascii=False, sort_keys=sort_keys)
    for char, escaped in (
        ("<", "\\u003c"),
        (">", "\\u003e"),
        ("&", "\\u0026"),
        ("\u2028", "\\u2028"),
        ("\u2029", "\\u2029"),
    ):
        text = text.replace(char, escaped)
    return text.encode("utf-8")


class _Handler(BaseHTTPRequestHandler):
    protocol_version = "HTTP/1.1"
    server_version = "ngmonitor"

    def parse_request(self) -> bool:
        self._started = time.monotonic()
        return super().parse_request()

    def _path(self) -> str:
        return urlsplit(self.path).path

    def _send(self, status: int, body: bytes, content_type: str) -> None:
        self.send_response(status)
        self.send_header("Content-Type", content_type)
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def _send_json(self, status: int, payload: Any, sort_keys: bool = False) -> None:
        self._send(status, _encode_json(payload, sort_keys), "application/json; charset=utf-8")

    def _not_found(self) -> None:
        self._send(HTTPStatus.NOT_FOUND, b"404 page not found", "text/plain")

    def _read_body(self) -> bytes:
        length = int(self.headers.get("Content-Length") or 0)
        return self.rfile.read(length) if length > 0 else b""

    def do_GET(self) -> None:
        path = self._path()
        if path == "/health":
            self._send_json(HTTPStatus.OK, {"health": True})
        elif path == "/config":
            status, payload = handle_get_config()
            self._send_json(status, payload)
        else:
            self._not_found()

    def do_POST(self) -> None:
        body = self._read_body()
        if self._path() == "/config":
            status, payload = handle_post_config(body)
            self._send_json(status, payload, sort_keys=True)
        else:
            self._not_found()

    def _discard_and_not_found(self) -> None:
        self._read_body()
        self._not_found()

    do_PUT = _discard_and_not_found
    do_DELETE = _discard_and_not_found
    do_PATCH = _discard_and_not_found

    def _write_log(self, line: str) -> None:
        stream = self.server.access_log  # type: ignore[attr-defined]
        with self.server.log_lock:  # type: ignore[attr-defined]
            stream.write(line)
            stream.flush()

    def log_request(self, code: Any = "-", size: Any = "-") -> None:
        latency = time.monotonic() - getattr(self, "_started", time.monotonic())
        status = int(code) if isinstance(code, int) else code
        stamp = time.strftime("%Y/%m/%d - %H:%M:%S")
        method = self.command or "-"
        self._write_log(
            f"[GIN] {stamp} | {status:>3} | {latency * 1000:>11.3f}ms | "
            f"{self.client_address[0]:>15} | {method:<7} \"{self._path()}\"\n"
        )

    def log_message(self, format: str, *args: Any) -> None:
        self._write_log(f"[GIN] {self.address_string()} {format % args}\n")


class _Server(ThreadingHTTPServer):
    daemon_threads = True

    def __init__(self, address: tuple[str, int], access_log: TextIO, owns_log: bool) -> None:
        self.access_log = access_log
        self.log_lock = threading.Lock()
        self._owns_log = owns_log
        super().__init__(address, _Handler)

    def server_close(self) -> None:
        super().server_close()
        if self._owns_log:
            self.access_log.close()


class _Server6(_Server):
    address_family = socket.AF_INET6


def _split_address(address: str) -> tuple[str, int]:
    host, sep, port = address.rpartition(":")
    if not sep or not port.isdigit():
        raise ValueError(f"invalid listen address: {address!r}")
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    return host, int(port)


def create_server(address: str, log: Log) -> ThreadingHTTPServer:
    """Bind the HTTP service to ``address``; requests are logged to ``service.log`` or stdout."""
    host, port = _split_address(address)
    server_cls = _Server6 if ":" in host else _Server
    if log.path:
        stream: TextIO = open(os.path.join(log.path, "service.log"), "a", encoding="utf-8")
        owns = True
    else:
        stream = sys.stdout
        owns = False
    try:
        return server_cls((host, port), stream, owns)
    except OSError:
        if owns:
            stream.close()
        raise


_server: ThreadingHTTPServer | None = None
_thread: threading.Thread | None = None


def start(cfg: Config) -> ThreadingHTTPServer:
    """Listen on the configured address and serve in a background thread."""
    global _server, _thread
    server = create_server(cfg.address, cfg.log)
    thread = threading.Thread(
        target=go_with_recovery,
        args=(server.serve_forever,),
        name="http-service",
        daemon=True,
    )
    thread.start()
    _server, _thread = server, thread
    logger.info("starting http service, address=%s", cfg.address)
    return server


def stop() -> None:
    """Shut the HTTP service down, if it runs."""
    global _server, _thread
    if _server is None:
        return
    logger.info("shutting down http server")
    _server.shutdown()
    _server.server_close()
    if _thread is not None:
        _thread.join(_STOP_JOIN_TIMEOUT)
    _server, _thread = None, None
    logger.info("http server is down")