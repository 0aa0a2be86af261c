"""Small helpers: guarded execution and local address discovery."""

from __future__ import annotations

import ipaddress
import logging
import socket
from typing import Any, Callable, Iterator, Optional

__all__ = ["go_with_recovery", "get_local_ip"]

logger = logging.getLogger(__name__)

_PROBES = ((socket.AF_INET, "10.255.255.255"), (socket.AF_INET6, "fd00::1"))


def go_with_recovery(
    exec_fn: Callable[[], Any],
    recover_fn: Optional[Callable[[Optional[BaseException]], Any]] = None,
) -> None:
    """Run ``exec_fn``, swallowing and logging any exception it raises.

    ``recover_fn``, when given, is always called afterwards with the caught
    exception, or with None if there was none.
    """
    caught = None
    try:
        exec_fn()
    except Exception as exc:  # noqa: BLE001
        caught = exc
    if recover_fn is not None:
        recover_fn(caught)
    if caught is not None:
        logger.error(
            "panic in the recoverable goroutine: %r",
            caught,
            exc_info=(type(caught), caught, caught.__traceback__),
        )


def _is_global_unicast(address: str) -> bool:
    try:
        ip = ipaddress.ip_address(address)
    except ValueError:
        return False
    if ip.is_loopback or ip.is_multicast or ip.is_link_local or ip.is_unspecified:
        return False
    if ip.version == 4 and str(ip) == "255.255.255.255":
        return False
    return True


def _candidate_addresses() -> Iterator[str]:
    for family, probe in _PROBES:
        try:
            with socket.socket(family, socket.SOCK_DGRAM) as sock:
                sock.connect((probe, 1))
                name = sock.getsockname()
        except OSError:
            continue
        yield str(name[0])
    try:
        infos = socket.getaddrinfo(socket.gethostname(), None)
    except OSError:
        infos = []
    for info in infos:
        yield str(info[4][0])


def get_local_ip() -> str:
    """Return a non-loopback, non-wildcard local IP, or "" if there is none."""
    for address in _candidate_addresses():
        address = address.split("%", 1)[0]
        if _is_global_unicast(address):
            return address
    return ""