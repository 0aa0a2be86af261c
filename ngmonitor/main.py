"""The server entry point: flags, start-up and shutdown."""

from __future__ import annotations

import argparse
import csv
import logging
import os
import signal
import sqlite3
import sys
import threading

from ngmonitor import docstore, httpserver
from ngmonitor.config import Config, ConfigError, init_config, reload_routine
from ngmonitor.docstore import DocumentStore
from ngmonitor.persist import load_config_from_storage
from ngmonitor.printer import get_ngm_info, print_ngm_info
from ngmonitor.tsdblog import init_logger as init_tsdb_logger

__all__ = ["override_config", "must_create_dirs", "init_database", "stop_database", "main"]

logger = logging.getLogger(__name__)

_tsdb_logger: logging.Logger | None = None


def _csv_list(value: str) -> list[str]:
    return next(csv.reader([value]), [])


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="ng-monitoring-server")
    parser.add_argument(
        "-V", "--version", action="store_true", help="print version information and exit"
    )
    parser.add_argument(
        "--address", dest="address", help="TCP address to listen for http connections"
    )
    parser.add_argument(
        "--pd.endpoints",
        dest="pd_endpoints",
        action="append",
        type=_csv_list,
        help="Addresses of PD instances within the TiDB cluster. Multiple addresses are "
        "separated by commas, e.g. --pd.endpoints 10.0.0.1:2379,10.0.0.2:2379",
    )
    parser.add_argument("--log.path", dest="log_path", help="Log path of ng monitoring server")
    parser.add_argument(
        "--storage.path", dest="storage_path", help="Storage path of ng monitoring server"
    )
    parser.add_argument("--config", dest="config", default="", help="config file path")
    parser.add_argument(
        "--advertise-address", dest="advertise_address", help="ngm server advertise IP:PORT"
    )
    parser.add_argument(
        "--retention-period",
        dest="retention_period",
        help="Data with timestamps outside the retentionPeriod is automatically deleted. "
        "The following optional suffixes are supported: h (hour), d (day), w (week), "
        "y (year). If suffix isn't set, then the duration is counted in months",
    )
    return parser


def override_config(args: argparse.Namespace, config: Config) -> None:
    """Apply the flags that were given on the command line to ``config``."""
    if getattr(args, "address", None) is not None:
        config.address = args.address
    if getattr(args, "pd_endpoints", None) is not None:
        config.pd.endpoints = [addr for chunk in args.pd_endpoints for addr in chunk]
    if getattr(args, "log_path", None) is not None:
        config.log.path = args.log_path
    if getattr(args, "storage_path", None) is not None:
        config.storage.path = args.storage_path
    if getattr(args, "advertise_address", None) is not None:
        config.advertise_address = args.advertise_address
    if getattr(args, "retention_period", None) is not None:
        config.tsdb.retention_period = args.retention_period


def must_create_dirs(config: Config) -> None:
    """Create the log directory, if set, and the storage directory."""
    if config.log.path:
        os.makedirs(config.log.path, exist_ok=True)
    os.makedirs(config.storage.path, exist_ok=True)


def init_database(cfg: Config) -> DocumentStore:
    """Set up time-series logging and open the document database."""
    global _tsdb_logger
    _tsdb_logger = init_tsdb_logger(cfg)
    store = docstore.init(cfg)
    logger.info("Initialize database successfully, path=%s", cfg.storage.path)
    return store


def stop_database() -> None:
    """Close the databases opened by :func:`init_database`."""
    global _tsdb_logger
    logger.info("Stopping timeseries database")
    if _tsdb_logger is not None:
        for handler in list(_tsdb_logger.handlers):
            _tsdb_logger.removeHandler(handler)
            handler.close()
        _tsdb_logger = None
    logger.info("Stop timeseries database successfully")

    logger.info("Stopping document database")
    docstore.stop()
    logger.info("Stop document database successfully")


def _signal_event(*signal_names: str) -> tuple[threading.Event, list[str]]:
    event = threading.Event()
    received: list[str] = []

    def _handler(signum: int, _frame: object) -> None:
        received.append(signal.Signals(signum).name)
        event.set()

    for name in signal_names:
        signum = getattr(signal, name, None)
        if signum is not None:
            signal.signal(signum, _handler)
    return event, received


def main(argv: list[str] | None = None) -> int:
    """Run the server until SIGINT or SIGTERM; return the exit status."""
    args = _build_parser().parse_args(argv)
    if args.version:
        print(get_ngm_info())
        return 0

    try:
        cfg = init_config(args.config, lambda c: override_config(args, c))
    except ConfigError as exc:
        print(f"Failed to initialize config, err: {exc}", file=sys.stderr)
        return 1

    cfg.log.init_default_logger()
    print_ngm_info()
    logger.info("config: %s", cfg.to_dict())

    try:
        must_create_dirs(cfg)
    except OSError as exc:
        logger.critical("failed to create directories: %s", exc)
        return 1

    init_database(cfg)
    stop_reload = threading.Event()
    try:
        try:
            load_config_from_storage(docstore.get)
        except (ValueError, sqlite3.Error) as exc:
            print(f"Failed to load config from storage, err: {exc}", file=sys.stderr)
            return 1

        try:
            httpserver.start(cfg)
        except OSError as exc:
            logger.critical("failed to listen, address=%s: %s", cfg.address, exc)
            return 1

        terminate, received = _signal_event("SIGINT", "SIGTERM")
        sighup, _ = _signal_event("SIGHUP")
        reloader = threading.Thread(
            target=reload_routine,
            args=(stop_reload, args.config, sighup),
            name="config-reload",
            daemon=True,
        )
        reloader.start()

        while not terminate.wait(1.0):
            pass
        logger.info("received signal %s", received[0] if received else "unknown")
    finally:
        stop_reload.set()
        httpserver.stop()
        stop_database()
    return 0


if __name__ == "__main__":
    sys.exit(main())