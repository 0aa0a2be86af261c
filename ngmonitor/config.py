"""Server configuration: defaults, TOML loading, validation and the shared global copy."""

import copy
import logging
import os
import queue
import re
import signal
import ssl
import sys
import threading
import tomllib
import typing
from dataclasses import dataclass, field, fields, is_dataclass
from typing import Any, Callable

from ngmonitor.misc import get_local_ip

__all__ = [
    "ConfigError",
    "PD",
    "Storage",
    "Log",
    "Security",
    "TSDB",
    "DocDB",
    "ContinueProfilingConfig",
    "Config",
    "PprofProfilingConfig",
    "ProfilingConfig",
    "ScrapeConfig",
    "LEVEL_DEBUG",
    "LEVEL_INFO",
    "LEVEL_WARN",
    "LEVEL_ERROR",
    "get_default_config",
    "subscribe",
    "get_global_config",
    "store_global_config",
    "update_global_config",
    "validate_address",
    "init_config",
    "reload_config",
    "reload_routine",
]

logger = logging.getLogger(__name__)

LEVEL_DEBUG = "DEBUG"
LEVEL_INFO = "INFO"
LEVEL_WARN = "WARN"
LEVEL_ERROR = "ERROR"

_PYTHON_LEVELS = {
    LEVEL_DEBUG: logging.DEBUG,
    LEVEL_INFO: logging.INFO,
    LEVEL_WARN: logging.WARNING,
    LEVEL_ERROR: logging.ERROR,
}

_RELOAD_POLL_INTERVAL = 0.05


class ConfigError(ValueError):
    """Raised when a configuration cannot be loaded or is invalid."""


def _meta(toml_key: str | None, json_key: str | None) -> dict[str, str | None]:
    return {"toml": toml_key, "json": json_key}


@dataclass
class PD:
    """Addresses of the PD instances of the cluster."""

    endpoints: list[str] = field(
        default_factory=lambda: ["127.0.0.1:2379"], metadata=_meta("endpoints", "endpoints")
    )

    def validate(self) -> None:
        """Raise ConfigError if no endpoint is configured."""
        if not self.endpoints:
            raise ConfigError(
                "unexpected empty pd endpoints, please specify at least one, "
                'e.g. --pd.endpoints "127.0.0.1:2379"'
            )

    def same_endpoints(self, other: "PD") -> bool:
        """Whether both hold the same endpoints, ignoring order."""
        return sorted(self.endpoints) == sorted(other.endpoints)


@dataclass
class Storage:
    """Where data is stored."""

    path: str = field(default="data", metadata=_meta("path", "path"))

    def validate(self) -> None:
        """Raise ConfigError if the path is empty."""
        if not self.path:
            raise ConfigError("unexpected empty storage path")


@dataclass
class Log:
    """Log destination and verbosity."""

    path: str = field(default="", metadata=_meta("path", "path"))
    level: str = field(default=LEVEL_INFO, metadata=_meta("level", "level"))

    def validate(self) -> None:
        """Raise ConfigError if the level is empty or unknown."""
        if not self.level:
            raise ConfigError("unexpected empty log level")
        if self.level not in _PYTHON_LEVELS:
            raise ConfigError(
                f"log level should be {LEVEL_DEBUG}, {LEVEL_INFO}, {LEVEL_WARN} or {LEVEL_ERROR}"
            )

    def init_default_logger(self) -> logging.Handler:
        """Route the root logger to ``<path>/ng.log`` or standard output."""
        try:
            level = _PYTHON_LEVELS[self.level]
        except KeyError:
            raise ConfigError(f"failed to init logger, unknown level: {self.level}") from None
        if self.path:
            handler: logging.Handler = logging.FileHandler(os.path.join(self.path, "ng.log"))
        else:
            handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(
            logging.Formatter("[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s")
        )
        root = logging.getLogger()
        for old in list(root.handlers):
            root.removeHandler(old)
        root.addHandler(handler)
        root.setLevel(level)
        return handler


@dataclass
class Security:
    """TLS certificate locations."""

    ssl_ca: str = field(default="", metadata=_meta("ca-path", "ca_path"))
    ssl_cert: str = field(default="", metadata=_meta("cert-path", "cert_path"))
    ssl_key: str = field(default="", metadata=_meta("key-path", "key_path"))

    def __post_init__(self) -> None:
        self._tls: ssl.SSLContext | None = None

    def __deepcopy__(self, memo: dict) -> "Security":
        clone = Security(self.ssl_ca, self.ssl_cert, self.ssl_key)
        clone._tls = self._tls
        return clone

    def tls_context(self) -> ssl.SSLContext | None:
        """A client TLS context, or None unless all three paths are set."""
        if self._tls is not None:
            return self._tls
        if not (self.ssl_ca and self.ssl_cert and self.ssl_key):
            return None
        try:
            context = ssl.create_default_context(cafile=self.ssl_ca)
            context.load_cert_chain(certfile=self.ssl_cert, keyfile=self.ssl_key)
        except (OSError, ssl.SSLError) as exc:
            raise ConfigError(f"failed to load certificates: {exc}") from exc
        self._tls = context
        return context

    def http_client_config(self) -> dict[str, dict[str, str]]:
        """The certificate files in the shape an HTTP client configuration expects."""
        return {
            "tls_config": {
                "ca_file": self.ssl_ca,
                "cert_file": self.ssl_cert,
                "key_file": self.ssl_key,
            }
        }


@dataclass
class TSDB:
    """Time-series storage settings."""

    retention_period: str = field(
        default="1", metadata=_meta("retention-period", "retention_period")
    )
    search_max_unique_timeseries: int = field(
        default=300000,
        metadata=_meta("search-max-unique-timeseries", "search_max_unique_timeseries"),
    )


@dataclass
class DocDB:
    """Document storage engine settings."""

    lsm_only: bool = field(default=False, metadata=_meta("lsm-only", "lsm_only"))
    sync_writes: bool = field(default=False, metadata=_meta("sync-writes", "sync_writes"))
    num_versions_to_keep: int = field(
        default=1, metadata=_meta("num-versions-to-keep", "num_versions_to_keep")
    )
    num_goroutines: int = field(default=8, metadata=_meta("num-goroutines", "num_goroutines"))
    mem_table_size: int = field(
        default=64 << 20, metadata=_meta("mem-table-size", "mem_table_size")
    )
    base_table_size: int = field(
        default=2 << 20, metadata=_meta("base-table-size", "base_table_size")
    )
    base_level_size: int = field(
        default=10 << 20, metadata=_meta("base-level-size", "base_level_size")
    )
    level_size_multiplier: int = field(
        default=10, metadata=_meta("level-size-multiplier", "level_size_multiplier")
    )
    max_levels: int = field(default=7, metadata=_meta("max-levels", "max_levels"))
    vlog_percentile: float = field(
        default=0.0, metadata=_meta("vlog-percentile", "vlog_percentile")
    )
    value_threshold: int = field(
        default=1 << 20, metadata=_meta("value-threshold", "value_threshold")
    )
    num_memtables: int = field(default=5, metadata=_meta("num-memtables", "num_memtables"))
    block_size: int = field(default=4 * 1024, metadata=_meta("block-size", "block_size"))
    bloom_false_positive: float = field(
        default=0.01, metadata=_meta("bloom-false-positive", "bloom_false_positive")
    )
    block_cache_size: int = field(
        default=256 << 20, metadata=_meta("block-cache-size", "block_cache_size")
    )
    index_cache_size: int = field(
        default=0, metadata=_meta("index-cache-size", "index_cache_size")
    )
    num_level_zero_tables: int = field(
        default=5, metadata=_meta("num-level-zero-tables", "num_level_zero_tables")
    )
    num_level_zero_tables_stall: int = field(
        default=15,
        metadata=_meta("num-level-zero-tables-stall", "num_level_zero_tables_stall"),
    )
    value_log_file_size: int = field(
        default=(1 << 30) - 1, metadata=_meta("value-log-file-size", "value_log_file_size")
    )
    value_log_max_entries: int = field(
        default=1000000, metadata=_meta("value-log-max-entries", "value_log_max_entries")
    )
    num_compactors: int = field(default=4, metadata=_meta("num-compactors", "num_compactors"))
    zstd_compression_level: int = field(
        default=1, metadata=_meta("zstd-compression-level", "zstd_compression_level")
    )


@dataclass
class ContinueProfilingConfig:
    """Continuous profiling settings; changed at runtime, never read from TOML."""

    enable: bool = field(default=False, metadata=_meta(None, "enable"))
    profile_seconds: int = field(default=10, metadata=_meta(None, "profile_seconds"))
    interval_seconds: int = field(default=60, metadata=_meta(None, "interval_seconds"))
    timeout_seconds: int = field(default=120, metadata=_meta(None, "timeout_seconds"))
    data_retention_seconds: int = field(
        default=3 * 24 * 60 * 60, metadata=_meta(None, "data_retention_seconds")
    )

    def valid(self) -> bool:
        """Whether all durations are set and profiling fits in interval and timeout."""
        if not (
            self.profile_seconds
            and self.interval_seconds
            and self.timeout_seconds
            and self.data_retention_seconds
        ):
            return False
        if self.profile_seconds > self.interval_seconds:
            return False
        if self.profile_seconds > self.timeout_seconds:
            return False
        return True

    def to_dict(self) -> dict[str, Any]:
        """The JSON form, keyed by JSON names."""
        return _to_json(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ContinueProfilingConfig":
        """Build from a JSON object; missing keys take zero values, unknown keys are ignored."""
        if not isinstance(data, dict):
            raise ConfigError(f"cannot decode {data!r} into continuous profiling config")
        result = cls(False, 0, 0, 0, 0)
        for f in fields(cls):
            key = f.metadata["json"]
            value = data.get(key)
            if value is None:
                continue
            setattr(result, f.name, _coerce_json(f.type, value, key))
        return result


@dataclass
class Config:
    """The whole server configuration."""

    address: str = field(default="0.0.0.0:12020", metadata=_meta("address", "address"))
    advertise_address: str = field(
        default="", metadata=_meta("advertise-address", "advertise_address")
    )
    pd: PD = field(default_factory=PD, metadata=_meta("pd", "pd"))
    log: Log = field(default_factory=Log, metadata=_meta("log", "log"))
    storage: Storage = field(default_factory=Storage, metadata=_meta("storage", "storage"))
    continue_profiling: ContinueProfilingConfig = field(
        default_factory=ContinueProfilingConfig, metadata=_meta(None, "continuous_profiling")
    )
    security: Security = field(default_factory=Security, metadata=_meta("security", "security"))
    tsdb: TSDB = field(default_factory=TSDB, metadata=_meta("tsdb", "tsdb"))
    docdb: DocDB = field(default_factory=DocDB, metadata=_meta("docdb", "docdb"))

    def load(self, file_name: str | os.PathLike) -> None:
        """Overlay the keys present in a TOML file onto this config."""
        try:
            with open(file_name, "rb") as fh:
                table = tomllib.load(fh)
        except (OSError, tomllib.TOMLDecodeError) as exc:
            raise ConfigError(f"failed to load config file {os.fspath(file_name)}: {exc}") from exc
        _decode_toml(self, table, "")

    def validate(self) -> None:
        """Raise ConfigError on the first invalid setting."""
        validate_address(self.address, "address")
        validate_address(self.advertise_address, "advertise-address")
        if not self.address:
            raise ConfigError("unexpected empty address")
        self.pd.validate()
        self.log.validate()
        self.storage.validate()

    def http_scheme(self) -> str:
        """"https" when TLS is configured, otherwise "http"."""
        return "https" if self.security.tls_context() is not None else "http"

    def to_dict(self) -> dict[str, Any]:
        """The JSON form, keyed by JSON names."""
        return _to_json(self)

    def _trim_field_space(self) -> None:
        self.address = self.address.strip()
        self.advertise_address = self.advertise_address.strip()
        self.pd.endpoints = [addr.strip() for addr in self.pd.endpoints]

    def _set_default_advertise_address(self) -> None:
        if not self.advertise_address and self.address.startswith("0.0.0.0"):
            self.advertise_address = self.address.replace("0.0.0.0", get_local_ip(), 1)
        if not self.advertise_address:
            self.advertise_address = self.address


@dataclass
class PprofProfilingConfig:
    """How to fetch one pprof profile."""

    path: str = ""
    seconds: int = 0
    header: dict[str, str] = field(default_factory=dict)
    params: dict[str, str] = field(default_factory=dict)


@dataclass
class ProfilingConfig:
    """Profiles to fetch, keyed by profile name."""

    pprof_config: dict[str, PprofProfilingConfig] = field(default_factory=dict)


@dataclass
class ScrapeConfig:
    """A scraping unit for continuous profiling; intervals are in seconds."""

    component_name: str = ""
    scrape_interval: float = 0.0
    scrape_timeout: float = 0.0
    profiling_config: ProfilingConfig | None = None
    targets: list[str] = field(default_factory=list)


def _to_json(obj: Any) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for f in fields(obj):
        key = f.metadata.get("json")
        if key is None:
            continue
        value = getattr(obj, f.name)
        if is_dataclass(value):
            out[key] = _to_json(value)
        elif isinstance(value, list):
            out[key] = list(value)
        else:
            out[key] = value
    return out


def _coerce(tp: Any, value: Any, name: str) -> Any:
    origin = typing.get_origin(tp)
    if origin is list:
        if isinstance(value, list) and all(isinstance(v, str) for v in value):
            return list(value)
    elif tp is bool:
        if isinstance(value, bool):
            return value
    elif tp is int:
        if isinstance(value, int) and not isinstance(value, bool):
            return value
    elif tp is float:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return float(value)
    elif tp is str:
        if isinstance(value, str):
            return value
    raise ConfigError(f"cannot load {type(value).__name__} value {value!r} into {name} of type {tp}")


def _coerce_json(tp: Any, value: Any, name: str) -> Any:
    if tp is int and isinstance(value, float) and value.is_integer():
        return int(value)
    return _coerce(tp, value, name)


def _decode_toml(obj: Any, table: dict[str, Any], prefix: str) -> None:
    for f in fields(obj):
        key = f.metadata.get("toml")
        if key is None or key not in table:
            continue
        value = table[key]
        current = getattr(obj, f.name)
        if is_dataclass(current):
            if not isinstance(value, dict):
                raise ConfigError(f"cannot load {value!r} into table {prefix}{key}")
            _decode_toml(current, value, f"{prefix}{key}.")
        else:
            setattr(obj, f.name, _coerce(f.type, value, prefix + key))


_DEFAULT_CONFIG = Config()

Subscriber = queue.Queue
GetLatestConfig = Callable[[], Config]

_global_lock = threading.Lock()
_global_config = copy.deepcopy(_DEFAULT_CONFIG)
_subscribers_lock = threading.Lock()
_subscribers: list[queue.Queue] = []


def get_default_config() -> Config:
    """A fresh copy of the default configuration."""
    return copy.deepcopy(_DEFAULT_CONFIG)


def subscribe() -> queue.Queue:
    """A queue that receives a config getter whenever the config changes.

    One getter is already waiting in the queue right after subscribing.
    """
    ch: queue.Queue = queue.Queue(maxsize=1)
    with _subscribers_lock:
        _subscribers.append(ch)
        ch.put_nowait(get_global_config)
    return ch


def _notify_config_change() -> None:
    with _subscribers_lock:
        for ch in _subscribers:
            try:
                ch.put_nowait(get_global_config)
            except queue.Full:
                pass


def get_global_config() -> Config:
    """A copy of the current global configuration."""
    with _global_lock:
        return copy.deepcopy(_global_config)


def store_global_config(config: Config) -> None:
    """Replace the global configuration and notify subscribers."""
    global _global_config
    with _global_lock:
        _global_config = copy.deepcopy(config)
    _notify_config_change()


def update_global_config(update: Callable[[Config], Config]) -> None:
    """Replace the global configuration with ``update(current)`` and notify subscribers."""
    global _global_config
    with _global_lock:
        _global_config = copy.deepcopy(update(copy.deepcopy(_global_config)))
    _notify_config_change()


_DIGITS = re.compile(r"[+-]?[0-9]+")


def _split_host_port(hostport: str) -> tuple[str, str]:
    def error(msg: str) -> ValueError:
        return ValueError(f"address {hostport}: {msg}")

    i = hostport.rfind(":")
    if i < 0:
        raise error("missing port in address")
    if hostport.startswith("["):
        end = hostport.find("]")
        if end < 0:
            raise error("missing ']' in address")
        if end + 1 == len(hostport):
            raise error("missing port in address")
        if end + 1 != i:
            if hostport[end + 1] == ":":
                raise error("too many colons in address")
            raise error("missing port in address")
        host = hostport[1:end]
        j, k = 1, end + 1
    else:
        host = hostport[:i]
        if ":" in host:
            raise error("too many colons in address")
        j = k = 0
    if "[" in hostport[j:]:
        raise error("unexpected '[' in address")
    if "]" in hostport[k:]:
        raise error("unexpected ']' in address")
    return host, hostport[i + 1 :]


def validate_address(address: str, name: str) -> None:
    """Raise ConfigError unless ``address`` is host:port with a non-zero numeric port."""
    if not address:
        raise ConfigError(f"unexpected empty {name}")
    try:
        _, port = _split_host_port(address)
        if not _DIGITS.fullmatch(port):
            raise ValueError(f'parsing "{port}": invalid syntax')
        if int(port) == 0:
            raise ValueError("port cannot be set to 0")
    except ValueError as exc:
        raise ConfigError(f"{name} {address} is invalid, err: {exc}") from None


def init_config(
    config_path: str | os.PathLike | None,
    override: Callable[[Config], Any] | None,
) -> Config:
    """Build the config from defaults, an optional file and ``override``, then publish it."""
    config = get_default_config()
    if config_path:
        config.load(config_path)
    if override is not None:
        override(config)
    config._trim_field_space()
    config._set_default_advertise_address()
    config.validate()
    store_global_config(config)
    return config


def reload_config(config_path: str | os.PathLike) -> Config:
    """Re-read PD endpoints from the file into the global config and return the result."""
    new_cfg = Config(pd=PD(endpoints=[]))
    new_cfg.load(config_path)
    if not new_cfg.pd.endpoints:
        raise ConfigError("unexpected empty PD endpoints")

    def _apply(current: Config) -> Config:
        if current.pd.same_endpoints(new_cfg.pd):
            return current
        current.pd = PD(endpoints=sorted(new_cfg.pd.endpoints))
        logger.info("PD endpoints changed: %s", current.pd.endpoints)
        return current

    update_global_config(_apply)
    return get_global_config()


def _sighup_event() -> threading.Event:
    event = threading.Event()
    try:
        signal.signal(signal.SIGHUP, lambda *_: event.set())
    except (AttributeError, ValueError) as exc:
        logger.warning("cannot watch SIGHUP: %s", exc)
    return event


def reload_routine(
    stop: threading.Event,
    config_path: str | os.PathLike | None,
    sighup: threading.Event | None = None,
) -> None:
    """Reload PD endpoints each time ``sighup`` is set, until ``stop`` is set."""
    if not config_path:
        logger.warning(
            'failed to reload config due to empty config path. '
            'Please specify the command line argument "--config <path>"'
        )
        return
    if sighup is None:
        sighup = _sighup_event()
    while not stop.is_set():
        if not sighup.wait(_RELOAD_POLL_INTERVAL):
            continue
        sighup.clear()
        if stop.is_set():
            return
        logger.info("received SIGHUP and ready to reload config")
        try:
            reload_config(config_path)
        except ConfigError as exc:
            logger.warning("failed to reload config: %s", exc)