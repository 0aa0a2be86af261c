# ngmonitor

A small monitoring server core. It loads and validates a TOML configuration,
keeps runtime-adjustable settings (continuous profiling options) in a local
SQLite-backed document store, tracks cluster-wide variables, and serves an
HTTP API for health checks and configuration. It needs nothing beyond the
Python standard library.

## Installation

```
pip install .
```

For running the tests:

```
pip install .[test]
pytest
```

## Running the server

```
ngmonitor --config ngmonitor.toml
```

Options:

- `--config` — path of the TOML configuration file
- `--address` — TCP address to listen on for HTTP (default `0.0.0.0:12020`)
- `--advertise-address` — the `IP:PORT` other services use to reach this one;
  when empty and the address starts with `0.0.0.0`, a local IP is filled in
- `--pd.endpoints` — comma-separated PD addresses, e.g.
  `10.0.0.1:2379,10.0.0.2:2379`; may be given more than once
- `--log.path` — directory for log files (standard output when empty)
- `--storage.path` — data directory (default `data`)
- `--retention-period` — stored in the configuration as the time-series
  retention period
- `-V`, `--version` — print version information and exit

Options given on the command line override values from the configuration file.
The server runs until it receives `SIGINT` or `SIGTERM`. Sending `SIGHUP` makes
it re-read the configuration file and pick up changed PD endpoints.

Files written under the log path (or, when it is empty, under the storage
path):

- `ng.log` — the server log (standard output when no log path is set)
- `service.log` — HTTP access log (standard output when no log path is set)
- `docdb.log` — document store log (`<storage>/docdb-log/` without a log path)
- `tsdb.log` — time-series log (`<storage>/tsdb-log/` without a log path)

The document store itself lives in `<storage>/docdb/`.

## Configuration file

```toml
address = "0.0.0.0:12020"
advertise-address = "10.0.0.5:12020"

[pd]
endpoints = ["127.0.0.1:2379"]

[log]
path = "logs"
level = "INFO"          # DEBUG, INFO, WARN or ERROR

[storage]
path = "data"

[security]
ca-path = ""
cert-path = ""
key-path = ""

[tsdb]
retention-period = "1"
search-max-unique-timeseries = 300000

[docdb]
sync-writes = false
block-cache-size = 268435456
```

Keys not present keep their defaults. The address and advertise address must be
`host:port` with a non-zero numeric port; at least one PD endpoint and a storage
path are required. Continuous profiling settings are not read from the file;
they are changed through the HTTP API and kept in the document store.

## HTTP API

- `GET /health` — `{"health": true}`
- `GET /config` — the current configuration as JSON
- `POST /config` — change runtime settings, for example

  ```json
  {"continuous_profiling": {"enable": true, "profile_seconds": 6, "interval_seconds": 11}}
  ```

  Changes are validated, applied and saved to the document store, and are
  restored from it on the next start. Invalid values, unknown keys or unknown
  modules are answered with status 503 and `{"status": "error", "message": ...}`.

## Library use

```python
from ngmonitor import config

cfg = config.init_config("ngmonitor.toml", lambda c: None)
updates = config.subscribe()
latest = updates.get()()
```

- `ngmonitor.config` — the `Config` dataclass and its sections, `init_config`,
  `get_global_config`, `store_global_config`, `update_global_config`,
  `subscribe` (a queue receiving a getter of the latest config on every change),
  `reload_config` and `validate_address`.
- `ngmonitor.docstore.DocumentStore` — a SQL store in one directory with
  `execute`, `query`, `get_meta`, `set_meta`, `vacuum` and `close`.
- `ngmonitor.pdvariable.VariableLoader` — keeps the latest `PDVariable`
  (`enable_top_sql`) built from `(key, value)` pairs supplied by a fetch
  function, with `refresh`, `apply_events`, `subscribe` and `stop`.
- `ngmonitor.retry.with_retry` and `ngmonitor.retry.with_retry_backoff` — retry
  loops with fixed or doubling waits, stoppable through a `threading.Event`.
- `ngmonitor.limiter.RateLimit` — bounds concurrency with tokens.

## What it does not do

- It stores no time-series data and runs no time-series query engine; the
  `tsdb` settings and `--retention-period` are only kept in the configuration,
  and only `tsdb.log` is set up.
- It does not connect to PD or etcd itself. `VariableLoader` works from a fetch
  function you supply; the `ngmonitor` command does not start one.
- It collects no Top SQL data and no continuous profiles; it only stores the
  continuous profiling settings.
- It serves no metrics or profiling endpoints, only `/health` and `/config`.
- TLS paths in `[security]` decide the reported HTTP scheme; the HTTP service
  itself listens without TLS.