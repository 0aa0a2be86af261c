"""Handlers for reading and changing the configuration over HTTP."""

from __future__ import annotations

import json
import logging
from http import HTTPStatus
from typing import Any

from ngmonitor.config import (
    Config,
    ConfigError,
    ContinueProfilingConfig,
    get_global_config,
    update_global_config,
)
from ngmonitor.persist import save_config_into_storage

__all__ = [
    "handle_get_config",
    "handle_post_config",
    "handle_modify_config",
    "handle_continue_profiling_config_modify",
]

logger = logging.getLogger(__name__)


def handle_get_config() -> tuple[int, dict[str, Any]]:
    """Status and JSON payload with the current configuration."""
    return HTTPStatus.OK.value, get_global_config().to_dict()


def handle_post_config(body: bytes | str) -> tuple[int, dict[str, Any]]:
    """Apply a change request; status and JSON payload describing the result."""
    try:
        handle_modify_config(body)
    except (ValueError, OSError, RuntimeError) as exc:
        return HTTPStatus.SERVICE_UNAVAILABLE.value, {"status": "error", "message": str(exc)}
    except Exception as exc:  # noqa: BLE001 - storage errors are reported to the caller
        return HTTPStatus.SERVICE_UNAVAILABLE.value, {"status": "error", "message": str(exc)}
    return HTTPStatus.OK.value, {"status": "ok"}


def _kind(value: Any) -> str:
    if isinstance(value, list):
        return "array"
    if isinstance(value, str):
        return "string"
    if isinstance(value, bool):
        return "bool"
    return "number"


def handle_modify_config(body: bytes | str) -> None:
    """Decode a JSON object of module changes and apply each of them."""
    if isinstance(body, (bytes, bytearray)):
        try:
            text = bytes(body).decode("utf-8")
        except UnicodeDecodeError as exc:
            raise ConfigError(str(exc)) from exc
    else:
        text = body
    text = text.lstrip()
    if not text:
        raise ConfigError("EOF")
    try:
        request, _ = json.JSONDecoder().raw_decode(text)
    except json.JSONDecodeError as exc:
        raise ConfigError(str(exc)) from exc
    if request is None:
        return
    if not isinstance(request, dict):
        raise ConfigError(f"cannot decode {_kind(request)} into a config object")

    for key, value in request.items():
        if key != "continuous_profiling":
            raise ConfigError(f"config {key} not support modify or unknow")
        if not isinstance(value, dict):
            raise ConfigError(f"{key} config value is invalid: {value}")
        handle_continue_profiling_config_modify(value)


def _same(old: Any, new: Any) -> bool:
    if isinstance(old, bool) or isinstance(new, bool):
        return isinstance(old, bool) and isinstance(new, bool) and old == new
    return old == new


def handle_continue_profiling_config_modify(request: dict[str, Any]) -> None:
    """Merge ``request`` into the continuous profiling config, validate and persist it."""
    failures: list[ConfigError] = []

    def _apply(current: Config) -> Config:
        nested = current.continue_profiling.to_dict()
        for key, new_value in request.items():
            if key not in nested:
                failures.append(ConfigError(f"unknown config `{key}`"))
                return current
            old_value = nested[key]
            if _same(old_value, new_value):
                continue
            nested[key] = new_value
            logger.info(
                "handle continuous profiling config modify, name=%s, old-value=%r, new-value=%r",
                key,
                old_value,
                new_value,
            )
        data = json.dumps(nested, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
        try:
            new_cfg = ContinueProfilingConfig.from_dict(json.loads(data))
        except ConfigError as exc:
            failures.append(exc)
            return current
        if not new_cfg.valid():
            failures.append(ConfigError(f"new config is invalid: {data}"))
            return current
        current.continue_profiling = new_cfg
        return current

    update_global_config(_apply)
    if failures:
        raise failures[0]
    save_config_into_storage()