"""Saving and restoring runtime-changeable config in the document database."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Callable

from ngmonitor.config import (
    Config,
    ConfigError,
    ContinueProfilingConfig,
    get_global_config,
    update_global_config,
)

if TYPE_CHECKING:
    from ngmonitor.docstore import DocumentStore

__all__ = [
    "CONFIG_TABLE_NAME",
    "CONTINUOUS_PROFILING_MODULE",
    "load_config_from_storage",
    "save_config_into_storage",
]

logger = logging.getLogger(__name__)

CONFIG_TABLE_NAME = "ng_monitoring_config"
CONTINUOUS_PROFILING_MODULE = "continuous_profiling"

_get_db: Callable[[], "DocumentStore"] | None = None


def load_config_from_storage(get_db: Callable[[], "DocumentStore"]) -> None:
    """Remember ``get_db`` and apply the module configs stored in it."""
    global _get_db
    _get_db = get_db
    db = get_db()
    db.execute(
        f"CREATE TABLE IF NOT EXISTS {CONFIG_TABLE_NAME} (module TEXT PRIMARY KEY, config TEXT)"
    )
    cfg_map = {
        module: cfg or ""
        for module, cfg in db.query(f"SELECT module, config FROM {CONFIG_TABLE_NAME}")
    }
    if not cfg_map:
        return

    errors: list[ConfigError] = []

    def _apply(current: Config) -> Config:
        for module, cfg_str in cfg_map.items():
            if module != CONTINUOUS_PROFILING_MODULE:
                errors.append(
                    ConfigError(
                        f"unknow module config in storage, module: {module}, config: {cfg_str}"
                    )
                )
                return current
            try:
                decoded = json.loads(cfg_str)
                new_cfg = ContinueProfilingConfig.from_dict({} if decoded is None else decoded)
            except (json.JSONDecodeError, ConfigError) as exc:
                errors.append(ConfigError(str(exc)))
                return current
            if new_cfg.valid():
                current.continue_profiling = new_cfg
            else:
                logger.info("load invalid config, module=%s, module-config=%s", module, new_cfg)
            logger.info("load config from storage, module=%s, module-config=%s", module, cfg_str)
        return current

    update_global_config(_apply)
    if errors:
        raise errors[0]


def save_config_into_storage() -> None:
    """Replace the stored module configs with the current global ones."""
    if _get_db is None:
        raise RuntimeError("document storage has not been set")
    db = _get_db()
    db.execute(f"DELETE FROM {CONFIG_TABLE_NAME}")
    data = json.dumps(
        get_global_config().continue_profiling.to_dict(),
        separators=(",", ":"),
        ensure_ascii=False,
    )
    db.execute(
        f"INSERT INTO {CONFIG_TABLE_NAME} (module, config) VALUES (?, ?)",
        CONTINUOUS_PROFILING_MODULE,
        data,
    )
    logger.info("save config into storage, module=%s, config=%s", CONTINUOUS_PROFILING_MODULE, data)