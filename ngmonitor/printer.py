"""Build and version information for the server."""

from __future__ import annotations

import logging
import platform

__all__ = ["get_ngm_info", "print_ngm_info"]

logger = logging.getLogger(__name__)

NGM_BUILD_TS = "None"
NGM_GIT_HASH = "None"
NGM_GIT_BRANCH = "None"
BUILD_VERSION = platform.python_version()


def _info_fields() -> dict[str, str]:
    return {
        "Git Commit Hash": NGM_GIT_HASH,
        "Git Branch": NGM_GIT_BRANCH,
        "UTC Build Time": NGM_BUILD_TS,
        "Runtime Version": BUILD_VERSION,
    }


def get_ngm_info() -> str:
    """Return the version information as multi-line text."""
    return "\n".join(f"{name}: {value}" for name, value in _info_fields().items())


def print_ngm_info() -> dict[str, str]:
    """Log the version information and return the fields that were logged."""
    fields = _info_fields()
    details = " ".join(f"{name}={value}" for name, value in fields.items())
    logger.info("Welcome to ng-monitoring. %s", details)
    return fields