"""
postercache utilities module.
"""

from postercache.utils.config import (
    Settings,
    ensure_directories,
    get_project_root,
    get_settings,
    load_settings,
)
from postercache.utils.logging import (
    LogContext,
    bind_context,
    configure_logging,
    get_logger,
    unbind_context,
)

__all__ = [
    "Settings",
    "ensure_directories",
    "get_project_root",
    "get_settings",
    "load_settings",
    "LogContext",
    "bind_context",
    "configure_logging",
    "get_logger",
    "unbind_context",
]
