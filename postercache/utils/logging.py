"""
Structured logging for postercache.

Events are rendered as JSON lines to stderr and to a daily file under
general.logs_dir. Request-scoped fields (request_key) are carried through
structlog contextvars, so every event emitted while serving one lookup
is tagged with the movie being resolved.
"""

import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Any

import structlog
from structlog.types import Processor

from postercache.utils.config import Settings, get_project_root, get_settings


def _drop_health_checks(
    logger: logging.Logger,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """Drop debug health_check events; /health is polled by monitors."""
    if method_name == "debug" and event_dict.get("event") == "health_check":
        raise structlog.DropEvent
    return event_dict


def _log_file_for(settings: Settings) -> Path:
    log_dir = get_project_root() / settings.general.logs_dir
    log_dir.mkdir(parents=True, exist_ok=True)
    return log_dir / f"postercache_{datetime.now().strftime('%Y%m%d')}.log"


def configure_logging(
    settings: Settings | None = None,
    *,
    log_level: str | None = None,
    log_file: str | Path | None = None,
) -> None:
    """Route structlog through stdlib logging as JSON.

    Args:
        settings: Source of general.log_level and general.logs_dir.
            Uses get_settings() if None.
        log_level: Overrides general.log_level.
        log_file: Overrides the daily file under general.logs_dir.
    """
    settings = settings or get_settings()
    level_name = (log_level or settings.general.log_level).upper()
    log_file = log_file or _log_file_for(settings)

    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, level_name, logging.INFO),
        handlers=[
            logging.StreamHandler(sys.stderr),
            logging.FileHandler(log_file, encoding="utf-8"),
        ],
    )

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True, key="timestamp"),
        _drop_health_checks,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer(ensure_ascii=False),
    ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a logger; pass __name__."""
    return structlog.get_logger(name)


def bind_context(**kwargs: Any) -> None:
    """Attach fields to every event logged from the current context."""
    structlog.contextvars.bind_contextvars(**kwargs)


def unbind_context(*keys: str) -> None:
    structlog.contextvars.unbind_contextvars(*keys)


class LogContext:
    """Bind fields for the duration of a with block.

    Example:
        with LogContext(request_key="Avengers"):
            value = await cache.lookup("Avengers")
    """

    def __init__(self, **kwargs: Any):
        self.context = kwargs

    def __enter__(self) -> "LogContext":
        bind_context(**self.context)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        unbind_context(*self.context.keys())
