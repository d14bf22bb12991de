"""
Structured logging for mdfetch.

stdout belongs to command output (markdown, saved paths, JSON), so every
log record goes to stderr and to a daily file under general.logs_dir.
Records are rendered by structlog as one JSON object per line.
"""

import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Any

import structlog
from structlog.types import Processor

from mdfetch.utils.config import get_settings

# Fields holding page addresses; long query strings are cut to this length
URL_FIELDS = ("url", "final_url", "link_url")
URL_LOG_MAX_CHARS = 120


def _add_log_level(
    logger: logging.Logger,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """Record the level in upper case, matching the stdlib level names."""
    event_dict["level"] = method_name.upper()
    return event_dict


def _cap_urls(
    logger: logging.Logger,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """Truncate URL fields so tracking parameters do not flood the log."""
    for key in URL_FIELDS:
        value = event_dict.get(key)
        if isinstance(value, str) and len(value) > URL_LOG_MAX_CHARS:
            event_dict[key] = value[:URL_LOG_MAX_CHARS] + "..."
    return event_dict


def configure_logging(
    log_level: str | None = None,
    log_file: str | Path | None = None,
    json_format: bool = True,
) -> None:
    """Route structlog through stdlib logging to stderr and a log file.

    Safe to call more than once; the last call wins.

    Args:
        log_level: DEBUG, INFO, WARNING or ERROR. Defaults to general.log_level.
        log_file: Log file path. Defaults to logs_dir/mdfetch_YYYYMMDD.log.
        json_format: JSON lines (True) or coloured console output (False).
    """
    settings = get_settings()
    log_level = log_level or settings.general.log_level

    if log_file is None:
        log_dir = Path(settings.general.logs_dir)
        log_dir.mkdir(parents=True, exist_ok=True)
        log_file = log_dir / f"mdfetch_{datetime.now().strftime('%Y%m%d')}.log"

    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, log_level.upper(), logging.INFO),
        handlers=[
            logging.StreamHandler(sys.stderr),
            logging.FileHandler(log_file, encoding="utf-8"),
        ],
        force=True,
    )

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True, key="timestamp"),
        _add_log_level,
        _cap_urls,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if json_format:
        renderers: list[Processor] = [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(ensure_ascii=False),
        ]
    else:
        renderers = [structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())]

    structlog.configure(
        processors=shared_processors + renderers,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a module logger (pass __name__)."""
    return structlog.get_logger(name)


def bind_context(**kwargs: Any) -> None:
    """Attach fields (e.g. ref_id) to every record logged from this task on."""
    structlog.contextvars.bind_contextvars(**kwargs)


def unbind_context(*keys: str) -> None:
    structlog.contextvars.unbind_contextvars(*keys)


class LogContext:
    """Bind fields for the duration of a block.

    Context variables are per asyncio task, so concurrent link fetches each
    keep their own url.

    Example:
        with LogContext(url=url):
            logger.info("Falling back to browser renderer", reason="forced")
    """

    def __init__(self, **kwargs: Any):
        self.context = kwargs

    def __enter__(self) -> "LogContext":
        bind_context(**self.context)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        unbind_context(*self.context.keys())
