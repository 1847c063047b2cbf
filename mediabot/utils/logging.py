"""Structured logging setup for Mediabot."""

import logging
import logging.handlers
import sys
from pathlib import Path

import structlog
from structlog.types import Processor

from .config import LoggingConfig, get_settings

# Third-party loggers that are chatty at INFO
_QUIET_LOGGERS = ("httpx", "httpcore", "aiohttp.access")


def _renderer(format_type: str) -> list[Processor]:
    if format_type == "json":
        return [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    return [structlog.dev.ConsoleRenderer(colors=False)]


def setup_logging(
    level: str | None = None,
    format_type: str | None = None,
    config: LoggingConfig | None = None,
) -> None:
    """
    Set up structured logging for the application.

    structlog events and plain stdlib records (httpx, aiohttp) share one
    formatter and go to stdout and a size-rotated log file.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        format_type: Output format ('json' or 'text')
        config: Logging section; defaults to the loaded settings
    """
    config = config or get_settings().logging
    log_level = getattr(logging, (level or config.level).upper())
    log_format = format_type or config.format

    log_file = Path(config.file).expanduser()
    log_file.parent.mkdir(parents=True, exist_ok=True)

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            *_renderer(log_format),
        ],
    )

    stream_handler = logging.StreamHandler(sys.stdout)
    file_handler = logging.handlers.RotatingFileHandler(
        log_file,
        maxBytes=config.max_size_mb * 1024 * 1024,
        backupCount=config.backup_count,
        encoding="utf-8",
    )

    root = logging.getLogger()
    for handler in list(root.handlers):
        if (handler.get_name() or "").startswith("mediabot."):
            root.removeHandler(handler)
            handler.close()
    stream_handler.set_name("mediabot.stdout")
    file_handler.set_name("mediabot.file")
    for handler in (stream_handler, file_handler):
        handler.setFormatter(formatter)
        root.addHandler(handler)
    root.setLevel(log_level)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(log_level, logging.WARNING))

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """
    Get a logger instance.

    Args:
        name: Logger name (usually __name__ of the calling module)

    Returns:
        Configured structured logger
    """
    return structlog.get_logger(name)
