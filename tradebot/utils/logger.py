"""
Structured logging for the strategy engine.
Built on structlog; strategies bind their name and symbol, and a running
bot binds its id, so every decision in the log traces back to one instance.
"""

import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Any

import structlog
from structlog.types import Processor

LOG_FILE = "bot.log"
ERROR_LOG_FILE = "error.log"
LOG_FILE_MAX_BYTES = 10 * 1024 * 1024
LOG_FILE_BACKUPS = 5

# Libraries whose INFO chatter drowns out strategy events
NOISY_LOGGERS = ("asyncio", "watchdog")


def _rotating_handler(path: Path, level: int) -> logging.Handler:
    handler = logging.handlers.RotatingFileHandler(
        path,
        maxBytes=LOG_FILE_MAX_BYTES,
        backupCount=LOG_FILE_BACKUPS,
        encoding="utf-8",
    )
    handler.setLevel(level)
    return handler


def _build_handlers(
    level: int, log_dir: Path | None, log_to_console: bool, log_to_file: bool
) -> list[logging.Handler]:
    handlers: list[logging.Handler] = []
    if log_to_console:
        console = logging.StreamHandler(sys.stdout)
        console.setLevel(level)
        handlers.append(console)
    if log_to_file:
        log_dir = log_dir or Path("logs")
        log_dir.mkdir(parents=True, exist_ok=True)
        handlers.append(_rotating_handler(log_dir / LOG_FILE, level))
        handlers.append(_rotating_handler(log_dir / ERROR_LOG_FILE, logging.ERROR))
    return handlers


def _processors(json_logs: bool, colors: bool) -> list[Processor]:
    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]
    if json_logs:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(
            structlog.dev.ConsoleRenderer(
                colors=colors,
                exception_formatter=structlog.dev.plain_traceback,
            )
        )
    return processors


def setup_logging(
    log_level: str = "INFO",
    log_dir: Path | None = None,
    log_to_console: bool = True,
    log_to_file: bool = True,
    json_logs: bool = False,
) -> None:
    """
    Configure structlog and the standard logging handlers.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_dir: Directory for bot.log / error.log (default: ./logs)
        log_to_console: Whether to log to stdout
        log_to_file: Whether to write the rotating log files
        json_logs: Render events as JSON instead of the console format
    """
    level = getattr(logging, log_level.upper(), logging.INFO)

    structlog.configure(
        processors=_processors(json_logs, colors=log_to_console),
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
    logging.basicConfig(
        format="%(message)s",
        level=level,
        handlers=_build_handlers(level, log_dir, log_to_console, log_to_file),
        force=True,
    )
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str, **context: Any) -> structlog.BoundLogger:
    """
    Get a logger for a module, optionally pre-bound with context.

    Args:
        name: Logger name (typically __name__)
        **context: Key/value pairs bound to every event of this logger

    Returns:
        Configured structlog logger
    """
    logger = structlog.get_logger(name)
    if context:
        logger = logger.bind(**context)
    return logger


class LoggerMixin:
    """
    Mixin giving a class a logger named after it.

    Subclasses override ``_log_context`` to bind identifying fields
    (bot id, symbol, ...) to every event they log.
    """

    def _log_context(self) -> dict[str, Any]:
        return {}

    @property
    def logger(self) -> structlog.BoundLogger:
        return get_logger(self.__class__.__name__, **self._log_context())


class log_context:
    """
    Bind context variables for every log event inside the block.

    Tasks created inside the block inherit the bindings, so strategy
    timers started under a bot's context keep logging its id.

    Usage:
        with log_context(bot_id="bot-1", bot_type="grid"):
            await strategy.start()
    """

    def __init__(self, **kwargs: Any) -> None:
        self.context = {k: v for k, v in kwargs.items() if v is not None}

    def __enter__(self) -> None:
        structlog.contextvars.bind_contextvars(**self.context)

    def __exit__(self, *args: Any) -> None:
        structlog.contextvars.unbind_contextvars(*self.context.keys())
