"""Logging configuration for the Vault sidecar.

Provides structured logging with JSON formatting in production and Rich
console output during development.
"""

import logging
import sys
from collections.abc import Generator
from contextlib import contextmanager
from typing import Any

import structlog
from rich.console import Console
from rich.logging import RichHandler

from .config import Settings


def setup_logging(
    settings: Settings,
    enable_json: bool | None = None,
    enable_rich: bool | None = None,
) -> None:
    """Configure application logging.

    Args:
        settings: Application settings
        enable_json: Force JSON formatting (None = auto-detect from env)
        enable_rich: Force Rich formatting (None = auto-detect from env)
    """
    if enable_json is None:
        enable_json = settings.is_production()
    if enable_rich is None:
        enable_rich = settings.is_development() and not enable_json

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if enable_json:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=enable_rich))

    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    if enable_rich and not enable_json:
        console = Console(stderr=True)
        handler: logging.Handler = RichHandler(
            console=console,
            show_time=False,
            show_level=False,
            show_path=False,
            markup=False,
            rich_tracebacks=True,
        )
    else:
        # Sidecar output goes to stderr so stdout stays free for the workload
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(fmt="%(message)s"))
    handler.setLevel(settings.log_level)

    root_logger = logging.getLogger()
    root_logger.setLevel(settings.log_level)
    root_logger.handlers.clear()
    root_logger.addHandler(handler)

    _configure_third_party_loggers(settings.log_level)

    structlog.get_logger(__name__).debug(
        "Logging configured",
        log_level=settings.log_level,
        json_logging=enable_json,
        rich_logging=enable_rich,
    )


def _configure_third_party_loggers(log_level: str) -> None:
    """Configure third-party library loggers."""
    noisy_loggers = [
        "urllib3.connectionpool",
        "asyncio",
        "aiohttp.access",
        "kubernetes.client.rest",
    ]

    for logger_name in noisy_loggers:
        logging.getLogger(logger_name).setLevel(
            max(logging.WARNING, getattr(logging, log_level))
        )


class ContextualLogger:
    """Logger with automatic context management."""

    def __init__(self, name: str, **context: Any) -> None:
        self._name = name
        self._logger = structlog.get_logger(name)
        self._context = context

    @property
    def name(self) -> str:
        return self._name

    def bind(self, **new_context: Any) -> "ContextualLogger":
        """Create a new logger with additional context."""
        combined_context = {**self._context, **new_context}
        return ContextualLogger(self._name, **combined_context)

    def _log(self, level: str, message: str, **kwargs: Any) -> None:
        combined_kwargs = {**self._context, **kwargs}
        getattr(self._logger, level)(message, **combined_kwargs)

    def debug(self, message: str, **kwargs: Any) -> None:
        self._log("debug", message, **kwargs)

    def info(self, message: str, **kwargs: Any) -> None:
        self._log("info", message, **kwargs)

    def warning(self, message: str, **kwargs: Any) -> None:
        self._log("warning", message, **kwargs)

    def error(self, message: str, **kwargs: Any) -> None:
        self._log("error", message, **kwargs)

    def critical(self, message: str, **kwargs: Any) -> None:
        self._log("critical", message, **kwargs)

    def exception(self, message: str, **kwargs: Any) -> None:
        """Log exception with traceback."""
        self._log("exception", message, **kwargs)


def get_logger(name: str, **context: Any) -> ContextualLogger:
    """Get a contextual logger instance.

    Args:
        name: Logger name
        **context: Additional context to include in all log messages

    Returns:
        ContextualLogger: Configured logger instance
    """
    return ContextualLogger(name, **context)


@contextmanager
def log_context(**context: Any) -> Generator[None, None, None]:
    """Context manager for temporary logging context.

    Args:
        **context: Context to add to all log messages within this block
    """
    tokens = structlog.contextvars.bind_contextvars(**context)
    try:
        yield
    finally:
        structlog.contextvars.reset_contextvars(**tokens)
