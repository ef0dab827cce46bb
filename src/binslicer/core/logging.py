"""Structured logging for binary-slicer.

Supports:
- Console (human) or JSON rendering
- stderr, stdout or file destinations
- Console suppression while a rich status line is live
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from binslicer.config.settings import LoggingSettings

_LEVEL_MAP = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARN": logging.WARNING,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}


class ConsoleSuppressingFilter(logging.Filter):
    """Filter that blocks console output while a live display is active.

    File handlers keep receiving records.
    """

    def filter(self, record: logging.LogRecord) -> bool:  # noqa: ARG002
        # Import here to avoid circular dependency
        from binslicer.core.progress import is_console_suppressed

        return not is_console_suppressed()


def configure_logging(
    *,
    config: LoggingSettings | None = None,
    json_format: bool = False,
    level: str = "WARNING",
    destination: str = "stderr",
) -> None:
    """Configure structlog. Pass settings, or use the simple params.

    Args:
        config: Logging settings (level, format, destination)
        json_format: Use JSON format for simple setup
        level: Default log level
        destination: "stderr", "stdout", or an absolute file path
    """
    from binslicer.config.settings import LoggingSettings

    if config is None:
        config = LoggingSettings(
            level=level,
            format="json" if json_format else "console",
            destination=destination,
        )

    default_level = _LEVEL_MAP.get(config.level.upper(), logging.WARNING)

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="%Y-%m-%d %H:%M:%S", key="timestamp"),
    ]

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(default_level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        # Don't cache - allows reconfiguration and respects level changes
        cache_logger_on_first_use=False,
    )

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(default_level)

    # SQL echo is never useful on the console
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)

    is_console = config.destination in ("stderr", "stdout")
    if config.format == "json":
        formatter = structlog.stdlib.ProcessorFormatter(
            processor=structlog.processors.JSONRenderer(),
            foreign_pre_chain=shared_processors,
        )
    else:
        formatter = structlog.stdlib.ProcessorFormatter(
            processor=structlog.dev.ConsoleRenderer(
                colors=is_console and sys.stderr.isatty(),
                pad_event_to=0,
                pad_level=False,
            ),
            foreign_pre_chain=shared_processors,
        )

    handler = _create_handler(config.destination, is_console=is_console)
    handler.setLevel(default_level)
    handler.setFormatter(formatter)
    root_logger.addHandler(handler)


def _create_handler(destination: str, is_console: bool = False) -> logging.Handler:
    """Create handler for stderr, stdout, or file path."""
    handler: logging.Handler
    if destination == "stderr":
        handler = logging.StreamHandler(sys.stderr)
    elif destination == "stdout":
        handler = logging.StreamHandler(sys.stdout)
    else:
        path = Path(destination)
        path.parent.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(path, mode="a")

    if is_console:
        handler.addFilter(ConsoleSuppressingFilter())

    return handler


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    logger = structlog.get_logger()
    if name:
        logger = logger.bind(logger=name)
    return logger  # type: ignore[no-any-return]
