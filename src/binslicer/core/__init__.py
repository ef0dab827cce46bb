"""Core module exports."""

from binslicer.core.errors import (
    BinSlicerError,
    ConfigError,
    ErrorCode,
    InternalError,
)
from binslicer.core.logging import configure_logging, get_logger
from binslicer.core.progress import status

__all__ = [
    # Errors
    "BinSlicerError",
    "ConfigError",
    "ErrorCode",
    "InternalError",
    # Logging
    "configure_logging",
    "get_logger",
    # Progress
    "status",
]
