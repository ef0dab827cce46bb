"""Config module exports."""

from binslicer.config.settings import (
    BackendSettings,
    BinSlicerSettings,
    LoggingSettings,
    load_settings,
)

__all__ = [
    "load_settings",
    "BinSlicerSettings",
    "BackendSettings",
    "LoggingSettings",
]
