"""Core utilities for the governor."""

from governor.core.clock import Clock
from governor.core.config import Settings, settings
from governor.core.logging import get_logger, setup_logging

__all__ = [
    "Clock",
    "Settings",
    "settings",
    "get_logger",
    "setup_logging",
]
