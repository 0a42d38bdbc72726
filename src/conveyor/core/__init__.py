"""Core infrastructure: configuration and logging."""

from conveyor.core.config import ConveyorSettings, load_settings, resolve_config
from conveyor.core.logging import configure_logging, get_logger

__all__ = [
    "ConveyorSettings",
    "configure_logging",
    "get_logger",
    "load_settings",
    "resolve_config",
]
