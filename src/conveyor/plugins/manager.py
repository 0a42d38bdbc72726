"""Plugin manager for processor registration and lookup.

Uses pluggy for hook-based plugin registration.
"""

from typing import Any

import pluggy

from conveyor.plugins.hookspecs import PROJECT_NAME, ConveyorProcessorSpec, hookimpl
from conveyor.plugins.processors.base import BaseProcessor


class _BuiltinProcessors:
    """hookimpl carrier for the processors shipped with conveyor."""

    @hookimpl
    def conveyor_get_processors(self) -> list[type[BaseProcessor]]:
        from conveyor.plugins.processors.images import PosterProcessor, ThumbnailProcessor
        from conveyor.plugins.processors.video import VideoProcessor

        return [VideoProcessor, PosterProcessor, ThumbnailProcessor]


class PluginManager:
    """Manages processor registration and lookup.

    Usage:
        manager = PluginManager()
        manager.register_builtin_plugins()

        processor_cls = manager.get_processor_by_name("video")
    """

    def __init__(self) -> None:
        self._pm = pluggy.PluginManager(PROJECT_NAME)
        self._pm.add_hookspecs(ConveyorProcessorSpec)

        # Name -> class, rebuilt on every registration for duplicate detection
        self._processors: dict[str, type[BaseProcessor]] = {}

    def register_builtin_plugins(self) -> None:
        """Register the built-in video, poster and thumbnail processors."""
        self.register(_BuiltinProcessors())

    def register(self, plugin: Any) -> None:
        """Register a plugin.

        Args:
            plugin: Plugin instance implementing hook methods

        Raises:
            ValueError: If a processor name is already registered
        """
        self._pm.register(plugin)
        try:
            self._refresh_caches()
        except ValueError:
            self._pm.unregister(plugin)
            raise

    def _refresh_caches(self) -> None:
        new_processors: dict[str, type[BaseProcessor]] = {}
        for processors in self._pm.hook.conveyor_get_processors():
            for cls in processors:
                name = cls.name
                if name in new_processors:
                    raise ValueError(f"Duplicate processor plugin name: '{name}'. Already registered by {new_processors[name].__name__}")
                new_processors[name] = cls
        self._processors = new_processors

    def get_processors(self) -> list[type[BaseProcessor]]:
        """Get all registered processor plugins."""
        return list(self._processors.values())

    def get_processor_by_name(self, name: str) -> type[BaseProcessor]:
        """Get processor plugin by name.

        Raises:
            ValueError: If no processor is registered under that name
        """
        if name not in self._processors:
            available = sorted(self._processors)
            raise ValueError(f"Unknown processor plugin: '{name}'. Available: {available}")
        return self._processors[name]
