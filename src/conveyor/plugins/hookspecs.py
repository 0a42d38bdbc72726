"""pluggy hook specifications for conveyor plugins.

Processors register themselves by implementing the hook below. The plugin
manager collects the classes and looks them up by pipeline step name.

Usage (implementing a plugin):
    from conveyor.plugins.hookspecs import hookimpl

    class MyPlugin:
        @hookimpl
        def conveyor_get_processors(self):
            return [MyProcessor]
"""

from typing import TYPE_CHECKING

import pluggy

if TYPE_CHECKING:
    from conveyor.plugins.processors.base import BaseProcessor

PROJECT_NAME = "conveyor"

hookspec = pluggy.HookspecMarker(PROJECT_NAME)
hookimpl = pluggy.HookimplMarker(PROJECT_NAME)


class ConveyorProcessorSpec:
    """Hook specifications for item processor plugins."""

    @hookspec
    def conveyor_get_processors(self) -> list[type["BaseProcessor"]]:  # type: ignore[empty-body]
        """Return processor plugin classes.

        Returns:
            List of processor classes (not instances)
        """
