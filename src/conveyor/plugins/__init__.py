"""Plugin system: record sources, item processors, ledger sinks, remote clients.

Processors are registered through pluggy and looked up by step name:

    manager = PluginManager()
    manager.register_builtin_plugins()
    processor_cls = manager.get_processor_by_name("video")
"""

from conveyor.plugins.hookspecs import hookimpl, hookspec
from conveyor.plugins.manager import PluginManager

__all__ = ["PluginManager", "hookimpl", "hookspec"]
