"""Built-in item processors.

Processors are accessed via PluginManager, not direct imports:

    manager.get_processor_by_name("poster")
"""
