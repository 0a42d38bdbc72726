"""Remote service clients used by the processors."""

from conveyor.plugins.clients.brightcove import BrightcoveClient

__all__ = ["BrightcoveClient"]
