"""Built-in record sources."""

from conveyor.plugins.sources.csv_source import CSVRecordSource

__all__ = ["CSVRecordSource"]
