"""Built-in ledger writers."""

from conveyor.plugins.sinks.csv_ledger import CSVLedgerWriter

__all__ = ["CSVLedgerWriter"]
