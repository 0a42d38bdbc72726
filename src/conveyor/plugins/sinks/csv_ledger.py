"""CSV ledger writer.

Append-only record of migrated items. Every row is written with a single
write() call on an unbuffered handle and fsynced before append() returns.
A failed append truncates the file back to its previous length, so the
ledger never holds a row for an item that was not acknowledged.
"""

from __future__ import annotations

import csv
import io
import os
from collections.abc import Sequence
from pathlib import Path
from threading import Lock

import structlog

from conveyor.contracts import ConfigurationError, LedgerRecord, LedgerWriteError

logger = structlog.get_logger(__name__)


class CSVLedgerWriter:
    """Thread-safe append-only CSV ledger.

    Lifecycle:
        ledger = CSVLedgerWriter(Path("output-bc-migration.csv"))
        ledger.initialize(["db_name", "video_id", "site_id", "webroot", "bc_id", "fileName"])
        ledger.append(("db1", "42", "7", "webroot_a", "6301234567001", "6301234567001.mp4"))
        ledger.close()

    initialize() is idempotent: an existing file with the same header is
    appended to, which is what lets an interrupted run be resumed.
    """

    def __init__(self, path: Path, *, encoding: str = "utf-8", delimiter: str = ",") -> None:
        self._path = Path(path)
        self._encoding = encoding
        self._delimiter = delimiter
        self._lock = Lock()
        self._file: io.FileIO | None = None
        self._header: tuple[str, ...] | None = None
        self._rows_written = 0

    @property
    def path(self) -> Path:
        return self._path

    @property
    def rows_written(self) -> int:
        """Rows appended by this writer instance."""
        with self._lock:
            return self._rows_written

    def initialize(self, header: Sequence[str]) -> None:
        """Create the ledger with a header row, or reopen an existing one.

        Raises:
            ConfigurationError: If an existing ledger has a different header.
        """
        header = tuple(header)
        with self._lock:
            if self._file is not None:
                if header != self._header:
                    raise ConfigurationError(f"Ledger {self._path} already initialized with header {list(self._header or ())}")
                return

            existing = self._read_header()
            if existing is not None and existing != header:
                raise ConfigurationError(
                    f"Ledger header mismatch in {self._path}: file has {list(existing)}, configured {list(header)}"
                )

            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._file = open(  # noqa: SIM115 - handle kept open for appends, closed in close()
                self._path, "ab", buffering=0
            )
            self._header = header
            if existing is None:
                self._write_durably(self._render(header).encode(self._encoding))
                logger.info("ledger_created", path=str(self._path), columns=list(header))
            else:
                logger.info("ledger_reopened", path=str(self._path))

    def append(self, record: LedgerRecord) -> None:
        """Durably append one row.

        Raises:
            LedgerWriteError: If the ledger is not initialized, the record does
                not match the header width, or the write fails.
        """
        try:
            data = self._render(record).encode(self._encoding)
        except UnicodeEncodeError as exc:
            raise LedgerWriteError(f"Ledger record cannot be encoded as {self._encoding}: {exc}") from exc
        with self._lock:
            if self._file is None or self._header is None:
                raise LedgerWriteError(f"Ledger {self._path} is not initialized")
            if len(record) != len(self._header):
                raise LedgerWriteError(f"Ledger record has {len(record)} fields, header has {len(self._header)}")
            try:
                self._write_durably(data)
            except OSError as exc:
                raise LedgerWriteError(f"Failed to append to ledger {self._path}: {exc}") from exc
            self._rows_written += 1

    def close(self) -> None:
        """Close the file handle."""
        with self._lock:
            if self._file is not None:
                self._file.close()
                self._file = None

    def _render(self, values: Sequence[str]) -> str:
        buffer = io.StringIO()
        csv.writer(buffer, delimiter=self._delimiter, lineterminator="\n").writerow(values)
        return buffer.getvalue()

    def _write_durably(self, data: bytes) -> None:
        # Caller holds the lock
        assert self._file is not None
        fd = self._file.fileno()
        start = os.fstat(fd).st_size
        pending = memoryview(data)
        try:
            while pending:
                pending = pending[self._file.write(pending) :]
            os.fsync(fd)
        except OSError:
            self._truncate(fd, start)
            raise

    def _truncate(self, fd: int, size: int) -> None:
        """Drop a partially written or unsynced row."""
        try:
            os.ftruncate(fd, size)
        except OSError as exc:
            logger.error("ledger_rollback_failed", path=str(self._path), size=size, error=str(exc))

    def _read_header(self) -> tuple[str, ...] | None:
        """Header of the existing ledger, or None if there is no usable file."""
        if not self._path.exists() or self._path.stat().st_size == 0:
            return None
        with open(self._path, encoding=self._encoding, newline="") as f:
            first = next(csv.reader(f, delimiter=self._delimiter), None)
        if not first:
            return None
        return tuple(value.strip() for value in first)
