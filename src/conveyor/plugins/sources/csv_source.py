"""CSV record source.

Reads the migration input file: one header row, then one record per item.
Uses csv.reader directly on the file handle so quoted fields with embedded
commas or newlines are handled.

Records that cannot be turned into a WorkItem are skipped with a warning;
only a missing or structurally unusable file fails the run.
"""

import csv
from collections.abc import Iterator, Sequence
from pathlib import Path

import structlog

from conveyor.contracts import ConfigurationError, WorkItem
from conveyor.core.config import SourceSettings

logger = structlog.get_logger(__name__)


def _clean(value: str) -> str:
    # Exports produced on Windows leave stray carriage returns inside values
    return value.replace("\r", "").strip()


class CSVRecordSource:
    """Load work items from a CSV file with a header row.

    Config options:
        path: Path to the CSV file (required)
        id_field: Column holding the remote identifier (default: "bc_id")
        target_field: Column holding the routing key (default: "webroot")
        fields: Columns carried through to the ledger
        encoding: File encoding (default: "utf-8")
        delimiter: Field delimiter (default: ",")
    """

    name = "csv"

    def __init__(
        self,
        path: Path,
        *,
        id_field: str = "bc_id",
        target_field: str = "webroot",
        fields: Sequence[str] = (),
        encoding: str = "utf-8",
        delimiter: str = ",",
    ) -> None:
        self._path = Path(path)
        self._id_field = id_field
        self._target_field = target_field
        self._fields = tuple(fields)
        self._encoding = encoding
        self._delimiter = delimiter
        self.skipped_count = 0

    @classmethod
    def from_settings(cls, settings: SourceSettings) -> "CSVRecordSource":
        return cls(
            settings.path,
            id_field=settings.id_field,
            target_field=settings.target_field,
            fields=settings.fields,
            encoding=settings.encoding,
            delimiter=settings.delimiter,
        )

    def load(self) -> Iterator[WorkItem]:
        """Yield one WorkItem per usable record, in file order.

        Raises:
            ConfigurationError: If the file is missing, or its header lacks
                the identifier, routing, or pass-through columns.
        """
        if not self._path.exists():
            raise ConfigurationError(f"Input CSV not found: {self._path}")

        self.skipped_count = 0
        # newline='' is required for embedded newlines in quoted fields
        with open(self._path, encoding=self._encoding, newline="") as f:
            reader = csv.reader(f, delimiter=self._delimiter)
            try:
                raw_headers = next(reader)
            except StopIteration:
                logger.warning("csv_source_empty", path=str(self._path))
                return
            except csv.Error as e:
                raise ConfigurationError(f"Unparseable CSV header in {self._path}: {e}") from e

            headers = [_clean(h) for h in raw_headers]
            self._check_headers(headers)

            index = 0
            while True:
                try:
                    values = next(reader)
                except StopIteration:
                    break
                except csv.Error as e:
                    self._skip(reader.line_num, f"parse error: {e}")
                    continue

                if not values or all(not v.strip() for v in values):
                    continue
                if len(values) != len(headers):
                    self._skip(reader.line_num, f"expected {len(headers)} fields, got {len(values)}")
                    continue

                record = dict(zip(headers, (_clean(v) for v in values), strict=True))
                external_id = record[self._id_field]
                target_key = record[self._target_field]
                if not external_id or not target_key:
                    self._skip(reader.line_num, f"empty {self._id_field} or {self._target_field}")
                    continue

                yield WorkItem(
                    external_id=external_id,
                    target_key=target_key,
                    fields={name: record[name] for name in self._fields},
                    index=index,
                )
                index += 1

        logger.info("csv_source_loaded", path=str(self._path), items=index, skipped=self.skipped_count)

    def _check_headers(self, headers: list[str]) -> None:
        required = [self._id_field, self._target_field, *self._fields]
        missing = [name for name in dict.fromkeys(required) if name not in headers]
        if missing:
            raise ConfigurationError(f"Input CSV {self._path} is missing columns {missing}; header is {headers}")

    def _skip(self, line: int, reason: str) -> None:
        self.skipped_count += 1
        logger.warning("csv_record_skipped", path=str(self._path), line=line, reason=reason)
