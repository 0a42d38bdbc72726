"""Protocols for the collaborators the scheduler drives.

These protocols define what the plugins must implement. They are used for
type checking; the scheduler does not enforce them at runtime.

Collaborators:
- RecordSource: produces the ordered work item list (one per run)
- ItemProcessor: runs the multi-step pipeline for one item
- LedgerWriter: durably records completed items
- CredentialProvider: performs the underlying token exchange
"""

from collections.abc import Iterator, Sequence
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from conveyor.contracts.results import Credential, LedgerRecord, Outcome, WorkItem


@runtime_checkable
class RecordSource(Protocol):
    """Produces an ordered, finite sequence of work items.

    Malformed or incomplete records are skipped with a warning rather than
    failing the run. Deduplication, if wanted, is the source's job.
    """

    name: str

    def load(self) -> Iterator["WorkItem"]:
        """Yield work items in source order."""
        ...


@runtime_checkable
class ItemProcessor(Protocol):
    """Runs the full pipeline for a single work item.

    Implementations must be idempotent: processing the same item twice must
    not duplicate externally visible effects. Check for existing outputs
    before mutating the target and report SKIPPED when nothing was left to do.

    Credential expiry is signalled either by returning Outcome.auth_expired()
    or by raising AuthExpiredError. Any other exception is recorded as a
    FAILED outcome for the item.
    """

    name: str

    def process(self, item: "WorkItem", credential: "Credential") -> "Outcome":
        """Process one item with the given credential snapshot."""
        ...


@runtime_checkable
class LedgerWriter(Protocol):
    """Append-only durable record of completed items.

    Lifecycle:
    1. initialize(header) - once at process start, idempotent
    2. append(record) - once per persisted item, safe from any thread
    3. close() - release resources
    """

    def initialize(self, header: Sequence[str]) -> None:
        """Create the sink with a header row if it does not already exist."""
        ...

    def append(self, record: "LedgerRecord") -> None:
        """Durably append exactly one row, or raise LedgerWriteError."""
        ...

    def close(self) -> None:
        """Release any held resources."""
        ...


class CredentialProvider(Protocol):
    """Performs one underlying credential exchange, returning the raw token."""

    def __call__(self) -> str: ...
