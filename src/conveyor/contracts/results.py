"""Work item, credential, and outcome contracts.

These are the values that cross the boundary between the scheduler and the
plugins it drives. All of them are frozen: the scheduler never mutates an
item, and workers only ever see a snapshot of the credential.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field, replace
from datetime import datetime
from types import MappingProxyType
from typing import Any

from conveyor.contracts.enums import OutcomeKind


@dataclass(frozen=True)
class WorkItem:
    """One unit of input work.

    Attributes:
        external_id: Identifier of the item at the remote service
        target_key: Routing key selecting where outputs are persisted
        fields: Pass-through fields from the source record, echoed to the ledger
        index: Position of the record in source order (0-indexed)
    """

    external_id: str
    target_key: str
    fields: Mapping[str, str] = field(default_factory=dict)
    index: int = 0

    def __post_init__(self) -> None:
        # Freeze the pass-through mapping so processors cannot alter the record
        object.__setattr__(self, "fields", MappingProxyType(dict(self.fields)))

    def get(self, name: str) -> str | None:
        """Look up a column by name, including the identifier pseudo-columns."""
        if name == "external_id":
            return self.external_id
        if name == "target_key":
            return self.target_key
        return self.fields.get(name)


@dataclass(frozen=True)
class Credential:
    """Snapshot of the shared access token.

    Attributes:
        token: Opaque bearer token value
        issued_at: When the token was obtained (UTC)
        generation: Monotonic refresh counter assigned by CredentialManager
    """

    token: str
    issued_at: datetime
    generation: int = 0

    def __repr__(self) -> str:
        # Never render the token into logs or tracebacks
        return f"Credential(generation={self.generation}, issued_at={self.issued_at.isoformat()})"


@dataclass(frozen=True)
class Outcome:
    """Tagged result of processing one WorkItem.

    Use the factory classmethods rather than the constructor so each kind
    carries the fields it is expected to carry.

    Attributes:
        kind: Which outcome this is
        item: The work item this outcome belongs to
        details: Outcome-specific fields (success details or skip reason)
        error: Error message for FAILED and TIMED_OUT
        error_type: Exception class name for FAILED
        attempts: Number of processor invocations made for the item
        elapsed_seconds: Wall-clock time from dispatch to outcome
    """

    kind: OutcomeKind
    item: WorkItem
    details: Mapping[str, Any] = field(default_factory=dict)
    error: str | None = None
    error_type: str | None = None
    attempts: int = 1
    elapsed_seconds: float = 0.0

    @classmethod
    def success(cls, item: WorkItem, details: Mapping[str, Any] | None = None) -> Outcome:
        return cls(kind=OutcomeKind.SUCCESS, item=item, details=dict(details or {}))

    @classmethod
    def skipped(cls, item: WorkItem, reason: str, details: Mapping[str, Any] | None = None) -> Outcome:
        """Idempotent no-op, e.g. the target already exists."""
        return cls(kind=OutcomeKind.SKIPPED, item=item, details={**(details or {}), "reason": reason})

    @classmethod
    def auth_expired(cls, item: WorkItem) -> Outcome:
        return cls(kind=OutcomeKind.AUTH_EXPIRED, item=item, error="credential expired")

    @classmethod
    def failed(cls, item: WorkItem, error: BaseException | str) -> Outcome:
        if isinstance(error, BaseException):
            return cls(kind=OutcomeKind.FAILED, item=item, error=str(error), error_type=type(error).__name__)
        return cls(kind=OutcomeKind.FAILED, item=item, error=error)

    @classmethod
    def timed_out(cls, item: WorkItem, deadline_seconds: float) -> Outcome:
        return cls(
            kind=OutcomeKind.TIMED_OUT,
            item=item,
            error=f"Timeout: item {item.external_id} exceeded {deadline_seconds:g}s",
        )

    @property
    def reason(self) -> str | None:
        """Skip reason, if this is a SKIPPED outcome."""
        reason = self.details.get("reason")
        return str(reason) if reason is not None else None

    def with_attempts(self, attempts: int) -> Outcome:
        return replace(self, attempts=attempts)

    def with_elapsed(self, elapsed_seconds: float) -> Outcome:
        return replace(self, elapsed_seconds=elapsed_seconds)


LedgerRecord = tuple[str, ...]


def build_ledger_record(columns: Sequence[str], outcome: Outcome) -> LedgerRecord:
    """Flatten an outcome into an ordered ledger row.

    Each column is resolved from the outcome details first, then from the
    work item's fields. Missing values become empty strings.
    """
    values: list[str] = []
    for column in columns:
        if column in outcome.details:
            value = outcome.details[column]
        else:
            value = outcome.item.get(column)
        values.append("" if value is None else str(value))
    return tuple(values)


@dataclass(frozen=True)
class RunSummary:
    """Aggregate counts computed from a list of outcomes."""

    total: int
    succeeded: int
    skipped: int
    failed: int
    timed_out: int

    @classmethod
    def from_outcomes(cls, outcomes: Sequence[Outcome]) -> RunSummary:
        counts = dict.fromkeys(OutcomeKind, 0)
        for outcome in outcomes:
            counts[outcome.kind] += 1
        return cls(
            total=len(outcomes),
            succeeded=counts[OutcomeKind.SUCCESS],
            skipped=counts[OutcomeKind.SKIPPED],
            failed=counts[OutcomeKind.FAILED] + counts[OutcomeKind.AUTH_EXPIRED],
            timed_out=counts[OutcomeKind.TIMED_OUT],
        )
