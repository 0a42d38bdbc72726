"""RollingScheduler: bounded-concurrency executor for item pipelines.

Keeps exactly N item pipelines in flight. Each of N slot workers pulls the
next item from a shared cursor the moment its previous item finishes, so a
fast item is replaced immediately instead of waiting for a batch to drain.

Per item:
1. Take a credential snapshot (CredentialRetry)
2. Run the processor under the per-item deadline (DeadlineGuard)
3. On AUTH_EXPIRED, refresh once (single-flight) and retry once
4. Append a ledger row if the outcome is persist-worthy
5. Refill the slot

A single item's failure, timeout, or credential expiry never aborts the run.
run() raises only ConfigurationError.
"""

from __future__ import annotations

from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor
from threading import Lock
from typing import Any

import structlog
from pydantic import BaseModel, Field, ValidationError, field_validator

from conveyor.contracts import (
    ConfigurationError,
    CredentialRefreshFailed,
    ItemProcessor,
    LedgerWriteError,
    LedgerWriter,
    Outcome,
    OutcomeKind,
    WorkItem,
    build_ledger_record,
)
from conveyor.engine.clock import DEFAULT_CLOCK, Clock
from conveyor.engine.credentials import CredentialManager
from conveyor.engine.deadline import DeadlineGuard
from conveyor.engine.retry import CredentialRetry

logger = structlog.get_logger(__name__)


class SchedulerConfig(BaseModel):
    """Scheduler configuration.

    Attributes:
        concurrency: Number of item pipelines kept in flight (must be >= 1)
        deadline_seconds: Per-item wall-clock deadline
        persist_outcomes: Outcome kinds that get a ledger row
    """

    model_config = {"extra": "forbid", "frozen": True}

    concurrency: int = Field(120, description="Item pipelines kept in flight")
    deadline_seconds: float = Field(600.0, description="Per-item deadline in seconds")
    persist_outcomes: frozenset[OutcomeKind] = Field(
        default=frozenset({OutcomeKind.SUCCESS}),
        description="Outcome kinds written to the ledger",
    )

    @field_validator("concurrency")
    @classmethod
    def _validate_concurrency(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"concurrency must be >= 1, got {v}")
        return v

    @field_validator("deadline_seconds")
    @classmethod
    def _validate_deadline(cls, v: float) -> float:
        if v <= 0:
            raise ValueError(f"deadline_seconds must be positive, got {v}")
        return v

    @field_validator("persist_outcomes")
    @classmethod
    def _validate_persist_outcomes(cls, v: frozenset[OutcomeKind]) -> frozenset[OutcomeKind]:
        if OutcomeKind.AUTH_EXPIRED in v:
            raise ValueError("auth_expired is not a terminal outcome and cannot be persisted")
        return v

    @classmethod
    def build(cls, **values: Any) -> SchedulerConfig:
        """Construct a config, reporting invalid values as ConfigurationError."""
        try:
            return cls(**values)
        except ValidationError as exc:
            raise ConfigurationError(f"Invalid scheduler configuration: {exc}") from exc


class SchedulerState:
    """Thread-safe run counters.

    Invariant: dispatched - completed == in_flight.
    """

    def __init__(self, total: int) -> None:
        self._lock = Lock()
        self.total = total
        self._cursor = 0
        self._dispatched = 0
        self._in_flight = 0
        self._completed = 0
        self._max_in_flight = 0

    def take_next(self, items: Sequence[WorkItem]) -> WorkItem | None:
        """Advance the cursor and mark the item in flight, or None when exhausted."""
        with self._lock:
            if self._cursor >= len(items):
                return None
            item = items[self._cursor]
            self._cursor += 1
            self._dispatched += 1
            self._in_flight += 1
            if self._in_flight > self._max_in_flight:
                self._max_in_flight = self._in_flight
            return item

    def mark_completed(self) -> tuple[int, int]:
        """Record one terminal outcome. Returns (completed, in_flight)."""
        with self._lock:
            self._in_flight -= 1
            self._completed += 1
            return self._completed, self._in_flight

    def snapshot(self) -> dict[str, int]:
        with self._lock:
            return {
                "total": self.total,
                "dispatched": self._dispatched,
                "in_flight": self._in_flight,
                "completed": self._completed,
                "max_in_flight": self._max_in_flight,
            }


class RollingScheduler:
    """Rolling executor over an ordered list of work items.

    Usage:
        credentials = CredentialManager(client.fetch_token)
        scheduler = RollingScheduler(
            processor=VideoProcessor(client, output),
            credentials=credentials,
            config=SchedulerConfig(concurrency=120, deadline_seconds=600),
            ledger=CSVLedgerWriter(Path("output.csv")),
            ledger_columns=["db_name", "video_id", "site_id", "webroot", "bc_id", "fileName"],
        )
        outcomes = scheduler.run(items)

    Outcomes are returned in completion order, one per input item. Ledger
    rows are appended as items complete, not at the end of the run.
    """

    def __init__(
        self,
        processor: ItemProcessor,
        credentials: CredentialManager,
        config: SchedulerConfig,
        *,
        ledger: LedgerWriter | None = None,
        ledger_columns: Sequence[str] | None = None,
        clock: Clock | None = None,
    ) -> None:
        if ledger is not None and not ledger_columns:
            raise ConfigurationError("ledger_columns are required when a ledger is configured")
        if config.concurrency < 1:
            raise ConfigurationError(f"concurrency must be >= 1, got {config.concurrency}")
        self._processor = processor
        self._credentials = credentials
        self._config = config
        self._ledger = ledger
        self._ledger_columns = tuple(ledger_columns or ())
        self._clock = clock or DEFAULT_CLOCK
        self._retry = CredentialRetry(credentials)
        self._guard = DeadlineGuard(config.deadline_seconds)
        self._state = SchedulerState(total=0)

    @property
    def config(self) -> SchedulerConfig:
        return self._config

    def get_stats(self) -> dict[str, Any]:
        """Counters from the most recent run, for the run summary."""
        return {
            **self._state.snapshot(),
            "concurrency": self._config.concurrency,
            "deadline_seconds": self._config.deadline_seconds,
            "abandoned": self._guard.abandoned_count,
            "credential_refreshes": self._credentials.refresh_count,
        }

    def run(self, items: Sequence[WorkItem]) -> list[Outcome]:
        """Process every item, keeping at most concurrency pipelines in flight.

        Returns:
            One Outcome per item, in completion order.

        Raises:
            ConfigurationError: If the initial credential cannot be obtained.
        """
        items = list(items)
        self._state = SchedulerState(total=len(items))
        if not items:
            logger.info("run_completed", total=0)
            return []

        try:
            self._credentials.current()
        except CredentialRefreshFailed as exc:
            raise ConfigurationError(f"Unable to obtain initial credential: {exc}") from exc

        slots = min(self._config.concurrency, len(items))
        logger.info(
            "run_started",
            processor=self._processor.name,
            total=len(items),
            concurrency=self._config.concurrency,
            deadline_seconds=self._config.deadline_seconds,
        )

        outcomes: list[Outcome] = []
        outcomes_lock = Lock()

        with ThreadPoolExecutor(max_workers=slots, thread_name_prefix="slot") as pool:
            futures = [pool.submit(self._drain, items, outcomes, outcomes_lock) for _ in range(slots)]
            for future in futures:
                # Surfaces bugs in scheduler bookkeeping; item errors are Outcomes
                future.result()

        if len(outcomes) != len(items):
            raise RuntimeError(f"Scheduler produced {len(outcomes)} outcomes for {len(items)} items")

        logger.info("run_completed", **self.get_stats())
        return outcomes

    def _drain(self, items: Sequence[WorkItem], outcomes: list[Outcome], outcomes_lock: Lock) -> None:
        """Slot worker: process items from the shared cursor until it is exhausted."""
        while (item := self._state.take_next(items)) is not None:
            outcome = self._process_item(item)
            with outcomes_lock:
                outcomes.append(outcome)
            completed, in_flight = self._state.mark_completed()
            log = logger.info if outcome.kind in (OutcomeKind.SUCCESS, OutcomeKind.SKIPPED) else logger.warning
            log(
                "item_completed",
                external_id=item.external_id,
                outcome=outcome.kind.value,
                error=outcome.error,
                completed=completed,
                total=self._state.total,
                in_flight=in_flight,
            )

    def _process_item(self, item: WorkItem) -> Outcome:
        started = self._clock.monotonic()
        logger.debug("item_started", external_id=item.external_id, index=item.index, total=self._state.total)

        outcome = self._guard.run(item, lambda: self._attempt(item))
        if outcome.kind is OutcomeKind.AUTH_EXPIRED:
            outcome = Outcome.failed(item, "credential rejected after refresh").with_attempts(outcome.attempts)

        if self._ledger is not None and outcome.kind in self._config.persist_outcomes:
            outcome = self._persist(outcome)

        return outcome.with_elapsed(self._clock.monotonic() - started)

    def _attempt(self, item: WorkItem) -> Outcome:
        # Runs on the guard's own thread, which starts with an empty context
        with structlog.contextvars.bound_contextvars(external_id=item.external_id, target_key=item.target_key):
            return self._retry.run(item, lambda cred: self._processor.process(item, cred))

    def _persist(self, outcome: Outcome) -> Outcome:
        assert self._ledger is not None
        record = build_ledger_record(self._ledger_columns, outcome)
        try:
            self._ledger.append(record)
        except LedgerWriteError as exc:
            logger.error("ledger_append_failed", external_id=outcome.item.external_id, error=str(exc))
            return Outcome.failed(outcome.item, exc).with_attempts(outcome.attempts)
        return outcome


def run_pipeline(
    items: Sequence[WorkItem],
    processor: ItemProcessor,
    credentials: CredentialManager,
    *,
    concurrency: int,
    deadline_seconds: float,
    ledger: LedgerWriter | None = None,
    ledger_columns: Sequence[str] | None = None,
) -> list[Outcome]:
    """Validate the limits and run items through a fresh RollingScheduler.

    Raises:
        ConfigurationError: For a non-positive concurrency or deadline, before
            any item is dispatched.
    """
    config = SchedulerConfig.build(concurrency=concurrency, deadline_seconds=deadline_seconds)
    scheduler = RollingScheduler(processor, credentials, config, ledger=ledger, ledger_columns=ledger_columns)
    return scheduler.run(items)
