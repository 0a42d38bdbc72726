"""DeadlineGuard: race one item's processing against a wall-clock deadline.

The operation runs on a daemon thread and the guard waits on a result
queue with a timeout. When the deadline wins, the guard reports TIMED_OUT
and returns immediately. The operation is NOT interrupted: its thread keeps
running and may still write files or hold connections after the item has
been reported. Callers must read TIMED_OUT as "status unknown".

Abandoned threads are daemonic so they never block interpreter exit, and
each one exits on its own once the remote call it is stuck in returns.
"""

from __future__ import annotations

import queue
import threading
from collections.abc import Callable
from threading import Lock

import structlog

from conveyor.contracts import AuthExpiredError, ConfigurationError, Outcome, WorkItem

logger = structlog.get_logger(__name__)


class DeadlineGuard:
    """Per-item deadline enforcement without cancellation.

    Exceptions raised by the operation are converted to outcomes here, so
    the scheduler only ever sees Outcome values:
    - AuthExpiredError -> AUTH_EXPIRED
    - any other Exception -> FAILED
    """

    def __init__(self, deadline_seconds: float) -> None:
        if deadline_seconds <= 0:
            raise ConfigurationError(f"deadline_seconds must be positive, got {deadline_seconds}")
        self._deadline_seconds = deadline_seconds
        self._lock = Lock()
        self._abandoned = 0

    @property
    def deadline_seconds(self) -> float:
        return self._deadline_seconds

    @property
    def abandoned_count(self) -> int:
        """Operations left running past their deadline."""
        with self._lock:
            return self._abandoned

    def run(self, item: WorkItem, operation: Callable[[], Outcome]) -> Outcome:
        """Run operation for item, returning its outcome or TIMED_OUT."""
        result_queue: queue.Queue[Outcome] = queue.Queue(maxsize=1)

        def _worker() -> None:
            try:
                outcome = operation()
            except AuthExpiredError:
                outcome = Outcome.auth_expired(item)
            except Exception as exc:
                outcome = Outcome.failed(item, exc)
            result_queue.put(outcome)

        thread = threading.Thread(
            target=_worker,
            daemon=True,
            name=f"item-{item.index}-{item.external_id}",
        )
        thread.start()

        try:
            return result_queue.get(timeout=self._deadline_seconds)
        except queue.Empty:
            with self._lock:
                self._abandoned += 1
            logger.warning(
                "item_deadline_exceeded",
                external_id=item.external_id,
                deadline_seconds=self._deadline_seconds,
                thread=thread.name,
            )
            return Outcome.timed_out(item, self._deadline_seconds)
