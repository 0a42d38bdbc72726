"""Retry helpers built on tenacity.

Two policies live here:

- CredentialRetry: the scheduler's only retry. An item whose credential is
  rejected gets one coordinated refresh and exactly one more attempt.
- RetryManager: exponential backoff with jitter for transient remote
  errors. Used by the remote clients, never by the scheduler, so per-item
  retry policy stays a processor concern.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, TypeVar

import structlog
from tenacity import (
    RetryCallState,
    RetryError,
    Retrying,
    retry_if_exception,
    retry_if_result,
    stop_after_attempt,
    wait_exponential_jitter,
    wait_none,
)

from conveyor.contracts import (
    AuthExpiredError,
    Credential,
    CredentialRefreshFailed,
    Outcome,
    OutcomeKind,
    WorkItem,
)

if TYPE_CHECKING:
    from conveyor.core.config import RetrySettings
    from conveyor.engine.credentials import CredentialManager

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class MaxRetriesExceeded(Exception):
    """Raised when every attempt allowed by the policy has failed."""

    def __init__(self, attempts: int, last_error: BaseException) -> None:
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"Gave up after {attempts} attempts: {last_error}")


@dataclass(frozen=True)
class RetryConfig:
    """Backoff policy for transient remote errors.

    max_attempts counts every try, so max_attempts=3 is one call plus two retries.
    """

    max_attempts: int = 3
    base_delay: float = 1.0  # seconds
    max_delay: float = 30.0  # seconds
    jitter: float = 1.0  # seconds
    exponential_base: float = 2.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")

    @classmethod
    def no_retry(cls) -> RetryConfig:
        return cls(max_attempts=1)

    @classmethod
    def from_settings(cls, settings: RetrySettings) -> RetryConfig:
        return cls(
            max_attempts=settings.max_attempts,
            base_delay=settings.initial_delay_seconds,
            max_delay=settings.max_delay_seconds,
            jitter=settings.jitter_seconds,
            exponential_base=settings.exponential_base,
        )


class RetryManager:
    """Runs an operation with exponential backoff for retryable errors.

    Example:
        manager = RetryManager(RetryConfig(max_attempts=4))
        response = manager.execute_with_retry(
            lambda: client.get(url),
            is_retryable=lambda e: isinstance(e, RemoteTransientError),
        )
    """

    def __init__(self, config: RetryConfig) -> None:
        self._config = config

    @property
    def config(self) -> RetryConfig:
        return self._config

    def execute_with_retry(
        self,
        operation: Callable[[], T],
        *,
        is_retryable: Callable[[BaseException], bool],
        on_retry: Callable[[int, BaseException], None] | None = None,
    ) -> T:
        """Execute operation, retrying errors accepted by is_retryable.

        Raises:
            MaxRetriesExceeded: If every attempt failed with a retryable error.
            Exception: The original error, if it is not retryable.
        """
        attempt = 0
        last_error: BaseException | None = None

        try:
            for attempt_state in Retrying(
                stop=stop_after_attempt(self._config.max_attempts),
                wait=wait_exponential_jitter(
                    initial=self._config.base_delay,
                    max=self._config.max_delay,
                    exp_base=self._config.exponential_base,
                    jitter=self._config.jitter,
                ),
                retry=retry_if_exception(is_retryable),
                reraise=False,
            ):
                with attempt_state:
                    attempt = attempt_state.retry_state.attempt_number
                    try:
                        return operation()
                    except Exception as e:
                        last_error = e
                        if is_retryable(e) and on_retry is not None and attempt < self._config.max_attempts:
                            on_retry(attempt, e)
                        raise
        except RetryError as e:
            final_error = last_error or e.last_attempt.exception()
            assert final_error is not None, "RetryError without an exception"
            raise MaxRetriesExceeded(attempt, final_error) from e

        raise RuntimeError("Unexpected state in retry loop")  # pragma: no cover


def _is_auth_expired(outcome: Outcome) -> bool:
    return outcome.kind is OutcomeKind.AUTH_EXPIRED


class CredentialRetry:
    """Retry an item exactly once after a coordinated credential refresh.

    attempt_fn receives the credential to use and returns an Outcome. If
    the first attempt reports AUTH_EXPIRED, the shared manager is asked to
    refresh (joining any refresh already in flight) and the item runs once
    more with the new credential. A second expiry, or a failed refresh,
    makes the item FAILED. The bound keeps fundamentally invalid credentials
    from looping forever.
    """

    MAX_ATTEMPTS = 2

    def __init__(self, credentials: CredentialManager) -> None:
        self._credentials = credentials

    def run(self, item: WorkItem, attempt_fn: Callable[[Credential], Outcome]) -> Outcome:
        used: list[Credential] = []

        def _attempt() -> Outcome:
            if used:
                credential = self._credentials.refresh(stale=used[-1])
                logger.info("item_retry_with_refreshed_credential", external_id=item.external_id)
            else:
                credential = self._credentials.current()
            used.append(credential)
            try:
                return attempt_fn(credential)
            except AuthExpiredError:
                return Outcome.auth_expired(item)

        def _give_up(retry_state: RetryCallState) -> Outcome:
            logger.warning("item_credential_rejected_after_refresh", external_id=item.external_id)
            return Outcome.failed(item, AuthExpiredError("credential rejected after refresh"))

        retrying = Retrying(
            stop=stop_after_attempt(self.MAX_ATTEMPTS),
            wait=wait_none(),
            retry=retry_if_result(_is_auth_expired),
            retry_error_callback=_give_up,
            reraise=True,
        )
        try:
            outcome: Outcome = retrying(_attempt)
        except CredentialRefreshFailed as exc:
            return Outcome.failed(item, exc).with_attempts(len(used))
        return outcome.with_attempts(len(used))
