"""CredentialManager: shared access token with single-flight refresh.

Workers read the current credential without blocking. When a worker's
credential is rejected it calls refresh(); concurrent refresh calls are
coalesced so that only one underlying token exchange runs at a time and
every caller receives its result.

Refresh failures never invalidate the previous credential. Workers that
have not yet hit an expiry keep using it until the next successful refresh.
"""

from __future__ import annotations

from concurrent.futures import Future
from threading import Lock

import structlog

from conveyor.contracts import Credential, CredentialProvider, CredentialRefreshFailed
from conveyor.engine.clock import DEFAULT_CLOCK, Clock

logger = structlog.get_logger(__name__)


class CredentialManager:
    """Thread-safe holder of the shared credential.

    Usage:
        manager = CredentialManager(oauth_client.fetch_token)

        credential = manager.current()        # first call obtains a token
        ...
        credential = manager.refresh(stale=credential)  # after a 401

    Each successful refresh bumps Credential.generation. Passing the rejected
    snapshot as ``stale`` lets a late caller pick up a refresh that already
    completed instead of starting another one.
    """

    def __init__(self, provider: CredentialProvider, *, clock: Clock | None = None) -> None:
        self._provider = provider
        self._clock = clock or DEFAULT_CLOCK

        # Guards _credential, _inflight and the counters. Never held while
        # the provider runs.
        self._lock = Lock()
        self._credential: Credential | None = None
        self._inflight: Future[Credential] | None = None
        self._generation = 0
        self._refresh_count = 0

    @property
    def refresh_count(self) -> int:
        """Number of underlying provider calls made so far."""
        with self._lock:
            return self._refresh_count

    def current(self) -> Credential:
        """Return the last known good credential.

        Obtains the first credential if none has been fetched yet.

        Raises:
            CredentialRefreshFailed: If the first credential cannot be obtained.
        """
        with self._lock:
            credential = self._credential
        if credential is not None:
            return credential
        return self.refresh()

    def refresh(self, stale: Credential | None = None) -> Credential:
        """Obtain a new credential, sharing any refresh already in flight.

        Args:
            stale: The credential the caller saw rejected. If the manager
                already holds a newer one, it is returned without a refresh.

        Returns:
            The refreshed credential.

        Raises:
            CredentialRefreshFailed: If the underlying refresh fails. Raised in
                every caller that was waiting on that refresh.
        """
        with self._lock:
            if stale is not None and self._credential is not None and self._credential.generation > stale.generation:
                return self._credential

            inflight = self._inflight
            is_leader = inflight is None
            if inflight is None:
                inflight = Future()
                self._inflight = inflight
                self._refresh_count += 1

        if not is_leader:
            try:
                return inflight.result()
            except CredentialRefreshFailed as exc:
                raise CredentialRefreshFailed(str(exc)) from exc

        return self._run_refresh(inflight)

    def _run_refresh(self, inflight: Future[Credential]) -> Credential:
        """Perform the underlying refresh as the single leader."""
        logger.info("credential_refresh_started")
        try:
            token = self._provider()
        except Exception as exc:
            error = CredentialRefreshFailed(f"Credential refresh failed: {exc}")
            error.__cause__ = exc
            with self._lock:
                self._inflight = None
            inflight.set_exception(error)
            logger.error("credential_refresh_failed", error=str(exc), error_type=type(exc).__name__)
            raise error from exc
        except BaseException as exc:
            # Waiters fail with a refresh error; the leader re-raises the interrupt
            with self._lock:
                self._inflight = None
            interrupted = CredentialRefreshFailed(f"Credential refresh interrupted: {type(exc).__name__}")
            interrupted.__cause__ = exc
            inflight.set_exception(interrupted)
            raise

        with self._lock:
            self._generation += 1
            credential = Credential(token=token, issued_at=self._clock.now(), generation=self._generation)
            self._credential = credential
            self._inflight = None
        inflight.set_result(credential)
        logger.info("credential_refreshed", generation=credential.generation)
        return credential


def anonymous_provider() -> str:
    """Provider for pipelines whose remote calls need no authentication."""
    return ""
