"""Tests for RetryManager backoff and CredentialRetry."""

import pytest

from conveyor.contracts import (
    AuthExpiredError,
    Credential,
    Outcome,
    OutcomeKind,
    RemoteNotFoundError,
    RemoteTransientError,
    WorkItem,
)
from conveyor.core.config import RetrySettings
from conveyor.engine import CredentialManager, CredentialRetry, MaxRetriesExceeded, RetryConfig, RetryManager
from tests.conftest import CountingProvider

ITEM = WorkItem(external_id="v1", target_key="webroot_a")


def _fast(max_attempts: int = 3) -> RetryManager:
    return RetryManager(RetryConfig(max_attempts=max_attempts, base_delay=0.001, max_delay=0.001, jitter=0))


def _is_transient(error: BaseException) -> bool:
    return isinstance(error, RemoteTransientError)


class TestRetryConfig:
    """Test RetryConfig construction."""

    def test_rejects_zero_attempts(self) -> None:
        with pytest.raises(ValueError, match="max_attempts"):
            RetryConfig(max_attempts=0)

    def test_no_retry(self) -> None:
        assert RetryConfig.no_retry().max_attempts == 1

    def test_from_settings(self) -> None:
        config = RetryConfig.from_settings(RetrySettings(max_attempts=5, initial_delay_seconds=0.5, jitter_seconds=0.0))

        assert config.max_attempts == 5
        assert config.base_delay == 0.5
        assert config.jitter == 0.0


class TestRetryManager:
    """Test backoff retries for transient errors."""

    def test_succeeds_after_transient_errors(self) -> None:
        attempts = 0

        def flaky() -> str:
            nonlocal attempts
            attempts += 1
            if attempts < 3:
                raise RemoteTransientError("HTTP 503", status_code=503)
            return "ok"

        assert _fast().execute_with_retry(flaky, is_retryable=_is_transient) == "ok"
        assert attempts == 3

    def test_non_retryable_error_raised_immediately(self) -> None:
        attempts = 0

        def missing() -> str:
            nonlocal attempts
            attempts += 1
            raise RemoteNotFoundError("Not found", status_code=404)

        with pytest.raises(RemoteNotFoundError):
            _fast().execute_with_retry(missing, is_retryable=_is_transient)
        assert attempts == 1

    def test_exhaustion_raises_max_retries_exceeded(self) -> None:
        retries: list[int] = []

        def down() -> str:
            raise RemoteTransientError("HTTP 502", status_code=502)

        with pytest.raises(MaxRetriesExceeded) as exc_info:
            _fast(max_attempts=3).execute_with_retry(down, is_retryable=_is_transient, on_retry=lambda n, e: retries.append(n))

        assert exc_info.value.attempts == 3
        assert isinstance(exc_info.value.last_error, RemoteTransientError)
        assert retries == [1, 2]


class TestCredentialRetry:
    """Test the single coordinated retry after credential expiry."""

    def test_success_uses_one_attempt(self, provider: CountingProvider) -> None:
        manager = CredentialManager(provider)

        outcome = CredentialRetry(manager).run(ITEM, lambda cred: Outcome.success(ITEM))

        assert outcome.kind is OutcomeKind.SUCCESS
        assert outcome.attempts == 1
        assert provider.calls == 1

    @pytest.mark.parametrize("signal", ["raise", "return"])
    def test_expiry_refreshes_and_retries_once(self, provider: CountingProvider, signal: str) -> None:
        manager = CredentialManager(provider)
        seen: list[str] = []

        def attempt(cred: Credential) -> Outcome:
            seen.append(cred.token)
            if cred.token == "token-1":
                if signal == "raise":
                    raise AuthExpiredError(status_code=401)
                return Outcome.auth_expired(ITEM)
            return Outcome.success(ITEM)

        outcome = CredentialRetry(manager).run(ITEM, attempt)

        assert outcome.kind is OutcomeKind.SUCCESS
        assert outcome.attempts == 2
        assert seen == ["token-1", "token-2"]

    def test_second_expiry_becomes_failed(self, provider: CountingProvider) -> None:
        manager = CredentialManager(provider)
        calls = 0

        def reject(cred: Credential) -> Outcome:
            nonlocal calls
            calls += 1
            return Outcome.auth_expired(ITEM)

        outcome = CredentialRetry(manager).run(ITEM, reject)

        assert outcome.kind is OutcomeKind.FAILED
        assert outcome.error_type == "AuthExpiredError"
        assert calls == 2
        assert provider.calls == 2

    def test_refresh_failure_becomes_failed(self) -> None:
        tokens = iter(["token-1"])

        def provider() -> str:
            try:
                return next(tokens)
            except StopIteration:
                raise RuntimeError("oauth down") from None

        outcome = CredentialRetry(CredentialManager(provider)).run(ITEM, lambda cred: Outcome.auth_expired(ITEM))

        assert outcome.kind is OutcomeKind.FAILED
        assert outcome.error_type == "CredentialRefreshFailed"
        assert outcome.attempts == 1

    def test_other_exceptions_propagate(self, provider: CountingProvider) -> None:
        def explode(cred: Credential) -> Outcome:
            raise KeyError("src")

        with pytest.raises(KeyError):
            CredentialRetry(CredentialManager(provider)).run(ITEM, explode)
