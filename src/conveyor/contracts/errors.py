"""Exception taxonomy for pipeline runs.

Only configuration-class errors escape RollingScheduler.run(). Every other
error raised while processing an item is captured into that item's Outcome.
"""

from __future__ import annotations


class ConveyorError(Exception):
    """Base class for all errors raised by conveyor."""


class ConfigurationError(ConveyorError):
    """Fatal misconfiguration detected before any item is dispatched.

    Examples: non-positive concurrency limit, missing input file, ledger
    header that does not match the existing sink, or an initial credential
    that cannot be obtained at all.
    """


class CredentialRefreshFailed(ConveyorError):
    """The underlying credential refresh operation failed.

    Delivered to every caller waiting on the same in-flight refresh. The
    manager keeps its previous credential.
    """


class AuthExpiredError(ConveyorError):
    """Raised by an item processor when the remote rejects the credential.

    Attributes:
        status_code: HTTP status code that signalled the expiry, if any
    """

    def __init__(self, message: str = "credential rejected", status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class RemoteError(ConveyorError):
    """Error returned by a remote service during an item pipeline.

    Attributes:
        status_code: HTTP status code, or None for transport failures
        url: Request URL that failed
        retryable: Whether the client may retry the request
    """

    retryable: bool = False

    def __init__(self, message: str, *, status_code: int | None = None, url: str | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.url = url


class RemoteNotFoundError(RemoteError):
    """The remote resource does not exist (HTTP 404) or has no usable source."""


class RemoteTransientError(RemoteError):
    """Rate limiting, server errors, or transport failures."""

    retryable = True


class LedgerWriteError(ConveyorError):
    """A ledger row could not be durably written."""
