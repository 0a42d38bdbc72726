"""Shared contracts for cross-boundary data types.

This package is a LEAF MODULE with no outbound dependencies to core/engine.
Settings classes live in conveyor.core.config and are not re-exported here.

Import patterns:
    from conveyor.contracts import Outcome, OutcomeKind, WorkItem
    from conveyor.core.config import ConveyorSettings
"""

from conveyor.contracts.enums import OutcomeKind, PipelineStep
from conveyor.contracts.errors import (
    AuthExpiredError,
    ConfigurationError,
    ConveyorError,
    CredentialRefreshFailed,
    LedgerWriteError,
    RemoteError,
    RemoteNotFoundError,
    RemoteTransientError,
)
from conveyor.contracts.protocols import CredentialProvider, ItemProcessor, LedgerWriter, RecordSource
from conveyor.contracts.results import (
    Credential,
    LedgerRecord,
    Outcome,
    RunSummary,
    WorkItem,
    build_ledger_record,
)

__all__ = [
    "AuthExpiredError",
    "ConfigurationError",
    "ConveyorError",
    "Credential",
    "CredentialProvider",
    "CredentialRefreshFailed",
    "ItemProcessor",
    "LedgerRecord",
    "LedgerWriteError",
    "LedgerWriter",
    "Outcome",
    "OutcomeKind",
    "PipelineStep",
    "RecordSource",
    "RemoteError",
    "RemoteNotFoundError",
    "RemoteTransientError",
    "RunSummary",
    "WorkItem",
    "build_ledger_record",
]
