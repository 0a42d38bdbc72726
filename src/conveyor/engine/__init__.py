"""Execution engine: rolling scheduler, deadlines, credentials, retries."""

from conveyor.engine.clock import Clock, MockClock, SystemClock
from conveyor.engine.credentials import CredentialManager, anonymous_provider
from conveyor.engine.deadline import DeadlineGuard
from conveyor.engine.retry import CredentialRetry, MaxRetriesExceeded, RetryConfig, RetryManager
from conveyor.engine.scheduler import RollingScheduler, SchedulerConfig, SchedulerState, run_pipeline

__all__ = [
    "Clock",
    "CredentialManager",
    "CredentialRetry",
    "DeadlineGuard",
    "MaxRetriesExceeded",
    "MockClock",
    "RetryConfig",
    "RetryManager",
    "RollingScheduler",
    "SchedulerConfig",
    "SchedulerState",
    "SystemClock",
    "anonymous_provider",
    "run_pipeline",
]
