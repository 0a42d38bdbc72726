"""Shared test fixtures and helpers.

Test doubles:
- FnProcessor: ItemProcessor driven by a plain function
- MemoryLedger: LedgerWriter that keeps rows in a list
- CountingProvider: CredentialProvider that counts its calls

Hypothesis Configuration:
- "ci" profile: Fast tests for CI (100 examples) - default
- "nightly" profile: Thorough tests (1000 examples)
- "debug" profile: Minimal tests with verbose output (10 examples)

Set profile via environment variable:
    HYPOTHESIS_PROFILE=nightly pytest tests/engine/
"""

import os
from collections.abc import Callable, Sequence
from threading import Lock

import pytest
from hypothesis import Phase, Verbosity, settings

from conveyor.contracts import Credential, LedgerRecord, LedgerWriteError, Outcome, WorkItem
from conveyor.core.config import BrightcoveSettings, OutputSettings


def make_items(count: int, *, target_key: str = "webroot_a") -> list[WorkItem]:
    """Items with ids item-0..item-N and ledger pass-through fields."""
    return [
        WorkItem(
            external_id=f"item-{i}",
            target_key=target_key,
            fields={"db_name": "db1", "video_id": str(i), "site_id": "7", "webroot": target_key, "bc_id": f"item-{i}"},
            index=i,
        )
        for i in range(count)
    ]


class FnProcessor:
    """ItemProcessor that delegates to a function."""

    def __init__(self, fn: Callable[[WorkItem, Credential], Outcome], name: str = "test") -> None:
        self.name = name
        self._fn = fn

    def process(self, item: WorkItem, credential: Credential) -> Outcome:
        return self._fn(item, credential)


class MemoryLedger:
    """LedgerWriter that records rows in memory.

    Items whose first column value is in ``fail_on`` raise LedgerWriteError.
    """

    def __init__(self, fail_on: Sequence[str] = ()) -> None:
        self.header: tuple[str, ...] | None = None
        self.rows: list[LedgerRecord] = []
        self.closed = False
        self._fail_on = set(fail_on)
        self._lock = Lock()

    def initialize(self, header: Sequence[str]) -> None:
        self.header = tuple(header)

    def append(self, record: LedgerRecord) -> None:
        if record[0] in self._fail_on:
            raise LedgerWriteError(f"disk full writing {record[0]}")
        with self._lock:
            self.rows.append(record)

    def close(self) -> None:
        self.closed = True


class CountingProvider:
    """Returns token-1, token-2, ... and counts calls."""

    def __init__(self) -> None:
        self.calls = 0
        self._lock = Lock()

    def __call__(self) -> str:
        with self._lock:
            self.calls += 1
            return f"token-{self.calls}"


@pytest.fixture
def provider() -> CountingProvider:
    return CountingProvider()


@pytest.fixture
def brightcove_settings() -> BrightcoveSettings:
    return BrightcoveSettings(
        account_id="1234",
        client_id="client-id",
        client_secret="client-secret",
        oauth_url="https://oauth.example.com/v4/access_token",
        cms_url="https://cms.example.com/v1",
        timeout_seconds=5,
        download_timeout_seconds=5,
    )


@pytest.fixture
def output_settings(tmp_path) -> OutputSettings:
    return OutputSettings(base_path=tmp_path / "assets")


# =============================================================================
# Hypothesis Configuration
# =============================================================================

settings.register_profile(
    "ci",
    max_examples=100,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,  # Thread scheduling makes timing vary
)

settings.register_profile(
    "nightly",
    max_examples=1000,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,
)

settings.register_profile(
    "debug",
    max_examples=10,
    verbosity=Verbosity.verbose,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,
)

settings.load_profile(os.getenv("HYPOTHESIS_PROFILE", "ci"))
