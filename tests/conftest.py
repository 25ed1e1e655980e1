"""
Shared fixtures for Live Ledger tests.

No test talks to Google Sheets or Gemini: the remote store is the
in-memory implementation, the model is a fake, and retry sleeps are
recorded instead of awaited.
"""

import pytest

from src.audit import AuditLogger
from src.config import SyncSettings
from src.services.retry import RetryPolicy
from src.services.storage import InMemoryAuditStorage, InMemoryRemoteStore
from src.sync import WorkspaceContext
from tests.factories import NOW, TODAY, USER, seed_rows


@pytest.fixture
def store() -> InMemoryRemoteStore:
    return InMemoryRemoteStore(seed_rows())


@pytest.fixture
def sleeps() -> list[float]:
    """Delays the retry policy asked to sleep, in order."""
    return []


@pytest.fixture
def retry_policy(sleeps) -> RetryPolicy:
    async def record_sleep(delay: float) -> None:
        sleeps.append(delay)

    return RetryPolicy(max_attempts=3, base_seconds=1.0, cap_seconds=32.0, sleep=record_sleep)


@pytest.fixture
def audit_storage() -> InMemoryAuditStorage:
    return InMemoryAuditStorage()


@pytest.fixture
def context(store, retry_policy, audit_storage) -> WorkspaceContext:
    return WorkspaceContext(
        store,
        USER,
        settings=SyncSettings(),
        retry_policy=retry_policy,
        audit_logger=AuditLogger(audit_storage),
        today=lambda: TODAY,
        now=lambda: NOW,
    )


