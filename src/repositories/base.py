"""
Repository Base

A Repository owns the current snapshot of one remote table for the
active workspace scope. It is the ONLY place rows enter the engine:
fetch → validate → replace snapshot.

DESIGN DECISION: Snapshots are replaced wholesale, never patched.
Change signals carry no payload, so every refresh is a full re-fetch
of the scoped table.

CRITICAL: refresh() takes an is_current predicate. The workspace
passes a generation check so a fetch that started under an earlier
scope never writes into the new scope's snapshot.
"""

from typing import Callable, Generic, Optional, TypeVar

import structlog

from src.models.records import GroupScope, PersonalScope, Table, WorkspaceScope
from src.services.storage.interface import (
    Filter,
    FilterOp,
    Order,
    RemoteStore,
)
from src.services.retry import RetryPolicy
from src.validation import SnapshotValidationResult, SnapshotValidator


logger = structlog.get_logger(__name__)

R = TypeVar("R")


def filters_for(
    table: Table,
    scope: WorkspaceScope,
    principal_id: str,
) -> tuple[Filter, ...]:
    """
    Filter predicate applied to every query and subscription of a table.

    Expenses, income and budgets follow the scope. Categories and
    savings goals always belong to the principal. Groups are the ones
    the principal is a member of.
    """
    if table == Table.GROUPS:
        return (Filter(column="members", op=FilterOp.CONTAINS, value=principal_id),)

    if table == Table.CATEGORIES:
        return (
            Filter(column="user_id", value=principal_id),
            Filter(column="is_active", value=True),
        )
    if table == Table.SAVINGS_GOALS:
        return (Filter(column="user_id", value=principal_id),)

    if isinstance(scope, GroupScope):
        filters = (Filter(column="group_id", value=scope.group_id),)
    elif isinstance(scope, PersonalScope):
        filters = (
            Filter(column="user_id", value=scope.principal_id),
            Filter(column="group_id", op=FilterOp.IS_NULL),
        )
    else:
        raise ValueError(f"Unknown workspace scope: {scope!r}")

    if table == Table.BUDGETS:
        filters += (Filter(column="is_active", value=True),)
    return filters


class Repository(Generic[R]):
    """
    Snapshot holder for one table.

    Subclasses set table and, optionally, order. Every fetch reads the
    whole scoped table.
    """

    table: Table
    order: Optional[Order] = None

    def __init__(
        self,
        store: RemoteStore,
        principal_id: str,
        validator: Optional[SnapshotValidator] = None,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        self._store = store
        self._principal_id = principal_id
        self._validator = validator or SnapshotValidator()
        self._retry = retry_policy or RetryPolicy()
        self._snapshot: tuple[R, ...] = ()
        self._loaded = False

    @property
    def snapshot(self) -> tuple[R, ...]:
        """Current records; empty until the first successful refresh."""
        return self._snapshot

    @property
    def loaded(self) -> bool:
        return self._loaded

    def clear(self) -> None:
        self._snapshot = ()
        self._loaded = False

    async def fetch(self, scope: WorkspaceScope) -> SnapshotValidationResult:
        """
        Fetch and validate the scoped table without touching the snapshot.

        Transient failures are retried; the final error propagates.

        Raises:
            QueryError: classified failure after the retry policy gave up
        """
        filters = filters_for(self.table, scope, self._principal_id)

        rows, attempts = await self._retry.run(
            f"select:{self.table.value}",
            lambda: self._store.select(self.table, filters, self.order),
        )
        if attempts > 1:
            logger.info("fetch_recovered", table=self.table.value, attempts=attempts)

        return self._validator.validate(self.table, rows, scope, self._principal_id)

    async def refresh(
        self,
        scope: WorkspaceScope,
        is_current: Callable[[], bool] = lambda: True,
    ) -> bool:
        """
        Re-fetch the table and replace the snapshot.

        Returns:
            True if the snapshot was replaced, False if the result was
            discarded because is_current() no longer held.
        """
        result = await self.fetch(scope)
        if not is_current():
            logger.debug("fetch_discarded", table=self.table.value, scope=scope.key)
            return False
        self._snapshot = tuple(result.records)
        self._loaded = True
        return True
