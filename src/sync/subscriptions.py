"""
Change Subscription Manager

Keeps exactly one open subscription per (table, scope) pair and routes
the store's opaque change signals back to the workspace.

DESIGN DECISION: Signals carry no payload. Insert, update and delete
are not distinguished; the workspace always re-fetches the whole table.

Failure semantics:
- Opening a subscription is retried with exponential backoff
- After the attempt ceiling the table is reported as failed in the
  handle set instead of raising, so the workspace can enter degraded
  mode and keep serving the last good aggregates
"""

import asyncio
from typing import Callable, Optional

import structlog

from src.models.records import (
    RECORD_TABLES,
    GroupScope,
    Table,
    WorkspaceScope,
)
from src.repositories.base import filters_for
from src.services.retry import RetryPolicy
from src.services.storage.interface import (
    QueryError,
    QueryErrorKind,
    RemoteStore,
    SubscriptionHandle,
)


logger = structlog.get_logger(__name__)

ScopedSignal = Callable[[str, Table], None]
PairKey = tuple[Table, str]


def tables_for(scope: WorkspaceScope) -> tuple[Table, ...]:
    """Tables observed for a scope; group scopes also watch the group table."""
    if isinstance(scope, GroupScope):
        return RECORD_TABLES + (Table.GROUPS,)
    return RECORD_TABLES


class SubscriptionHandleSet:
    """
    Handles opened for one scope by one open() call.

    failed holds the tables whose subscription could not be opened.
    """

    def __init__(self, scope_key: str):
        self.scope_key = scope_key
        self.handles: dict[Table, SubscriptionHandle] = {}
        self.failed: dict[Table, QueryError] = {}
        self.closed = False

    @property
    def tables(self) -> list[Table]:
        return list(self.handles)

    @property
    def degraded(self) -> bool:
        return bool(self.failed)

    def __len__(self) -> int:
        return len(self.handles)

    def __repr__(self) -> str:
        return (
            f"SubscriptionHandleSet(scope={self.scope_key!r}, "
            f"open={[t.value for t in self.handles]}, "
            f"failed={[t.value for t in self.failed]}, closed={self.closed})"
        )


class ChangeSubscriptionManager:
    """
    Opens, deduplicates and closes change subscriptions.

    A pair that is already open is reused; its handle is reference
    counted so it stays open until every handle set using it is closed.
    """

    def __init__(
        self,
        store: RemoteStore,
        principal_id: str,
        on_signal: ScopedSignal,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        self._store = store
        self._principal_id = principal_id
        self._on_signal = on_signal
        self._retry = retry_policy or RetryPolicy()

        self._open: dict[PairKey, SubscriptionHandle] = {}
        self._refs: dict[PairKey, int] = {}
        self._opening: dict[PairKey, asyncio.Task] = {}

    @property
    def open_pairs(self) -> list[PairKey]:
        return list(self._open)

    async def _subscribe(self, table: Table, scope: WorkspaceScope) -> SubscriptionHandle:
        filters = filters_for(table, scope, self._principal_id)
        scope_key = scope.key

        def deliver(signalled: Table) -> None:
            self._on_signal(scope_key, signalled)

        handle, attempts = await self._retry.run(
            f"subscribe:{table.value}",
            lambda: self._store.subscribe(table, filters, deliver),
        )
        if attempts > 1:
            logger.info("subscription_recovered", table=table.value, scope=scope_key, attempts=attempts)
        return handle

    async def _register(self, key: PairKey, table: Table, scope: WorkspaceScope) -> None:
        try:
            self._open[key] = await self._subscribe(table, scope)
            self._refs[key] = 0
        finally:
            self._opening.pop(key, None)

    async def _acquire(self, table: Table, scope: WorkspaceScope) -> SubscriptionHandle:
        key = (table, scope.key)

        if key not in self._open:
            # Concurrent opens of the same pair share one remote subscribe
            task = self._opening.get(key)
            if task is None:
                task = asyncio.ensure_future(self._register(key, table, scope))
                self._opening[key] = task
            await task

        self._refs[key] += 1
        return self._open[key]

    async def open(self, scope: WorkspaceScope) -> SubscriptionHandleSet:
        """
        Register listeners for every table relevant to the scope.

        Never raises for a subscription failure: failed tables are
        listed in the returned set's failed map.
        """
        handle_set = SubscriptionHandleSet(scope.key)
        tables = tables_for(scope)

        results = await asyncio.gather(
            *(self._acquire(table, scope) for table in tables),
            return_exceptions=True,
        )

        for table, result in zip(tables, results):
            if isinstance(result, QueryError):
                handle_set.failed[table] = result
                logger.error(
                    "subscription_open_failed",
                    table=table.value,
                    scope=scope.key,
                    kind=result.kind.value,
                    attempts=result.attempts,
                    error=str(result),
                )
            elif isinstance(result, Exception):
                error = QueryError(QueryErrorKind.UNKNOWN, str(result), table=table)
                handle_set.failed[table] = error
                logger.error(
                    "subscription_open_failed",
                    table=table.value,
                    scope=scope.key,
                    kind=error.kind.value,
                    error=str(result),
                )
            elif isinstance(result, BaseException):
                raise result
            else:
                handle_set.handles[table] = result

        return handle_set

    async def close(self, handle_set: Optional[SubscriptionHandleSet]) -> int:
        """
        Unregister a handle set's listeners.

        Idempotent: closing twice, or closing an empty set, does nothing.

        Returns:
            Number of remote subscriptions actually removed
        """
        if handle_set is None or handle_set.closed:
            return 0
        handle_set.closed = True

        removed = 0
        for table, handle in handle_set.handles.items():
            key = (table, handle_set.scope_key)
            if self._open.get(key) != handle:
                continue
            self._refs[key] -= 1
            if self._refs[key] > 0:
                continue
            del self._open[key]
            del self._refs[key]
            await self._store.unsubscribe(handle)
            removed += 1

        logger.debug("subscriptions_closed", scope=handle_set.scope_key, removed=removed)
        return removed

    async def close_all(self) -> None:
        """Drop every open subscription regardless of reference counts."""
        handles = list(self._open.values())
        self._open.clear()
        self._refs.clear()
        for handle in handles:
            await self._store.unsubscribe(handle)
