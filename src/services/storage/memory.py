"""
In-Memory Storage Implementation

Implements the full remote store contract in process. Used by the test
suite and for local runs without a spreadsheet.

Besides the read/observe contract it offers:
- write helpers (insert/update/delete) that emit change signals to
  every matching subscription, like the hosted store does
- failure injection for selects and subscribes
- gates that hold a select in flight until released, to exercise
  workspace switches that race a slow fetch
"""

import asyncio
import copy
from collections import defaultdict
from typing import Any, Optional
from uuid import UUID

import structlog

from src.models.audit import AuditEvent
from src.models.records import Table
from src.services.storage.interface import (
    AuditStorageInterface,
    Filter,
    Order,
    QueryError,
    QueryErrorKind,
    RemoteStore,
    SignalCallback,
    SubscriptionHandle,
    describe_filters,
)


logger = structlog.get_logger(__name__)


class InMemoryRemoteStore(RemoteStore):
    """Dictionary-backed remote store with change signals."""

    def __init__(self, rows: Optional[dict[Table, list[dict]]] = None):
        self._rows: dict[Table, list[dict]] = defaultdict(list)
        for table, table_rows in (rows or {}).items():
            self._rows[table] = [dict(row) for row in table_rows]

        self._subscriptions: dict[UUID, tuple[SubscriptionHandle, tuple[Filter, ...], SignalCallback]] = {}
        self._select_failures: dict[Table, list[QueryError]] = defaultdict(list)
        self._subscribe_failures: dict[Table, list[QueryError]] = defaultdict(list)
        self._gates: dict[Table, asyncio.Event] = {}

        # Observability for tests
        self.select_calls: dict[Table, int] = defaultdict(int)
        self.subscribe_calls: dict[Table, int] = defaultdict(int)

    # -------------------------------------------------------------------------
    # RemoteStore contract
    # -------------------------------------------------------------------------

    async def select(
        self,
        table: Table,
        filters: tuple[Filter, ...],
        order: Optional[Order] = None,
        limit: Optional[int] = None,
    ) -> list[dict]:
        self.select_calls[table] += 1

        gate = self._gates.get(table)
        if gate is not None:
            await gate.wait()

        if self._select_failures[table]:
            raise self._select_failures[table].pop(0)

        rows = [
            copy.deepcopy(row)
            for row in self._rows[table]
            if all(f.matches(row) for f in filters)
        ]

        if order is not None:
            rows.sort(
                key=lambda r: (r.get(order.column) is None, str(r.get(order.column) or "")),
                reverse=order.descending,
            )
        if limit is not None:
            rows = rows[:limit]
        return rows

    async def subscribe(
        self,
        table: Table,
        filters: tuple[Filter, ...],
        on_signal: SignalCallback,
    ) -> SubscriptionHandle:
        self.subscribe_calls[table] += 1

        if self._subscribe_failures[table]:
            raise self._subscribe_failures[table].pop(0)

        handle = SubscriptionHandle(table=table, filter_expr=describe_filters(filters))
        self._subscriptions[handle.handle_id] = (handle, filters, on_signal)
        logger.debug("memory_subscribed", table=table.value, filter=handle.filter_expr)
        return handle

    async def unsubscribe(self, handle: SubscriptionHandle) -> None:
        self._subscriptions.pop(handle.handle_id, None)

    # -------------------------------------------------------------------------
    # Write helpers (emit change signals)
    # -------------------------------------------------------------------------

    def insert(self, table: Table, row: dict) -> dict:
        """Add a row and notify matching subscribers."""
        stored = dict(row)
        self._rows[table].append(stored)
        self._emit(table, [stored])
        return stored

    def update(self, table: Table, row_id: Any, **changes: Any) -> dict:
        """Change a row in place and notify subscribers of its old and new shape."""
        for row in self._rows[table]:
            if str(row.get("id")) == str(row_id):
                before = dict(row)
                row.update(changes)
                self._emit(table, [before, row])
                return row
        raise KeyError(f"{table.value} row not found: {row_id}")

    def delete(self, table: Table, row_id: Any) -> None:
        """Remove a row and notify subscribers that matched it."""
        for idx, row in enumerate(self._rows[table]):
            if str(row.get("id")) == str(row_id):
                removed = self._rows[table].pop(idx)
                self._emit(table, [removed])
                return
        raise KeyError(f"{table.value} row not found: {row_id}")

    def _emit(self, table: Table, affected: list[dict]) -> None:
        for handle, filters, on_signal in list(self._subscriptions.values()):
            if handle.table != table:
                continue
            if any(all(f.matches(row) for f in filters) for row in affected):
                on_signal(table)

    # -------------------------------------------------------------------------
    # Test controls
    # -------------------------------------------------------------------------

    def fail_next_select(
        self,
        table: Table,
        kind: QueryErrorKind = QueryErrorKind.TRANSIENT,
        times: int = 1,
        message: str = "simulated failure",
        hint: Optional[str] = None,
    ) -> None:
        """Make the next `times` selects on a table fail."""
        for _ in range(times):
            self._select_failures[table].append(
                QueryError(kind, message, table=table, hint=hint)
            )

    def fail_next_subscribe(
        self,
        table: Table,
        kind: QueryErrorKind = QueryErrorKind.TRANSIENT,
        times: int = 1,
        message: str = "simulated subscribe failure",
    ) -> None:
        """Make the next `times` subscribes on a table fail."""
        for _ in range(times):
            self._subscribe_failures[table].append(QueryError(kind, message, table=table))

    def hold(self, table: Table) -> None:
        """Block selects on a table until release() is called."""
        self._gates[table] = asyncio.Event()

    def release(self, table: Table) -> None:
        gate = self._gates.pop(table, None)
        if gate is not None:
            gate.set()

    def signal(self, table: Table) -> None:
        """Deliver a bare change signal to every subscriber of a table."""
        for handle, _, on_signal in list(self._subscriptions.values()):
            if handle.table == table:
                on_signal(table)

    @property
    def open_subscriptions(self) -> list[SubscriptionHandle]:
        return [handle for handle, _, _ in self._subscriptions.values()]


class InMemoryAuditStorage(AuditStorageInterface):
    """Append-only audit log kept in a list."""

    def __init__(self):
        self._events: list[AuditEvent] = []

    async def append_event(self, event: AuditEvent) -> bool:
        self._events.append(event)
        return True

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        events = [e for e in self._events if e.correlation_id == correlation_id]
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        events = sorted(self._events, key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
