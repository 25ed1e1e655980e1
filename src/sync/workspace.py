"""
Workspace Context

Owns the active workspace scope, the repositories holding that scope's
snapshots, the change subscriptions, and the latest AggregateSnapshot.

DESIGN DECISIONS:

1. Scope switches are ordered: tear down old subscriptions → clear
   snapshots → fetch for the new scope → recompute → open new
   subscriptions. Nothing from the old scope survives the clear.

2. Every switch bumps a generation counter. Fetches capture the
   generation they started under and are discarded on arrival if it
   moved. A slow fetch from an old scope can never write into the new
   scope's snapshots.

3. Change signals are coalesced. One invalidation cycle runs at a time;
   signals arriving during a cycle only mark their table dirty, and
   exactly one more cycle runs afterwards for all of them.

4. Remote failures never escape a cycle. They are classified, reported
   through on_error / on_stale, and the aggregates are flagged stale
   while the last good snapshots stay in use.

CRITICAL: Membership is checked against the store on every switch into
a group. If the check cannot be made, the switch fails and the previous
scope stays active.
"""

import asyncio
from datetime import date, datetime
from typing import Callable, Optional
from uuid import UUID

import structlog

from src.audit.logger import AuditLogger, create_correlation_id
from src.config import SyncSettings
from src.engine.reports import ReportAssembler
from src.engine.snapshot import RecordSet, build_snapshot
from src.models.records import (
    Group,
    PersonalScope,
    Table,
    WorkspaceScope,
)
from src.models.views import AggregateSnapshot, DateRange, StaleNotice
from src.repositories import (
    BudgetRepository,
    CategoryRepository,
    ExpenseRepository,
    GroupDirectory,
    IncomeRepository,
    Repository,
    SavingsGoalRepository,
)
from src.services.retry import RetryPolicy
from src.services.storage.interface import QueryError, RemoteStore
from src.sync.subscriptions import ChangeSubscriptionManager, SubscriptionHandleSet
from src.validation import SnapshotValidator


logger = structlog.get_logger(__name__)

NoticeCallback = Callable[[StaleNotice], None]
SnapshotCallback = Callable[[AggregateSnapshot], None]


class ScopeDenied(Exception):
    """The principal may not switch into the requested scope."""

    def __init__(self, scope: WorkspaceScope, principal_id: str, reason: str = "not a member"):
        self.scope = scope
        self.principal_id = principal_id
        self.reason = reason
        super().__init__(f"Access to {scope.key} denied for {principal_id}: {reason}")


class WorkspaceContext:
    """
    The live engine for one principal.

    Usage:
        context = WorkspaceContext(store, "user-1")
        await context.set_scope(PersonalScope(principal_id="user-1"))
        context.snapshot.category_breakdown
    """

    def __init__(
        self,
        store: RemoteStore,
        principal_id: str,
        settings: Optional[SyncSettings] = None,
        retry_policy: Optional[RetryPolicy] = None,
        audit_logger: Optional[AuditLogger] = None,
        assembler: Optional[ReportAssembler] = None,
        today: Optional[Callable[[], date]] = None,
        now: Optional[Callable[[], datetime]] = None,
    ):
        self._principal_id = principal_id
        self._settings = settings or SyncSettings()
        self._retry = retry_policy or RetryPolicy.from_settings(self._settings)
        self._audit = audit_logger or AuditLogger()
        self._assembler = assembler or ReportAssembler()
        self._today = today or date.today
        self._now = now or datetime.utcnow

        validator = SnapshotValidator()

        def build(repo_cls: type[Repository]) -> Repository:
            return repo_cls(
                store,
                principal_id,
                validator=validator,
                retry_policy=self._retry,
            )

        self._repositories: dict[Table, Repository] = {
            Table.EXPENSES: build(ExpenseRepository),
            Table.INCOME: build(IncomeRepository),
            Table.CATEGORIES: build(CategoryRepository),
            Table.BUDGETS: build(BudgetRepository),
            Table.SAVINGS_GOALS: build(SavingsGoalRepository),
        }
        self.groups: GroupDirectory = build(GroupDirectory)

        self._subscriptions = ChangeSubscriptionManager(
            store,
            principal_id,
            on_signal=self._on_signal,
            retry_policy=self._retry,
        )

        self._scope: Optional[WorkspaceScope] = None
        self._generation = 0
        self._requests = 0
        self._handles: Optional[SubscriptionHandleSet] = None

        self._records = RecordSet()
        self._snapshot: Optional[AggregateSnapshot] = None
        self._stale: dict[Table, StaleNotice] = {}

        self._pending: set[Table] = set()
        self._cycle: Optional[asyncio.Task] = None
        self.cycles_run = 0

        self._stale_callbacks: list[NoticeCallback] = []
        self._error_callbacks: list[NoticeCallback] = []
        self._recompute_callbacks: list[SnapshotCallback] = []

    # =========================================================================
    # STATE
    # =========================================================================

    @property
    def principal_id(self) -> str:
        return self._principal_id

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def snapshot(self) -> Optional[AggregateSnapshot]:
        """Latest aggregates, or None before the first recompute of a scope."""
        return self._snapshot

    @property
    def records(self) -> RecordSet:
        """The record set the latest snapshot was computed from."""
        return self._records

    @property
    def is_stale(self) -> bool:
        return bool(self._stale)

    @property
    def stale_notices(self) -> list[StaleNotice]:
        return list(self._stale.values())

    @property
    def subscriptions(self) -> Optional[SubscriptionHandleSet]:
        return self._handles

    def get_scope(self) -> Optional[WorkspaceScope]:
        return self._scope

    def repository(self, table: Table) -> Repository:
        if table == Table.GROUPS:
            return self.groups
        return self._repositories[table]

    def today(self) -> date:
        return self._today()

    # =========================================================================
    # CALLBACKS
    # =========================================================================

    def on_stale(self, callback: NoticeCallback) -> None:
        """Called when a table enters degraded mode (aggregates go stale)."""
        self._stale_callbacks.append(callback)

    def on_error(self, callback: NoticeCallback) -> None:
        """Called for every classified fetch or subscription failure."""
        self._error_callbacks.append(callback)

    def on_recompute(self, callback: SnapshotCallback) -> None:
        """Called with every new AggregateSnapshot."""
        self._recompute_callbacks.append(callback)

    def _emit(self, callbacks: list, payload) -> None:
        for callback in list(callbacks):
            try:
                callback(payload)
            except Exception:
                # Caller code must not break the engine
                logger.exception("callback_failed", callback=repr(callback))

    # =========================================================================
    # SCOPE SWITCH
    # =========================================================================

    async def _authorize(
        self,
        scope: WorkspaceScope,
        correlation_id: UUID,
    ) -> Optional[Group]:
        if isinstance(scope, PersonalScope):
            if scope.principal_id != self._principal_id:
                await self._audit.log_scope_denied(scope.key, self._principal_id, correlation_id)
                raise ScopeDenied(scope, self._principal_id, "personal scope of another principal")
            return None

        try:
            group = await self.groups.find_membership(scope.group_id)
        except QueryError as e:
            await self._audit.log_scope_denied(scope.key, self._principal_id, correlation_id)
            raise ScopeDenied(
                scope,
                self._principal_id,
                f"membership could not be verified ({e.kind.value})",
            ) from e

        if group is None:
            await self._audit.log_scope_denied(scope.key, self._principal_id, correlation_id)
            raise ScopeDenied(scope, self._principal_id)
        return group

    async def set_scope(self, scope: WorkspaceScope) -> bool:
        """
        Switch the active workspace.

        Returns:
            True if this switch is the one that ended up active, False if
            a later switch superseded it while it was in flight.

        Raises:
            ScopeDenied: the principal is not a member of the group, or
                membership could not be verified. The previous scope
                stays active.
        """
        self._requests += 1
        request = self._requests
        correlation_id = create_correlation_id()

        await self._authorize(scope, correlation_id)
        if request != self._requests:
            logger.info("scope_switch_superseded", scope=scope.key, stage="authorize")
            return False

        previous = self._scope
        self._generation += 1
        generation = self._generation
        self._scope = scope

        # (a) Tear down the previous scope
        self._pending.clear()
        self._cycle = None
        old_handles, self._handles = self._handles, None
        closed = await self._subscriptions.close(old_handles)
        if old_handles is not None:
            await self._audit.log_subscriptions_closed(old_handles.scope_key, closed, correlation_id)

        # (b) Clear every snapshot
        for repository in self._repositories.values():
            repository.clear()
        self._records = RecordSet()
        self._snapshot = None
        self._stale.clear()

        if generation != self._generation:
            return False

        # (c) Fetch for the new scope
        await self._refresh_tables(list(self._repositories), scope, generation)
        if generation != self._generation:
            logger.info("scope_switch_superseded", scope=scope.key, stage="fetch")
            return False
        await self._recompute(scope, generation)

        # (d) Open fresh subscriptions
        handles = await self._subscriptions.open(scope)
        if generation != self._generation:
            await self._subscriptions.close(handles)
            logger.info("scope_switch_superseded", scope=scope.key, stage="subscribe")
            return False
        self._handles = handles

        if handles.handles:
            await self._audit.log_subscriptions_opened(
                scope.key, [t.value for t in handles.tables], correlation_id
            )
        if handles.failed:
            for table, error in handles.failed.items():
                await self._audit.log_subscription_failed(
                    scope.key, table.value, error.kind.value, str(error), error.attempts, correlation_id
                )
                self._degrade(scope, table, error)
            await self._recompute(scope, generation)

        await self._audit.log_scope_changed(
            previous.key if previous else None, scope.key, generation, correlation_id
        )
        return True

    async def list_groups(self) -> list[Group]:
        """Groups the principal belongs to, fetched fresh."""
        return await self.groups.list_groups()

    async def resync(self) -> None:
        """
        Re-fetch every table and re-open failed subscriptions.

        Used to leave degraded mode once the store is reachable again.
        """
        scope = self._scope
        if scope is None:
            return
        generation = self._generation

        if self._handles is not None and self._handles.failed:
            self._stale = {t: n for t, n in self._stale.items() if t not in self._handles.failed}
            retry = await self._subscriptions.open(scope)
            if generation != self._generation:
                await self._subscriptions.close(retry)
                return
            await self._subscriptions.close(self._handles)
            self._handles = retry
            for table, error in retry.failed.items():
                self._degrade(scope, table, error)

        await self._refresh_tables(list(self._repositories), scope, generation)
        if generation == self._generation:
            await self._recompute(scope, generation)

    async def close(self) -> None:
        """Stop observing: close subscriptions and drop pending work."""
        self._generation += 1
        self._pending.clear()
        self._cycle = None
        handles, self._handles = self._handles, None
        await self._subscriptions.close(handles)
        await self._subscriptions.close_all()

    # =========================================================================
    # REFRESH & RECOMPUTE
    # =========================================================================

    async def _refresh_one(self, table: Table, scope: WorkspaceScope, generation: int) -> None:
        repository = self.repository(table)
        try:
            applied = await repository.refresh(
                scope, is_current=lambda: generation == self._generation
            )
        except QueryError as e:
            if generation != self._generation:
                return
            await self._audit.log_refresh_failed(
                scope.key, table.value, e.kind.value, str(e), e.hint
            )
            self._degrade(scope, table, e)
            return

        if not applied:
            await self._audit.log_refresh_discarded(
                scope.key, table.value, generation, self._generation
            )
            return

        subscription_failed = self._handles is not None and table in self._handles.failed
        if table in self._stale and not subscription_failed:
            del self._stale[table]

    async def _refresh_tables(self, tables: list[Table], scope: WorkspaceScope, generation: int) -> None:
        await asyncio.gather(*(self._refresh_one(t, scope, generation) for t in tables))

    def _degrade(self, scope: WorkspaceScope, table: Table, error: QueryError) -> None:
        notice = StaleNotice(
            scope_key=scope.key,
            table=table,
            error_kind=error.kind.value,
            message=str(error),
            hint=error.hint,
            at=self._now(),
        )
        self._emit(self._error_callbacks, notice)

        entered = table not in self._stale
        self._stale[table] = notice
        if entered:
            logger.warning(
                "stale_entered",
                scope=scope.key,
                table=table.value,
                kind=error.kind.value,
            )
            self._emit(self._stale_callbacks, notice)

    async def _recompute(self, scope: WorkspaceScope, generation: int) -> None:
        """Derive every view from the current snapshots, replacing the last set."""
        was_stale = self._snapshot.stale if self._snapshot else False

        records = RecordSet(
            expenses=self._repositories[Table.EXPENSES].snapshot,
            income=self._repositories[Table.INCOME].snapshot,
            categories=self._repositories[Table.CATEGORIES].snapshot,
            budgets=self._repositories[Table.BUDGETS].snapshot,
            goals=self._repositories[Table.SAVINGS_GOALS].snapshot,
        )
        today = self._today()
        snapshot = build_snapshot(
            records,
            scope_key=scope.key,
            generation=generation,
            today=today,
            computed_at=self._now(),
            trend_window=self._settings.trend_window_days,
            report_range=DateRange.preset(self._settings.report_range, today),
            assembler=self._assembler,
        )
        if self._stale:
            snapshot = snapshot.model_copy(update={"stale": True})

        self._records = records
        self._snapshot = snapshot
        self.cycles_run += 1
        self._emit(self._recompute_callbacks, snapshot)

        await self._audit.log_recompute_completed(
            scope.key, generation, snapshot.stale, records.row_counts()
        )
        if snapshot.stale and not was_stale:
            first = next(iter(self._stale.values()))
            await self._audit.log_stale_entered(
                scope.key, first.table.value if first.table else None, first.error_kind, first.message
            )
        elif was_stale and not snapshot.stale:
            await self._audit.log_stale_cleared(scope.key)

    # =========================================================================
    # INVALIDATION
    # =========================================================================

    def _on_signal(self, scope_key: str, table: Table) -> None:
        """Change signal from the store: mark the table dirty, start a cycle."""
        if self._scope is None or scope_key != self._scope.key:
            logger.debug("signal_ignored", scope=scope_key, table=table.value)
            return

        self._pending.add(table)
        if self._cycle is None:
            self._cycle = asyncio.ensure_future(
                self._run_cycles(self._scope, self._generation)
            )

    async def _run_cycles(self, scope: WorkspaceScope, generation: int) -> None:
        me = asyncio.current_task()
        try:
            while self._pending and generation == self._generation:
                tables = list(self._pending)
                self._pending.clear()

                await self._refresh_tables(tables, scope, generation)
                if generation != self._generation:
                    break
                await self._recompute(scope, generation)
        finally:
            if self._cycle is me:
                self._cycle = None

    async def wait_idle(self) -> None:
        """Wait until no invalidation cycle is running."""
        while self._cycle is not None:
            await asyncio.shield(self._cycle)
