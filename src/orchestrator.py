"""
Main Orchestrator for Live Ledger

This module ties the components together behind one facade that the
presentation layer talks to:
1. Workspace (scope switch → fetch → recompute → subscribe)
2. Views (trend, breakdowns, budgets, cash flow, savings, summaries)
3. Reports (index, search, CSV export)
4. Insights (spending summary → Gemini tips)

DESIGN DECISION: The facade never computes from the store directly.
Every view is read from the latest AggregateSnapshot, or derived from
the exact record set that snapshot was built from. Callers can never
observe a mix of two recompute cycles.

This is the "glue" that keeps the presentation layer free of cache
invalidation logic.
"""

from datetime import date
from decimal import Decimal
from typing import Callable, Optional, Union

import structlog

from src.agents import InsightRequest, InsightRequester, InsightUnavailable
from src.audit import AuditLogger
from src.config import get_settings, validate_all_settings
from src.engine.aggregation import cash_flow, period_change, trend_series
from src.engine.reports import ReportAssembler, ReportCategory, ReportExport
from src.models.records import Group, PersonalScope, WorkspaceScope
from src.models.views import (
    AggregateSnapshot,
    BreakdownEntry,
    BudgetUtilization,
    CashFlow,
    DateRange,
    PeriodChange,
    ReportDescriptor,
    SavingsProgress,
    SpendingSummary,
    StaleNotice,
    TrendBucket,
)
from src.services.storage import (
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsRemoteStore,
    InMemoryAuditStorage,
    InMemoryRemoteStore,
    RemoteStore,
)
from src.sync import WorkspaceContext


logger = structlog.get_logger(__name__)

RangeArg = Union[DateRange, str, Callable[[date], bool], None]


class EngineNotReady(RuntimeError):
    """A view was requested before the first scope was loaded."""
    pass


class FinanceEngine:
    """
    Facade over the live aggregation engine.

    Usage:
        engine = FinanceEngine(store, "user-1")
        await engine.start()
        engine.get_category_breakdown()
        await engine.set_scope(GroupScope(group_id="g-1"))

    Flow on every change:
    1. Store signals a table changed
    2. Repository re-fetches that table for the active scope
    3. All aggregates are recomputed into a new snapshot
    4. on_recompute callbacks receive it
    """

    def __init__(
        self,
        store: RemoteStore,
        principal_id: str,
        context: Optional[WorkspaceContext] = None,
        insight_requester: Optional[InsightRequester] = None,
        audit_logger: Optional[AuditLogger] = None,
        currency_code: Optional[str] = None,
    ):
        self._audit = audit_logger or AuditLogger()
        self._currency = currency_code or get_settings().app.currency_code
        self._assembler = ReportAssembler(self._currency)
        self._context = context or WorkspaceContext(
            store,
            principal_id,
            settings=get_settings().sync,
            audit_logger=self._audit,
            assembler=self._assembler,
        )
        self._insights = insight_requester

    # =========================================================================
    # LIFECYCLE & SCOPE
    # =========================================================================

    @property
    def context(self) -> WorkspaceContext:
        return self._context

    async def start(self) -> None:
        """Load the principal's personal workspace."""
        await self._context.set_scope(PersonalScope(principal_id=self._context.principal_id))

    async def close(self) -> None:
        await self._context.close()

    async def set_scope(self, scope: WorkspaceScope) -> bool:
        """
        Switch the active workspace.

        Raises:
            ScopeDenied: not a member of the group, or membership could
                not be verified
        """
        return await self._context.set_scope(scope)

    def get_scope(self) -> Optional[WorkspaceScope]:
        return self._context.get_scope()

    async def list_groups(self) -> list[Group]:
        return await self._context.list_groups()

    async def resync(self) -> None:
        """Re-fetch everything and retry failed subscriptions."""
        await self._context.resync()

    # =========================================================================
    # CALLBACKS & STATE
    # =========================================================================

    def on_stale(self, callback: Callable[[StaleNotice], None]) -> None:
        self._context.on_stale(callback)

    def on_error(self, callback: Callable[[StaleNotice], None]) -> None:
        self._context.on_error(callback)

    def on_recompute(self, callback: Callable[[AggregateSnapshot], None]) -> None:
        self._context.on_recompute(callback)

    @property
    def snapshot(self) -> AggregateSnapshot:
        snapshot = self._context.snapshot
        if snapshot is None:
            raise EngineNotReady("No workspace loaded yet; call start() or set_scope() first")
        return snapshot

    @property
    def is_stale(self) -> bool:
        return self._context.is_stale

    # =========================================================================
    # VIEWS
    # =========================================================================

    def get_trend(self, window_days: Optional[int] = None) -> list[TrendBucket]:
        """
        Daily spending buckets for the trailing window.

        The configured window is served from the snapshot; any other
        window is derived from the same records.
        """
        snapshot = self.snapshot
        if window_days is None or window_days == len(snapshot.trend):
            return snapshot.trend
        return trend_series(self._context.records.expenses, self._context.today(), window_days)

    def get_category_breakdown(self) -> dict[str, BreakdownEntry]:
        return self.snapshot.category_breakdown

    def get_income_breakdown(self) -> dict[str, BreakdownEntry]:
        return self.snapshot.income_breakdown

    def get_payment_methods(self) -> dict[str, Decimal]:
        return self.snapshot.payment_methods

    def get_budget_status(self) -> list[BudgetUtilization]:
        """Utilization and classification of every active budget."""
        return self.snapshot.budgets

    def get_cash_flow(self, range: RangeArg = None) -> CashFlow:
        """
        Income minus expenses within a range.

        range may be a DateRange, a preset name ("last-30-days", ...),
        or any date predicate. None returns the report range.
        """
        snapshot = self.snapshot
        if range is None:
            return snapshot.cash_flow

        if isinstance(range, str):
            predicate = DateRange.preset(range, self._context.today())
        else:
            predicate = range
        records = self._context.records
        return cash_flow(records.expenses, records.income, predicate)

    def get_savings_progress(self) -> list[SavingsProgress]:
        return self.snapshot.savings

    def get_spending_summary(self) -> SpendingSummary:
        return self.snapshot.summary

    def get_period_change(self, days: int = 30, income: bool = False) -> PeriodChange:
        """Trailing window of expenses (or income) against the one before it."""
        if self._context.snapshot is None:
            raise EngineNotReady("No workspace loaded yet; call start() or set_scope() first")
        records = self._context.records
        return period_change(
            records.income if income else records.expenses,
            self._context.today(),
            days,
        )

    # =========================================================================
    # REPORTS
    # =========================================================================

    def list_reports(self) -> list[ReportDescriptor]:
        return self.snapshot.reports

    def get_report_categories(self) -> list[ReportCategory]:
        return self._assembler.categories(self.snapshot.reports)

    def search_reports(self, term: str = "", category: str = "all") -> list[ReportDescriptor]:
        return self._assembler.search(self.snapshot.reports, term, category)

    async def export_report(self, report_id: str) -> ReportExport:
        """
        Serialize one report of the current snapshot to CSV.

        Raises:
            ReportNotFoundError: unknown report id
        """
        snapshot = self.snapshot
        report = self._assembler.find(snapshot.reports, report_id)
        export = self._assembler.export(report)
        await self._audit.log_report_exported(snapshot.scope_key, report_id, export.row_count)
        return export

    # =========================================================================
    # INSIGHTS
    # =========================================================================

    async def _requester(self, scope_key: str) -> InsightRequester:
        if self._insights is None:
            try:
                self._insights = InsightRequester(settings=get_settings().gemini)
            except Exception as e:
                # Missing API key or bad Gemini configuration
                await self._audit.log_external_service_error("gemini", str(e))
                await self._audit.log_insight_failed(scope_key, str(e), 0)
                raise InsightUnavailable(f"Insight service not configured: {e}", attempts=0) from e
        return self._insights

    async def request_insights(self) -> str:
        """
        Ask Gemini for spending tips based on the current snapshot.

        Raises:
            InsightUnavailable: the caller should show the dashboard
                without tips
        """
        snapshot = self.snapshot
        request = InsightRequest.from_snapshot(snapshot, self._currency)
        requester = await self._requester(snapshot.scope_key)

        try:
            result = await requester.generate(request)
        except InsightUnavailable as e:
            await self._audit.log_insight_failed(snapshot.scope_key, str(e), e.attempts)
            raise

        await self._audit.log_insight_requested(snapshot.scope_key, result.attempts)
        return result.text


def create_app_components(
    principal_id: str,
    use_storage: bool = True,
) -> tuple[FinanceEngine, Optional[GoogleSheetsClient]]:
    """
    Factory function to create all application components.

    Args:
        principal_id: The signed-in user
        use_storage: Whether to connect to Google Sheets.
                    Set to False to run against an in-memory store.

    Returns:
        (engine, sheets_client)
    """
    sheets_client = None

    if use_storage:
        status = validate_all_settings()
        for name, error in status.items():
            if name.endswith("_error"):
                logger.warning("settings_invalid", section=name[: -len("_error")], error=error)

        sheets_client = GoogleSheetsClient()
        store: RemoteStore = GoogleSheetsRemoteStore(sheets_client)
        audit_logger = AuditLogger(GoogleSheetsAuditStorage(sheets_client))
    else:
        store = InMemoryRemoteStore()
        audit_logger = AuditLogger(InMemoryAuditStorage())

    engine = FinanceEngine(store, principal_id, audit_logger=audit_logger)
    logger.info("app_components_created", principal_id=principal_id, use_storage=use_storage)
    return engine, sheets_client
