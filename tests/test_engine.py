"""
Tests for the FinanceEngine facade.

End-to-end: in-memory store → workspace → views, reports and insights.
"""

from datetime import timedelta
from decimal import Decimal

import pytest
from google.api_core import exceptions as google_exceptions

from src.agents import InsightRequester, InsightUnavailable
from src.audit import AuditLogger
from src.config import GeminiSettings
from src.engine.reports import ReportNotFoundError, parse_export
from src.models.audit import AuditEventType
from src.models.records import GroupScope, PersonalScope, Table
from src.models.views import DateRange
from src.orchestrator import EngineNotReady, FinanceEngine, create_app_components
from tests.factories import GROUP, TODAY, USER, ScriptedModel


@pytest.fixture
def insight_model():
    return ScriptedModel("1. Cook at home\n2. Cancel unused subscriptions")


@pytest.fixture
def engine(store, context, audit_storage, insight_model):
    async def no_sleep(delay):
        return None

    requester = InsightRequester(
        settings=GeminiSettings(api_key="test-key"),
        model=insight_model,
        sleep=no_sleep,
    )
    return FinanceEngine(
        store,
        USER,
        context=context,
        insight_requester=requester,
        audit_logger=AuditLogger(audit_storage),
        currency_code="INR",
    )


class TestLifecycle:
    """start / scope / close."""

    def test_views_before_start(self, engine):
        with pytest.raises(EngineNotReady):
            engine.get_category_breakdown()

    @pytest.mark.asyncio
    async def test_start_loads_personal_scope(self, engine):
        await engine.start()
        assert engine.get_scope() == PersonalScope(principal_id=USER)
        assert not engine.is_stale

    @pytest.mark.asyncio
    async def test_group_switch_and_listing(self, engine):
        await engine.start()
        groups = await engine.list_groups()
        assert [g.id for g in groups] == [GROUP]

        assert await engine.set_scope(GroupScope(group_id=GROUP)) is True
        assert engine.snapshot.scope_key == "group:g-1"

    @pytest.mark.asyncio
    async def test_close(self, engine, store):
        await engine.start()
        await engine.close()
        assert store.open_subscriptions == []

    def test_factory_without_storage(self):
        engine, client = create_app_components("user-9", use_storage=False)
        assert isinstance(engine, FinanceEngine)
        assert client is None


class TestViews:
    """Views read from the current snapshot."""

    @pytest.mark.asyncio
    async def test_trend_windows(self, engine):
        await engine.start()

        assert len(engine.get_trend()) == 30
        week = engine.get_trend(7)
        assert len(week) == 7
        assert week[-1].date == TODAY
        assert sum(b.total for b in week) == Decimal("230.00")

    @pytest.mark.asyncio
    async def test_cash_flow_ranges(self, engine):
        await engine.start()

        assert engine.get_cash_flow().net == Decimal("2520.00")

        week = engine.get_cash_flow("last-7-days")
        assert week.total_expenses == Decimal("230.00")
        assert week.total_income == Decimal("250.00")
        assert week.net == Decimal("20.00")

        window = DateRange.preset("last-30-days", TODAY)
        assert engine.get_cash_flow(window) == engine.get_cash_flow("last-30-days")
        assert engine.get_cash_flow(lambda day: False).net == 0

    @pytest.mark.asyncio
    async def test_dashboard_views(self, engine):
        await engine.start()

        assert engine.get_income_breakdown()["salary"].amount == Decimal("3000.00")
        assert engine.get_payment_methods()["card"] == Decimal("120.00")
        assert engine.get_budget_status()[0].budget.id == "b-food"
        assert engine.get_savings_progress()[0].progress == Decimal("25")

        summary = engine.get_spending_summary()
        assert summary.today_total == Decimal("150.00")
        assert summary.yesterday_total == Decimal("80.00")

        change = engine.get_period_change(30)
        assert change.current == Decimal("730.00")
        assert change.previous == 0

    @pytest.mark.asyncio
    async def test_on_recompute_through_facade(self, engine, store):
        await engine.start()
        snapshots = []
        engine.on_recompute(snapshots.append)

        store.update(Table.SAVINGS_GOALS, "s-1", current_amount="1000.00")
        await engine.context.wait_idle()

        assert snapshots[-1].savings[0].achieved is True
        assert engine.get_savings_progress()[0].progress == Decimal("100")


class TestReports:
    """Report index, search and export."""

    @pytest.mark.asyncio
    async def test_list_and_search(self, engine):
        await engine.start()

        assert len(engine.list_reports()) == 6
        counts = {c.id: c.count for c in engine.get_report_categories()}
        assert counts["all"] == 6
        assert [r.id for r in engine.search_reports("income")] == ["cash-flow", "income-sources"]

    @pytest.mark.asyncio
    async def test_export_matches_breakdown(self, engine, audit_storage):
        """Exported category breakdown re-parses to get_category_breakdown()."""
        await engine.start()

        export = await engine.export_report("category-breakdown")
        parsed = {
            row["Category"]: (Decimal(row["Amount"]), int(row["Transaction Count"]))
            for row in parse_export(export.content)
        }

        assert parsed == {
            label: (entry.amount, entry.count)
            for label, entry in engine.get_category_breakdown().items()
        }
        events = await audit_storage.get_recent_events()
        assert AuditEventType.REPORT_EXPORTED in [e.event_type for e in events]

    @pytest.mark.asyncio
    async def test_export_includes_future_dated_expenses(self, engine, store):
        """An expense booked ahead of today is in both the export and the view."""
        store.insert(Table.EXPENSES, {
            "id": "e-future", "user_id": USER, "group_id": None, "amount": "25.00",
            "date": (TODAY + timedelta(days=3)).isoformat(), "category_id": None,
        })
        await engine.start()

        export = await engine.export_report("category-breakdown")
        parsed = {row["Category"]: Decimal(row["Amount"]) for row in parse_export(export.content)}

        assert parsed["Uncategorized"] == Decimal("55.00")
        assert parsed == {
            label: entry.amount for label, entry in engine.get_category_breakdown().items()
        }
        assert engine.get_cash_flow().total_expenses == Decimal("755.00")

    @pytest.mark.asyncio
    async def test_export_unknown_report(self, engine):
        await engine.start()
        with pytest.raises(ReportNotFoundError):
            await engine.export_report("nope")


class TestInsights:
    """Spending tips through the facade."""

    @pytest.mark.asyncio
    async def test_request_insights(self, engine, insight_model, audit_storage):
        await engine.start()

        tips = await engine.request_insights()

        assert tips.startswith("1. Cook at home")
        assert "Food: INR 200.00 (2 transactions)" in insight_model.prompts[0]
        events = await audit_storage.get_recent_events()
        assert AuditEventType.INSIGHT_REQUESTED in [e.event_type for e in events]

    @pytest.mark.asyncio
    async def test_insight_failure_is_soft(self, context, store, audit_storage):
        async def no_sleep(delay):
            return None

        requester = InsightRequester(
            settings=GeminiSettings(api_key="test-key"),
            model=ScriptedModel(google_exceptions.PermissionDenied("bad key")),
            sleep=no_sleep,
        )
        engine = FinanceEngine(
            store, USER, context=context, insight_requester=requester,
            audit_logger=AuditLogger(audit_storage), currency_code="INR",
        )
        await engine.start()

        with pytest.raises(InsightUnavailable):
            await engine.request_insights()

        # Views are unaffected
        assert engine.get_category_breakdown()["Food"].count == 2
        events = await audit_storage.get_recent_events()
        assert AuditEventType.INSIGHT_FAILED in [e.event_type for e in events]

    @pytest.mark.asyncio
    async def test_unconfigured_gemini_is_soft(self, context, store, audit_storage, monkeypatch):
        class Unconfigured:
            @property
            def gemini(self):
                raise ValueError("GEMINI_API_KEY is not set")

        monkeypatch.setattr("src.orchestrator.get_settings", lambda: Unconfigured())
        engine = FinanceEngine(
            store, USER, context=context,
            audit_logger=AuditLogger(audit_storage), currency_code="INR",
        )
        await engine.start()

        with pytest.raises(InsightUnavailable) as exc_info:
            await engine.request_insights()

        assert exc_info.value.attempts == 0
        events = await audit_storage.get_recent_events()
        external = [e for e in events if e.event_type == AuditEventType.EXTERNAL_SERVICE_ERROR]
        assert external[0].details == {"service": "gemini"}
        assert AuditEventType.INSIGHT_FAILED in [e.event_type for e in events]
