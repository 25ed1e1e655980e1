"""
Tests for the report assembler.

Covers descriptor content, the category index, search and CSV export.
"""

from datetime import date
from decimal import Decimal

import pytest

from src.engine.aggregation import budget_utilization, category_breakdown
from src.engine.reports import (
    BUDGET_PERFORMANCE,
    CASH_FLOW,
    CATEGORY_BREAKDOWN,
    SAVINGS_GOALS,
    ReportAssembler,
    ReportNotFoundError,
    parse_export,
)
from src.engine.snapshot import RecordSet, build_snapshot
from src.models.records import Budget, Category, Expense, Income, SavingsGoal
from tests.factories import NOW, TODAY


def _records() -> RecordSet:
    categories = (
        Category(id="c-food", user_id="u", name="Food"),
        Category(id="c-rent", user_id="u", name="Rent, Utilities"),
    )
    expenses = (
        Expense(id="1", user_id="u", amount="505", date=TODAY, category_id="c-food", payment_method="card"),
        Expense(id="2", user_id="u", amount="300", date=TODAY, category_id="c-food"),
        Expense(id="3", user_id="u", amount="1200", date=TODAY, category_id="c-rent", payment_method="card"),
        Expense(id="4", user_id="u", amount="19.99", date=TODAY),
    )
    income = (
        Income(id="i1", user_id="u", amount="4000", date=TODAY, source="salary"),
    )
    budgets = (
        Budget(id="b1", user_id="u", name="Food", amount="1000", start_date="2024-03-01",
               end_date="2024-03-31", category_id="c-food"),
        Budget(id="b2", user_id="u", name="Rent", amount="1000", start_date="2024-03-01",
               end_date="2024-03-31", category_id="c-rent"),
    )
    goals = (
        SavingsGoal(id="s1", user_id="u", name="Laptop", target_amount="1000", current_amount="333"),
        SavingsGoal(id="s2", user_id="u", name="Done", target_amount="100", current_amount="100"),
    )
    return RecordSet(expenses=expenses, income=income, categories=categories, budgets=budgets, goals=goals)


@pytest.fixture
def snapshot():
    return build_snapshot(_records(), scope_key="personal:u", generation=1, today=TODAY, computed_at=NOW)


class TestAssemble:
    """Descriptor content."""

    def test_one_descriptor_per_report(self, snapshot):
        ids = [r.id for r in snapshot.reports]
        assert ids == [
            "cash-flow",
            "category-breakdown",
            "income-sources",
            "savings-goals",
            "budget-performance",
            "payment-methods",
        ]

    def test_descriptions(self, snapshot):
        assembler = ReportAssembler()
        cash = assembler.find(snapshot.reports, CASH_FLOW)
        assert cash.description.startswith("Positive cash flow: INR 1,975.01")

        categories = assembler.find(snapshot.reports, CATEGORY_BREAKDOWN)
        assert "Spending across 3 categories" in categories.description
        assert "Top: Rent, Utilities" in categories.description

        budgets = assembler.find(snapshot.reports, BUDGET_PERFORMANCE)
        assert budgets.description == "2 active budgets. 1 over budget, 1 approaching limit"

    def test_savings_report_lists_active_goals_only(self, snapshot):
        report = ReportAssembler.find(snapshot.reports, SAVINGS_GOALS)
        assert [entry.goal.name for entry in report.data] == ["Laptop"]
        assert "1 active goals" in report.description

    def test_regenerated_with_fresh_timestamp(self):
        later = NOW.replace(hour=13)
        first = build_snapshot(_records(), scope_key="s", generation=1, today=TODAY, computed_at=NOW)
        second = build_snapshot(_records(), scope_key="s", generation=1, today=TODAY, computed_at=later)
        assert all(r.generated_at == NOW for r in first.reports)
        assert all(r.generated_at == later for r in second.reports)


class TestIndexAndSearch:
    """Category index and search."""

    def test_categories_with_counts(self, snapshot):
        index = {c.id: c.count for c in ReportAssembler.categories(snapshot.reports)}
        assert index == {"all": 6, "financial": 2, "analytics": 2, "savings": 1, "budgets": 1}

    def test_search_title_and_description(self, snapshot):
        assert [r.id for r in ReportAssembler.search(snapshot.reports, "BUDGET")] == ["budget-performance"]
        assert [r.id for r in ReportAssembler.search(snapshot.reports, "most used")] == ["payment-methods"]

    def test_search_within_category(self, snapshot):
        results = ReportAssembler.search(snapshot.reports, "", category="financial")
        assert [r.id for r in results] == ["cash-flow", "income-sources"]

    def test_unknown_report(self, snapshot):
        with pytest.raises(ReportNotFoundError):
            ReportAssembler.find(snapshot.reports, "tax-summary")


class TestExport:
    """CSV export."""

    def test_category_breakdown_round_trip(self, snapshot):
        """Parsing the export gives back the breakdown map."""
        report = ReportAssembler.find(snapshot.reports, CATEGORY_BREAKDOWN)
        exported = ReportAssembler.export(report)
        rows = parse_export(exported.content)

        parsed = {
            row["Category"]: (Decimal(row["Amount"]), int(row["Transaction Count"]))
            for row in rows
        }
        expected = {label: (e.amount, e.count) for label, e in snapshot.category_breakdown.items()}
        assert parsed == expected
        assert exported.filename == "expense-categories.csv"
        assert exported.row_count == 3

    def test_export_preserves_insertion_order(self, snapshot):
        report = ReportAssembler.find(snapshot.reports, CATEGORY_BREAKDOWN)
        content = ReportAssembler.export(report).content
        lines = content.splitlines()
        assert lines[0] == "Category,Amount,Transaction Count"
        assert lines[1].startswith("Food,")
        assert lines[2].startswith('"Rent, Utilities",')
        assert lines[3].startswith("Uncategorized,")

    def test_export_is_deterministic(self, snapshot):
        report = ReportAssembler.find(snapshot.reports, BUDGET_PERFORMANCE)
        assert ReportAssembler.export(report).content == ReportAssembler.export(report).content

    def test_budget_export_in_definition_order(self):
        budgets = budget_utilization(_records().budgets, _records().expenses)
        snapshot = build_snapshot(_records(), scope_key="s", generation=1, today=TODAY, computed_at=NOW)
        rows = parse_export(ReportAssembler.export(
            ReportAssembler.find(snapshot.reports, BUDGET_PERFORMANCE)
        ).content)

        assert [row["Budget Name"] for row in rows] == [b.budget.name for b in budgets]
        assert rows[0]["Percentage Used (%)"] == "80.5"
        assert rows[0]["Status"] == "warning"
        assert rows[1]["Remaining"] == "0"
        assert rows[1]["Status"] == "over"

    def test_cash_flow_export(self, snapshot):
        rows = parse_export(ReportAssembler.export(ReportAssembler.find(snapshot.reports, CASH_FLOW)).content)
        assert [row["Metric"] for row in rows] == ["Total Income", "Total Expenses", "Net Income"]
        assert Decimal(rows[2]["Amount"]) == Decimal("1975.01")

    def test_uncategorized_label_in_breakdown(self):
        breakdown = category_breakdown(
            [Expense(id="x", user_id="u", amount="1", date=date(2024, 1, 1))], []
        )
        assert "Uncategorized" in breakdown
