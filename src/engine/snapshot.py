"""
Snapshot Builder

Runs every aggregation over one consistent set of repository snapshots
and packages the result, reports included, as an AggregateSnapshot.
"""

from collections.abc import Sequence
from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict

from src.engine.aggregation import (
    budget_utilization,
    cash_flow,
    category_breakdown,
    income_breakdown,
    payment_method_breakdown,
    savings_progress,
    spending_summary,
    trend_series,
)
from src.engine.reports import ReportAssembler
from src.models.records import Budget, Category, Expense, Income, SavingsGoal
from src.models.views import AggregateSnapshot, DateRange


class RecordSet(BaseModel):
    """The five repository snapshots a recompute reads from."""

    model_config = ConfigDict(frozen=True)

    expenses: tuple[Expense, ...] = ()
    income: tuple[Income, ...] = ()
    categories: tuple[Category, ...] = ()
    budgets: tuple[Budget, ...] = ()
    goals: tuple[SavingsGoal, ...] = ()

    def row_counts(self) -> dict[str, int]:
        return {
            "expenses": len(self.expenses),
            "income": len(self.income),
            "categories": len(self.categories),
            "budgets": len(self.budgets),
            "savings_goals": len(self.goals),
        }


def _in_range(records: Sequence, report_range: DateRange) -> list:
    return [r for r in records if report_range.contains(r.date)]


def build_snapshot(
    records: RecordSet,
    *,
    scope_key: str,
    generation: int,
    today: date,
    computed_at: datetime,
    trend_window: int = 30,
    report_range: Optional[DateRange] = None,
    assembler: Optional[ReportAssembler] = None,
) -> AggregateSnapshot:
    """
    Derive every view from the records.

    The dashboard views cover the whole snapshot. Reports, and the
    cash flow they share, cover report_range (all-time by default).
    """
    report_range = report_range or DateRange.preset("all-time", today)
    assembler = assembler or ReportAssembler()

    categories = category_breakdown(records.expenses, records.categories)
    income = income_breakdown(records.income)
    payment_methods = payment_method_breakdown(records.expenses)
    budgets = budget_utilization(records.budgets, records.expenses)
    savings = savings_progress(records.goals)
    flow = cash_flow(records.expenses, records.income, report_range)

    range_expenses = _in_range(records.expenses, report_range)
    reports = assembler.assemble(
        cash_flow=flow,
        category_breakdown=category_breakdown(range_expenses, records.categories),
        income_breakdown=income_breakdown(_in_range(records.income, report_range)),
        savings=savings,
        budgets=budgets,
        payment_methods=payment_method_breakdown(range_expenses),
        generated_at=computed_at,
    )

    return AggregateSnapshot(
        scope_key=scope_key,
        generation=generation,
        computed_at=computed_at,
        trend=trend_series(records.expenses, today, trend_window),
        category_breakdown=categories,
        income_breakdown=income,
        payment_methods=payment_methods,
        budgets=budgets,
        savings=savings,
        cash_flow=flow,
        summary=spending_summary(records.expenses, today),
        reports=reports,
    )
