"""
Report Assembler

Packages aggregation outputs into named report descriptors and
serializes them to CSV.

DESIGN DECISION: Descriptors are rebuilt with a fresh timestamp on every
recompute and never diffed against earlier versions.

Export ordering is deterministic: maps are written in insertion order,
budgets in definition order, goals in snapshot order.
"""

import csv
import io
from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, Field

from src.models.views import (
    HUNDRED,
    ZERO,
    BreakdownEntry,
    BudgetStatus,
    BudgetUtilization,
    CashFlow,
    ReportDescriptor,
    SavingsProgress,
)


# =============================================================================
# REPORT CATALOGUE
# =============================================================================

CASH_FLOW = "cash-flow"
CATEGORY_BREAKDOWN = "category-breakdown"
INCOME_SOURCES = "income-sources"
SAVINGS_GOALS = "savings-goals"
BUDGET_PERFORMANCE = "budget-performance"
PAYMENT_METHODS = "payment-methods"

REPORT_CATEGORIES: dict[str, str] = {
    "financial": "Financial",
    "analytics": "Analytics",
    "savings": "Savings",
    "budgets": "Budgets",
}

EXPORT_HEADERS: dict[str, list[str]] = {
    CASH_FLOW: ["Metric", "Amount"],
    CATEGORY_BREAKDOWN: ["Category", "Amount", "Transaction Count"],
    INCOME_SOURCES: ["Source", "Amount"],
    SAVINGS_GOALS: ["Goal Name", "Target Amount", "Current Amount", "Target Date", "Progress (%)"],
    BUDGET_PERFORMANCE: ["Budget Name", "Amount", "Spent", "Remaining", "Percentage Used (%)", "Status"],
    PAYMENT_METHODS: ["Payment Method", "Total Spent"],
}

EXPORT_FILENAMES: dict[str, str] = {
    CASH_FLOW: "net-cash-flow.csv",
    CATEGORY_BREAKDOWN: "expense-categories.csv",
    INCOME_SOURCES: "income-sources.csv",
    SAVINGS_GOALS: "savings-goals.csv",
    BUDGET_PERFORMANCE: "budget-performance.csv",
    PAYMENT_METHODS: "payment-methods.csv",
}

_ONE_DECIMAL = Decimal("0.1")


class ReportNotFoundError(KeyError):
    """No report with the requested id in the current snapshot."""
    pass


class ReportCategory(BaseModel):
    """One entry of the report category index."""

    id: str
    name: str
    count: int = Field(default=0, ge=0)


class ReportExport(BaseModel):
    """Serialized report ready to be written to a file."""

    report_id: str
    filename: str
    content: str
    row_count: int


def _percent(value: Decimal) -> str:
    return str(value.quantize(_ONE_DECIMAL))


def _money(value: Decimal, currency: str) -> str:
    return f"{currency} {value:,.2f}"


# =============================================================================
# ASSEMBLER
# =============================================================================

class ReportAssembler:
    """Builds, indexes, searches and exports report descriptors."""

    def __init__(self, currency_code: str = "INR"):
        self._currency = currency_code

    def assemble(
        self,
        *,
        cash_flow: CashFlow,
        category_breakdown: dict[str, BreakdownEntry],
        income_breakdown: dict[str, BreakdownEntry],
        savings: list[SavingsProgress],
        budgets: list[BudgetUtilization],
        payment_methods: dict[str, Decimal],
        generated_at: datetime,
    ) -> list[ReportDescriptor]:
        """One descriptor per logical report, all stamped with generated_at."""
        def money(value: Decimal) -> str:
            return _money(value, self._currency)

        # Cash flow
        direction = "Positive" if cash_flow.is_positive else "Negative"
        reports = [ReportDescriptor(
            id=CASH_FLOW,
            title="Net Cash Flow Analysis",
            category="financial",
            description=(
                f"{direction} cash flow: {money(cash_flow.net)}. "
                f"Income: {money(cash_flow.total_income)}, "
                f"Expenses: {money(cash_flow.total_expenses)}"
            ),
            data=cash_flow,
            generated_at=generated_at,
        )]

        # Category breakdown
        if category_breakdown:
            top = max(category_breakdown.items(), key=lambda item: item[1].amount)[0]
            top_text = f"Top: {top}"
        else:
            top_text = "No expenses yet"
        reports.append(ReportDescriptor(
            id=CATEGORY_BREAKDOWN,
            title="Expense Category Breakdown",
            category="analytics",
            description=f"Spending across {len(category_breakdown)} categories. {top_text}",
            data=category_breakdown,
            generated_at=generated_at,
        ))

        # Income sources
        reports.append(ReportDescriptor(
            id=INCOME_SOURCES,
            title="Income Sources Report",
            category="financial",
            description=(
                f"{len(income_breakdown)} income sources totaling "
                f"{money(cash_flow.total_income)}"
            ),
            data=income_breakdown,
            generated_at=generated_at,
        ))

        # Savings goals (only the ones still being saved for)
        active = [entry for entry in savings if not entry.achieved]
        target = sum((entry.goal.target_amount for entry in active), ZERO)
        saved = sum((entry.goal.current_amount for entry in active), ZERO)
        overall = round(saved / target * HUNDRED) if target > 0 else 0
        reports.append(ReportDescriptor(
            id=SAVINGS_GOALS,
            title="Savings Goals Progress",
            category="savings",
            description=(
                f"{len(active)} active goals. Progress: {money(saved)} of "
                f"{money(target)} ({overall}%)"
            ),
            data=active,
            generated_at=generated_at,
        ))

        # Budget performance
        over = sum(1 for b in budgets if b.status == BudgetStatus.OVER)
        warning = sum(1 for b in budgets if b.status == BudgetStatus.WARNING)
        reports.append(ReportDescriptor(
            id=BUDGET_PERFORMANCE,
            title="Budget Performance",
            category="budgets",
            description=(
                f"{len(budgets)} active budgets. {over} over budget, "
                f"{warning} approaching limit"
            ),
            data=budgets,
            generated_at=generated_at,
        ))

        # Payment methods
        if payment_methods:
            most_used = max(payment_methods.items(), key=lambda item: item[1])[0]
            method_text = f"Most used: {most_used}"
        else:
            method_text = "No payment data"
        reports.append(ReportDescriptor(
            id=PAYMENT_METHODS,
            title="Payment Methods Analysis",
            category="analytics",
            description=f"Spending breakdown by payment method. {method_text}",
            data=payment_methods,
            generated_at=generated_at,
        ))

        return reports

    # -------------------------------------------------------------------------
    # Index & search
    # -------------------------------------------------------------------------

    @staticmethod
    def categories(reports: list[ReportDescriptor]) -> list[ReportCategory]:
        """Category index with counts, "all" first."""
        index = [ReportCategory(id="all", name="All Reports", count=len(reports))]
        for category_id, name in REPORT_CATEGORIES.items():
            index.append(ReportCategory(
                id=category_id,
                name=name,
                count=sum(1 for r in reports if r.category == category_id),
            ))
        return index

    @staticmethod
    def search(
        reports: list[ReportDescriptor],
        term: str = "",
        category: str = "all",
    ) -> list[ReportDescriptor]:
        """Case-insensitive title/description match within a category."""
        needle = term.strip().lower()
        matches = []
        for report in reports:
            if category != "all" and report.category != category:
                continue
            if needle and needle not in report.title.lower() and needle not in report.description.lower():
                continue
            matches.append(report)
        return matches

    @staticmethod
    def find(reports: list[ReportDescriptor], report_id: str) -> ReportDescriptor:
        for report in reports:
            if report.id == report_id:
                return report
        raise ReportNotFoundError(report_id)

    # -------------------------------------------------------------------------
    # Export
    # -------------------------------------------------------------------------

    @staticmethod
    def _rows(report: ReportDescriptor) -> list[list[Any]]:
        data = report.data

        if report.id == CASH_FLOW:
            return [
                ["Total Income", data.total_income],
                ["Total Expenses", data.total_expenses],
                ["Net Income", data.net],
            ]
        if report.id == CATEGORY_BREAKDOWN:
            return [[label, entry.amount, entry.count] for label, entry in data.items()]
        if report.id == INCOME_SOURCES:
            return [[source, entry.amount] for source, entry in data.items()]
        if report.id == SAVINGS_GOALS:
            return [
                [
                    entry.goal.name,
                    entry.goal.target_amount,
                    entry.goal.current_amount,
                    entry.goal.target_date.isoformat() if entry.goal.target_date else "N/A",
                    _percent(entry.progress),
                ]
                for entry in data
            ]
        if report.id == BUDGET_PERFORMANCE:
            return [
                [
                    entry.budget.name,
                    entry.budget.amount,
                    entry.spent,
                    entry.remaining,
                    _percent(entry.percentage),
                    entry.status.value,
                ]
                for entry in data
            ]
        if report.id == PAYMENT_METHODS:
            return [[method, amount] for method, amount in data.items()]

        raise ReportNotFoundError(report.id)

    @classmethod
    def export(cls, report: ReportDescriptor) -> ReportExport:
        """
        Serialize a report to CSV text.

        Header row first, then one row per entry. Amounts are written as
        plain decimals so the file re-parses to the same values.
        """
        rows = cls._rows(report)
        buffer = io.StringIO()
        writer = csv.writer(buffer, lineterminator="\n")
        writer.writerow(EXPORT_HEADERS[report.id])
        for row in rows:
            writer.writerow([str(cell) for cell in row])

        return ReportExport(
            report_id=report.id,
            filename=EXPORT_FILENAMES[report.id],
            content=buffer.getvalue(),
            row_count=len(rows),
        )


def parse_export(content: str) -> list[dict[str, str]]:
    """Read an exported report back into header → value rows."""
    return list(csv.DictReader(io.StringIO(content)))
