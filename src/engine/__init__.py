"""
Aggregation engine package.

Pure derivations from record snapshots: trend, breakdowns, budget
utilization and classification, cash flow, savings progress, reports.
"""

from src.engine.aggregation import (
    budget_spent,
    budget_utilization,
    cash_flow,
    category_breakdown,
    expense_in_budget_scope,
    goal_progress,
    income_breakdown,
    payment_method_breakdown,
    period_change,
    savings_progress,
    spending_summary,
    trend_series,
)
from src.engine.classifier import ALERT_STATES, classify, entered_alert_states
from src.engine.reports import (
    REPORT_CATEGORIES,
    ReportAssembler,
    ReportCategory,
    ReportExport,
    ReportNotFoundError,
    parse_export,
)
from src.engine.snapshot import RecordSet, build_snapshot

__all__ = [
    # Aggregations
    "budget_spent",
    "budget_utilization",
    "cash_flow",
    "category_breakdown",
    "expense_in_budget_scope",
    "goal_progress",
    "income_breakdown",
    "payment_method_breakdown",
    "period_change",
    "savings_progress",
    "spending_summary",
    "trend_series",
    # Classifier
    "ALERT_STATES",
    "classify",
    "entered_alert_states",
    # Reports
    "REPORT_CATEGORIES",
    "ReportAssembler",
    "ReportCategory",
    "ReportExport",
    "ReportNotFoundError",
    "parse_export",
    # Snapshot
    "RecordSet",
    "build_snapshot",
]
