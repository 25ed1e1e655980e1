"""
Data Models Package

This package contains all Pydantic models used by the Live Ledger engine.
Rows read from the remote store, derived views and audit events all
conform to these schemas.
"""

from src.models.records import (
    DEFAULT_CATEGORY_COLOR,
    RECORD_TABLES,
    UNCATEGORIZED,
    Budget,
    Category,
    Expense,
    GoalPriority,
    Group,
    GroupScope,
    Income,
    PersonalScope,
    SavingsGoal,
    Table,
    WorkspaceScope,
    date_key,
    normalize_date,
)
from src.models.views import (
    AggregateSnapshot,
    BreakdownEntry,
    BudgetStatus,
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
from src.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Records
    "DEFAULT_CATEGORY_COLOR",
    "RECORD_TABLES",
    "UNCATEGORIZED",
    "Budget",
    "Category",
    "Expense",
    "GoalPriority",
    "Group",
    "Income",
    "SavingsGoal",
    "Table",
    "date_key",
    "normalize_date",
    # Scopes
    "GroupScope",
    "PersonalScope",
    "WorkspaceScope",
    # Views
    "AggregateSnapshot",
    "BreakdownEntry",
    "BudgetStatus",
    "BudgetUtilization",
    "CashFlow",
    "DateRange",
    "PeriodChange",
    "ReportDescriptor",
    "SavingsProgress",
    "SpendingSummary",
    "StaleNotice",
    "TrendBucket",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
