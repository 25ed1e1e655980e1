"""
Derived View Models for Live Ledger

Everything the aggregation engine produces is one of these models.
They are derived, cheap and disposable: a recompute cycle builds a new
set from scratch and nothing is ever patched in place.
"""

from datetime import date, datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from src.models.records import Budget, SavingsGoal, Table


ZERO = Decimal("0")
HUNDRED = Decimal("100")


class BudgetStatus(str, Enum):
    """
    Budget progress classification.

    GOOD: below the alert threshold
    WARNING: at/above the threshold but not over 100%
    OVER: spent more than the budget amount
    """
    GOOD = "good"
    WARNING = "warning"
    OVER = "over"


class _View(BaseModel):
    model_config = ConfigDict(frozen=True)


class TrendBucket(_View):
    """One calendar day of the trailing spending trend."""

    date: date
    key: str = Field(..., description="Normalized YYYY-MM-DD key")
    total: Decimal = ZERO
    count: int = Field(default=0, ge=0)


class BreakdownEntry(_View):
    """Amount and transaction count for one label of a breakdown."""

    amount: Decimal = ZERO
    count: int = Field(default=0, ge=0)
    color: Optional[str] = None


class BudgetUtilization(_View):
    """Spend against one active budget, freshly classified."""

    budget: Budget
    spent: Decimal
    remaining: Decimal
    percentage: Decimal
    over_budget: bool
    status: BudgetStatus


class SavingsProgress(_View):
    """Progress of one savings goal, achievement recomputed."""

    goal: SavingsGoal
    progress: Decimal = Field(..., ge=0, le=100)
    achieved: bool


class CashFlow(_View):
    """Income minus expenses over a date range."""

    total_income: Decimal = ZERO
    total_expenses: Decimal = ZERO
    net: Decimal = ZERO

    @property
    def is_positive(self) -> bool:
        return self.net >= 0


class SpendingSummary(_View):
    """Headline numbers of the dashboard."""

    today_total: Decimal = ZERO
    yesterday_total: Decimal = ZERO
    week_total: Decimal = ZERO
    total: Decimal = ZERO
    active_days: int = 0
    average_daily: Decimal = ZERO


class PeriodChange(_View):
    """A trailing window compared with the window before it."""

    current: Decimal = ZERO
    previous: Decimal = ZERO
    percent_change: Decimal = ZERO


# =============================================================================
# DATE RANGES
# =============================================================================

RANGE_PRESETS: dict[str, Optional[int]] = {
    "last-7-days": 7,
    "last-30-days": 30,
    "last-3-months": 90,
    "last-year": 365,
    "all-time": None,
}


class DateRange(_View):
    """
    Inclusive date range used as the cash-flow / report filter.

    A None bound is open on that side; all-time has neither.
    """

    start: Optional[date] = None
    end: Optional[date] = None
    label: str = "custom"

    @model_validator(mode='after')
    def validate_bounds(self) -> 'DateRange':
        if self.start is not None and self.end is not None and self.end < self.start:
            raise ValueError("Date range end cannot be before start")
        return self

    @classmethod
    def preset(cls, name: str, today: date) -> 'DateRange':
        """Build one of the named ranges ending today. all-time is unbounded."""
        if name not in RANGE_PRESETS:
            raise ValueError(f"Unknown date range: {name}. Allowed: {sorted(RANGE_PRESETS)}")
        days = RANGE_PRESETS[name]
        if days is None:
            return cls(label=name)
        return cls(start=today - timedelta(days=days), end=today, label=name)

    def contains(self, day: date) -> bool:
        if self.start is not None and day < self.start:
            return False
        return self.end is None or day <= self.end

    def __call__(self, day: date) -> bool:
        return self.contains(day)


# =============================================================================
# REPORTS & ENGINE STATE
# =============================================================================

class ReportDescriptor(_View):
    """
    A named, typed report packaged from engine outputs.

    data holds the report-specific payload (a map or a list of views).
    """

    id: str
    title: str
    category: str
    description: str
    data: Any
    generated_at: datetime


class StaleNotice(_View):
    """
    Side-channel notice that the served aggregates are not fresh.

    Raised when a fetch or a subscription exhausted its retries or hit a
    non-retryable error. The last good aggregates remain in use.
    """

    scope_key: str
    table: Optional[Table] = None
    error_kind: str
    message: str
    hint: Optional[str] = None
    at: datetime = Field(default_factory=datetime.utcnow)


class AggregateSnapshot(_View):
    """
    The full output of one recompute cycle.

    Replaced wholesale on every cycle.
    """

    scope_key: str
    generation: int
    computed_at: datetime
    stale: bool = False
    trend: list[TrendBucket] = Field(default_factory=list)
    category_breakdown: dict[str, BreakdownEntry] = Field(default_factory=dict)
    income_breakdown: dict[str, BreakdownEntry] = Field(default_factory=dict)
    payment_methods: dict[str, Decimal] = Field(default_factory=dict)
    budgets: list[BudgetUtilization] = Field(default_factory=list)
    savings: list[SavingsProgress] = Field(default_factory=list)
    cash_flow: CashFlow = Field(default_factory=CashFlow)
    summary: SpendingSummary = Field(default_factory=SpendingSummary)
    reports: list[ReportDescriptor] = Field(default_factory=list)
