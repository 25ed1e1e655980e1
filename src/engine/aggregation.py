"""
Aggregation Engine

Pure, synchronous, deterministic functions from record snapshots to
derived views. Same inputs, same outputs: no clock reads (today is
always passed in), no I/O, no mutation of the inputs.

DESIGN DECISION: Every view is recomputed from the full snapshot on
every cycle. There is no incremental patching, so a dropped or
duplicated change signal can never leave a view inconsistent.

CRITICAL: Nothing here divides by a zero budget amount or savings
target. Both fall back to 0%.
"""

from collections.abc import Callable, Iterable, Sequence
from datetime import date, timedelta
from decimal import Decimal
from typing import Union

from src.models.records import (
    DEFAULT_CATEGORY_COLOR,
    UNCATEGORIZED,
    Budget,
    Category,
    Expense,
    Income,
    SavingsGoal,
    date_key,
)
from src.models.views import (
    HUNDRED,
    ZERO,
    BreakdownEntry,
    BudgetUtilization,
    CashFlow,
    PeriodChange,
    SavingsProgress,
    SpendingSummary,
    TrendBucket,
)
from src.engine.classifier import classify


DatePredicate = Callable[[date], bool]


# =============================================================================
# TREND
# =============================================================================

def trend_series(
    expenses: Iterable[Expense],
    today: date,
    window: int = 30,
) -> list[TrendBucket]:
    """
    Dense daily spending buckets for the trailing window, oldest first.

    Bucket i covers today - (window - 1 - i). Expenses are matched to
    buckets by exact equality of the normalized date key, so every
    calendar day has exactly one bucket even when it has no spending.
    """
    if window < 1:
        raise ValueError("Trend window must be at least one day")

    days = [today - timedelta(days=window - 1 - i) for i in range(window)]
    totals: dict[str, Decimal] = {date_key(day): ZERO for day in days}
    counts: dict[str, int] = {date_key(day): 0 for day in days}

    for expense in expenses:
        key = expense.date_key
        if key in totals:
            totals[key] += expense.amount
            counts[key] += 1

    return [
        TrendBucket(date=day, key=date_key(day), total=totals[date_key(day)], count=counts[date_key(day)])
        for day in days
    ]


# =============================================================================
# BREAKDOWNS
# =============================================================================

def category_breakdown(
    expenses: Iterable[Expense],
    categories: Iterable[Category],
) -> dict[str, BreakdownEntry]:
    """
    Spending per category label, in order of first appearance.

    Expenses without a category, or whose category is unknown or
    inactive, are grouped under "Uncategorized".
    """
    by_id = {category.id: category for category in categories}
    totals: dict[str, Decimal] = {}
    counts: dict[str, int] = {}
    colors: dict[str, str] = {}

    for expense in expenses:
        category = by_id.get(expense.category_id) if expense.category_id else None
        label = category.name if category else UNCATEGORIZED
        totals[label] = totals.get(label, ZERO) + expense.amount
        counts[label] = counts.get(label, 0) + 1
        colors[label] = category.color if category else DEFAULT_CATEGORY_COLOR

    return {
        label: BreakdownEntry(amount=totals[label], count=counts[label], color=colors[label])
        for label in totals
    }


def income_breakdown(income: Iterable[Income]) -> dict[str, BreakdownEntry]:
    """Income per source label, in order of first appearance."""
    totals: dict[str, Decimal] = {}
    counts: dict[str, int] = {}
    for entry in income:
        totals[entry.source] = totals.get(entry.source, ZERO) + entry.amount
        counts[entry.source] = counts.get(entry.source, 0) + 1
    return {
        source: BreakdownEntry(amount=totals[source], count=counts[source])
        for source in totals
    }


def payment_method_breakdown(expenses: Iterable[Expense]) -> dict[str, Decimal]:
    """Total spent per payment method ("cash" when unspecified)."""
    totals: dict[str, Decimal] = {}
    for expense in expenses:
        totals[expense.payment_method] = totals.get(expense.payment_method, ZERO) + expense.amount
    return totals


# =============================================================================
# BUDGETS
# =============================================================================

def expense_in_budget_scope(budget: Budget, expense: Expense) -> bool:
    """
    Does the expense belong to the same workspace as the budget?

    Personal budgets only count their owner's personal expenses; group
    budgets only count expenses of their group.
    """
    if budget.group_id is None:
        return expense.group_id is None and expense.user_id == budget.user_id
    return expense.group_id == budget.group_id


def budget_spent(budget: Budget, expenses: Iterable[Expense]) -> Decimal:
    """Sum of in-scope expenses inside the inclusive period and category."""
    spent = ZERO
    for expense in expenses:
        if not budget.covers(expense.date):
            continue
        if budget.category_id is not None and expense.category_id != budget.category_id:
            continue
        if not expense_in_budget_scope(budget, expense):
            continue
        spent += expense.amount
    return spent


def budget_utilization(
    budgets: Iterable[Budget],
    expenses: Sequence[Expense],
) -> list[BudgetUtilization]:
    """Utilization of every active budget, in definition order."""
    results = []
    for budget in budgets:
        if not budget.is_active:
            continue

        spent = budget_spent(budget, expenses)
        percentage = spent / budget.amount * HUNDRED if budget.amount > 0 else ZERO
        over_budget = spent > budget.amount

        results.append(BudgetUtilization(
            budget=budget,
            spent=spent,
            remaining=max(budget.amount - spent, ZERO),
            percentage=percentage,
            over_budget=over_budget,
            status=classify(percentage, budget.alert_threshold, over_budget),
        ))
    return results


# =============================================================================
# CASH FLOW & SAVINGS
# =============================================================================

def cash_flow(
    expenses: Iterable[Expense],
    income: Iterable[Income],
    in_range: DatePredicate,
) -> CashFlow:
    """Income minus expenses for the records whose date satisfies in_range."""
    total_income = sum((i.amount for i in income if in_range(i.date)), ZERO)
    total_expenses = sum((e.amount for e in expenses if in_range(e.date)), ZERO)
    return CashFlow(
        total_income=total_income,
        total_expenses=total_expenses,
        net=total_income - total_expenses,
    )


def goal_progress(goal: SavingsGoal) -> Decimal:
    """current / target as a percentage clamped to [0, 100]; 0 for a zero target."""
    if goal.target_amount <= 0:
        return ZERO
    progress = goal.current_amount / goal.target_amount * HUNDRED
    return min(max(progress, ZERO), HUNDRED)


def savings_progress(goals: Iterable[SavingsGoal]) -> list[SavingsProgress]:
    """Progress of every goal with achievement recomputed from the amounts."""
    return [
        SavingsProgress(
            goal=goal,
            progress=goal_progress(goal),
            achieved=goal.current_amount >= goal.target_amount,
        )
        for goal in goals
    ]


# =============================================================================
# DASHBOARD SUMMARIES
# =============================================================================

def _total_between(records: Iterable[Union[Expense, Income]], start: date, end: date) -> Decimal:
    return sum((r.amount for r in records if start <= r.date <= end), ZERO)


def spending_summary(expenses: Sequence[Expense], today: date) -> SpendingSummary:
    """
    Headline spending numbers.

    Weeks start on Monday. The daily average is taken over the days
    that have at least one expense.
    """
    week_start = today - timedelta(days=today.weekday())
    week_end = week_start + timedelta(days=6)
    yesterday = today - timedelta(days=1)

    total = sum((e.amount for e in expenses), ZERO)
    active_days = len({e.date_key for e in expenses})

    return SpendingSummary(
        today_total=_total_between(expenses, today, today),
        yesterday_total=_total_between(expenses, yesterday, yesterday),
        week_total=_total_between(expenses, week_start, week_end),
        total=total,
        active_days=active_days,
        average_daily=total / active_days if active_days else ZERO,
    )


def period_change(
    records: Sequence[Union[Expense, Income]],
    today: date,
    days: int = 30,
) -> PeriodChange:
    """
    Compare the trailing window with the window just before it.

    Both windows are inclusive and span days + 1 calendar days: the
    current one is today - days .. today, the previous one ends the day
    before it starts, so no day is counted twice.

    percent_change is 0 when the previous window had nothing.
    """
    current_start = today - timedelta(days=days)
    previous_end = current_start - timedelta(days=1)
    previous_start = previous_end - timedelta(days=days)

    current = _total_between(records, current_start, today)
    previous = _total_between(records, previous_start, previous_end)
    change = (current - previous) / previous * HUNDRED if previous > 0 else ZERO

    return PeriodChange(current=current, previous=previous, percent_change=change)
