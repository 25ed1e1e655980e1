"""
Budget Progress Classifier

Pure function of (percentage, threshold). The classification is
re-derived on every recompute and never persisted; callers that want
to alert on transitions diff two successive classifications.
"""

from decimal import Decimal
from typing import Mapping

from src.models.views import HUNDRED, BudgetStatus


def classify(
    percentage: Decimal,
    threshold: Decimal,
    over_budget: bool = False,
) -> BudgetStatus:
    """
    Classify budget utilization.

    Args:
        percentage: spent / amount * 100 (0 when amount is 0)
        threshold: alert threshold as a fraction in (0, 1]
        over_budget: spent > amount, for budgets whose amount is 0 and
            therefore have no meaningful percentage

    Returns:
        OVER above 100%, WARNING from threshold·100 up to 100%, else GOOD
    """
    if over_budget or percentage > HUNDRED:
        return BudgetStatus.OVER
    if percentage >= threshold * HUNDRED:
        return BudgetStatus.WARNING
    return BudgetStatus.GOOD


ALERT_STATES = frozenset({BudgetStatus.WARNING, BudgetStatus.OVER})


def entered_alert_states(
    previous: Mapping[str, BudgetStatus],
    current: Mapping[str, BudgetStatus],
) -> dict[str, BudgetStatus]:
    """
    Budgets whose classification moved into a worse alert state.

    Both maps are budget id → status. A budget seen for the first time
    in an alert state counts as having entered it.
    """
    entered = {}
    for budget_id, status in current.items():
        before = previous.get(budget_id, BudgetStatus.GOOD)
        if status in ALERT_STATES and status != before and before != BudgetStatus.OVER:
            entered[budget_id] = status
    return entered
