"""Record repositories and the group directory."""

from src.repositories.base import Repository, filters_for
from src.repositories.groups import GroupDirectory
from src.repositories.records import (
    BudgetRepository,
    CategoryRepository,
    ExpenseRepository,
    IncomeRepository,
    SavingsGoalRepository,
)

__all__ = [
    "BudgetRepository",
    "CategoryRepository",
    "ExpenseRepository",
    "GroupDirectory",
    "IncomeRepository",
    "Repository",
    "SavingsGoalRepository",
    "filters_for",
]
