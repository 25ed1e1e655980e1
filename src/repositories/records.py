"""Repositories for the five record tables."""

from src.models.records import (
    Budget,
    Category,
    Expense,
    Income,
    SavingsGoal,
    Table,
)
from src.repositories.base import Repository
from src.services.storage.interface import Order


class ExpenseRepository(Repository[Expense]):
    """Newest first."""

    table = Table.EXPENSES
    order = Order(column="date", descending=True)


class IncomeRepository(Repository[Income]):
    table = Table.INCOME
    order = Order(column="date", descending=True)


class CategoryRepository(Repository[Category]):
    table = Table.CATEGORIES


class BudgetRepository(Repository[Budget]):
    table = Table.BUDGETS


class SavingsGoalRepository(Repository[SavingsGoal]):
    table = Table.SAVINGS_GOALS
