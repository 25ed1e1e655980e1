"""
Tests for Live Ledger models

Test strategy:
1. Unit tests for individual components (models, validators, engine)
2. Integration tests for the sync flows (in-memory store)
3. No real API calls in tests (fakes only)
"""

import pytest
from datetime import date, datetime
from decimal import Decimal
from uuid import uuid4

from pydantic import ValidationError

from src.models.records import (
    Budget,
    Category,
    Expense,
    GoalPriority,
    Group,
    GroupScope,
    Income,
    PersonalScope,
    SavingsGoal,
    normalize_date,
)
from src.models.views import DateRange
from src.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)


class TestRecordModels:
    """Tests for the record models rows are normalized into."""

    def test_expense_date_normalized_from_timestamp(self):
        """Full ISO timestamps are reduced to the calendar day."""
        expense = Expense(
            id="e-1",
            user_id="u",
            amount="12.50",
            date="2024-03-14T23:59:00Z",
        )
        assert expense.date == date(2024, 3, 14)
        assert expense.date_key == "2024-03-14"
        assert expense.amount == Decimal("12.50")

    def test_expense_defaults(self):
        """Blank references become None and payment method defaults to cash."""
        expense = Expense(
            id=42,
            user_id="u",
            group_id="",
            category_id="  ",
            amount=5,
            date=date(2024, 1, 1),
            payment_method="",
        )
        assert expense.id == "42"
        assert expense.group_id is None
        assert expense.category_id is None
        assert expense.payment_method == "cash"
        assert expense.is_personal

    def test_expense_rejects_non_positive_amount(self):
        with pytest.raises(ValidationError):
            Expense(id="e", user_id="u", amount="0", date="2024-01-01")

    def test_records_are_frozen(self):
        """Snapshot records cannot be mutated in place."""
        income = Income(id="i", user_id="u", amount="10", date="2024-01-01")
        with pytest.raises(ValidationError):
            income.amount = Decimal("20")

    def test_income_source_defaults(self):
        income = Income(id="i", user_id="u", amount="10", date="2024-01-01", source=None)
        assert income.source == "other"

    def test_category_color_fallback(self):
        category = Category(id="c", user_id="u", name="Misc", color="")
        assert category.color == "#6b7280"
        assert category.is_active is True

    def test_budget_period_validation(self):
        """End date before start date is rejected."""
        with pytest.raises(ValidationError):
            Budget(
                id="b",
                user_id="u",
                name="Bad",
                amount="100",
                start_date="2024-03-31",
                end_date="2024-03-01",
            )

    def test_budget_covers_inclusive_bounds(self):
        budget = Budget(
            id="b",
            user_id="u",
            name="March",
            amount="100",
            start_date="2024-03-01",
            end_date="2024-03-31",
        )
        assert budget.covers(date(2024, 3, 1))
        assert budget.covers(date(2024, 3, 31))
        assert not budget.covers(date(2024, 4, 1))

    def test_budget_allows_zero_amount(self):
        budget = Budget(
            id="b", user_id="u", name="Zero", amount="0",
            start_date="2024-03-01", end_date="2024-03-31",
        )
        assert budget.amount == Decimal("0")

    def test_goal_achieved_recomputed_from_amounts(self):
        """The stored is_achieved flag is ignored."""
        goal = SavingsGoal(
            id="s",
            user_id="u",
            name="Bike",
            target_amount="500",
            current_amount="500",
            is_achieved=False,
            priority="HIGH",
        )
        assert goal.is_achieved is True
        assert goal.priority == GoalPriority.HIGH

        pending = SavingsGoal(
            id="s2", user_id="u", name="Car", target_amount="5000",
            current_amount="10", is_achieved=True,
        )
        assert pending.is_achieved is False

    def test_group_owner_always_member(self):
        group = Group(id="g", owner_id="owner", name="Home", members='["a", "b"]')
        assert group.members == frozenset({"owner", "a", "b"})
        assert group.has_member("owner")
        assert not group.has_member("c")

    def test_scope_keys(self):
        assert PersonalScope(principal_id="u").key == "personal:u"
        assert GroupScope(group_id="g").key == "group:g"

    def test_normalize_date_passthrough(self):
        assert normalize_date(None) is None
        assert normalize_date(datetime(2024, 5, 1, 10, 0)) == date(2024, 5, 1)


class TestDateRange:
    """Tests for cash-flow date ranges."""

    def test_presets(self):
        today = date(2024, 3, 15)
        assert DateRange.preset("last-7-days", today).start == date(2024, 3, 8)
        assert DateRange.preset("last-3-months", today).start == date(2023, 12, 16)
        assert DateRange.preset("all-time", today).start is None

    def test_all_time_is_open_ended(self):
        window = DateRange.preset("all-time", date(2024, 3, 15))
        assert window.end is None
        assert window(date(1990, 1, 1))
        assert window(date(2024, 3, 18))

    def test_unknown_preset(self):
        with pytest.raises(ValueError):
            DateRange.preset("last-decade", date(2024, 3, 15))

    def test_contains_is_inclusive(self):
        window = DateRange(start=date(2024, 3, 1), end=date(2024, 3, 31))
        assert window(date(2024, 3, 1))
        assert window(date(2024, 3, 31))
        assert not window(date(2024, 4, 1))

    def test_inverted_range_rejected(self):
        with pytest.raises(ValidationError):
            DateRange(start=date(2024, 3, 31), end=date(2024, 3, 1))


class TestAuditModels:
    """Tests for audit-related models."""

    def test_audit_event_creation(self):
        """Test AuditEvent model creation."""
        event = AuditEvent(
            event_type=AuditEventType.SCOPE_CHANGED,
            description="Workspace switched",
        )
        assert event.event_type == AuditEventType.SCOPE_CHANGED
        assert event.severity == AuditSeverity.INFO

    def test_audit_event_to_log_dict(self):
        """Test conversion to log dictionary."""
        event = AuditEvent(
            event_type=AuditEventType.REPORT_EXPORTED,
            description="Report exported",
            details={"report_id": "cash-flow", "row_count": 3},
        )
        log_dict = event.to_log_dict()
        assert "event_id" in log_dict
        assert log_dict["event_type"] == "report_exported"
        assert log_dict["details"]["report_id"] == "cash-flow"

    def test_audit_event_to_sheets_row(self):
        """Test conversion to sheets row."""
        event = AuditEvent(
            event_type=AuditEventType.STALE_ENTERED,
            scope_key="group:g-1",
            table="expenses",
            description="Aggregates are stale",
        )
        row = event.to_sheets_row()
        assert len(row) == 11  # Expected number of columns
        assert row[2] == "stale_entered"
        assert row[4] == "group:g-1"
        assert row[5] == "expenses"

    def test_audit_event_builder_scope_changed(self):
        """Test AuditEventBuilder.scope_changed."""
        correlation_id = uuid4()

        event = AuditEventBuilder.scope_changed(
            "personal:u",
            "group:g",
            generation=2,
            correlation_id=correlation_id,
        )

        assert event.event_type == AuditEventType.SCOPE_CHANGED
        assert event.scope_key == "group:g"
        assert event.correlation_id == correlation_id
        assert event.details["previous_scope"] == "personal:u"
        assert event.details["generation"] == 2

    def test_audit_event_builder_subscription_failed(self):
        event = AuditEventBuilder.subscription_failed(
            "personal:u", "budgets", "transient", "timeout", attempts=6,
        )
        assert event.severity == AuditSeverity.ERROR
        assert event.table == "budgets"
        assert event.error_code == "transient"
        assert event.details["attempts"] == 6
