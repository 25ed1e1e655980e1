"""
Record Models for Live Ledger

These models define the strict schemas for every row the engine reads
from the remote store. They are designed to:
1. Normalize loosely-typed remote rows into one explicit shape
2. Make optional fields explicitly optional
3. Be immutable once they are part of a snapshot
4. Carry the data-model invariants (period bounds, goal achievement,
   group membership) so the aggregation layer never re-checks them

DESIGN DECISION: Rows are validated ONCE, at the repository boundary.
The aggregation engine only ever sees fully-shaped records.
"""

import json
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Literal, Optional, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)


UNCATEGORIZED = "Uncategorized"
DEFAULT_CATEGORY_COLOR = "#6b7280"
DEFAULT_PAYMENT_METHOD = "cash"
DEFAULT_INCOME_SOURCE = "other"


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class Table(str, Enum):
    """
    Remote store tables the engine reads and subscribes to.

    The values are the table names used by the remote store.
    """
    EXPENSES = "expenses"
    INCOME = "income"
    CATEGORIES = "categories"
    BUDGETS = "budgets"
    SAVINGS_GOALS = "savings_goals"
    GROUPS = "groups"


RECORD_TABLES = (
    Table.EXPENSES,
    Table.INCOME,
    Table.CATEGORIES,
    Table.BUDGETS,
    Table.SAVINGS_GOALS,
)


class GoalPriority(str, Enum):
    """Savings goal priority."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


# =============================================================================
# NORMALIZATION HELPERS
# =============================================================================

def normalize_date(value: Any) -> Any:
    """
    Reduce a remote date/timestamp value to a calendar date.

    Remote rows carry dates as 'YYYY-MM-DD', full ISO timestamps or
    datetime objects. Only the calendar day matters to the engine.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        return date.fromisoformat(value.strip()[:10])
    return value


def date_key(value: date) -> str:
    """Normalized date key used for exact calendar-day matching."""
    return value.isoformat()


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str) and not value.strip():
        return None
    return value


class _Record(BaseModel):
    """Base for all snapshot records: frozen, whitespace-stripped."""

    model_config = ConfigDict(
        frozen=True,
        str_strip_whitespace=True,
        extra="ignore",
    )

    id: str = Field(..., min_length=1, description="Row identifier")

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, v: Any) -> Any:
        """Remote stores hand out UUIDs, ints or strings; keep text."""
        if v is None:
            return v
        return str(v)


# =============================================================================
# FINANCIAL RECORDS
# =============================================================================

class Expense(_Record):
    """
    A single expense.

    group_id is None for personal expenses.
    """

    user_id: str = Field(..., min_length=1, description="Owning principal")
    group_id: Optional[str] = Field(
        default=None,
        description="Group the expense belongs to (None = personal)"
    )
    amount: Decimal = Field(..., gt=0, description="Positive amount")
    date: date
    category_id: Optional[str] = None
    title: str = Field(default="", max_length=200)
    description: Optional[str] = None
    payment_method: str = Field(default=DEFAULT_PAYMENT_METHOD)

    @field_validator("user_id", "group_id", "category_id", mode="before")
    @classmethod
    def coerce_reference(cls, v: Any) -> Any:
        v = _blank_to_none(v)
        return str(v) if v is not None else None

    @field_validator("date", mode="before")
    @classmethod
    def coerce_date(cls, v: Any) -> Any:
        return normalize_date(v)

    @field_validator("payment_method", mode="before")
    @classmethod
    def default_payment_method(cls, v: Any) -> Any:
        return _blank_to_none(v) or DEFAULT_PAYMENT_METHOD

    @property
    def date_key(self) -> str:
        return date_key(self.date)

    @property
    def is_personal(self) -> bool:
        return self.group_id is None


class Income(_Record):
    """A single income entry, labelled by its source."""

    user_id: str = Field(..., min_length=1)
    group_id: Optional[str] = None
    amount: Decimal = Field(..., gt=0)
    date: date
    source: str = Field(default=DEFAULT_INCOME_SOURCE)

    @field_validator("user_id", "group_id", mode="before")
    @classmethod
    def coerce_reference(cls, v: Any) -> Any:
        v = _blank_to_none(v)
        return str(v) if v is not None else None

    @field_validator("date", mode="before")
    @classmethod
    def coerce_date(cls, v: Any) -> Any:
        return normalize_date(v)

    @field_validator("source", mode="before")
    @classmethod
    def default_source(cls, v: Any) -> Any:
        return _blank_to_none(v) or DEFAULT_INCOME_SOURCE


class Category(_Record):
    """
    Expense category.

    Categories are soft-deleted through is_active, never removed while
    expenses still reference them.
    """

    user_id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1, max_length=100)
    color: str = Field(default=DEFAULT_CATEGORY_COLOR)
    icon: Optional[str] = None
    is_active: bool = True

    @field_validator("user_id", mode="before")
    @classmethod
    def coerce_owner(cls, v: Any) -> Any:
        return str(v) if v is not None else v

    @field_validator("color", mode="before")
    @classmethod
    def default_color(cls, v: Any) -> Any:
        return _blank_to_none(v) or DEFAULT_CATEGORY_COLOR


class Budget(_Record):
    """
    A spending limit over an inclusive period.

    category_id None means the budget covers every category.
    alert_threshold is a fraction in (0, 1].

    NOTE: amount may be zero when storage holds a zero budget; the
    engine never divides by it.
    """

    user_id: str = Field(..., min_length=1)
    group_id: Optional[str] = None
    name: str = Field(..., min_length=1, max_length=200)
    amount: Decimal = Field(..., ge=0)
    start_date: date
    end_date: date
    category_id: Optional[str] = None
    alert_threshold: Decimal = Field(default=Decimal("0.8"), gt=0, le=1)
    is_active: bool = True

    @field_validator("user_id", "group_id", "category_id", mode="before")
    @classmethod
    def coerce_reference(cls, v: Any) -> Any:
        v = _blank_to_none(v)
        return str(v) if v is not None else None

    @field_validator("start_date", "end_date", mode="before")
    @classmethod
    def coerce_dates(cls, v: Any) -> Any:
        return normalize_date(v)

    @model_validator(mode='after')
    def validate_period(self) -> 'Budget':
        """Budget periods are inclusive and never inverted."""
        if self.end_date < self.start_date:
            raise ValueError("Budget period end cannot be before start")
        return self

    def covers(self, day: date) -> bool:
        """Is the day inside the inclusive budget period?"""
        return self.start_date <= day <= self.end_date


class SavingsGoal(_Record):
    """
    A savings target.

    CRITICAL: is_achieved is NEVER taken from storage. It is recomputed
    from current_amount >= target_amount whenever a goal is validated.
    """

    user_id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1, max_length=200)
    target_amount: Decimal = Field(..., ge=0)
    current_amount: Decimal = Field(default=Decimal("0"), ge=0)
    target_date: Optional[date] = None
    priority: GoalPriority = GoalPriority.MEDIUM
    is_achieved: bool = False

    @field_validator("user_id", mode="before")
    @classmethod
    def coerce_owner(cls, v: Any) -> Any:
        return str(v) if v is not None else v

    @field_validator("target_date", mode="before")
    @classmethod
    def coerce_target_date(cls, v: Any) -> Any:
        return normalize_date(v)

    @field_validator("priority", mode="before")
    @classmethod
    def coerce_priority(cls, v: Any) -> Any:
        v = _blank_to_none(v)
        return v.lower() if isinstance(v, str) else (v or GoalPriority.MEDIUM)

    @model_validator(mode='before')
    @classmethod
    def recompute_achieved(cls, data: Any) -> Any:
        """Derive is_achieved from the amounts, ignoring the stored flag."""
        if isinstance(data, dict):
            data = dict(data)
            try:
                target = Decimal(str(data.get("target_amount")))
                current = Decimal(str(data.get("current_amount") or 0))
            except (ArithmeticError, ValueError, TypeError):
                # Let field validation report the bad amount
                return data
            data["is_achieved"] = current >= target
        return data


class Group(_Record):
    """
    A shared workspace.

    The owner is always a member; storage rows that omit the owner
    from members are repaired here.
    """

    owner_id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1, max_length=200)
    members: frozenset[str] = Field(default_factory=frozenset)

    @field_validator("owner_id", mode="before")
    @classmethod
    def coerce_owner(cls, v: Any) -> Any:
        return str(v) if v is not None else v

    @model_validator(mode='before')
    @classmethod
    def owner_is_member(cls, data: Any) -> Any:
        """Normalize members to a set of ids that always includes the owner."""
        if not isinstance(data, dict):
            return data
        data = dict(data)
        members = data.get("members")
        if members is None or members == "":
            members = []
        elif isinstance(members, str):
            members = json.loads(members)
        owner = data.get("owner_id")
        normalized = {str(m) for m in members}
        if owner is not None:
            normalized.add(str(owner))
        data["members"] = frozenset(normalized)
        return data

    def has_member(self, principal_id: str) -> bool:
        return principal_id in self.members


# =============================================================================
# WORKSPACE SCOPE
# =============================================================================

class PersonalScope(BaseModel):
    """The principal's own data (rows with no group)."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["personal"] = "personal"
    principal_id: str = Field(..., min_length=1)

    @property
    def key(self) -> str:
        return f"personal:{self.principal_id}"


class GroupScope(BaseModel):
    """A shared group's data."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["group"] = "group"
    group_id: str = Field(..., min_length=1)

    @property
    def key(self) -> str:
        return f"group:{self.group_id}"


WorkspaceScope = Union[PersonalScope, GroupScope]
