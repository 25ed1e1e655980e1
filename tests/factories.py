"""Seed data and constants shared by the test modules."""

from datetime import date, datetime

from src.models.records import Table


TODAY = date(2024, 3, 15)  # a Friday
NOW = datetime(2024, 3, 15, 12, 0, 0)

USER = "user-1"
OTHER_USER = "user-2"
GROUP = "g-1"
FOREIGN_GROUP = "g-2"


def seed_rows() -> dict[Table, list[dict]]:
    """A small, realistic data set for USER plus one shared group."""
    return {
        Table.CATEGORIES: [
            {"id": "c-food", "user_id": USER, "name": "Food", "color": "#ef4444", "is_active": True},
            {"id": "c-rent", "user_id": USER, "name": "Rent", "color": "#3b82f6", "is_active": True},
        ],
        Table.EXPENSES: [
            {"id": "e-1", "user_id": USER, "group_id": None, "amount": "120.00",
             "date": "2024-03-15", "category_id": "c-food", "title": "Groceries",
             "payment_method": "card"},
            {"id": "e-2", "user_id": USER, "group_id": None, "amount": "80.00",
             "date": "2024-03-14T19:30:00Z", "category_id": "c-food", "title": "Dinner",
             "payment_method": "upi"},
            {"id": "e-3", "user_id": USER, "group_id": None, "amount": "500.00",
             "date": "2024-03-01", "category_id": "c-rent", "title": "Rent share",
             "payment_method": "bank_transfer"},
            {"id": "e-4", "user_id": USER, "group_id": None, "amount": "30.00",
             "date": "2024-03-15", "category_id": None, "title": "Parking",
             "payment_method": ""},
            {"id": "e-g1", "user_id": OTHER_USER, "group_id": GROUP, "amount": "200.00",
             "date": "2024-03-10", "category_id": None, "title": "Shared cab"},
            {"id": "e-g2", "user_id": USER, "group_id": GROUP, "amount": "60.00",
             "date": "2024-03-12", "category_id": "c-food", "title": "Team lunch"},
        ],
        Table.INCOME: [
            {"id": "i-1", "user_id": USER, "group_id": None, "amount": "3000.00",
             "date": "2024-03-01", "source": "salary"},
            {"id": "i-2", "user_id": USER, "group_id": None, "amount": "250.00",
             "date": "2024-03-08", "source": "freelance"},
            {"id": "i-g1", "user_id": OTHER_USER, "group_id": GROUP, "amount": "400.00",
             "date": "2024-03-05", "source": "refund"},
        ],
        Table.BUDGETS: [
            {"id": "b-food", "user_id": USER, "group_id": None, "name": "Food March",
             "amount": "1000.00", "start_date": "2024-03-01", "end_date": "2024-03-31",
             "category_id": "c-food", "alert_threshold": "0.8", "is_active": True},
            {"id": "b-group", "user_id": OTHER_USER, "group_id": GROUP, "name": "Trip",
             "amount": "250.00", "start_date": "2024-03-01", "end_date": "2024-03-31",
             "category_id": None, "alert_threshold": "0.8", "is_active": True},
        ],
        Table.SAVINGS_GOALS: [
            {"id": "s-1", "user_id": USER, "name": "Laptop", "target_amount": "1000.00",
             "current_amount": "250.00", "target_date": "2024-12-31", "priority": "high"},
        ],
        Table.GROUPS: [
            {"id": GROUP, "owner_id": OTHER_USER, "name": "Flatmates",
             "members": [OTHER_USER, USER], "created_at": "2024-01-01"},
            {"id": FOREIGN_GROUP, "owner_id": OTHER_USER, "name": "Work",
             "members": [OTHER_USER], "created_at": "2024-02-01"},
        ],
    }


class FakeResponse:
    def __init__(self, text):
        self.text = text


class ScriptedModel:
    """Stand-in for the Gemini model: returns or raises scripted outcomes in order."""

    def __init__(self, *outcomes):
        self._outcomes = list(outcomes)
        self.prompts: list[str] = []

    async def generate_content_async(self, prompt):
        self.prompts.append(prompt)
        outcome = self._outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return FakeResponse(outcome)
