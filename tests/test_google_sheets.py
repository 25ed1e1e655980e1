"""
Tests for the Google Sheets adapters.

The gspread client is replaced by an in-process fake that serves
worksheet rows from dicts; no network calls are made.
"""

import asyncio
from uuid import uuid4

import gspread
import pytest

from src.models.audit import AuditEvent, AuditEventType
from src.models.records import Table
from src.services.storage.google_sheets import (
    AUDIT_COLUMNS,
    GoogleSheetsAuditStorage,
    GoogleSheetsRemoteStore,
    classify_sheets_error,
)
from src.services.storage.interface import Filter, FilterOp, Order, QueryError, QueryErrorKind


class FakeWorksheet:
    def __init__(self, records=None):
        self.records = list(records or [])
        self.values = [list(AUDIT_COLUMNS)]

    def get_all_records(self):
        return [dict(r) for r in self.records]

    def get_all_values(self):
        return [list(v) for v in self.values]

    def append_row(self, row, value_input_option=None):
        self.values.append(list(row))


class FakeSheetsClient:
    """Stands in for GoogleSheetsClient."""

    def __init__(self, tables=None):
        self.sheets = {table: FakeWorksheet(rows) for table, rows in (tables or {}).items()}
        self.audit = FakeWorksheet()

    def get_table_sheet(self, table):
        if table not in self.sheets:
            raise gspread.WorksheetNotFound(table.value)
        return self.sheets[table]

    def get_audit_sheet(self):
        return self.audit


class FakeResponse:
    def __init__(self, status_code):
        self.status_code = status_code
        self.text = "error"

    def json(self):
        return {"error": {"code": self.status_code, "message": "error", "status": "ERROR"}}


EXPENSE_ROWS = [
    {"id": "e-1", "user_id": "user-1", "group_id": "", "amount": "120", "date": "2024-03-15"},
    {"id": "e-2", "user_id": "user-1", "group_id": "g-1", "amount": "80", "date": "2024-03-14"},
    {"id": "e-3", "user_id": "user-1", "group_id": "", "amount": "500", "date": "2024-03-01"},
]


@pytest.fixture
def sheets_client():
    return FakeSheetsClient({
        Table.EXPENSES: EXPENSE_ROWS,
        Table.GROUPS: [{"id": "g-1", "owner_id": "user-2", "name": "Flat", "members": '["user-2", "user-1"]'}],
    })


@pytest.fixture
def sheets_store(sheets_client):
    return GoogleSheetsRemoteStore(sheets_client, poll_interval_seconds=0.01)


class TestErrorMapping:
    """gspread failures → QueryErrorKind."""

    def test_missing_worksheet_is_schema_mismatch(self):
        error = classify_sheets_error(gspread.WorksheetNotFound("budgets"), Table.BUDGETS)
        assert error.kind == QueryErrorKind.SCHEMA_MISMATCH
        assert "budgets" in error.hint

    @pytest.mark.parametrize("status,kind", [
        (403, QueryErrorKind.PERMISSION_DENIED),
        (429, QueryErrorKind.TRANSIENT),
        (503, QueryErrorKind.TRANSIENT),
        (400, QueryErrorKind.SCHEMA_MISMATCH),
        (404, QueryErrorKind.UNKNOWN),
    ])
    def test_api_error_status(self, status, kind):
        error = gspread.exceptions.APIError(FakeResponse(status))
        assert classify_sheets_error(error, Table.EXPENSES).kind == kind

    def test_network_errors_are_transient(self):
        assert classify_sheets_error(TimeoutError("slow")).kind == QueryErrorKind.TRANSIENT


class TestRemoteStore:
    """Reads and polling subscriptions."""

    @pytest.mark.asyncio
    async def test_select_filters_in_python(self, sheets_store):
        rows = await sheets_store.select(
            Table.EXPENSES,
            (Filter(column="user_id", value="user-1"), Filter(column="group_id", op=FilterOp.IS_NULL)),
            order=Order(column="date", descending=False),
        )
        assert [r["id"] for r in rows] == ["e-3", "e-1"]
        # Blank cells come back as None
        assert rows[0]["group_id"] is None

    @pytest.mark.asyncio
    async def test_members_column_is_decoded(self, sheets_store):
        rows = await sheets_store.select(
            Table.GROUPS, (Filter(column="members", op=FilterOp.CONTAINS, value="user-1"),)
        )
        assert rows[0]["members"] == ["user-2", "user-1"]

    @pytest.mark.asyncio
    async def test_missing_worksheet_raises_query_error(self, sheets_store):
        with pytest.raises(QueryError) as exc_info:
            await sheets_store.select(Table.BUDGETS, ())
        assert exc_info.value.kind == QueryErrorKind.SCHEMA_MISMATCH

    @pytest.mark.asyncio
    async def test_subscription_signals_when_rows_change(self, sheets_store, sheets_client):
        signals = []
        handle = await sheets_store.subscribe(
            Table.EXPENSES, (Filter(column="group_id", value="g-1"),), signals.append
        )

        # Unrelated row: digest of the matching rows is unchanged
        sheets_client.sheets[Table.EXPENSES].records.append(
            {"id": "e-4", "user_id": "user-1", "group_id": "", "amount": "5", "date": "2024-03-15"}
        )
        await asyncio.sleep(0.05)
        assert signals == []

        sheets_client.sheets[Table.EXPENSES].records.append(
            {"id": "e-5", "user_id": "user-2", "group_id": "g-1", "amount": "5", "date": "2024-03-15"}
        )
        for _ in range(100):
            if signals:
                break
            await asyncio.sleep(0.01)

        await sheets_store.unsubscribe(handle)
        assert signals[0] == Table.EXPENSES

    @pytest.mark.asyncio
    async def test_subscribe_to_missing_worksheet_fails(self, sheets_store):
        with pytest.raises(QueryError):
            await sheets_store.subscribe(Table.BUDGETS, (), lambda table: None)


class TestAuditStorage:
    """Append-only audit sheet."""

    @pytest.mark.asyncio
    async def test_events_round_trip_through_rows(self, sheets_client):
        storage = GoogleSheetsAuditStorage(sheets_client)
        correlation_id = uuid4()

        await storage.append_event(AuditEvent(
            event_type=AuditEventType.SCOPE_CHANGED,
            scope_key="group:g-1",
            correlation_id=correlation_id,
            description="Scope changed",
            details={"generation": 2},
        ))
        await storage.append_event(AuditEvent(
            event_type=AuditEventType.REPORT_EXPORTED, description="Exported",
        ))

        events = await storage.get_events_by_correlation_id(correlation_id)
        assert len(events) == 1
        assert events[0].scope_key == "group:g-1"
        assert events[0].details == {"generation": 2}
        assert len(await storage.get_recent_events()) == 2

    @pytest.mark.asyncio
    async def test_unreadable_rows_are_skipped(self, sheets_client):
        sheets_client.audit.values.append(["not-a-uuid", "yesterday", "scope_changed", "info"])
        storage = GoogleSheetsAuditStorage(sheets_client)

        assert await storage.get_recent_events() == []
