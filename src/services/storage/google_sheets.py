"""
Google Sheets Storage Implementation

DESIGN DECISION: Google Sheets is used as the hosted backend because:
1. Non-technical users can view their data directly in Sheets
2. No database setup required
3. Built-in backup (Google's infrastructure)

TRADEOFFS:
- Not suitable for high-volume data (we're fine for personal/group use)
- Limited query capabilities (we filter in Python)
- No push channel: change subscriptions are emulated by polling a
  digest of the matching rows

The implementation follows the abstract interface, so the engine does
not know which backend it talks to.
"""

import asyncio
import hashlib
import json
from datetime import datetime
from typing import Any, Optional
from uuid import UUID

import gspread
import structlog
from google.oauth2.service_account import Credentials
from tenacity import retry, stop_after_attempt, wait_exponential

from src.config import get_settings
from src.models.audit import AuditEvent, AuditEventType, AuditSeverity
from src.models.records import Table
from src.services.storage.interface import (
    AuditStorageInterface,
    ConnectionError,
    Filter,
    Order,
    QueryError,
    QueryErrorKind,
    RemoteStore,
    SignalCallback,
    StorageError,
    SubscriptionHandle,
    describe_filters,
)


logger = structlog.get_logger(__name__)


# Column mappings for Audit sheet
AUDIT_COLUMNS = [
    "event_id",
    "timestamp",
    "event_type",
    "severity",
    "scope_key",
    "table",
    "correlation_id",
    "description",
    "details_json",
    "error_code",
    "error_message",
]

# Columns holding JSON arrays
JSON_COLUMNS = {"members"}


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication and provides retry logic for connecting.
    """

    def __init__(self):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._settings = get_settings().google_sheets

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def connect(self) -> gspread.Client:
        """
        Establish connection to Google Sheets.

        Uses service account credentials for authentication.
        """
        if self._client is None:
            try:
                scopes = [
                    "https://www.googleapis.com/auth/spreadsheets",
                    "https://www.googleapis.com/auth/drive",
                ]
                credentials = Credentials.from_service_account_file(
                    self._settings.credentials_path,
                    scopes=scopes,
                )
                self._client = gspread.authorize(credentials)
            except FileNotFoundError:
                raise ConnectionError(
                    f"Google credentials file not found: {self._settings.credentials_path}"
                )
            except Exception as e:
                raise ConnectionError(f"Failed to connect to Google Sheets: {e}")

        return self._client

    def get_spreadsheet(self) -> gspread.Spreadsheet:
        """Get the configured spreadsheet."""
        if self._spreadsheet is None:
            client = self.connect()
            try:
                self._spreadsheet = client.open_by_key(
                    self._settings.spreadsheet_id
                )
            except gspread.SpreadsheetNotFound:
                raise ConnectionError(
                    f"Spreadsheet not found: {self._settings.spreadsheet_id}"
                )
        return self._spreadsheet

    def get_table_sheet(self, table: Table) -> gspread.Worksheet:
        """
        Get the worksheet backing a table.

        CRITICAL: Unlike the audit sheet, table sheets are never created
        here. A missing worksheet is a schema problem the owner has to fix.
        """
        return self.get_spreadsheet().worksheet(
            self._settings.sheet_name_for(table.value)
        )

    def get_audit_sheet(self) -> gspread.Worksheet:
        """Get or create the Audit worksheet."""
        spreadsheet = self.get_spreadsheet()
        try:
            sheet = spreadsheet.worksheet(self._settings.audit_sheet_name)
        except gspread.WorksheetNotFound:
            # Create the sheet with headers
            sheet = spreadsheet.add_worksheet(
                title=self._settings.audit_sheet_name,
                rows=5000,  # More rows for audit log
                cols=len(AUDIT_COLUMNS),
            )
            sheet.append_row(AUDIT_COLUMNS)
        return sheet


# =============================================================================
# ERROR MAPPING
# =============================================================================

def classify_sheets_error(error: Exception, table: Optional[Table] = None) -> QueryError:
    """Map a gspread / transport failure to a QueryError."""
    if isinstance(error, QueryError):
        return error

    if isinstance(error, gspread.WorksheetNotFound):
        name = table.value if table else "table"
        return QueryError(
            QueryErrorKind.SCHEMA_MISMATCH,
            f"Worksheet for {name} not found",
            table=table,
            hint=f"Create a worksheet named '{name}' with a header row",
        )

    if isinstance(error, gspread.exceptions.APIError):
        status = getattr(error.response, "status_code", None)
        if status in (401, 403):
            return QueryError(QueryErrorKind.PERMISSION_DENIED, str(error), table=table)
        if status == 429 or (status is not None and status >= 500):
            return QueryError(QueryErrorKind.TRANSIENT, str(error), table=table)
        if status == 400:
            return QueryError(
                QueryErrorKind.SCHEMA_MISMATCH,
                str(error),
                table=table,
                hint="Check the worksheet header row matches the expected columns",
            )
        return QueryError(QueryErrorKind.UNKNOWN, str(error), table=table)

    if isinstance(error, (ConnectionError, OSError, TimeoutError)):
        return QueryError(QueryErrorKind.TRANSIENT, str(error), table=table)

    return QueryError(QueryErrorKind.UNKNOWN, str(error), table=table)


def _normalize_row(row: dict) -> dict:
    """Blank cells become None; JSON array columns are decoded."""
    normalized: dict[str, Any] = {}
    for key, value in row.items():
        if value == "":
            value = None
        elif key in JSON_COLUMNS and isinstance(value, str):
            try:
                value = json.loads(value)
            except json.JSONDecodeError:
                value = [part.strip() for part in value.split(",") if part.strip()]
        normalized[key] = value
    return normalized


def _digest(rows: list[dict]) -> str:
    payload = json.dumps(rows, sort_keys=True, default=str)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


# =============================================================================
# REMOTE STORE
# =============================================================================

class GoogleSheetsRemoteStore(RemoteStore):
    """
    Google Sheets implementation of the remote store.

    One worksheet per table, header row = column names. Every gspread
    call is blocking, so it runs in a worker thread.
    """

    def __init__(
        self,
        client: Optional[GoogleSheetsClient] = None,
        poll_interval_seconds: Optional[float] = None,
    ):
        self._client = client or GoogleSheetsClient()
        self._poll_interval = (
            poll_interval_seconds
            if poll_interval_seconds is not None
            else get_settings().google_sheets.poll_interval_seconds
        )
        self._pollers: dict[UUID, asyncio.Task] = {}

    def _read_rows(self, table: Table) -> list[dict]:
        sheet = self._client.get_table_sheet(table)
        return [_normalize_row(row) for row in sheet.get_all_records()]

    async def _fetch_matching(self, table: Table, filters: tuple[Filter, ...]) -> list[dict]:
        try:
            rows = await asyncio.to_thread(self._read_rows, table)
        except Exception as e:
            raise classify_sheets_error(e, table) from e
        return [row for row in rows if all(f.matches(row) for f in filters)]

    async def select(
        self,
        table: Table,
        filters: tuple[Filter, ...],
        order: Optional[Order] = None,
        limit: Optional[int] = None,
    ) -> list[dict]:
        rows = await self._fetch_matching(table, filters)

        if order is not None:
            rows.sort(
                key=lambda r: (r.get(order.column) is None, str(r.get(order.column) or "")),
                reverse=order.descending,
            )
        if limit is not None:
            rows = rows[:limit]
        return rows

    async def subscribe(
        self,
        table: Table,
        filters: tuple[Filter, ...],
        on_signal: SignalCallback,
    ) -> SubscriptionHandle:
        # Initial read so an unreachable worksheet fails the open
        baseline = _digest(await self._fetch_matching(table, filters))
        handle = SubscriptionHandle(table=table, filter_expr=describe_filters(filters))
        self._pollers[handle.handle_id] = asyncio.create_task(
            self._poll(handle, filters, on_signal, baseline)
        )
        logger.info("sheets_subscribed", table=table.value, filter=handle.filter_expr)
        return handle

    async def unsubscribe(self, handle: SubscriptionHandle) -> None:
        task = self._pollers.pop(handle.handle_id, None)
        if task is not None:
            task.cancel()

    async def _poll(
        self,
        handle: SubscriptionHandle,
        filters: tuple[Filter, ...],
        on_signal: SignalCallback,
        digest: str,
    ) -> None:
        while True:
            await asyncio.sleep(self._poll_interval)
            try:
                current = _digest(await self._fetch_matching(handle.table, filters))
            except QueryError as e:
                # Signals may be dropped while the sheet is unreachable
                logger.warning(
                    "sheets_poll_failed",
                    table=handle.table.value,
                    kind=e.kind.value,
                    error=str(e),
                )
                continue
            if current != digest:
                digest = current
                on_signal(handle.table)


# =============================================================================
# AUDIT STORAGE
# =============================================================================

class GoogleSheetsAuditStorage(AuditStorageInterface):
    """
    Google Sheets implementation of audit log storage.

    Audit events are append-only.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _row_to_event(self, row: list) -> AuditEvent:
        """Convert a spreadsheet row to an AuditEvent."""
        def safe_get(index: int, default: str = "") -> str:
            try:
                return row[index] if row[index] else default
            except IndexError:
                return default

        return AuditEvent(
            event_id=UUID(safe_get(0)),
            timestamp=datetime.fromisoformat(safe_get(1)),
            event_type=AuditEventType(safe_get(2)),
            severity=AuditSeverity(safe_get(3)),
            scope_key=safe_get(4) or None,
            table=safe_get(5) or None,
            correlation_id=UUID(safe_get(6)) if safe_get(6) else None,
            description=safe_get(7),
            details=json.loads(safe_get(8)) if safe_get(8) else {},
            error_code=safe_get(9) or None,
            error_message=safe_get(10) or None,
        )

    def _read_events(self) -> list[AuditEvent]:
        all_rows = self._client.get_audit_sheet().get_all_values()[1:]
        events = []
        for row in all_rows:
            if not row or not row[0]:
                continue
            try:
                events.append(self._row_to_event(row))
            except (ValueError, json.JSONDecodeError) as e:
                logger.warning("audit_row_unreadable", event_id=row[0], error=str(e))
        return events

    async def append_event(self, event: AuditEvent) -> bool:
        """Append an audit event."""
        try:
            sheet = await asyncio.to_thread(self._client.get_audit_sheet)
            await asyncio.to_thread(
                sheet.append_row, event.to_sheets_row(), value_input_option="RAW"
            )
            return True
        except Exception as e:
            # Don't raise - audit logging should not break the main flow
            logger.warning("audit_write_failed", error=str(e))
            return False

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """Get events by correlation ID."""
        try:
            events = await asyncio.to_thread(self._read_events)
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")

        events = [e for e in events if e.correlation_id == correlation_id]
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """Get recent events."""
        try:
            events = await asyncio.to_thread(self._read_events)
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")

        # Sort newest first
        events.sort(key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
