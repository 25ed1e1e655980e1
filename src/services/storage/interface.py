"""
Abstract Remote Store Interface

DESIGN DECISION: We define an abstract interface for the remote store.
This allows us to:
1. Swap Google Sheets for a hosted database later
2. Use in-memory storage for testing
3. Keep the sync engine decoupled from storage implementation

The engine only ever READS and OBSERVES through this interface.
Writes happen elsewhere; the in-memory store exposes write helpers
purely so tests and local runs can produce change signals.

Change signals are opaque: "something in this table changed". The
store promises at-least-once delivery with no ordering guarantee and
may drop signals under sustained disconnects, which is why the engine
always re-fetches whole tables instead of patching.
"""

from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Callable, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field

from src.models.audit import AuditEvent
from src.models.records import Table


# =============================================================================
# QUERY SHAPES
# =============================================================================

class FilterOp(str, Enum):
    """Predicates the engine uses against the remote store."""
    EQ = "eq"
    IS_NULL = "is_null"
    CONTAINS = "contains"  # array column contains value


class Filter(BaseModel):
    """One column predicate."""

    model_config = ConfigDict(frozen=True)

    column: str
    op: FilterOp = FilterOp.EQ
    value: Any = None

    def matches(self, row: dict) -> bool:
        """Evaluate the predicate against a raw row."""
        current = row.get(self.column)
        if self.op == FilterOp.IS_NULL:
            return current is None or current == ""
        if self.op == FilterOp.CONTAINS:
            if current is None or current == "":
                return False
            return str(self.value) in {str(item) for item in current}
        if isinstance(self.value, bool):
            return _as_bool(current) == self.value
        return current is not None and str(current) == str(self.value)

    def describe(self) -> str:
        if self.op == FilterOp.IS_NULL:
            return f"{self.column}=is.null"
        if self.op == FilterOp.CONTAINS:
            return f"{self.column}=cs.{{{self.value}}}"
        return f"{self.column}=eq.{self.value}"


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"true", "1", "yes"}
    return bool(value)


class Order(BaseModel):
    """Sort order for a select."""

    model_config = ConfigDict(frozen=True)

    column: str
    descending: bool = True


def describe_filters(filters: tuple[Filter, ...]) -> str:
    """Render a filter set the way it appears in logs."""
    return ".and.".join(f.describe() for f in filters) or "*"


class SubscriptionHandle(BaseModel):
    """
    Opaque handle for one open change subscription.

    Returned by subscribe(); the only thing unsubscribe() accepts.
    """

    model_config = ConfigDict(frozen=True)

    handle_id: UUID = Field(default_factory=uuid4)
    table: Table
    filter_expr: str


SignalCallback = Callable[[Table], None]


# =============================================================================
# ERRORS
# =============================================================================

class QueryErrorKind(str, Enum):
    """Classification of remote store failures."""
    SCHEMA_MISMATCH = "schema_mismatch"      # non-retryable, needs a fix
    PERMISSION_DENIED = "permission_denied"  # non-retryable
    TRANSIENT = "transient"                  # retried with backoff
    UNKNOWN = "unknown"


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class QueryError(StorageError):
    """
    A select or subscribe failed.

    kind drives the retry decision; hint is a remediation suggestion
    surfaced verbatim to the caller for schema problems. attempts is
    filled in by the retry policy once it gives up.
    """

    def __init__(
        self,
        kind: QueryErrorKind,
        message: str,
        table: Optional[Table] = None,
        hint: Optional[str] = None,
    ):
        self.kind = kind
        self.table = table
        self.hint = hint
        self.attempts = 1
        super().__init__(message)

    @property
    def is_transient(self) -> bool:
        return self.kind == QueryErrorKind.TRANSIENT


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass


def is_transient_error(error: BaseException) -> bool:
    """Retry predicate shared by fetches and subscriptions."""
    return isinstance(error, QueryError) and error.is_transient


# =============================================================================
# INTERFACES
# =============================================================================

class RemoteStore(ABC):
    """
    Abstract interface for the remote record store.

    Any backend (Google Sheets, hosted Postgres, in-memory)
    must implement these methods.
    """

    @abstractmethod
    async def select(
        self,
        table: Table,
        filters: tuple[Filter, ...],
        order: Optional[Order] = None,
        limit: Optional[int] = None,
    ) -> list[dict]:
        """
        Fetch the rows of a table matching every filter.

        Args:
            table: Table to read
            filters: Predicates, all of which must match
            order: Optional sort order
            limit: Maximum number of rows

        Returns:
            Raw rows as dictionaries

        Raises:
            QueryError: classified failure
        """
        pass

    @abstractmethod
    async def subscribe(
        self,
        table: Table,
        filters: tuple[Filter, ...],
        on_signal: SignalCallback,
    ) -> SubscriptionHandle:
        """
        Register a change listener for the rows matching filters.

        on_signal is called (synchronously, from the event loop) with
        the table whenever a matching row is inserted, updated or
        deleted.

        Raises:
            QueryError: if the subscription could not be opened
        """
        pass

    @abstractmethod
    async def unsubscribe(self, handle: SubscriptionHandle) -> None:
        """
        Remove a change listener.

        Unknown or already-removed handles are ignored.
        """
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """Get all events for a correlation ID in chronological order."""
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """Get the most recent audit events (newest first)."""
        pass
