"""
Storage Services Package

Provides the abstract remote store contract and concrete implementations.
Google Sheets is the hosted backend; the in-memory store serves tests and
local runs. The engine only depends on the interface.
"""

from src.services.storage.interface import (
    AuditStorageInterface,
    ConnectionError,
    Filter,
    FilterOp,
    Order,
    QueryError,
    QueryErrorKind,
    RemoteStore,
    SignalCallback,
    StorageError,
    SubscriptionHandle,
    describe_filters,
    is_transient_error,
)
from src.services.storage.memory import InMemoryAuditStorage, InMemoryRemoteStore
from src.services.storage.google_sheets import (
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsRemoteStore,
    classify_sheets_error,
)

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "RemoteStore",
    # Query shapes
    "Filter",
    "FilterOp",
    "Order",
    "SignalCallback",
    "SubscriptionHandle",
    "describe_filters",
    # Exceptions
    "ConnectionError",
    "QueryError",
    "QueryErrorKind",
    "StorageError",
    "is_transient_error",
    # In-memory implementation
    "InMemoryAuditStorage",
    "InMemoryRemoteStore",
    # Google Sheets implementation
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
    "GoogleSheetsRemoteStore",
    "classify_sheets_error",
]
