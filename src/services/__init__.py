"""Services package."""

from src.services.storage import (
    AuditStorageInterface,
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsRemoteStore,
    InMemoryAuditStorage,
    InMemoryRemoteStore,
    QueryError,
    QueryErrorKind,
    RemoteStore,
    StorageError,
)

__all__ = [
    # Storage services
    "AuditStorageInterface",
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
    "GoogleSheetsRemoteStore",
    "InMemoryAuditStorage",
    "InMemoryRemoteStore",
    "QueryError",
    "QueryErrorKind",
    "RemoteStore",
    "StorageError",
]
