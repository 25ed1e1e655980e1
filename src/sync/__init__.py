"""Live workspace synchronization: scope switching, subscriptions, invalidation."""

from src.sync.subscriptions import (
    ChangeSubscriptionManager,
    SubscriptionHandleSet,
    tables_for,
)
from src.sync.workspace import ScopeDenied, WorkspaceContext

__all__ = [
    "ChangeSubscriptionManager",
    "ScopeDenied",
    "SubscriptionHandleSet",
    "WorkspaceContext",
    "tables_for",
]
