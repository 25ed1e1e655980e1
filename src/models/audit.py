"""
Audit Models for Live Ledger

Every significant engine action is logged for audit purposes.
This provides:
1. Traceability of scope switches and subscription lifetimes
2. Debugging information when fetches fail or data goes stale
3. A record of what was exported and when

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

import json
from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Workspace
    SCOPE_CHANGED = "scope_changed"
    SCOPE_DENIED = "scope_denied"

    # Subscriptions
    SUBSCRIPTION_OPENED = "subscription_opened"
    SUBSCRIPTION_FAILED = "subscription_failed"
    SUBSCRIPTIONS_CLOSED = "subscriptions_closed"

    # Refresh / recompute
    REFRESH_FAILED = "refresh_failed"
    REFRESH_DISCARDED = "refresh_discarded"
    RECOMPUTE_COMPLETED = "recompute_completed"
    STALE_ENTERED = "stale_entered"
    STALE_CLEARED = "stale_cleared"

    # Reports and insights
    REPORT_EXPORTED = "report_exported"
    INSIGHT_REQUESTED = "insight_requested"
    INSIGHT_FAILED = "insight_failed"

    # External services
    EXTERNAL_SERVICE_ERROR = "external_service_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=datetime.utcnow,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Context - which workspace / table is this about?
    scope_key: Optional[str] = Field(
        default=None,
        description="Workspace scope key (e.g. 'personal:<id>', 'group:<id>')"
    )
    table: Optional[str] = Field(
        default=None,
        description="Remote store table involved, if any"
    )

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g. one scope switch)"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )

    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    # Error information (if applicable)
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "scope_key": self.scope_key,
            "table": self.table,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_code": self.error_code,
            "error_message": self.error_message,
        }

    def to_sheets_row(self) -> list:
        """
        Convert to a row suitable for Google Sheets storage.

        Returns columns in order:
        [event_id, timestamp, event_type, severity, scope_key, table,
         correlation_id, description, details_json, error_code, error_message]
        """
        return [
            str(self.event_id),
            self.timestamp.isoformat(),
            self.event_type.value,
            self.severity.value,
            self.scope_key or "",
            self.table or "",
            str(self.correlation_id) if self.correlation_id else "",
            self.description,
            json.dumps(self.details, default=str) if self.details else "",
            self.error_code or "",
            self.error_message or "",
        ]


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.scope_changed("personal:u1", "group:g1", correlation_id)
        event = AuditEventBuilder.refresh_failed("group:g1", "expenses", "transient", "timeout")
    """

    @staticmethod
    def scope_changed(
        previous_scope: Optional[str],
        scope_key: str,
        generation: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SCOPE_CHANGED,
            scope_key=scope_key,
            correlation_id=correlation_id,
            description=f"Workspace switched to {scope_key}",
            details={
                "previous_scope": previous_scope,
                "generation": generation,
            },
        )

    @staticmethod
    def scope_denied(
        scope_key: str,
        principal_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SCOPE_DENIED,
            severity=AuditSeverity.WARNING,
            scope_key=scope_key,
            correlation_id=correlation_id,
            description=f"Principal {principal_id} is not a member of {scope_key}",
            details={"principal_id": principal_id},
        )

    @staticmethod
    def subscription_opened(
        scope_key: str,
        tables: list[str],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SUBSCRIPTION_OPENED,
            scope_key=scope_key,
            correlation_id=correlation_id,
            description=f"Opened {len(tables)} change subscriptions",
            details={"tables": tables},
        )

    @staticmethod
    def subscription_failed(
        scope_key: str,
        table: str,
        error_kind: str,
        error_message: str,
        attempts: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SUBSCRIPTION_FAILED,
            severity=AuditSeverity.ERROR,
            scope_key=scope_key,
            table=table,
            correlation_id=correlation_id,
            description=f"Subscription to {table} failed after {attempts} attempts",
            details={"attempts": attempts},
            error_code=error_kind,
            error_message=error_message,
        )

    @staticmethod
    def subscriptions_closed(
        scope_key: str,
        count: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SUBSCRIPTIONS_CLOSED,
            scope_key=scope_key,
            correlation_id=correlation_id,
            description=f"Closed {count} change subscriptions",
            details={"count": count},
        )

    @staticmethod
    def refresh_failed(
        scope_key: str,
        table: str,
        error_kind: str,
        error_message: str,
        hint: Optional[str] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.REFRESH_FAILED,
            severity=AuditSeverity.ERROR,
            scope_key=scope_key,
            table=table,
            description=f"Refresh of {table} failed ({error_kind})",
            details={"hint": hint} if hint else {},
            error_code=error_kind,
            error_message=error_message,
        )

    @staticmethod
    def refresh_discarded(
        scope_key: str,
        table: str,
        generation: int,
        current_generation: int,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.REFRESH_DISCARDED,
            severity=AuditSeverity.DEBUG,
            scope_key=scope_key,
            table=table,
            description=f"Discarded stale fetch of {table} from an earlier workspace",
            details={
                "generation": generation,
                "current_generation": current_generation,
            },
        )

    @staticmethod
    def recompute_completed(
        scope_key: str,
        generation: int,
        stale: bool,
        row_counts: dict[str, int],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECOMPUTE_COMPLETED,
            severity=AuditSeverity.DEBUG,
            scope_key=scope_key,
            description="Aggregates recomputed" + (" (stale)" if stale else ""),
            details={
                "generation": generation,
                "stale": stale,
                "row_counts": row_counts,
            },
        )

    @staticmethod
    def stale_entered(
        scope_key: str,
        table: Optional[str],
        error_kind: str,
        error_message: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.STALE_ENTERED,
            severity=AuditSeverity.WARNING,
            scope_key=scope_key,
            table=table,
            description="Serving last good aggregates; data is stale",
            error_code=error_kind,
            error_message=error_message,
        )

    @staticmethod
    def stale_cleared(scope_key: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.STALE_CLEARED,
            scope_key=scope_key,
            description="Aggregates are fresh again",
        )

    @staticmethod
    def report_exported(
        scope_key: str,
        report_id: str,
        row_count: int,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.REPORT_EXPORTED,
            scope_key=scope_key,
            description=f"Report exported: {report_id}",
            details={
                "report_id": report_id,
                "row_count": row_count,
            },
        )

    @staticmethod
    def insight_requested(
        scope_key: str,
        attempts: int,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.INSIGHT_REQUESTED,
            scope_key=scope_key,
            description="Spending tips generated",
            details={"attempts": attempts},
        )

    @staticmethod
    def insight_failed(
        scope_key: str,
        error_message: str,
        attempts: int,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.INSIGHT_FAILED,
            severity=AuditSeverity.WARNING,
            scope_key=scope_key,
            description="Spending tips unavailable",
            details={"attempts": attempts},
            error_message=error_message,
        )

    @staticmethod
    def external_service_error(
        service: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXTERNAL_SERVICE_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"External service error: {service}",
            error_message=error_message,
            details={
                "service": service,
            },
            correlation_id=correlation_id,
        )
