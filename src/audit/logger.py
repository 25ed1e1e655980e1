"""
Audit Logger

DESIGN DECISION: Every significant engine action is logged.
This provides:
1. Traceability of which workspace was live and when
2. Debugging capability when data goes stale
3. A history of exports and insight requests

The audit logger:
- Is async to not block main flow
- Gracefully handles failures (doesn't crash the engine if logging fails)
- Supports correlation IDs to trace related events (one scope switch)
"""

from typing import Optional
from uuid import UUID, uuid4

import structlog

from src.models.audit import AuditEvent, AuditEventBuilder, AuditSeverity
from src.services.storage import AuditStorageInterface


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. Audit storage (Google Sheets or in-memory), when configured
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger(__name__)

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        # Always log locally
        log_dict = event.to_log_dict()

        if event.severity in (AuditSeverity.ERROR, AuditSeverity.CRITICAL):
            self._logger.error("audit_event", **log_dict)
        elif event.severity == AuditSeverity.WARNING:
            self._logger.warning("audit_event", **log_dict)
        elif event.severity == AuditSeverity.DEBUG:
            self._logger.debug("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        # Persist to storage if available
        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    # -------------------------------------------------------------------------
    # Workspace
    # -------------------------------------------------------------------------

    async def log_scope_changed(
        self,
        previous_scope: Optional[str],
        scope_key: str,
        generation: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a completed workspace switch."""
        await self.log(AuditEventBuilder.scope_changed(
            previous_scope=previous_scope,
            scope_key=scope_key,
            generation=generation,
            correlation_id=correlation_id,
        ))

    async def log_scope_denied(
        self,
        scope_key: str,
        principal_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a rejected workspace switch."""
        await self.log(AuditEventBuilder.scope_denied(
            scope_key=scope_key,
            principal_id=principal_id,
            correlation_id=correlation_id,
        ))

    # -------------------------------------------------------------------------
    # Subscriptions
    # -------------------------------------------------------------------------

    async def log_subscriptions_opened(
        self,
        scope_key: str,
        tables: list[str],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.subscription_opened(
            scope_key=scope_key,
            tables=tables,
            correlation_id=correlation_id,
        ))

    async def log_subscription_failed(
        self,
        scope_key: str,
        table: str,
        error_kind: str,
        error_message: str,
        attempts: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.subscription_failed(
            scope_key=scope_key,
            table=table,
            error_kind=error_kind,
            error_message=error_message,
            attempts=attempts,
            correlation_id=correlation_id,
        ))

    async def log_subscriptions_closed(
        self,
        scope_key: str,
        count: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.subscriptions_closed(
            scope_key=scope_key,
            count=count,
            correlation_id=correlation_id,
        ))

    # -------------------------------------------------------------------------
    # Refresh / recompute
    # -------------------------------------------------------------------------

    async def log_refresh_failed(
        self,
        scope_key: str,
        table: str,
        error_kind: str,
        error_message: str,
        hint: Optional[str] = None,
    ) -> None:
        """Log a repository fetch that gave up."""
        await self.log(AuditEventBuilder.refresh_failed(
            scope_key=scope_key,
            table=table,
            error_kind=error_kind,
            error_message=error_message,
            hint=hint,
        ))

    async def log_refresh_discarded(
        self,
        scope_key: str,
        table: str,
        generation: int,
        current_generation: int,
    ) -> None:
        await self.log(AuditEventBuilder.refresh_discarded(
            scope_key=scope_key,
            table=table,
            generation=generation,
            current_generation=current_generation,
        ))

    async def log_recompute_completed(
        self,
        scope_key: str,
        generation: int,
        stale: bool,
        row_counts: dict[str, int],
    ) -> None:
        await self.log(AuditEventBuilder.recompute_completed(
            scope_key=scope_key,
            generation=generation,
            stale=stale,
            row_counts=row_counts,
        ))

    async def log_stale_entered(
        self,
        scope_key: str,
        table: Optional[str],
        error_kind: str,
        error_message: str,
    ) -> None:
        await self.log(AuditEventBuilder.stale_entered(
            scope_key=scope_key,
            table=table,
            error_kind=error_kind,
            error_message=error_message,
        ))

    async def log_stale_cleared(self, scope_key: str) -> None:
        await self.log(AuditEventBuilder.stale_cleared(scope_key))

    # -------------------------------------------------------------------------
    # Reports and insights
    # -------------------------------------------------------------------------

    async def log_report_exported(
        self,
        scope_key: str,
        report_id: str,
        row_count: int,
    ) -> None:
        """Log a CSV export."""
        await self.log(AuditEventBuilder.report_exported(
            scope_key=scope_key,
            report_id=report_id,
            row_count=row_count,
        ))

    async def log_insight_requested(self, scope_key: str, attempts: int) -> None:
        await self.log(AuditEventBuilder.insight_requested(
            scope_key=scope_key,
            attempts=attempts,
        ))

    async def log_insight_failed(
        self,
        scope_key: str,
        error_message: str,
        attempts: int,
    ) -> None:
        await self.log(AuditEventBuilder.insight_failed(
            scope_key=scope_key,
            error_message=error_message,
            attempts=attempts,
        ))

    # -------------------------------------------------------------------------
    # Errors
    # -------------------------------------------------------------------------

    async def log_external_service_error(
        self,
        service: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an external service that could not be reached or configured."""
        event = AuditEventBuilder.external_service_error(
            service=service,
            error_message=error_message,
            correlation_id=correlation_id,
        )
        await self.log(event)


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a new engine action (e.g., a scope switch).
    Pass it through all subsequent operations.
    """
    return uuid4()
