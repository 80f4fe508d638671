"""
Audit Logger

DESIGN DECISION: Each capture is followed from the keystroke or
notification that produced it until the backend confirms it. Events go to
the structured local log for debugging and to an on-device ring buffer
the user can export when reporting a problem.

Audit writes never interrupt a capture: a storage failure is logged and
reported as False.
"""

import logging
from typing import Optional
from uuid import UUID, uuid4

import structlog

from expense_capture.models.audit import AuditEvent, AuditEventBuilder, AuditSeverity
from expense_capture.services.storage import AuditStorageInterface


structlog.configure(
    processors=[
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer(ensure_ascii=False),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


def configure_logging(log_level: str = "INFO") -> None:
    """Route structlog output through stdlib logging at log_level."""
    logging.basicConfig(format="%(message)s", level=log_level.upper())
    logging.getLogger().setLevel(log_level.upper())


_LEVELS = {
    AuditSeverity.DEBUG: "debug",
    AuditSeverity.INFO: "info",
    AuditSeverity.WARNING: "warning",
    AuditSeverity.ERROR: "error",
    AuditSeverity.CRITICAL: "critical",
}


class AuditLogger:
    """Writes audit events to the local log and, optionally, to a store."""

    def __init__(self, storage: Optional[AuditStorageInterface] = None):
        self._storage = storage
        self._logger = structlog.get_logger("expense_capture.audit")

    @property
    def storage(self) -> Optional[AuditStorageInterface]:
        return self._storage

    async def log(self, event: AuditEvent) -> bool:
        """
        Record event.

        Returns:
            False when the store rejected the event, True otherwise
            (including when no store is configured)
        """
        method = getattr(self._logger, _LEVELS.get(event.severity, "info"))
        method("audit_event", **event.to_log_dict())

        if not self._storage:
            return True

        try:
            return await self._storage.append_event(event)
        except Exception as e:
            self._logger.error(
                "audit_storage_failed",
                error=str(e),
                event_id=str(event.event_id),
                event_type=event.event_type.value,
            )
            return False

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> bool:
        return await self.log(
            AuditEventBuilder.system_error(
                error_type=error_type,
                error_message=error_message,
                details=details,
                correlation_id=correlation_id,
            )
        )

    async def log_external_service_error(
        self,
        service: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> bool:
        return await self.log(
            AuditEventBuilder.external_service_error(
                service=service,
                error_message=error_message,
                correlation_id=correlation_id,
            )
        )

    async def export_lines(self, limit: Optional[int] = None) -> list[str]:
        """Stored events as JSON lines, oldest first. Empty without a store."""
        export = getattr(self._storage, "export_lines", None)
        if export is None:
            return []
        return await export(limit)


def create_correlation_id() -> UUID:
    """New id shared by every event of one user action (one capture)."""
    return uuid4()
