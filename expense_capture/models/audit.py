"""
Audit Models for Expense Capture

Every submission attempt, queue transition and connectivity change is
recorded. This provides:
1. Traceability of what happened to each expense the user captured
2. Debugging information when the backend or network misbehaves
3. A local log the user can export when reporting a problem

DESIGN DECISION: Audit logs are append-only. Old events fall off the end
of the on-device ring buffer but are never edited.
"""

import json
from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Submission flow
    SUBMISSION_REQUESTED = "submission_requested"
    SUBMISSION_REJECTED = "submission_rejected"
    SUBMISSION_SENT = "submission_sent"
    SUBMISSION_FAILED = "submission_failed"
    SUBMISSION_QUEUED = "submission_queued"
    DRAFT_SAVED = "draft_saved"

    # Queue processing
    QUEUE_DRAIN_STARTED = "queue_drain_started"
    QUEUE_DRAIN_SKIPPED = "queue_drain_skipped"
    QUEUE_DRAIN_COMPLETED = "queue_drain_completed"
    QUEUE_ITEM_SENT = "queue_item_sent"
    QUEUE_ITEM_FAILED = "queue_item_failed"
    QUEUE_ITEM_DEAD_LETTERED = "queue_item_dead_lettered"
    QUEUE_ITEM_REMOVED = "queue_item_removed"
    QUEUE_ITEM_RETRY_RESET = "queue_item_retry_reset"

    # Connectivity
    CONNECTIVITY_RESTORED = "connectivity_restored"
    CONNECTIVITY_LOST = "connectivity_lost"

    # Notifications
    NOTIFICATION_PARSED = "notification_parsed"
    NOTIFICATION_IGNORED = "notification_ignored"

    # System events
    SYSTEM_ERROR = "system_error"
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

    Every significant action creates one of these.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=datetime.now,
        description="When the event occurred (device local time)"
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

    # Context - what entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'submission', 'queue', 'notification')"
    )
    entity_id: Optional[str] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., one submission flow)"
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

    error_message: Optional[str] = None

    is_user_action: bool = Field(
        default=False,
        description="Was this triggered by a user action?"
    )

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }

    def to_export_line(self) -> str:
        """One JSON line per event, used when the user exports the log."""
        return json.dumps(self.to_log_dict(), ensure_ascii=False, default=str)


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.submission_queued(draft_id, reason, correlation_id)
        event = AuditEventBuilder.queue_item_sent(item_id, attempt)
    """

    @staticmethod
    def submission_requested(
        draft_id: str,
        has_audio: bool,
        has_text: bool,
        card_id: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SUBMISSION_REQUESTED,
            entity_type="submission",
            entity_id=draft_id,
            correlation_id=correlation_id,
            description="New expense submission requested",
            details={
                "has_audio": has_audio,
                "has_text": has_text,
                "card_id": card_id or None,
            },
            is_user_action=True,
        )

    @staticmethod
    def submission_rejected(reason: str, correlation_id: UUID) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SUBMISSION_REJECTED,
            severity=AuditSeverity.WARNING,
            entity_type="submission",
            correlation_id=correlation_id,
            description="Submission rejected before sending",
            error_message=reason,
            is_user_action=True,
        )

    @staticmethod
    def submission_sent(
        draft_id: str,
        server_id: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SUBMISSION_SENT,
            entity_type="submission",
            entity_id=server_id,
            correlation_id=correlation_id,
            description="Submission accepted by the backend",
            details={"temporary_id": draft_id},
        )

    @staticmethod
    def submission_failed(
        draft_id: str,
        failure_kind: str,
        error_message: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        severity = (
            AuditSeverity.ERROR
            if failure_kind in ("auth", "validation")
            else AuditSeverity.WARNING
        )
        return AuditEvent(
            event_type=AuditEventType.SUBMISSION_FAILED,
            severity=severity,
            entity_type="submission",
            entity_id=draft_id,
            correlation_id=correlation_id,
            description=f"Submission failed ({failure_kind})",
            details={"failure_kind": failure_kind},
            error_message=error_message,
        )

    @staticmethod
    def submission_queued(
        draft_id: str,
        reason: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SUBMISSION_QUEUED,
            entity_type="submission",
            entity_id=draft_id,
            correlation_id=correlation_id,
            description="Submission stored in the offline queue",
            details={"reason": reason},
        )

    @staticmethod
    def draft_saved(draft_id: str, correlation_id: UUID) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.DRAFT_SAVED,
            entity_type="draft",
            entity_id=draft_id,
            correlation_id=correlation_id,
            description="Draft kept on device (draft-only mode)",
            is_user_action=True,
        )

    @staticmethod
    def drain_started(item_count: int) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.QUEUE_DRAIN_STARTED,
            entity_type="queue",
            description=f"Queue drain started with {item_count} item(s)",
            details={"item_count": item_count},
        )

    @staticmethod
    def drain_skipped(reason: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.QUEUE_DRAIN_SKIPPED,
            severity=AuditSeverity.DEBUG,
            entity_type="queue",
            description=f"Queue drain skipped: {reason}",
            details={"reason": reason},
        )

    @staticmethod
    def drain_completed(sent: int, failed: int, dead: int) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.QUEUE_DRAIN_COMPLETED,
            entity_type="queue",
            description=f"Queue drain completed: {sent} sent, {failed} failed, {dead} dead-lettered",
            details={"sent": sent, "failed": failed, "dead_lettered": dead},
        )

    @staticmethod
    def queue_item_sent(item_id: str, attempt: int) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.QUEUE_ITEM_SENT,
            entity_type="queued_submission",
            entity_id=item_id,
            description=f"Queued submission sent on attempt {attempt}",
            details={"attempt": attempt},
        )

    @staticmethod
    def queue_item_failed(
        item_id: str,
        retry_count: int,
        error_message: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.QUEUE_ITEM_FAILED,
            severity=AuditSeverity.WARNING,
            entity_type="queued_submission",
            entity_id=item_id,
            description=f"Queued submission failed (retry {retry_count})",
            details={"retry_count": retry_count},
            error_message=error_message,
        )

    @staticmethod
    def queue_item_dead_lettered(item_id: str, retry_count: int) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.QUEUE_ITEM_DEAD_LETTERED,
            severity=AuditSeverity.ERROR,
            entity_type="queued_submission",
            entity_id=item_id,
            description="Queued submission exhausted its automatic retries",
            details={"retry_count": retry_count},
        )

    @staticmethod
    def queue_item_removed(item_id: str, by_user: bool) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.QUEUE_ITEM_REMOVED,
            entity_type="queued_submission",
            entity_id=item_id,
            description="Queued submission discarded" if by_user else "Queued submission removed",
            is_user_action=by_user,
        )

    @staticmethod
    def queue_item_retry_reset(item_id: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.QUEUE_ITEM_RETRY_RESET,
            entity_type="queued_submission",
            entity_id=item_id,
            description="Manual retry requested",
            is_user_action=True,
        )

    @staticmethod
    def connectivity_changed(connected: bool) -> AuditEvent:
        return AuditEvent(
            event_type=(
                AuditEventType.CONNECTIVITY_RESTORED
                if connected
                else AuditEventType.CONNECTIVITY_LOST
            ),
            entity_type="connectivity",
            description="Network connection restored" if connected else "Network connection lost",
        )

    @staticmethod
    def notification_parsed(
        source_app: str,
        amount: float,
        card_last4: Optional[str],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.NOTIFICATION_PARSED,
            entity_type="notification",
            description=f"Banking notification parsed from {source_app}",
            details={
                "source_app": source_app,
                "amount": amount,
                "card_last4": card_last4,
            },
        )

    @staticmethod
    def notification_ignored(source_app: str, reason: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.NOTIFICATION_IGNORED,
            severity=AuditSeverity.DEBUG,
            entity_type="notification",
            description="Notification ignored",
            details={"source_app": source_app, "reason": reason},
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )

    @staticmethod
    def external_service_error(
        service: str,
        error_message: str,
        correlation_id: Optional[UUID] = None
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
