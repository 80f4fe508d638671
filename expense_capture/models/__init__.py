"""
Data Models Package

This package contains all Pydantic models used in Expense Capture.
All data flowing through the system must conform to these schemas.
"""

from expense_capture.models.expense import (
    AudioAttachment,
    Card,
    Confidence,
    Destination,
    DraftState,
    LocalDraft,
    ParsedInput,
    ParsedNotification,
    QueuedSubmission,
    ResponsibleParty,
    ServerRecord,
    SubmissionRequest,
    SubmissionResponse,
    SubmissionStatus,
)
from expense_capture.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Expense models
    "AudioAttachment",
    "Card",
    "Confidence",
    "Destination",
    "DraftState",
    "LocalDraft",
    "ParsedInput",
    "ParsedNotification",
    "QueuedSubmission",
    "ResponsibleParty",
    "ServerRecord",
    "SubmissionRequest",
    "SubmissionResponse",
    "SubmissionStatus",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
