"""Services package."""

from expense_capture.services.api import (
    ApiConnectionError,
    ApiError,
    ApiTimeoutError,
    FailureClassification,
    FailureKind,
    SubmissionApiClient,
    classify_failure,
)
from expense_capture.services.preferences import PreferencesService
from expense_capture.services.storage import (
    AuditStorageInterface,
    DraftStore,
    InMemoryKeyValueStore,
    JsonFileKeyValueStore,
    KeyValueAuditStorage,
    KeyValueStore,
    NotFoundError,
    RecordListStore,
    StorageConnectionError,
    StorageError,
)

__all__ = [
    # API
    "ApiConnectionError",
    "ApiError",
    "ApiTimeoutError",
    "FailureClassification",
    "FailureKind",
    "SubmissionApiClient",
    "classify_failure",
    # Preferences
    "PreferencesService",
    # Storage
    "AuditStorageInterface",
    "DraftStore",
    "InMemoryKeyValueStore",
    "JsonFileKeyValueStore",
    "KeyValueAuditStorage",
    "KeyValueStore",
    "NotFoundError",
    "RecordListStore",
    "StorageConnectionError",
    "StorageError",
]
