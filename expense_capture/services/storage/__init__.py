"""
Storage Services Package

Provides the key-value persistence abstraction and concrete backends.
A JSON-file backend is used on device; the in-memory backend in tests.
"""

from expense_capture.services.storage.interface import (
    AuditStorageInterface,
    KeyValueStore,
    NotFoundError,
    StorageConnectionError,
    StorageError,
)
from expense_capture.services.storage.audit import KeyValueAuditStorage
from expense_capture.services.storage.json_file import JsonFileKeyValueStore
from expense_capture.services.storage.memory import InMemoryKeyValueStore
from expense_capture.services.storage.records import DraftStore, RecordListStore

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "KeyValueStore",
    # Exceptions
    "NotFoundError",
    "StorageConnectionError",
    "StorageError",
    # Implementations
    "DraftStore",
    "InMemoryKeyValueStore",
    "JsonFileKeyValueStore",
    "KeyValueAuditStorage",
    "RecordListStore",
]
