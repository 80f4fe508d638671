"""
Abstract Storage Interface

DESIGN DECISION: Persistence is modelled on a mobile key-value store
(string keys, string values). This allows us to:
1. Keep the on-device format a flat JSON document per key
2. Use in-memory storage for testing
3. Swap the file backend for a platform store without touching callers

The interface is intentionally small - get, set, remove. Anything richer
(record lists, ring buffers) is layered on top.
"""

from abc import ABC, abstractmethod
from typing import Optional
from uuid import UUID

from expense_capture.models.audit import AuditEvent


class KeyValueStore(ABC):
    """
    Abstract async key-value store.

    Any backend (JSON files, SQLite, a platform store) must implement
    these methods.
    """

    @abstractmethod
    async def get_item(self, key: str) -> Optional[str]:
        """
        Read the raw value stored under key.

        Returns:
            The stored string, or None if the key is absent

        Raises:
            StorageConnectionError: If the backend cannot be read
        """
        pass

    @abstractmethod
    async def set_item(self, key: str, value: str) -> None:
        """
        Store value under key, replacing any previous value.

        Raises:
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    async def remove_item(self, key: str) -> None:
        """
        Remove key. Removing an absent key is not an error.

        Raises:
            StorageError: If the removal fails
        """
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """Get all events for a correlation ID, oldest first."""
        pass

    @abstractmethod
    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: str,
    ) -> list[AuditEvent]:
        """Get all events for a specific entity, oldest first."""
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """Get the most recent audit events, newest first."""
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class StorageConnectionError(StorageError):
    """Could not reach the storage backend."""
    pass
