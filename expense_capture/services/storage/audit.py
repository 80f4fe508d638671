"""
Key-Value Audit Storage

Audit events kept as a ring buffer under a single key. Oldest events fall
off once max_events is reached.
"""

import asyncio
import json
from typing import Optional
from uuid import UUID

import structlog
from pydantic import ValidationError

from expense_capture.models.audit import AuditEvent
from expense_capture.services.storage.interface import (
    AuditStorageInterface,
    KeyValueStore,
    StorageError,
)

logger = structlog.get_logger(__name__)


class KeyValueAuditStorage(AuditStorageInterface):
    """Append-only audit log on top of a KeyValueStore."""

    def __init__(
        self,
        storage: KeyValueStore,
        key: str = "@expense_capture:audit_log",
        max_events: int = 1000,
    ):
        self._storage = storage
        self._key = key
        self._max_events = max_events
        self._lock = asyncio.Lock()

    async def _load(self) -> list[AuditEvent]:
        raw = await self._storage.get_item(self._key)
        if not raw:
            return []

        data = json.loads(raw)
        if not isinstance(data, list):
            raise ValueError(f"expected a JSON list, got {type(data).__name__}")

        events = []
        for entry in data:
            try:
                events.append(AuditEvent.model_validate(entry))
            except ValidationError:
                continue
        return events

    async def _events(self) -> list[AuditEvent]:
        try:
            return await self._load()
        except (StorageError, ValueError) as e:
            raise StorageError(f"Failed to read audit events: {e}")

    async def append_event(self, event: AuditEvent) -> bool:
        """Append an audit event, trimming the oldest ones past the cap."""
        async with self._lock:
            try:
                events = await self._load()
            except (StorageError, ValueError):
                # A corrupt log is restarted rather than blocking new events
                events = []
            events.append(event)
            events = events[-self._max_events:]
            payload = json.dumps(
                [e.model_dump(mode="json") for e in events],
                ensure_ascii=False,
            )
            try:
                await self._storage.set_item(self._key, payload)
            except StorageError as e:
                logger.warning("audit_event_write_failed", error=str(e))
                return False
        return True

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        events = [e for e in await self._events() if e.correlation_id == correlation_id]
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: str,
    ) -> list[AuditEvent]:
        events = [
            e
            for e in await self._events()
            if e.entity_type == entity_type and e.entity_id == entity_id
        ]
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        events = await self._events()
        events.sort(key=lambda e: e.timestamp, reverse=True)
        return events[:limit]

    async def export_lines(self, limit: Optional[int] = None) -> list[str]:
        """JSON lines, oldest first, for sharing when reporting a problem."""
        events = await self._events()
        if limit is not None:
            events = events[-limit:]
        return [e.to_export_line() for e in events]

    async def clear(self) -> None:
        async with self._lock:
            await self._storage.remove_item(self._key)
