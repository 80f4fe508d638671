"""
Record List Storage

A list of pydantic records persisted as one flat JSON array under a single
key. The store is the sole owner of the records: callers always get fresh
copies re-read from the backend, never shared instances.

Reads degrade to an empty list on storage or decode failure. Writes
propagate StorageError.
"""

import asyncio
import json
from typing import Any, Callable, Generic, List, Optional, Type, TypeVar

import structlog
from pydantic import BaseModel, ValidationError

from expense_capture.models.expense import LocalDraft
from expense_capture.services.storage.interface import KeyValueStore, StorageError

logger = structlog.get_logger(__name__)

M = TypeVar("M", bound=BaseModel)

Listener = Callable[[list], None]


class RecordListStore(Generic[M]):
    """
    CRUD over a JSON list of records keyed by their `id` field.

    Mutations are serialized with a lock so a read-modify-write cycle is
    never interleaved with another one.
    """

    model: Type[M]

    def __init__(self, storage: KeyValueStore, key: str):
        self._storage = storage
        self._key = key
        self._lock = asyncio.Lock()
        self._listeners: list[Listener] = []

    @property
    def key(self) -> str:
        return self._key

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def _decode(self, raw: str) -> List[M]:
        data = json.loads(raw)
        if not isinstance(data, list):
            raise ValueError(f"expected a JSON list, got {type(data).__name__}")

        records = []
        for entry in data:
            try:
                records.append(self.model.model_validate(entry))
            except ValidationError as e:
                logger.warning(
                    "record_skipped",
                    key=self._key,
                    error=str(e),
                )
        return records

    async def _load(self) -> List[M]:
        raw = await self._storage.get_item(self._key)
        if not raw:
            return []
        return self._decode(raw)

    async def list(self) -> List[M]:
        """All records, in stored order. Never raises."""
        try:
            return await self._load()
        except (StorageError, ValueError) as e:
            logger.error("record_list_read_failed", key=self._key, error=str(e))
            return []

    async def get(self, record_id: str) -> Optional[M]:
        for record in await self.list():
            if record.id == record_id:
                return record
        return None

    async def count(self) -> int:
        return len(await self.list())

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    async def _save(self, records: List[M]) -> None:
        payload = json.dumps(
            [r.model_dump(mode="json") for r in records],
            ensure_ascii=False,
        )
        await self._storage.set_item(self._key, payload)
        self._notify(records)

    async def append(self, record: M) -> M:
        async with self._lock:
            records = await self.list()
            records.append(record)
            await self._save(records)
        return record

    async def prepend(self, record: M) -> M:
        async with self._lock:
            records = await self.list()
            records.insert(0, record)
            await self._save(records)
        return record

    async def update(self, record_id: str, **changes: Any) -> Optional[M]:
        """Merge changes into the record with record_id. Missing id is a no-op."""
        async with self._lock:
            records = await self.list()
            for index, record in enumerate(records):
                if record.id != record_id:
                    continue
                merged = self.model.model_validate({**record.model_dump(), **changes})
                records[index] = merged
                await self._save(records)
                return merged
        return None

    async def remove(self, record_id: str) -> bool:
        """Remove the record with record_id. Returns False when absent."""
        async with self._lock:
            records = await self.list()
            remaining = [r for r in records if r.id != record_id]
            if len(remaining) == len(records):
                return False
            await self._save(remaining)
        return True

    async def clear(self) -> None:
        async with self._lock:
            await self._storage.remove_item(self._key)
            self._notify([])

    # -------------------------------------------------------------------------
    # Listeners
    # -------------------------------------------------------------------------

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """
        Register a callback receiving the full record list after each
        mutation. Returns a function that unsubscribes it.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, records: List[M]) -> None:
        snapshot = [r.model_copy(deep=True) for r in records]
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception as e:
                logger.error("record_listener_failed", key=self._key, error=str(e))


class DraftStore(RecordListStore[LocalDraft]):
    """Drafts kept on the device in draft-only mode, newest first."""

    model = LocalDraft

    async def save(self, draft: LocalDraft) -> LocalDraft:
        return await self.prepend(draft)
