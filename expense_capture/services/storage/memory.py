"""In-memory key-value store, used in tests and as a volatile fallback."""

from typing import Optional

from expense_capture.services.storage.interface import KeyValueStore


class InMemoryKeyValueStore(KeyValueStore):

    def __init__(self, initial: Optional[dict[str, str]] = None):
        self._data: dict[str, str] = dict(initial or {})

    async def get_item(self, key: str) -> Optional[str]:
        return self._data.get(key)

    async def set_item(self, key: str, value: str) -> None:
        self._data[key] = value

    async def remove_item(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> list[str]:
        return list(self._data)
