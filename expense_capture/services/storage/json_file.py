"""
JSON File Storage Implementation

DESIGN DECISION: Each key is one file under the data directory. This keeps
the on-device format inspectable and mirrors how a mobile key-value store
behaves (whole-value reads and writes).

Writes go to a temporary file that is then renamed over the target, so a
crash mid-write leaves the previous value intact. Blocking file I/O runs in
a worker thread to keep the event loop responsive.
"""

import asyncio
import os
import re
from pathlib import Path
from typing import Optional, Union

import structlog

from expense_capture.services.storage.interface import (
    KeyValueStore,
    StorageConnectionError,
    StorageError,
)

logger = structlog.get_logger(__name__)

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9_.-]")


class JsonFileKeyValueStore(KeyValueStore):
    """File-per-key store rooted at data_dir."""

    def __init__(self, data_dir: Union[str, Path]):
        self._data_dir = Path(data_dir)

    @property
    def data_dir(self) -> Path:
        return self._data_dir

    def path_for(self, key: str) -> Path:
        """Filesystem path used for key."""
        safe = _UNSAFE_CHARS.sub("_", key).strip("_") or "default"
        return self._data_dir / f"{safe}.json"

    def _read(self, key: str) -> Optional[str]:
        path = self.path_for(key)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StorageConnectionError(f"Failed to read {path}: {e}")

    def _write(self, key: str, value: str) -> None:
        path = self.path_for(key)
        tmp_path = path.with_suffix(".json.tmp")
        try:
            self._data_dir.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(value, encoding="utf-8")
            os.replace(tmp_path, path)
        except OSError as e:
            raise StorageError(f"Failed to write {path}: {e}")

    def _remove(self, key: str) -> None:
        path = self.path_for(key)
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            raise StorageError(f"Failed to remove {path}: {e}")

    async def get_item(self, key: str) -> Optional[str]:
        return await asyncio.to_thread(self._read, key)

    async def set_item(self, key: str, value: str) -> None:
        await asyncio.to_thread(self._write, key, value)
        logger.debug("storage_write", key=key, size=len(value))

    async def remove_item(self, key: str) -> None:
        await asyncio.to_thread(self._remove, key)
