"""
User Preferences

Small per-device settings persisted in the key-value store: the default
card used for voice and notification capture, and draft-only mode.

Reads degrade to None/False so a broken store never blocks capture.
Writes propagate StorageError to the caller.
"""

from typing import Optional

import structlog

from expense_capture.config import get_settings
from expense_capture.services.storage.interface import KeyValueStore, StorageError

logger = structlog.get_logger(__name__)

_TRUE_VALUES = {"true", "1", "yes"}


class PreferencesService:
    """Default card and draft-only mode."""

    def __init__(
        self,
        storage: KeyValueStore,
        default_card_key: Optional[str] = None,
        draft_only_key: Optional[str] = None,
    ):
        if default_card_key is None or draft_only_key is None:
            settings = get_settings().storage
            default_card_key = default_card_key or settings.default_card_key
            draft_only_key = draft_only_key or settings.draft_only_key

        self._storage = storage
        self._default_card_key = default_card_key
        self._draft_only_key = draft_only_key

    async def save_default_card(self, card_id: str) -> None:
        await self._storage.set_item(self._default_card_key, card_id)
        logger.info("default_card_saved", card_id=card_id)

    async def get_default_card(self) -> Optional[str]:
        try:
            return await self._storage.get_item(self._default_card_key) or None
        except StorageError as e:
            logger.error("default_card_read_failed", error=str(e))
            return None

    async def clear_default_card(self) -> None:
        await self._storage.remove_item(self._default_card_key)
        logger.info("default_card_cleared")

    async def set_draft_only(self, enabled: bool) -> None:
        await self._storage.set_item(self._draft_only_key, "true" if enabled else "false")
        logger.info("draft_only_mode_changed", enabled=enabled)

    async def is_draft_only(self) -> bool:
        try:
            value = await self._storage.get_item(self._draft_only_key)
        except StorageError as e:
            logger.error("draft_only_read_failed", error=str(e))
            return False
        return (value or "").strip().lower() in _TRUE_VALUES
