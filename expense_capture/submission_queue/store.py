"""
Submission Queue Store

Durable list of submissions waiting to reach the backend, kept under one
namespaced key as a flat JSON array.

Adding an item schedules a background drain through the registered
trigger; the store itself never talks to the network.
"""

from typing import Callable, Optional

import structlog

from expense_capture.models.expense import QueuedSubmission, SubmissionStatus
from expense_capture.services.storage.interface import KeyValueStore
from expense_capture.services.storage.records import RecordListStore

logger = structlog.get_logger(__name__)

DEFAULT_QUEUE_KEY = "@expense_capture:draft_queue"


class SubmissionQueueStore(RecordListStore[QueuedSubmission]):
    """CRUD over queued submissions."""

    model = QueuedSubmission

    def __init__(self, storage: KeyValueStore, key: str = DEFAULT_QUEUE_KEY):
        super().__init__(storage, key)
        self._drain_trigger: Optional[Callable[[], object]] = None

    def set_drain_trigger(self, trigger: Optional[Callable[[], object]]) -> None:
        """Register the callable invoked (not awaited) after each add."""
        self._drain_trigger = trigger

    async def add(self, submission: QueuedSubmission) -> QueuedSubmission:
        """
        Append submission with a fresh retry budget and schedule a drain.

        Any error_message already set is kept so the UI can show why the
        item was queued.
        """
        queued = submission.model_copy(
            update={"retry_count": 0, "status": SubmissionStatus.SENDING}
        )
        await self.append(queued)
        logger.info("submission_enqueued", item_id=queued.id)

        if self._drain_trigger is not None:
            self._drain_trigger()

        return queued
