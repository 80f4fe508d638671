"""
Queue Processor

Drains the submission queue against the backend.

DESIGN DECISION: One processor instance is shared by every trigger path
(queue add, periodic poll, reconnection, manual retry). A drain is
single-flight: the busy flag is checked and set with no await in
between, so a concurrent trigger returns immediately instead of sending
the same item twice.

Items are processed strictly in list order, one request in flight. An
item is re-read by id before each step, so one removed by the user in
the meantime is skipped.
"""

import asyncio
from datetime import datetime
from typing import Awaitable, Callable, Optional

import structlog
from pydantic import BaseModel

from expense_capture.models.audit import AuditEventBuilder
from expense_capture.models.expense import QueuedSubmission, SubmissionStatus
from expense_capture.services.api.errors import classify_failure
from expense_capture.services.storage.interface import NotFoundError
from expense_capture.submission_queue.connectivity import ConnectivityProvider
from expense_capture.submission_queue.retry import EXHAUSTED_MESSAGE, RetryPolicy
from expense_capture.submission_queue.store import SubmissionQueueStore

logger = structlog.get_logger(__name__)

Sleep = Callable[[float], Awaitable[None]]


class DrainResult(BaseModel):
    """Outcome counters of one drain pass."""

    skipped: bool = False
    sent: int = 0
    failed: int = 0
    dead_lettered: int = 0


class QueueProcessor:
    """Sends queued submissions with bounded exponential backoff."""

    def __init__(
        self,
        store: SubmissionQueueStore,
        api_client,
        connectivity: ConnectivityProvider,
        policy: Optional[RetryPolicy] = None,
        audit_logger=None,
        sleep: Sleep = asyncio.sleep,
    ):
        self._store = store
        self._api = api_client
        self._connectivity = connectivity
        self._policy = policy or RetryPolicy()
        self._audit_logger = audit_logger
        self._sleep = sleep
        self._draining = False
        # Set when a retry found a pass running; honored once that pass ends
        self._rerun = False
        self._tasks: set[asyncio.Task] = set()

    @property
    def policy(self) -> RetryPolicy:
        return self._policy

    @property
    def is_draining(self) -> bool:
        return self._draining

    async def _audit(self, event) -> None:
        if self._audit_logger:
            await self._audit_logger.log(event)

    # -------------------------------------------------------------------------
    # Scheduling
    # -------------------------------------------------------------------------

    def schedule_drain(self) -> asyncio.Task:
        """Start a drain in the background. Requires a running event loop."""
        task = asyncio.get_running_loop().create_task(self.drain())
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)
        return task

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("background_drain_failed", error=str(exc), error_type=type(exc).__name__)

    async def wait_idle(self) -> None:
        """Wait for every scheduled drain, including ones they schedule."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # -------------------------------------------------------------------------
    # Draining
    # -------------------------------------------------------------------------

    async def drain(self) -> DrainResult:
        """
        Attempt every queued item once.

        Returns a skipped result when another drain is running or the
        device is offline; nothing is touched in either case.
        """
        if self._draining:
            logger.debug("drain_already_running")
            return DrainResult(skipped=True)
        self._draining = True

        try:
            if not await self._connectivity.is_connected():
                await self._audit(AuditEventBuilder.drain_skipped("offline"))
                return DrainResult(skipped=True)

            items = await self._store.list()
            if not items:
                return DrainResult()

            await self._audit(AuditEventBuilder.drain_started(len(items)))
            result = DrainResult()

            for snapshot in items:
                item = await self._store.get(snapshot.id)
                if item is None:
                    continue
                outcome = await self._process(item)
                if outcome == "sent":
                    result.sent += 1
                elif outcome == "failed":
                    result.failed += 1
                elif outcome == "dead":
                    result.dead_lettered += 1

            await self._audit(
                AuditEventBuilder.drain_completed(
                    sent=result.sent,
                    failed=result.failed,
                    dead=result.dead_lettered,
                )
            )
            return result
        finally:
            self._draining = False
            if self._rerun:
                self._rerun = False
                self.schedule_drain()

    async def _process(self, item: QueuedSubmission) -> Optional[str]:
        if self._policy.is_exhausted(item.retry_count):
            already_marked = (
                item.status == SubmissionStatus.ERROR
                and (item.error_message or "").startswith(EXHAUSTED_MESSAGE)
            )
            if not already_marked:
                await self._store.update(
                    item.id,
                    status=SubmissionStatus.ERROR,
                    error_message=EXHAUSTED_MESSAGE,
                )
                await self._audit(
                    AuditEventBuilder.queue_item_dead_lettered(item.id, item.retry_count)
                )
            return "dead"

        delay = self._policy.delay_for(item.retry_count)
        if delay > 0:
            logger.debug("retry_backoff", item_id=item.id, delay_seconds=delay)
            await self._sleep(delay)
            if await self._store.get(item.id) is None:
                return None

        await self._store.update(item.id, status=SubmissionStatus.SENDING)

        try:
            await self._api.submit_draft(item.to_request())
        except Exception as exc:
            return await self._record_failure(item, exc)

        await self._store.remove(item.id)
        logger.info("queued_submission_sent", item_id=item.id, attempt=item.retry_count + 1)
        await self._audit(AuditEventBuilder.queue_item_sent(item.id, item.retry_count + 1))
        return "sent"

    async def _record_failure(self, item: QueuedSubmission, exc: Exception) -> str:
        failure = classify_failure(exc)
        retry_count = item.retry_count + 1
        exhausted = self._policy.is_exhausted(retry_count)
        message = f"{EXHAUSTED_MESSAGE}: {failure.message}" if exhausted else failure.message

        await self._store.update(
            item.id,
            status=SubmissionStatus.ERROR,
            retry_count=retry_count,
            last_retry_at=datetime.now(),
            error_message=message,
        )

        logger.warning(
            "queued_submission_failed",
            item_id=item.id,
            retry_count=retry_count,
            failure_kind=failure.kind.value,
            error=str(exc),
        )
        await self._audit(AuditEventBuilder.queue_item_failed(item.id, retry_count, message))

        if exhausted:
            await self._audit(AuditEventBuilder.queue_item_dead_lettered(item.id, retry_count))
            return "dead"
        return "failed"

    # -------------------------------------------------------------------------
    # Manual actions
    # -------------------------------------------------------------------------

    async def retry(self, item_id: str) -> DrainResult:
        """
        Give an item a fresh retry budget and drain.

        When a pass is already running the item may have been passed over,
        so another pass is scheduled for when the running one ends.

        Raises:
            NotFoundError: If no queued item has item_id
        """
        item = await self._store.update(
            item_id,
            retry_count=0,
            status=SubmissionStatus.SENDING,
            error_message=None,
        )
        if item is None:
            raise NotFoundError(f"Queued submission not found: {item_id}")

        await self._audit(AuditEventBuilder.queue_item_retry_reset(item_id))
        result = await self.drain()
        if result.skipped and self._draining:
            self._rerun = True
        return result

    async def discard(self, item_id: str) -> bool:
        """Remove an item on user request. Unknown ids are ignored."""
        removed = await self._store.remove(item_id)
        if removed:
            await self._audit(AuditEventBuilder.queue_item_removed(item_id, by_user=True))
        return removed
