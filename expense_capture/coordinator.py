"""
Submission Coordinator for Expense Capture

This module ties together all the components and defines the
end-to-end flows for:
1. Submission (audio/text → optimistic local record → backend → queue on failure)
2. Notification intake (banking notification → parse → submission)
3. Queue maintenance from the UI (manual retry, discard)

DESIGN DECISION: The coordinator enforces the boundaries:
- Nothing is sent without audio or text
- A failed remote call never loses the expense: it goes to the offline queue
- Remote failures never propagate past the coordinator
- Every step is audited

Local records are reconciled strictly by id, never by list position.
"""

import time
from typing import Awaitable, Callable, NamedTuple, Optional, Sequence
from uuid import UUID

import structlog

from expense_capture.audit import AuditLogger, configure_logging, create_correlation_id
from expense_capture.config import Settings, get_settings
from expense_capture.models.audit import AuditEventBuilder
from expense_capture.models.expense import (
    DraftState,
    LocalDraft,
    QueuedSubmission,
    SubmissionRequest,
    SubmissionStatus,
)
from expense_capture.parsing.dates import ensure_valid_date
from expense_capture.parsing.entities import CardLike, UserLike
from expense_capture.parsing.notifications import BankNotificationParser
from expense_capture.parsing.sanitizer import DEFAULT_PLACEHOLDER
from expense_capture.parsing.smart_input import parse_smart_input
from expense_capture.services.api import SubmissionApiClient, classify_failure
from expense_capture.services.preferences import PreferencesService
from expense_capture.services.storage import (
    DraftStore,
    InMemoryKeyValueStore,
    JsonFileKeyValueStore,
    KeyValueAuditStorage,
    KeyValueStore,
)
from expense_capture.submission_queue import (
    ConnectivityMonitor,
    ConnectivityProvider,
    ManualConnectivity,
    QueueProcessor,
    RetryPolicy,
    SubmissionQueueStore,
)

logger = structlog.get_logger(__name__)

LocationProvider = Callable[[], Awaitable[Optional[tuple[float, float]]]]

MISSING_INPUT_MESSAGE = "É necessário fornecer áudio ou texto"
MISSING_CARD_MESSAGE = "Selecione um cartão padrão antes de gravar áudio"
AUDIO_DESCRIPTION = "Gravação de áudio"


class SubmissionError(Exception):
    """Base exception for submission flows."""
    pass


class SubmissionValidationError(SubmissionError):
    """Request rejected before anything was created or queued."""
    pass


class LocalDraftList:
    """
    Newest-first list of UI-facing records.

    Every mutation addresses a record by id.
    """

    def __init__(self, drafts: Optional[Sequence[LocalDraft]] = None):
        self._drafts: list[LocalDraft] = list(drafts or [])

    def __len__(self) -> int:
        return len(self._drafts)

    def __iter__(self):
        return iter(list(self._drafts))

    def items(self) -> list[LocalDraft]:
        return list(self._drafts)

    def get(self, draft_id: str) -> Optional[LocalDraft]:
        for draft in self._drafts:
            if draft.id == draft_id:
                return draft
        return None

    def prepend(self, draft: LocalDraft) -> None:
        self._drafts.insert(0, draft)

    def reset(self, drafts: Sequence[LocalDraft]) -> None:
        self._drafts = list(drafts)

    def replace(self, draft_id: str, draft: LocalDraft) -> bool:
        for index, current in enumerate(self._drafts):
            if current.id == draft_id:
                self._drafts[index] = draft
                return True
        return False

    def update(self, draft_id: str, **changes) -> Optional[LocalDraft]:
        current = self.get(draft_id)
        if current is None:
            return None
        updated = current.model_copy(update=changes)
        self.replace(draft_id, updated)
        return updated

    def remove(self, draft_id: str) -> bool:
        before = len(self._drafts)
        self._drafts = [d for d in self._drafts if d.id != draft_id]
        return len(self._drafts) != before

    def filter(
        self,
        state: Optional[DraftState] = None,
        query: str = "",
    ) -> list[LocalDraft]:
        """Records in state (any if None) whose description or amount contains query."""
        needle = query.strip().lower()
        result = []
        for draft in self._drafts:
            if state is not None and draft.state != state:
                continue
            if needle and not (
                needle in draft.description.lower()
                or needle in f"{draft.amount:.2f}"
                or needle in f"{draft.amount:.2f}".replace(".", ",")
            ):
                continue
            result.append(draft)
        return result

    def total_amount(self, user_id: Optional[str] = None) -> float:
        """Sum of submitted records, optionally for one user."""
        return sum(
            d.amount
            for d in self._drafts
            if d.state == DraftState.SUBMITTED
            and (user_id is None or d.user_id == user_id)
        )


class SubmissionCoordinator:
    """
    Orchestrates expense submission.

    Flow:
    1. Validate → audio or text, and a card unless the text can name one
    2. Optimistic → temporary local record shown immediately
    3. Draft-only → keep on device and stop
    4. Send → backend call
    5. Reconcile → replace the temporary record by the server one
       (or queue the submission and flag the local record on failure)
    """

    def __init__(
        self,
        api_client: SubmissionApiClient,
        queue_store: SubmissionQueueStore,
        preferences: PreferencesService,
        draft_store: Optional[DraftStore] = None,
        processor: Optional[QueueProcessor] = None,
        notification_parser: Optional[BankNotificationParser] = None,
        location_provider: Optional[LocationProvider] = None,
        audit_logger: Optional[AuditLogger] = None,
        drafts: Optional[LocalDraftList] = None,
        mock_card_prefix: str = "mock-",
        description_placeholder: str = DEFAULT_PLACEHOLDER,
    ):
        self._api = api_client
        self._queue_store = queue_store
        self._preferences = preferences
        self._draft_store = draft_store
        self._processor = processor
        self._notification_parser = notification_parser or BankNotificationParser()
        self._location_provider = location_provider
        self._audit_logger = audit_logger
        self._drafts = drafts if drafts is not None else LocalDraftList()
        self._mock_card_prefix = mock_card_prefix
        self._description_placeholder = description_placeholder
        self._last_temp_ms = 0
        # Ids of local records known to have reached the queue
        self._queued_ids: set[str] = set()
        self._unsubscribe = queue_store.subscribe(self._on_queue_changed)

    @property
    def drafts(self) -> LocalDraftList:
        return self._drafts

    def close(self) -> None:
        """Stop following queue changes."""
        self._unsubscribe()

    def _on_queue_changed(self, items: list[QueuedSubmission]) -> None:
        """
        Mirror a queue snapshot onto the local records.

        A tracked id gone from the queue was sent; one still present takes
        the queue's error message, including the exhausted marker.
        """
        present = {item.id: item for item in items}
        for draft_id in list(self._queued_ids):
            item = present.get(draft_id)
            if item is None:
                self._queued_ids.discard(draft_id)
                self._drafts.update(draft_id, state=DraftState.SUBMITTED, error_message=None)
                logger.debug("local_record_submitted", draft_id=draft_id)
            else:
                self._drafts.update(draft_id, error_message=item.error_message)

    async def load(self) -> LocalDraftList:
        """
        Rebuild the local records from the queue and the draft store.

        Submitted records already in memory are kept; they have no
        on-device copy.
        """
        queued = await self._queue_store.list()
        stored = await self._draft_store.list() if self._draft_store is not None else []

        loaded = [LocalDraft.from_queued(item) for item in queued] + list(stored)
        loaded_ids = {draft.id for draft in loaded}
        kept = [
            draft
            for draft in self._drafts
            if draft.state == DraftState.SUBMITTED and draft.id not in loaded_ids
        ]

        self._drafts.reset(
            sorted(loaded + kept, key=lambda draft: draft.timestamp, reverse=True)
        )
        self._queued_ids = {item.id for item in queued}

        logger.info("local_records_loaded", queued=len(queued), drafts=len(stored))
        return self._drafts

    async def _audit(self, event) -> None:
        if self._audit_logger:
            await self._audit_logger.log(event)

    def _temporary_id(self) -> str:
        ms = max(int(time.time() * 1000), self._last_temp_ms + 1)
        self._last_temp_ms = ms
        return f"temp-{ms}"

    async def _locate(self) -> Optional[tuple[float, float]]:
        if self._location_provider is None:
            return None
        try:
            return await self._location_provider()
        except Exception as e:
            logger.warning("location_unavailable", error=str(e))
            if self._audit_logger:
                await self._audit_logger.log_external_service_error("location", str(e))
            return None

    async def _reject(self, reason: str, correlation_id: UUID) -> None:
        await self._audit(AuditEventBuilder.submission_rejected(reason, correlation_id))
        raise SubmissionValidationError(reason)

    # -------------------------------------------------------------------------
    # Submission
    # -------------------------------------------------------------------------

    async def submit(self, request: SubmissionRequest) -> LocalDraft:
        """
        Submit a new expense.

        Returns:
            The local record: SUBMITTED on success, DRAFT in draft-only
            mode, or QUEUED with error_message set after a failure

        Raises:
            SubmissionValidationError: No audio/text, or no card for audio
        """
        correlation_id = create_correlation_id()

        if request.audio is None and not request.text:
            await self._reject(MISSING_INPUT_MESSAGE, correlation_id)

        default_card = await self._preferences.get_default_card()
        final_card = request.card_id or default_card or ""

        card_to_send = final_card
        if card_to_send.startswith(self._mock_card_prefix):
            logger.warning("mock_card_ignored", card_id=card_to_send)
            card_to_send = ""

        # Without a card only text lets the backend work one out
        if not card_to_send and not request.text:
            await self._reject(MISSING_CARD_MESSAGE, correlation_id)

        latitude, longitude = request.latitude, request.longitude
        if not request.has_location:
            coordinates = await self._locate()
            if coordinates:
                latitude, longitude = coordinates

        draft = LocalDraft(
            id=self._temporary_id(),
            description=request.text or AUDIO_DESCRIPTION,
            amount=0.0,
            card_id=final_card,
            user_id=request.user_id or "",
            state=DraftState.QUEUED,
            timestamp=ensure_valid_date(request.date),
            audio_uri=request.audio.uri if request.audio else None,
            text_input=request.text,
            selected_destinations=request.selected_destinations,
        )
        self._drafts.prepend(draft)

        await self._audit(
            AuditEventBuilder.submission_requested(
                draft_id=draft.id,
                has_audio=request.audio is not None,
                has_text=request.text is not None,
                card_id=card_to_send,
                correlation_id=correlation_id,
            )
        )

        if await self._preferences.is_draft_only():
            return await self._keep_as_draft(draft, correlation_id)

        outbound = request.model_copy(
            update={
                "card_id": card_to_send or None,
                "latitude": latitude,
                "longitude": longitude,
            }
        )

        try:
            response = await self._api.submit_draft(outbound, is_draft=False)
        except Exception as exc:
            return await self._enqueue(draft, outbound, exc, correlation_id)

        if response.record is not None:
            confirmed = LocalDraft.from_server(response.record)
        else:
            confirmed = draft.model_copy(update={"state": DraftState.SUBMITTED})
        self._drafts.replace(draft.id, confirmed)

        logger.info("submission_confirmed", temporary_id=draft.id, server_id=confirmed.id)
        await self._audit(
            AuditEventBuilder.submission_sent(draft.id, confirmed.id, correlation_id)
        )
        return confirmed

    async def _keep_as_draft(self, draft: LocalDraft, correlation_id: UUID) -> LocalDraft:
        kept = draft.model_copy(update={"state": DraftState.DRAFT})
        self._drafts.replace(draft.id, kept)
        if self._draft_store is not None:
            await self._draft_store.save(kept)
        logger.info("draft_only_saved", draft_id=kept.id)
        await self._audit(AuditEventBuilder.draft_saved(kept.id, correlation_id))
        return kept

    async def _enqueue(
        self,
        draft: LocalDraft,
        outbound: SubmissionRequest,
        exc: Exception,
        correlation_id: UUID,
    ) -> LocalDraft:
        failure = classify_failure(exc)
        logger.warning(
            "submission_failed",
            draft_id=draft.id,
            failure_kind=failure.kind.value,
            error=str(exc),
        )
        await self._audit(
            AuditEventBuilder.submission_failed(
                draft_id=draft.id,
                failure_kind=failure.kind.value,
                error_message=failure.message,
                correlation_id=correlation_id,
            )
        )

        flagged = self._drafts.update(draft.id, error_message=failure.message) or draft

        # A queued item carries one attachment; with audio, text is the description
        queued = QueuedSubmission(
            id=draft.id,
            description=draft.description,
            amount=draft.amount,
            card_id=outbound.card_id or "",
            user_id=outbound.user_id or "",
            status=SubmissionStatus.ERROR,
            timestamp=draft.timestamp,
            audio_uri=outbound.audio.uri if outbound.audio else None,
            text_input=None if outbound.audio else outbound.text,
            selected_destinations=outbound.selected_destinations,
            latitude=outbound.latitude,
            longitude=outbound.longitude,
            error_message=failure.message,
        )
        self._queued_ids.add(draft.id)
        await self._queue_store.add(queued)
        await self._audit(
            AuditEventBuilder.submission_queued(draft.id, failure.kind.value, correlation_id)
        )
        return flagged

    async def submit_text(
        self,
        text: str,
        cards: Optional[Sequence[CardLike]] = None,
        users: Optional[Sequence[UserLike]] = None,
        selected_destinations: Optional[list[str]] = None,
    ) -> LocalDraft:
        """Parse free text and submit it with the detected card, user and date."""
        parsed = parse_smart_input(
            text,
            cards,
            users,
            placeholder=self._description_placeholder,
        )
        request = SubmissionRequest(
            text=text,
            card_id=parsed.card_id,
            user_id=parsed.user_id,
            date=parsed.date,
            selected_destinations=selected_destinations,
        )
        return await self.submit(request)

    async def submit_notification(
        self,
        title: Optional[str],
        body: Optional[str],
        origin_app_id: Optional[str],
    ) -> Optional[LocalDraft]:
        """
        Turn a banking notification into a submission.

        Returns None when the notification is ignored or no default card
        is configured.
        """
        parsed = self._notification_parser.parse(title, body, origin_app_id)
        if parsed is None:
            await self._audit(
                AuditEventBuilder.notification_ignored(origin_app_id or "", "not_parsed")
            )
            return None

        default_card = await self._preferences.get_default_card()
        if not default_card:
            logger.warning("notification_without_default_card", source_app=origin_app_id)
            await self._audit(
                AuditEventBuilder.notification_ignored(origin_app_id or "", "no_default_card")
            )
            return None

        await self._audit(
            AuditEventBuilder.notification_parsed(
                origin_app_id or "",
                parsed.amount,
                parsed.card_last4,
            )
        )

        request = SubmissionRequest(
            text=f"{parsed.description} - {parsed.amount:.2f}",
            card_id=default_card,
            date=parsed.timestamp,
        )
        return await self.submit(request)

    # -------------------------------------------------------------------------
    # Queue maintenance
    # -------------------------------------------------------------------------

    async def retry_draft(self, draft_id: str) -> Optional[LocalDraft]:
        """
        Manually retry a queued submission and reflect the outcome locally.

        Raises:
            SubmissionError: If no processor is configured
            NotFoundError: If the id is not queued
        """
        if self._processor is None:
            raise SubmissionError("Queue processor not configured")

        await self._processor.retry(draft_id)

        item = await self._queue_store.get(draft_id)
        if item is None:
            return self._drafts.update(
                draft_id,
                state=DraftState.SUBMITTED,
                error_message=None,
            )
        return self._drafts.update(draft_id, error_message=item.error_message)

    async def discard_draft(self, draft_id: str) -> bool:
        """Drop a record locally, from the queue and from the draft store."""
        # Untracked first so the removal is not mistaken for a send
        self._queued_ids.discard(draft_id)
        if self._processor is not None:
            removed = await self._processor.discard(draft_id)
        else:
            removed = await self._queue_store.remove(draft_id)
        if self._draft_store is not None:
            removed = await self._draft_store.remove(draft_id) or removed
        return self._drafts.remove(draft_id) or removed


class AppComponents(NamedTuple):
    coordinator: SubmissionCoordinator
    processor: QueueProcessor
    monitor: ConnectivityMonitor
    queue_store: SubmissionQueueStore
    preferences: PreferencesService
    audit_logger: AuditLogger


def create_app_components(
    use_storage: bool = True,
    settings: Optional[Settings] = None,
    api_client: Optional[SubmissionApiClient] = None,
    connectivity: Optional[ConnectivityProvider] = None,
    storage: Optional[KeyValueStore] = None,
    location_provider: Optional[LocationProvider] = None,
) -> AppComponents:
    """
    Factory function to create all application components.

    Args:
        use_storage: Whether to persist to the JSON file store.
                    Set to False for an in-memory store (testing).
        api_client: Backend client; built from settings when omitted.
        connectivity: Reachability source; defaults to a manual provider
                    reporting online.

    Returns:
        AppComponents with one shared QueueProcessor wired to the queue
        store and the connectivity monitor. Await coordinator.load() at
        startup to bring back records persisted by a previous run.
    """
    settings = settings or get_settings()
    app_settings = settings.app
    queue_settings = settings.queue
    storage_settings = settings.storage
    parser_settings = settings.parser

    configure_logging(app_settings.log_level)

    if storage is None:
        if use_storage:
            storage = JsonFileKeyValueStore(storage_settings.data_dir)
        else:
            storage = InMemoryKeyValueStore()

    audit_logger = AuditLogger(
        KeyValueAuditStorage(
            storage,
            key=storage_settings.audit_key,
            max_events=storage_settings.max_audit_events,
        )
    )

    api_client = api_client or SubmissionApiClient(settings.api)
    connectivity = connectivity or ManualConnectivity(connected=True)

    queue_store = SubmissionQueueStore(storage, key=queue_settings.storage_key)
    processor = QueueProcessor(
        store=queue_store,
        api_client=api_client,
        connectivity=connectivity,
        policy=RetryPolicy(
            max_attempts=queue_settings.max_retry_attempts,
            base_delay_ms=queue_settings.base_delay_ms,
        ),
        audit_logger=audit_logger,
    )
    queue_store.set_drain_trigger(processor.schedule_drain)

    monitor = ConnectivityMonitor(
        connectivity,
        processor,
        poll_interval_seconds=queue_settings.poll_interval_seconds,
        audit_logger=audit_logger,
    )

    preferences = PreferencesService(
        storage,
        default_card_key=storage_settings.default_card_key,
        draft_only_key=storage_settings.draft_only_key,
    )

    coordinator = SubmissionCoordinator(
        api_client=api_client,
        queue_store=queue_store,
        preferences=preferences,
        draft_store=DraftStore(storage, key=storage_settings.drafts_key),
        processor=processor,
        notification_parser=BankNotificationParser(
            parser_settings.banking_apps,
            placeholder=parser_settings.notification_placeholder,
        ),
        location_provider=location_provider,
        audit_logger=audit_logger,
        mock_card_prefix=parser_settings.mock_card_prefix,
        description_placeholder=parser_settings.description_placeholder,
    )

    return AppComponents(
        coordinator=coordinator,
        processor=processor,
        monitor=monitor,
        queue_store=queue_store,
        preferences=preferences,
        audit_logger=audit_logger,
    )
