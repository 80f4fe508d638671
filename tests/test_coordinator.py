"""
Flow tests for the submission coordinator.

The backend is replaced by FakeApiClient; storage is in memory.
"""

import asyncio
from datetime import datetime

import pytest

from expense_capture.coordinator import (
    LocalDraftList,
    MISSING_CARD_MESSAGE,
    MISSING_INPUT_MESSAGE,
    SubmissionCoordinator,
    SubmissionError,
    SubmissionValidationError,
    create_app_components,
)
from expense_capture.models.expense import (
    AudioAttachment,
    DraftState,
    LocalDraft,
    QueuedSubmission,
    SubmissionRequest,
    SubmissionStatus,
)
from expense_capture.services.api.errors import ApiConnectionError, ApiError
from expense_capture.services.preferences import PreferencesService
from expense_capture.services.storage import DraftStore, NotFoundError
from expense_capture.submission_queue import (
    EXHAUSTED_MESSAGE,
    ManualConnectivity,
    QueueProcessor,
    RetryPolicy,
    SubmissionQueueStore,
)


class Harness:
    """Coordinator wired to in-memory collaborators."""

    def __init__(self, api, kv, location=None):
        self.api = api
        self.queue = SubmissionQueueStore(kv)
        self.preferences = PreferencesService(kv, default_card_key="card", draft_only_key="draft")
        self.draft_store = DraftStore(kv, "local_drafts")
        self.processor = QueueProcessor(self.queue, api, ManualConnectivity(True))
        self.coordinator = SubmissionCoordinator(
            api_client=api,
            queue_store=self.queue,
            preferences=self.preferences,
            draft_store=self.draft_store,
            processor=self.processor,
            location_provider=location,
        )


@pytest.fixture
def harness(api, kv):
    return Harness(api, kv)


class TestSubmitValidation:
    """Tests for requests rejected before anything is created."""

    def test_requires_audio_or_text(self, harness):
        with pytest.raises(SubmissionValidationError, match=MISSING_INPUT_MESSAGE):
            asyncio.run(harness.coordinator.submit(SubmissionRequest()))
        assert len(harness.coordinator.drafts) == 0
        assert harness.api.calls == []

    def test_audio_needs_a_card(self, harness):
        request = SubmissionRequest(audio=AudioAttachment(uri="/tmp/rec.m4a"))
        with pytest.raises(SubmissionValidationError, match=MISSING_CARD_MESSAGE):
            asyncio.run(harness.coordinator.submit(request))
        assert asyncio.run(harness.queue.count()) == 0

    def test_mock_card_counts_as_no_card(self, harness):
        request = SubmissionRequest(audio=AudioAttachment(uri="/tmp/rec.m4a"), card_id="mock-1")
        with pytest.raises(SubmissionValidationError):
            asyncio.run(harness.coordinator.submit(request))

    def test_text_without_card_is_allowed(self, harness):
        draft = asyncio.run(harness.coordinator.submit(SubmissionRequest(text="café")))
        assert draft.state == DraftState.SUBMITTED
        assert harness.api.calls[0].card_id is None


class TestSubmitFlow:
    """Tests for the optimistic submission flow."""

    def test_success_replaces_temporary_record(self, harness):
        draft = asyncio.run(
            harness.coordinator.submit(SubmissionRequest(text="café", card_id="c6-1", user_id="u1"))
        )

        assert draft.id == "srv-1"
        assert draft.state == DraftState.SUBMITTED
        assert [d.id for d in harness.coordinator.drafts] == ["srv-1"]
        assert asyncio.run(harness.queue.count()) == 0

    def test_default_card_is_used(self, harness):
        async def scenario():
            await harness.preferences.save_default_card("c6-1")
            return await harness.coordinator.submit(
                SubmissionRequest(audio=AudioAttachment(uri="/tmp/rec.m4a"))
            )

        asyncio.run(scenario())
        assert harness.api.calls[0].card_id == "c6-1"

    def test_explicit_card_wins_over_default(self, harness):
        async def scenario():
            await harness.preferences.save_default_card("c6-1")
            await harness.coordinator.submit(SubmissionRequest(text="x", card_id="nu-1"))

        asyncio.run(scenario())
        assert harness.api.calls[0].card_id == "nu-1"

    def test_mock_card_is_not_sent(self, harness):
        asyncio.run(harness.coordinator.submit(SubmissionRequest(text="x", card_id="mock-1")))
        assert harness.api.calls[0].card_id is None

    def test_failure_queues_and_flags_record(self, harness):
        """Test that a failed send keeps the expense in the offline queue."""
        harness.api.fail_always = ApiConnectionError("offline")

        async def scenario():
            draft = await harness.coordinator.submit(SubmissionRequest(text="café", card_id="c6-1"))
            return draft, await harness.queue.list()

        draft, queued = asyncio.run(scenario())

        assert draft.state == DraftState.QUEUED
        assert draft.error_message == "Erro de conexão. Verifique sua internet."
        assert draft.retry_eligible
        assert len(queued) == 1
        assert queued[0].id == draft.id
        assert queued[0].status == SubmissionStatus.SENDING
        assert queued[0].retry_count == 0
        assert queued[0].text_input == "café"
        assert queued[0].card_id == "c6-1"

    def test_failed_audio_is_queued_without_text(self, harness):
        harness.api.fail_always = ApiError("indisponível", status_code=503)
        request = SubmissionRequest(
            audio=AudioAttachment(uri="/tmp/rec.m4a"),
            text="transcrição",
            card_id="c6-1",
        )

        async def scenario():
            await harness.coordinator.submit(request)
            return await harness.queue.list()

        queued = asyncio.run(scenario())
        assert queued[0].audio_uri == "/tmp/rec.m4a"
        assert queued[0].text_input is None
        assert queued[0].error_message == "Erro no servidor. Tente novamente mais tarde."

    def test_location_is_requested_when_missing(self, api, kv):
        async def locate():
            return (-23.5, -46.6)

        harness = Harness(api, kv, location=locate)
        asyncio.run(harness.coordinator.submit(SubmissionRequest(text="x", card_id="c6-1")))

        sent = api.calls[0]
        assert (sent.latitude, sent.longitude) == (-23.5, -46.6)

    def test_location_failure_is_ignored(self, api, kv):
        async def locate():
            raise RuntimeError("permission denied")

        harness = Harness(api, kv, location=locate)
        draft = asyncio.run(harness.coordinator.submit(SubmissionRequest(text="x", card_id="c6-1")))

        assert draft.state == DraftState.SUBMITTED
        assert api.calls[0].has_location is False

    def test_draft_only_mode_never_sends(self, harness):
        async def scenario():
            await harness.preferences.set_draft_only(True)
            draft = await harness.coordinator.submit(SubmissionRequest(text="café", card_id="c6-1"))
            return draft, await harness.draft_store.list(), await harness.queue.count()

        draft, stored, queued = asyncio.run(scenario())

        assert draft.state == DraftState.DRAFT
        assert harness.api.calls == []
        assert queued == 0
        assert [d.id for d in stored] == [draft.id]

    def test_temporary_ids_are_unique(self, harness):
        harness.api.fail_always = ApiConnectionError("offline")

        async def scenario():
            first = await harness.coordinator.submit(SubmissionRequest(text="a"))
            second = await harness.coordinator.submit(SubmissionRequest(text="b"))
            return first, second

        first, second = asyncio.run(scenario())
        assert first.id != second.id
        assert first.id.startswith("temp-")

    def test_submit_text_uses_parsed_entities(self, harness, cards, users):
        asyncio.run(harness.coordinator.submit_text("22,50 picolés no C6 da Bruna", cards, users))

        sent = harness.api.calls[0]
        assert sent.card_id == "c6-1"
        assert sent.user_id == "u1"
        assert sent.text == "22,50 picolés no C6 da Bruna"


class TestNotificationIntake:
    """Tests for banking notification submissions."""

    def test_notification_is_submitted_with_default_card(self, harness):
        async def scenario():
            await harness.preferences.save_default_card("c6-1")
            return await harness.coordinator.submit_notification(
                "", "Compra de R$ 18,90 no UBER aprovada", "com.c6bank.app"
            )

        draft = asyncio.run(scenario())

        assert draft is not None
        sent = harness.api.calls[0]
        assert sent.text == "UBER - 18.90"
        assert sent.card_id == "c6-1"

    def test_unknown_origin_is_ignored(self, harness):
        async def scenario():
            await harness.preferences.save_default_card("c6-1")
            return await harness.coordinator.submit_notification(
                "Compra", "R$ 10,00 LOJA", "com.whatsapp"
            )

        assert asyncio.run(scenario()) is None
        assert harness.api.calls == []

    def test_no_default_card(self, harness):
        result = asyncio.run(
            harness.coordinator.submit_notification("Compra", "R$ 10,00 LOJA", "com.c6bank.app")
        )
        assert result is None
        assert harness.api.calls == []


class TestQueueMaintenance:
    """Tests for manual retry and discard from the UI."""

    def test_retry_draft_reconciles_record(self, harness):
        harness.api.fail_always = ApiConnectionError("offline")

        async def scenario():
            draft = await harness.coordinator.submit(SubmissionRequest(text="café", card_id="c6-1"))
            harness.api.fail_always = None
            updated = await harness.coordinator.retry_draft(draft.id)
            return updated, await harness.queue.count()

        updated, queued = asyncio.run(scenario())
        assert updated.state == DraftState.SUBMITTED
        assert updated.error_message is None
        assert queued == 0

    def test_retry_draft_still_failing(self, harness):
        harness.api.fail_always = ApiError("Token inválido", status_code=401)

        async def scenario():
            draft = await harness.coordinator.submit(SubmissionRequest(text="café"))
            return await harness.coordinator.retry_draft(draft.id)

        updated = asyncio.run(scenario())
        assert updated.state == DraftState.QUEUED
        assert updated.error_message == "Erro de autenticação. Faça login novamente."

    def test_retry_unknown_draft(self, harness):
        with pytest.raises(NotFoundError):
            asyncio.run(harness.coordinator.retry_draft("missing"))

    def test_retry_without_processor(self, api, kv):
        coordinator = SubmissionCoordinator(
            api_client=api,
            queue_store=SubmissionQueueStore(kv),
            preferences=PreferencesService(kv),
        )
        with pytest.raises(SubmissionError):
            asyncio.run(coordinator.retry_draft("x"))

    def test_discard_draft(self, harness):
        harness.api.fail_always = ApiConnectionError("offline")

        async def scenario():
            draft = await harness.coordinator.submit(SubmissionRequest(text="café"))
            removed = await harness.coordinator.discard_draft(draft.id)
            return removed, await harness.queue.count()

        removed, queued = asyncio.run(scenario())
        assert removed is True
        assert queued == 0
        assert len(harness.coordinator.drafts) == 0


class TestOfflineRecovery:
    """End-to-end: offline capture drained once connectivity returns."""

    def test_queued_submission_is_sent_on_reconnect(self, api):
        connectivity = ManualConnectivity(False)
        api.online = False
        components = create_app_components(
            use_storage=False,
            api_client=api,
            connectivity=connectivity,
        )

        async def scenario():
            components.monitor.start()
            draft = await components.coordinator.submit(
                SubmissionRequest(text="café", card_id="c6-1")
            )
            await components.processor.wait_idle()
            queued_while_offline = await components.queue_store.count()

            api.online = True
            connectivity.set_connected(True)
            await components.monitor.wait_idle()
            await components.processor.wait_idle()
            remaining = await components.queue_store.count()

            await components.monitor.stop()
            local = components.coordinator.drafts.get(draft.id)
            return draft, queued_while_offline, remaining, local

        draft, queued_while_offline, remaining, local = asyncio.run(scenario())

        assert draft.state == DraftState.QUEUED
        assert queued_while_offline == 1
        assert remaining == 0
        assert len(api.calls) == 2
        assert local.state == DraftState.SUBMITTED
        assert local.error_message is None
        assert not local.retry_eligible


class TestQueueSync:
    """Tests for local records following the queue they were put in."""

    def test_drained_record_becomes_submitted(self, harness):
        harness.api.fail_always = ApiConnectionError("offline")

        async def scenario():
            draft = await harness.coordinator.submit(SubmissionRequest(text="café", card_id="c6-1"))
            harness.api.fail_always = None
            await harness.processor.drain()
            return harness.coordinator.drafts.get(draft.id)

        local = asyncio.run(scenario())
        assert local.state == DraftState.SUBMITTED
        assert local.error_message is None

    def test_dead_lettered_record_shows_exhaustion(self, harness):
        harness.api.fail_always = ApiConnectionError("offline")
        processor = QueueProcessor(
            harness.queue,
            harness.api,
            ManualConnectivity(True),
            policy=RetryPolicy(max_attempts=1, base_delay_ms=0),
        )

        async def scenario():
            draft = await harness.coordinator.submit(SubmissionRequest(text="café", card_id="c6-1"))
            await processor.drain()
            return harness.coordinator.drafts.get(draft.id)

        local = asyncio.run(scenario())
        assert local.state == DraftState.QUEUED
        assert local.error_message.startswith(EXHAUSTED_MESSAGE)
        assert local.retry_eligible

    def test_record_not_yet_queued_is_left_alone(self, harness):
        harness.api.fail_always = ApiConnectionError("offline")
        pending = LocalDraft(id="temp-1", description="pão")
        harness.coordinator.drafts.prepend(pending)

        async def scenario():
            await harness.coordinator.submit(SubmissionRequest(text="café", card_id="c6-1"))
            harness.api.fail_always = None
            await harness.processor.drain()

        asyncio.run(scenario())
        assert harness.coordinator.drafts.get("temp-1").state == DraftState.QUEUED

    def test_load_restores_queue_and_drafts(self, harness):
        async def scenario():
            await harness.queue.append(
                QueuedSubmission(
                    id="temp-1",
                    description="café",
                    text_input="café",
                    timestamp=datetime(2024, 5, 2, 9, 0),
                    error_message="Erro de conexão. Verifique sua internet.",
                )
            )
            await harness.draft_store.save(
                LocalDraft(
                    id="temp-2",
                    description="pão",
                    state=DraftState.DRAFT,
                    timestamp=datetime(2024, 5, 1, 9, 0),
                )
            )

            restarted = SubmissionCoordinator(
                api_client=harness.api,
                queue_store=harness.queue,
                preferences=harness.preferences,
                draft_store=harness.draft_store,
                processor=harness.processor,
            )
            drafts = await restarted.load()
            loaded = [(d.id, d.state, d.retry_eligible) for d in drafts]

            await harness.processor.drain()
            return loaded, restarted.drafts.get("temp-1")

        loaded, sent = asyncio.run(scenario())
        assert loaded == [
            ("temp-1", DraftState.QUEUED, True),
            ("temp-2", DraftState.DRAFT, False),
        ]
        assert sent.state == DraftState.SUBMITTED

    def test_discard_removes_stored_draft(self, harness):
        async def scenario():
            await harness.preferences.set_draft_only(True)
            draft = await harness.coordinator.submit(SubmissionRequest(text="café", card_id="c6-1"))
            removed = await harness.coordinator.discard_draft(draft.id)
            return removed, await harness.draft_store.list()

        removed, stored = asyncio.run(scenario())
        assert removed is True
        assert stored == []


class TestLocalDraftList:
    """Tests for the UI record list."""

    def _list(self):
        return LocalDraftList([
            LocalDraft(id="a", description="Mercado", amount=22.5, user_id="u1", state=DraftState.SUBMITTED),
            LocalDraft(id="b", description="Uber", amount=18.9, user_id="u2", state=DraftState.QUEUED),
            LocalDraft(id="c", description="Padaria", amount=7.0, user_id="u2", state=DraftState.SUBMITTED),
        ])

    def test_filter_by_state(self):
        assert [d.id for d in self._list().filter(state=DraftState.QUEUED)] == ["b"]

    def test_filter_by_text(self):
        assert [d.id for d in self._list().filter(query="merc")] == ["a"]

    def test_filter_by_amount_with_comma(self):
        assert [d.id for d in self._list().filter(query="22,50")] == ["a"]

    def test_total_counts_submitted_only(self):
        drafts = self._list()
        assert drafts.total_amount() == pytest.approx(29.5)
        assert drafts.total_amount(user_id="u2") == pytest.approx(7.0)

    def test_update_by_id(self):
        drafts = self._list()
        drafts.update("b", error_message="x")
        assert drafts.get("b").error_message == "x"
        assert drafts.update("missing", error_message="x") is None
