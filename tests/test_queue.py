"""Tests for the retry policy, queue processor and connectivity monitor."""

import asyncio

import httpx
import pytest

from expense_capture.models.expense import QueuedSubmission, SubmissionStatus
from expense_capture.services.api.errors import ApiConnectionError, ApiError
from expense_capture.services.storage import NotFoundError
from expense_capture.submission_queue.connectivity import (
    ConnectivityMonitor,
    ManualConnectivity,
    ProbeConnectivity,
)
from expense_capture.submission_queue.processor import QueueProcessor
from expense_capture.submission_queue.retry import (
    EXHAUSTED_MESSAGE,
    InvalidTransitionError,
    RetryEvent,
    RetryPolicy,
    RetryState,
)
from expense_capture.submission_queue.store import SubmissionQueueStore


class RecordingSleep:
    """Sleep replacement that records requested delays."""

    def __init__(self):
        self.delays = []

    async def __call__(self, seconds):
        self.delays.append(seconds)


def _build(api, kv, connected=True, policy=None):
    store = SubmissionQueueStore(kv)
    connectivity = ManualConnectivity(connected)
    sleep = RecordingSleep()
    processor = QueueProcessor(store, api, connectivity, policy=policy, sleep=sleep)
    return store, processor, connectivity, sleep


class TestRetryPolicy:
    """Tests for the bounded backoff state machine."""

    def test_delays_double(self):
        policy = RetryPolicy()
        assert [policy.delay_for(n) for n in (0, 1, 2, 3)] == [0.0, 2.0, 4.0, 8.0]

    def test_custom_base_delay(self):
        assert RetryPolicy(base_delay_ms=500).delay_for(2) == 1.0

    def test_exhaustion_bound(self):
        policy = RetryPolicy(max_attempts=3)
        assert not policy.is_exhausted(2)
        assert policy.is_exhausted(3)

    def test_state_for(self):
        policy = RetryPolicy()
        assert policy.state_for(0) == RetryState.PENDING
        assert policy.state_for(1) == RetryState.RETRYING
        assert policy.state_for(3) == RetryState.DEAD

    def test_happy_path_transitions(self):
        policy = RetryPolicy()
        state = policy.transition(RetryState.PENDING, RetryEvent.START)
        assert state == RetryState.ATTEMPTING
        assert policy.transition(state, RetryEvent.SUCCEED) == RetryState.DONE

    def test_failure_transitions(self):
        policy = RetryPolicy(max_attempts=3)
        assert policy.transition(RetryState.ATTEMPTING, RetryEvent.FAIL, 1) == RetryState.RETRYING
        assert policy.transition(RetryState.ATTEMPTING, RetryEvent.FAIL, 3) == RetryState.DEAD
        assert policy.transition(RetryState.RETRYING, RetryEvent.START) == RetryState.ATTEMPTING

    def test_reset_from_dead(self):
        assert RetryPolicy().transition(RetryState.DEAD, RetryEvent.RESET) == RetryState.PENDING

    def test_failure_needs_count(self):
        with pytest.raises(ValueError):
            RetryPolicy().transition(RetryState.ATTEMPTING, RetryEvent.FAIL)

    @pytest.mark.parametrize(
        "state,event",
        [
            (RetryState.DONE, RetryEvent.START),
            (RetryState.DEAD, RetryEvent.START),
            (RetryState.PENDING, RetryEvent.SUCCEED),
            (RetryState.PENDING, RetryEvent.RESET),
        ],
    )
    def test_invalid_transitions(self, state, event):
        with pytest.raises(InvalidTransitionError):
            RetryPolicy().transition(state, event)

    def test_invalid_configuration(self):
        with pytest.raises(ValueError):
            RetryPolicy(max_attempts=0)


class TestQueueProcessor:
    """Tests for draining the queue."""

    def test_successful_drain_removes_items(self, api, kv):
        store, processor, _, sleep = _build(api, kv)

        async def scenario():
            await store.append(QueuedSubmission(id="a", text_input="um"))
            await store.append(QueuedSubmission(id="b", text_input="dois"))
            result = await processor.drain()
            return result, await store.list()

        result, remaining = asyncio.run(scenario())
        assert result.sent == 2
        assert remaining == []
        assert [c.text for c in api.calls] == ["um", "dois"]
        assert sleep.delays == []

    def test_bounded_retry(self, api, kv):
        """Test three failed drains, then no further attempts."""
        api.fail_always = ApiConnectionError("offline")
        store, processor, _, sleep = _build(api, kv)

        async def scenario():
            await store.append(QueuedSubmission(id="a", text_input="café"))
            for _ in range(4):
                await processor.drain()
            return await store.get("a")

        item = asyncio.run(scenario())

        assert len(api.calls) == 3
        assert sleep.delays == [2.0, 4.0]
        assert item.retry_count == 3
        assert item.status == SubmissionStatus.ERROR
        assert item.error_message.startswith(EXHAUSTED_MESSAGE)
        assert "Erro de conexão" in item.error_message

    def test_exhausted_item_is_marked_once(self, api, kv):
        store, processor, _, _ = _build(api, kv)

        async def scenario():
            await store.append(QueuedSubmission(id="a", text_input="x", retry_count=3))
            first = await processor.drain()
            second = await processor.drain()
            return first, second, await store.get("a")

        first, second, item = asyncio.run(scenario())
        assert first.dead_lettered == 1
        assert second.dead_lettered == 1
        assert item.error_message == EXHAUSTED_MESSAGE
        assert api.calls == []

    def test_failure_records_classified_message(self, api, kv):
        api.failures = [ApiError("Token inválido", status_code=401)]
        store, processor, _, _ = _build(api, kv)

        async def scenario():
            await store.append(QueuedSubmission(id="a", text_input="x"))
            result = await processor.drain()
            return result, await store.get("a")

        result, item = asyncio.run(scenario())
        assert result.failed == 1
        assert item.retry_count == 1
        assert item.last_retry_at is not None
        assert item.error_message == "Erro de autenticação. Faça login novamente."

    def test_single_flight(self, api, kv):
        """Test that a drain started during another one sends nothing."""
        store, processor, _, _ = _build(api, kv)

        async def scenario():
            api.started = asyncio.Event()
            api.gate = asyncio.Event()
            await store.append(QueuedSubmission(id="a", text_input="x"))

            first = asyncio.create_task(processor.drain())
            await api.started.wait()
            second = await processor.drain()
            api.gate.set()
            return await first, second

        first, second = asyncio.run(scenario())
        assert second.skipped is True
        assert first.sent == 1
        assert len(api.calls) == 1

    def test_offline_drain_is_skipped(self, api, kv):
        store, processor, _, _ = _build(api, kv, connected=False)

        async def scenario():
            await store.append(QueuedSubmission(id="a", text_input="x"))
            result = await processor.drain()
            return result, await store.get("a")

        result, item = asyncio.run(scenario())
        assert result.skipped is True
        assert api.calls == []
        assert item.retry_count == 0

    def test_item_removed_during_backoff_is_skipped(self, api, kv):
        store = SubmissionQueueStore(kv)

        async def remove_while_waiting(seconds):
            await store.remove("a")

        processor = QueueProcessor(store, api, ManualConnectivity(True), sleep=remove_while_waiting)

        async def scenario():
            await store.append(QueuedSubmission(id="a", text_input="x", retry_count=1))
            return await processor.drain()

        result = asyncio.run(scenario())
        assert api.calls == []
        assert result.sent == 0

    def test_retry_gives_exactly_one_attempt(self, api, kv):
        """Test that retrying a dead item with the backend still down calls it once."""
        api.fail_always = ApiConnectionError("offline")
        store, processor, _, _ = _build(api, kv)

        async def scenario():
            await store.append(
                QueuedSubmission(
                    id="a",
                    text_input="x",
                    retry_count=3,
                    status=SubmissionStatus.ERROR,
                    error_message=EXHAUSTED_MESSAGE,
                )
            )
            await processor.retry("a")
            return await store.get("a")

        item = asyncio.run(scenario())
        assert len(api.calls) == 1
        assert item.retry_count == 1
        assert item.status == SubmissionStatus.ERROR

    def test_retry_success_removes_item(self, api, kv):
        store, processor, _, _ = _build(api, kv)

        async def scenario():
            await store.append(QueuedSubmission(id="a", text_input="x", retry_count=3))
            result = await processor.retry("a")
            return result, await store.count()

        result, count = asyncio.run(scenario())
        assert result.sent == 1
        assert count == 0

    def test_retry_during_running_drain_is_sent_after_it(self, api, kv):
        """Test that an item reset behind the in-flight one still goes out."""
        store, processor, _, _ = _build(api, kv)

        async def scenario():
            api.started = asyncio.Event()
            api.gate = asyncio.Event()
            await store.append(
                QueuedSubmission(
                    id="b",
                    text_input="b",
                    retry_count=3,
                    status=SubmissionStatus.ERROR,
                    error_message=EXHAUSTED_MESSAGE,
                )
            )
            await store.append(QueuedSubmission(id="a", text_input="a"))

            running = asyncio.create_task(processor.drain())
            await api.started.wait()
            retried = await processor.retry("b")
            api.gate.set()
            first = await running
            await processor.wait_idle()
            return retried, first, await store.count()

        retried, first, remaining = asyncio.run(scenario())
        assert retried.skipped is True
        assert first.sent == 1
        assert remaining == 0
        assert [call.text for call in api.calls] == ["a", "b"]

    def test_retry_unknown_id(self, api, kv):
        _, processor, _, _ = _build(api, kv)
        with pytest.raises(NotFoundError):
            asyncio.run(processor.retry("missing"))

    def test_discard(self, api, kv):
        store, processor, _, _ = _build(api, kv)

        async def scenario():
            await store.append(QueuedSubmission(id="a", text_input="x"))
            first = await processor.discard("a")
            second = await processor.discard("a")
            return first, second, await store.count()

        assert asyncio.run(scenario()) == (True, False, 0)

    def test_scheduled_drain_from_add(self, api, kv):
        store, processor, _, _ = _build(api, kv)
        store.set_drain_trigger(processor.schedule_drain)

        async def scenario():
            await store.add(QueuedSubmission(id="a", text_input="x"))
            await processor.wait_idle()
            return await store.count()

        assert asyncio.run(scenario()) == 0
        assert len(api.calls) == 1


class FakeProcessor:
    def __init__(self):
        self.scheduled = 0

    def schedule_drain(self):
        self.scheduled += 1


class TestConnectivity:
    """Tests for connectivity providers and the monitor."""

    def test_manual_notifies_only_on_change(self):
        connectivity = ManualConnectivity(True)
        seen = []
        unsubscribe = connectivity.subscribe(seen.append)

        connectivity.set_connected(True)
        connectivity.set_connected(False)
        connectivity.set_connected(False)
        connectivity.set_connected(True)
        unsubscribe()
        connectivity.set_connected(False)

        assert seen == [False, True]

    def test_probe_any_response_is_online(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(503))
        probe = ProbeConnectivity("https://example.test/health", transport=transport)
        assert asyncio.run(probe.is_connected()) is True

    def test_probe_transport_error_is_offline(self):
        def refuse(request):
            raise httpx.ConnectError("refused", request=request)

        probe = ProbeConnectivity("https://example.test/health", transport=httpx.MockTransport(refuse))
        assert asyncio.run(probe.is_connected()) is False

    def test_probe_notifies_on_transition(self):
        state = {"up": True}

        def handler(request):
            if not state["up"]:
                raise httpx.ConnectError("down", request=request)
            return httpx.Response(200)

        probe = ProbeConnectivity("https://example.test", transport=httpx.MockTransport(handler))
        seen = []
        probe.subscribe(seen.append)

        async def scenario():
            await probe.refresh()
            state["up"] = False
            await probe.refresh()
            state["up"] = True
            await probe.refresh()

        asyncio.run(scenario())
        assert seen == [False, True]

    def test_monitor_drains_on_reconnect(self):
        connectivity = ManualConnectivity(False)
        processor = FakeProcessor()
        monitor = ConnectivityMonitor(connectivity, processor, poll_interval_seconds=3600)

        async def scenario():
            monitor.start()
            connectivity.set_connected(True)
            connectivity.set_connected(False)
            await monitor.stop()

        asyncio.run(scenario())
        assert processor.scheduled == 1

    def test_monitor_polls(self):
        processor = FakeProcessor()
        monitor = ConnectivityMonitor(ManualConnectivity(True), processor, poll_interval_seconds=0.01)

        async def scenario():
            monitor.start()
            await asyncio.sleep(0.05)
            await monitor.stop()

        asyncio.run(scenario())
        assert processor.scheduled >= 1

    def test_start_and_stop_are_idempotent(self):
        monitor = ConnectivityMonitor(ManualConnectivity(True), FakeProcessor())

        async def scenario():
            monitor.start()
            monitor.start()
            assert monitor.running
            await monitor.stop()
            await monitor.stop()
            return monitor.running

        assert asyncio.run(scenario()) is False
