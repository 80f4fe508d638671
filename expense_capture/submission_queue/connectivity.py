"""
Connectivity tracking.

A ConnectivityProvider answers "are we online?" and notifies subscribers
on transitions. The ConnectivityMonitor turns those transitions, plus a
periodic poll, into queue drains.

Listeners run on the event loop thread; hosts receiving OS callbacks on
another thread should hop onto the loop with call_soon_threadsafe.
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Callable, Optional

import httpx
import structlog

from expense_capture.models.audit import AuditEventBuilder

logger = structlog.get_logger(__name__)

ConnectivityListener = Callable[[bool], None]


class ConnectivityProvider(ABC):
    """Source of network reachability state."""

    def __init__(self):
        self._listeners: list[ConnectivityListener] = []
        self._connected: Optional[bool] = None

    @abstractmethod
    async def is_connected(self) -> bool:
        pass

    def subscribe(self, listener: ConnectivityListener) -> Callable[[], None]:
        """Register a transition listener. Returns an unsubscribe function."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _update(self, connected: bool) -> None:
        """Record state, notifying listeners only on a change."""
        previous = self._connected
        self._connected = connected
        if previous is None or previous == connected:
            return

        logger.info("connectivity_changed", connected=connected)
        for listener in list(self._listeners):
            try:
                listener(connected)
            except Exception as e:
                logger.error("connectivity_listener_failed", error=str(e))


class ManualConnectivity(ConnectivityProvider):
    """State pushed by the host app from OS network events."""

    def __init__(self, connected: bool = True):
        super().__init__()
        self._connected = connected

    async def is_connected(self) -> bool:
        return bool(self._connected)

    def set_connected(self, connected: bool) -> None:
        self._update(connected)


class ProbeConnectivity(ConnectivityProvider):
    """
    Reachability by probing a URL.

    Any HTTP answer counts as connected; only transport failures and
    timeouts count as offline.
    """

    def __init__(
        self,
        url: str,
        timeout_seconds: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__()
        self._url = url
        self._timeout = timeout_seconds
        self._transport = transport

    async def refresh(self) -> bool:
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout,
                transport=self._transport,
            ) as client:
                await client.head(self._url)
            connected = True
        except httpx.TransportError as e:
            logger.debug("connectivity_probe_failed", url=self._url, error=str(e))
            connected = False

        self._update(connected)
        return connected

    async def is_connected(self) -> bool:
        return await self.refresh()


class ConnectivityMonitor:
    """
    Schedules queue drains on reconnection and on a fixed interval.

    start() and stop() are idempotent. start() must be called with a
    running event loop.
    """

    def __init__(
        self,
        provider: ConnectivityProvider,
        processor,
        poll_interval_seconds: float = 30.0,
        audit_logger=None,
    ):
        self._provider = provider
        self._processor = processor
        self._poll_interval = poll_interval_seconds
        self._audit_logger = audit_logger
        self._unsubscribe: Optional[Callable[[], None]] = None
        self._poll_task: Optional[asyncio.Task] = None
        self._tasks: set[asyncio.Task] = set()

    @property
    def running(self) -> bool:
        return self._poll_task is not None

    def start(self) -> None:
        if self.running:
            return
        self._unsubscribe = self._provider.subscribe(self._on_change)
        self._poll_task = asyncio.get_running_loop().create_task(self._poll_loop())
        logger.info("connectivity_monitor_started", poll_interval=self._poll_interval)

    async def stop(self) -> None:
        if not self.running:
            return
        if self._unsubscribe:
            self._unsubscribe()
            self._unsubscribe = None
        task, self._poll_task = self._poll_task, None
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("connectivity_monitor_stopped")

    async def wait_idle(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _on_change(self, connected: bool) -> None:
        if self._audit_logger:
            task = asyncio.get_running_loop().create_task(
                self._audit_logger.log(AuditEventBuilder.connectivity_changed(connected))
            )
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

        if connected:
            self._processor.schedule_drain()

    async def _poll_loop(self) -> None:
        while True:
            await asyncio.sleep(self._poll_interval)
            self._processor.schedule_drain()
