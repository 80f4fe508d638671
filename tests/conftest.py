"""Shared fixtures and fakes for the Expense Capture tests."""

import asyncio
from typing import Optional

import pytest

from expense_capture.models.expense import (
    Card,
    ResponsibleParty,
    ServerRecord,
    SubmissionRequest,
    SubmissionResponse,
)
from expense_capture.services.api.errors import ApiConnectionError
from expense_capture.services.storage import InMemoryKeyValueStore


class FakeApiClient:
    """
    Stands in for SubmissionApiClient.

    Raises queued failures first, then succeeds. While `online` is False
    every call fails with a connection error.
    """

    def __init__(self):
        self.calls: list[SubmissionRequest] = []
        self.failures: list[Exception] = []
        self.fail_always: Optional[Exception] = None
        self.online = True
        self.started: Optional[asyncio.Event] = None
        self.gate: Optional[asyncio.Event] = None

    async def submit_draft(
        self,
        request: SubmissionRequest,
        is_draft: bool = False,
    ) -> SubmissionResponse:
        self.calls.append(request)
        if self.started is not None:
            self.started.set()
        if self.gate is not None:
            await self.gate.wait()

        if not self.online:
            raise ApiConnectionError("offline")
        if self.fail_always is not None:
            raise self.fail_always
        if self.failures:
            raise self.failures.pop(0)

        return SubmissionResponse(
            success=True,
            message="ok",
            record=ServerRecord(
                id=f"srv-{len(self.calls)}",
                description=request.text or "",
                amount=10.0,
                card_id=request.card_id,
            ),
        )


@pytest.fixture
def api():
    return FakeApiClient()


@pytest.fixture
def kv():
    return InMemoryKeyValueStore()


@pytest.fixture
def cards():
    return [Card(id="c6-1", name="C6", owner="Bruna")]


@pytest.fixture
def users():
    return [ResponsibleParty(id="u1", name="Bruna")]
