"""
Expense Backend API Client

Wraps the remote endpoints used by the capture core:
- multipart submission of a new expense (audio or text)
- read-only registries: cards, users, destinations

DESIGN DECISION: The submission call is never retried here. Retrying a
submission is the offline queue's job, which persists attempts and
applies its own backoff. Registry reads are idempotent, so transient
transport errors are retried in place with tenacity.

The user id is never sent with a submission: the backend derives it from
the bearer token.
"""

import asyncio
import inspect
from datetime import datetime
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional, Type, TypeVar, Union
from urllib.parse import unquote, urlparse

import httpx
import structlog
from pydantic import BaseModel, ValidationError
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from expense_capture.config import ApiSettings, get_settings
from expense_capture.models.expense import (
    Card,
    Destination,
    ResponsibleParty,
    SubmissionRequest,
    SubmissionResponse,
)
from expense_capture.services.api.errors import (
    ApiConnectionError,
    ApiError,
    ApiTimeoutError,
)

logger = structlog.get_logger(__name__)

M = TypeVar("M", bound=BaseModel)

TokenProvider = Callable[[], Union[Optional[str], Awaitable[Optional[str]]]]

# Registry reads answering with these statuses mean "not available to
# this user" and yield an empty list
DEGRADED_STATUSES = (401, 403, 404)


def _audio_path(uri: str) -> Path:
    if uri.startswith("file://"):
        return Path(unquote(urlparse(uri).path))
    return Path(uri)


def _error_message(response: httpx.Response) -> tuple[str, dict]:
    try:
        payload = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}", {}
    if isinstance(payload, dict):
        message = payload.get("error") or payload.get("message")
        return str(message or f"HTTP {response.status_code}"), payload
    return f"HTTP {response.status_code}", {}


class SubmissionApiClient:
    """
    Async client for the expense backend.

    A fresh httpx.AsyncClient is opened per call; pass a transport to
    route calls elsewhere (tests use httpx.MockTransport).
    """

    def __init__(
        self,
        settings: Optional[ApiSettings] = None,
        token_provider: Optional[TokenProvider] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._settings = settings or get_settings().api
        self._token_provider = token_provider
        self._transport = transport

    async def _token(self) -> Optional[str]:
        if self._token_provider is None:
            return self._settings.token
        token = self._token_provider()
        if inspect.isawaitable(token):
            token = await token
        return token

    async def _client(self) -> httpx.AsyncClient:
        headers = {"Accept": "application/json"}
        token = await self._token()
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return httpx.AsyncClient(
            base_url=self._settings.base_url,
            timeout=self._settings.timeout_seconds,
            headers=headers,
            transport=self._transport,
        )

    async def _send(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        """Issue one request, mapping transport failures and HTTP errors."""
        async with await self._client() as client:
            try:
                response = await client.request(method, path, **kwargs)
            except httpx.TimeoutException as e:
                raise ApiTimeoutError(f"Request to {path} timed out: {e}")
            except httpx.TransportError as e:
                raise ApiConnectionError(f"Request to {path} failed: {e}")

        logger.debug("api_response", method=method, path=path, status=response.status_code)

        if response.status_code >= 400:
            message, payload = _error_message(response)
            raise ApiError(message, status_code=response.status_code, payload=payload)

        return response

    # -------------------------------------------------------------------------
    # Submission
    # -------------------------------------------------------------------------

    async def _multipart(self, request: SubmissionRequest, is_draft: bool) -> list:
        parts: list = []

        if request.audio:
            path = _audio_path(request.audio.uri)
            try:
                content = await asyncio.to_thread(path.read_bytes)
            except OSError as e:
                raise ApiError(f"Audio file unavailable: {e}")
            parts.append(("audio", (request.audio.name, content, request.audio.mime_type)))

        if request.text:
            parts.append(("text", (None, request.text)))

        if request.card_id:
            parts.append(("cardId", (None, request.card_id)))

        if request.has_location:
            parts.append(("latitude", (None, str(request.latitude))))
            parts.append(("longitude", (None, str(request.longitude))))

        for index, destination_id in enumerate(request.selected_destinations or []):
            parts.append((f"selectedDestinations[{index}]", (None, destination_id)))

        date = request.date or datetime.now()
        parts.append(("date", (None, date.astimezone().isoformat())))
        parts.append(("isDraft", (None, "true" if is_draft else "false")))

        return parts

    async def submit_draft(
        self,
        request: SubmissionRequest,
        is_draft: bool = False,
    ) -> SubmissionResponse:
        """
        Send one expense to the backend.

        Returns:
            The backend envelope, always with success=True

        Raises:
            ApiTimeoutError / ApiConnectionError: The call did not complete
            ApiError: HTTP error or a response with success=false
        """
        parts = await self._multipart(request, is_draft)

        logger.info(
            "submission_sending",
            has_audio=request.audio is not None,
            has_text=request.text is not None,
            card_id=request.card_id,
            has_location=request.has_location,
            destinations=len(request.selected_destinations or []),
        )

        response = await self._send("POST", self._settings.submit_path, files=parts)

        try:
            envelope = SubmissionResponse.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise ApiError(
                f"Malformed submission response: {e}",
                status_code=response.status_code,
            )

        if not envelope.success:
            raise ApiError(
                envelope.message or "Falha ao enviar draft",
                status_code=response.status_code,
            )

        return envelope

    # -------------------------------------------------------------------------
    # Registries
    # -------------------------------------------------------------------------

    @retry(
        retry=retry_if_exception_type((ApiConnectionError, ApiTimeoutError)),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def _get_json(self, path: str) -> Any:
        response = await self._send("GET", path)
        try:
            return response.json()
        except ValueError:
            return None

    async def _fetch_list(self, path: str, model: Type[M]) -> list[M]:
        try:
            payload = await self._get_json(path)
        except ApiError as e:
            if e.status_code in DEGRADED_STATUSES:
                logger.warning("registry_unavailable", path=path, status=e.status_code)
            else:
                logger.error("registry_fetch_failed", path=path, error=str(e))
            return []

        # Either {success, data} or a bare array
        if isinstance(payload, dict) and payload.get("success"):
            payload = payload.get("data")

        if not isinstance(payload, list):
            logger.warning("registry_payload_not_a_list", path=path)
            return []

        records = []
        for entry in payload:
            try:
                records.append(model.model_validate(entry))
            except ValidationError:
                logger.warning("registry_entry_skipped", path=path)
        logger.info("registry_fetched", path=path, count=len(records))
        return records

    async def fetch_cards(self) -> list[Card]:
        return await self._fetch_list(self._settings.cards_path, Card)

    async def fetch_users(self) -> list[ResponsibleParty]:
        return await self._fetch_list(self._settings.users_path, ResponsibleParty)

    async def fetch_destinations(self) -> list[Destination]:
        return await self._fetch_list(self._settings.destinations_path, Destination)
