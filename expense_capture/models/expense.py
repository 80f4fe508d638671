"""
Core Data Models for Expense Capture

These models define the schemas for everything flowing between the
parsers, the submission coordinator, the offline queue and the backend.
They are designed to:
1. Enforce type safety at runtime
2. Serialize to a flat JSON form for on-device persistence
3. Rehydrate date fields on every read

DESIGN DECISION: The queue keeps the transport vocabulary
(sending / sent / error) while the UI-facing record uses a separate
tri-state (draft / queued / submitted) plus a retry-eligibility flag.
The two never share status strings.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)


# =============================================================================
# ENUMS
# =============================================================================

class Confidence(str, Enum):
    """How completely a free-text parse identified amount, card and user."""
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class SubmissionStatus(str, Enum):
    """
    Transport status of a queued submission.

    Transitions: SENDING -> SENT | ERROR, and ERROR -> SENDING on retry.
    SENT items are removed from the queue, so SENT is never persisted.
    """
    SENDING = "sending"
    SENT = "sent"
    ERROR = "error"


class DraftState(str, Enum):
    """
    State of a locally visible expense record.

    DRAFT: kept on the device only (draft-only mode), never sent.
    QUEUED: waiting for backend confirmation (in flight or failed).
    SUBMITTED: confirmed by the backend.
    """
    DRAFT = "draft"
    QUEUED = "queued"
    SUBMITTED = "submitted"


# =============================================================================
# REGISTRIES (read-only parser inputs)
# =============================================================================

class Card(BaseModel):
    """A payment card known to the account."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str
    name: str
    # Backend calls the owner "holder"
    owner: str = Field(
        default="",
        validation_alias=AliasChoices("owner", "holder"),
    )
    is_default: bool = Field(
        default=False,
        validation_alias=AliasChoices("is_default", "isDefault"),
    )

    @field_validator("owner", mode="before")
    @classmethod
    def owner_or_empty(cls, v):
        return v or ""


class ResponsibleParty(BaseModel):
    """A person an expense can be attributed to."""
    model_config = ConfigDict(extra="ignore")

    id: str
    name: str
    email: Optional[str] = None


class Destination(BaseModel):
    """A cost-splitting destination configured on the backend."""
    model_config = ConfigDict(extra="ignore")

    id: str
    name: str
    type: Optional[str] = None
    active: bool = True


# =============================================================================
# PARSER OUTPUTS (ephemeral)
# =============================================================================

class ParsedInput(BaseModel):
    """
    Structured result of parsing a free-text expense description.

    Produced on every keystroke, never persisted.
    """

    amount: Optional[float] = Field(default=None, ge=0)
    card_id: Optional[str] = None
    user_id: Optional[str] = None
    description: str = Field(..., min_length=1)
    date: datetime
    confidence: Confidence

    @property
    def detected_count(self) -> int:
        return sum(
            value is not None
            for value in (self.amount, self.card_id, self.user_id)
        )


class ParsedNotification(BaseModel):
    """
    Transaction candidate extracted from a banking push notification.

    The amount is mandatory: a notification without one never produces
    an instance of this model.
    """

    description: str = Field(..., min_length=1)
    amount: float = Field(..., gt=0)
    timestamp: datetime = Field(default_factory=datetime.now)
    card_last4: Optional[str] = Field(default=None, pattern=r"^\d{4}$")
    source_app: Optional[str] = None


# =============================================================================
# SUBMISSION MODELS
# =============================================================================

class AudioAttachment(BaseModel):
    """Reference to a recorded audio file on the device."""

    uri: str = Field(..., min_length=1)
    name: str = Field(default="audio.m4a")
    mime_type: str = Field(default="audio/m4a")


class SubmissionRequest(BaseModel):
    """
    A request to register a new expense.

    Audio and text are both optional here; the coordinator rejects a
    request carrying neither.
    """

    audio: Optional[AudioAttachment] = None
    text: Optional[str] = None
    card_id: Optional[str] = None
    user_id: Optional[str] = None
    selected_destinations: Optional[list[str]] = None
    date: Optional[datetime] = None
    latitude: Optional[float] = Field(default=None, ge=-90, le=90)
    longitude: Optional[float] = Field(default=None, ge=-180, le=180)

    @field_validator("text")
    @classmethod
    def blank_text_is_none(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not v.strip():
            return None
        return v

    @property
    def has_location(self) -> bool:
        return self.latitude is not None and self.longitude is not None


class ServerRecord(BaseModel):
    """
    Canonical expense record returned by the backend.

    The amount may be filled in server-side when derived from audio/text.
    """
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str
    description: str = ""
    amount: float = 0.0
    card_id: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("card_id", "cardId"),
    )
    user_id: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("user_id", "userId"),
    )
    selected_destinations: list[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("selected_destinations", "selectedDestinations"),
    )
    timestamp: datetime = Field(
        default_factory=datetime.now,
        validation_alias=AliasChoices("timestamp", "createdAt", "created_at"),
    )

    @field_validator("timestamp", mode="before")
    @classmethod
    def valid_timestamp(cls, v):
        from expense_capture.parsing.dates import ensure_valid_date
        return ensure_valid_date(v)

    @field_validator("amount", mode="before")
    @classmethod
    def amount_or_zero(cls, v):
        return 0.0 if v is None else v


class SubmissionResponse(BaseModel):
    """Envelope returned by the submission endpoint."""
    model_config = ConfigDict(extra="ignore")

    success: bool = False
    message: str = ""
    record: Optional[ServerRecord] = Field(
        default=None,
        validation_alias=AliasChoices("record", "draft", "data"),
    )


class QueuedSubmission(BaseModel):
    """
    A submission waiting in the offline queue.

    The on-device store is the sole owner of these records. Date fields
    are stored as ISO strings and rehydrated by validation on every read.
    """

    id: str = Field(..., min_length=1)
    description: str = ""
    amount: float = Field(default=0.0, ge=0)
    card_id: str = ""
    user_id: str = ""
    status: SubmissionStatus = SubmissionStatus.SENDING
    timestamp: datetime = Field(default_factory=datetime.now)

    # Attachments
    audio_uri: Optional[str] = None
    text_input: Optional[str] = None
    selected_destinations: Optional[list[str]] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None

    # Retry bookkeeping
    retry_count: int = Field(default=0, ge=0)
    last_retry_at: Optional[datetime] = None
    error_message: Optional[str] = None

    @field_validator("timestamp", mode="before")
    @classmethod
    def valid_timestamp(cls, v):
        from expense_capture.parsing.dates import ensure_valid_date
        return ensure_valid_date(v)

    @model_validator(mode="after")
    def single_attachment(self) -> "QueuedSubmission":
        """A queued item carries audio or text, never both."""
        if self.audio_uri and self.text_input:
            raise ValueError("Queued submission cannot carry both audio and text")
        return self

    def to_request(self) -> SubmissionRequest:
        """Build the outbound request used to (re)send this item."""
        audio = None
        if self.audio_uri:
            audio = AudioAttachment(
                uri=self.audio_uri,
                name=f"audio_{self.id}.m4a",
            )
        return SubmissionRequest(
            audio=audio,
            text=self.text_input,
            card_id=self.card_id or None,
            user_id=self.user_id or None,
            selected_destinations=self.selected_destinations,
            date=self.timestamp,
            latitude=self.latitude,
            longitude=self.longitude,
        )


class LocalDraft(BaseModel):
    """
    UI-facing expense record, including optimistic ones.

    Temporary records use a client-generated id until the backend
    returns the canonical record.
    """

    id: str
    description: str
    amount: float = 0.0
    card_id: str = ""
    user_id: str = ""
    state: DraftState = DraftState.QUEUED
    timestamp: datetime = Field(default_factory=datetime.now)
    audio_uri: Optional[str] = None
    text_input: Optional[str] = None
    selected_destinations: Optional[list[str]] = None
    error_message: Optional[str] = None

    @property
    def retry_eligible(self) -> bool:
        """Queued records that already failed can be retried or discarded."""
        return self.state == DraftState.QUEUED and self.error_message is not None

    @classmethod
    def from_server(cls, record: ServerRecord) -> "LocalDraft":
        return cls(
            id=record.id,
            description=record.description,
            amount=record.amount,
            card_id=record.card_id or "",
            user_id=record.user_id or "",
            state=DraftState.SUBMITTED,
            timestamp=record.timestamp,
            selected_destinations=record.selected_destinations or None,
        )

    @classmethod
    def from_queued(cls, item: QueuedSubmission) -> "LocalDraft":
        return cls(
            id=item.id,
            description=item.description,
            amount=item.amount,
            card_id=item.card_id,
            user_id=item.user_id,
            state=DraftState.QUEUED,
            timestamp=item.timestamp,
            audio_uri=item.audio_uri,
            text_input=item.text_input,
            selected_destinations=item.selected_destinations,
            error_message=item.error_message,
        )
