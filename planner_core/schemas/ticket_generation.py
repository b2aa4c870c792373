# planner_core/schemas/ticket_generation.py
from datetime import datetime
from enum import Enum
from typing import Dict, List, Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


# ============================================
# Enums
# ============================================

class TicketStatus(str, Enum):
    PENDING = "PENDING"
    QUEUE_ERROR = "QUEUE_ERROR"
    GENERATED = "GENERATED"
    ERROR = "ERROR"


class TicketType(str, Enum):
    STANDARD = "standard"
    VIP = "vip"
    FREE = "free"


class BatchStatus(str, Enum):
    PENDING = "pending"
    ENQUEUED = "enqueued"
    QUEUE_ERROR = "queue_error"
    COMPLETED = "completed"
    PARTIAL = "partial"


MAX_BULK_QUANTITY = 100

DEFAULT_ATTENDEE_NAME = "Participant"
DEFAULT_ATTENDEE_EMAIL = "participant@example.com"


# ============================================
# Accept (C1) inputs / outputs
# ============================================

class Attendee(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    email: str = Field(..., min_length=3, max_length=255)
    phone: Optional[str] = Field(None, max_length=50)


class GenerationOptions(BaseModel):
    """Per-batch options. Lower priority values are dequeued first."""
    priority: int = Field(1, ge=0, le=9)
    delay_ms: int = Field(0, ge=0)
    ticket_type: TicketType = TicketType.STANDARD
    # Attendees are assigned in order; missing entries get placeholders.
    attendees: List[Attendee] = Field(default_factory=list)


class BulkGenerationRequest(BaseModel):
    """Body of POST /tickets/bulk."""
    event_id: str = Field(..., min_length=1)
    ticket_type_id: str = Field(..., min_length=1)
    quantity: int = Field(..., ge=1, le=MAX_BULK_QUANTITY)
    options: GenerationOptions = Field(default_factory=GenerationOptions)


class AcceptResult(BaseModel):
    tickets: List[str]
    correlation_id: str
    status: TicketStatus = TicketStatus.PENDING
    enqueued_at: datetime
    job_id: Optional[str] = None


# ============================================
# Queue messages (wire format)
# ============================================

class TicketDescriptor(BaseModel):
    id: str
    event_id: str
    user_id: Optional[str] = None
    type: TicketType = TicketType.STANDARD
    attendee: Attendee


class RequestOptions(BaseModel):
    priority: int = 1
    delay_ms: int = 0


class GenerationRequestMessage(BaseModel):
    kind: Literal["REQUEST"] = "REQUEST"
    correlation_id: str
    event_id: str
    source: str = "planner"
    tickets: List[TicketDescriptor]
    options: RequestOptions = Field(default_factory=RequestOptions)
    timestamp: datetime


class GenerationResult(BaseModel):
    # The renderer's older payloads use camelCase names and `pdfUrl`.
    model_config = ConfigDict(populate_by_name=True)

    ticket_id: str = Field(..., validation_alias=AliasChoices("ticket_id", "ticketId"))
    qr_payload: str = Field(..., min_length=1, validation_alias=AliasChoices("qr_payload", "qrCode"))
    checksum: str = Field(..., min_length=1)
    artifact_url: str = Field(..., min_length=1, validation_alias=AliasChoices("artifact_url", "pdfUrl"))
    generated_at: Optional[datetime] = Field(None, validation_alias=AliasChoices("generated_at", "generatedAt"))


class GenerationFailure(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    ticket_id: str = Field(..., validation_alias=AliasChoices("ticket_id", "ticketId"))
    error_message: str = Field(..., min_length=1, validation_alias=AliasChoices("error_message", "error"))
    errored_at: Optional[datetime] = Field(None, validation_alias=AliasChoices("errored_at", "timestamp"))


class GenerationResponseMessage(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    kind: Literal["RESPONSE"] = "RESPONSE"
    correlation_id: str = Field(..., min_length=1, validation_alias=AliasChoices("correlation_id", "correlationId"))
    event_id: str = Field(..., min_length=1, validation_alias=AliasChoices("event_id", "eventId"))
    source: str = Field("renderer", validation_alias=AliasChoices("source", "sourceService"))
    results: List[GenerationResult] = Field(default_factory=list)
    errors: List[GenerationFailure] = Field(default_factory=list)


# ============================================
# Read models
# ============================================

class TicketRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    event_id: str
    ticket_type_id: str
    user_id: Optional[str] = None
    type: TicketType
    attendee_name: str
    attendee_email: str
    attendee_phone: Optional[str] = None
    status: TicketStatus
    qr_payload: Optional[str] = None
    checksum: Optional[str] = None
    artifact_url: Optional[str] = None
    error_message: Optional[str] = None
    correlation_id: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class GenerationBatchRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    correlation_id: str
    event_id: str
    requester_id: str
    ticket_ids: List[str]
    priority: int
    delay_ms: int
    attempts: int
    status: BatchStatus
    job_id: Optional[str] = None
    last_error: Optional[str] = None
    enqueued_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class BatchDetail(BaseModel):
    batch: GenerationBatchRead
    tickets: List[TicketRead]
    status_counts: Dict[str, int]


class QueueStats(BaseModel):
    waiting: int = 0
    delayed: int = 0
    active: int = 0
    completed: int = 0
    failed: int = 0
