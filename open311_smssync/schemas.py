"""
Pydantic schemas for the SMSSync transport.

This module contains:
- Enums for message type, direction, state, mode and priority
- The Message domain model shared by the store, queue and handlers
- Envelopes exchanged with the SMSSync device
- Request/response models for the HTTP endpoint
"""

from enum import Enum
from typing import Any, Optional, Union

from pydantic import BaseModel, Field, field_validator


# =============================================================================
# Enums
# =============================================================================

class MessageType(str, Enum):
    SMS = "SMS"
    EMAIL = "EMAIL"
    PUSH = "PUSH"


class Direction(str, Enum):
    INBOUND = "Inbound"
    OUTBOUND = "Outbound"


class State(str, Enum):
    UNKNOWN = "Unknown"
    QUEUED = "Queued"
    SENT = "Sent"
    RECEIVED = "Received"
    DELIVERED = "Delivered"


class SendMode(str, Enum):
    PULL = "Pull"
    PUSH = "Push"


class Priority(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"


# =============================================================================
# Domain Models
# =============================================================================

class Message(BaseModel):
    """
    A message handled by the transport.

    `to` always holds a list of recipients; a single number supplied by a
    caller is wrapped into a one element list.
    """
    id: Optional[str] = Field(None, description="Store assigned identifier")
    type: MessageType = MessageType.SMS
    direction: Direction = Direction.OUTBOUND
    # Note: 'from' is a reserved word in Python, so we use alias
    from_msisdn: Optional[str] = Field(
        None,
        alias="from",
        serialization_alias="from",
        description="Sender phone number or sender id"
    )
    to: list[str] = Field(default_factory=list, description="Recipient phone numbers")
    subject: Optional[str] = None
    body: Optional[str] = None
    hash: Optional[str] = Field(None, description="Inbound idempotency token")
    transport: Optional[str] = None
    queue_name: Optional[str] = Field(
        None,
        alias="queueName",
        serialization_alias="queueName",
    )
    priority: Priority = Priority.NORMAL
    state: State = State.UNKNOWN
    mode: SendMode = SendMode.PULL
    options: dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    model_config = {
        "populate_by_name": True,  # Allow both 'from' and 'from_msisdn'
        "validate_assignment": True,
    }

    @field_validator("to", mode="before")
    @classmethod
    def normalize_recipients(cls, v: Any) -> list:
        """Accept a single recipient or a list of them."""
        if v is None:
            return []
        if isinstance(v, str):
            return [v] if v else []
        return [item for item in v if item]

    @classmethod
    def outbound(
        cls,
        to: Union[str, list[str]],
        body: str,
        subject: Optional[str] = None,
        from_msisdn: Optional[str] = None,
        **extra: Any
    ) -> "Message":
        """Message submitted by a producer for delivery through the device."""
        return cls(
            direction=Direction.OUTBOUND,
            state=State.UNKNOWN,
            to=to,
            body=body,
            subject=subject if subject is not None else body,
            from_msisdn=from_msisdn,
            **extra
        )

    @classmethod
    def inbound(
        cls,
        from_msisdn: Optional[str],
        to: Union[str, list[str], None],
        text: Optional[str],
        hash: Optional[str],
        **extra: Any
    ) -> "Message":
        """Message received from the device."""
        return cls(
            type=MessageType.SMS,
            direction=Direction.INBOUND,
            state=State.RECEIVED,
            priority=Priority.LOW,
            mode=SendMode.PULL,
            from_msisdn=from_msisdn,
            to=to,
            subject=text,
            body=text,
            hash=hash,
            **extra
        )

    def to_job(self) -> dict:
        """JSON payload used for queue jobs."""
        return self.model_dump(mode="json", by_alias=True)


class Envelope(BaseModel):
    """A single per-recipient send instruction for the device."""
    to: Optional[str] = None
    message: Optional[str] = None
    uuid: str


# =============================================================================
# Request Models
# =============================================================================

class InboundSms(BaseModel):
    """
    Inbound sms as posted by the SMSSync device.

    The device sends message_id, sent_timestamp and device_id alongside the
    text. `hash` is derived from them when the device does not send one.
    """
    from_msisdn: Optional[str] = Field(None, alias="from")
    message: str = Field(..., description="Sms text")
    message_id: Optional[str] = None
    sent_to: Optional[str] = None
    sent_timestamp: Optional[str] = None
    device_id: Optional[str] = None
    secret: Optional[str] = None
    hash: Optional[str] = None

    model_config = {"populate_by_name": True, "extra": "ignore"}

    def to_payload(self) -> dict:
        """Plain dict consumed by handlers.on_receive."""
        return {
            "from": self.from_msisdn,
            "sent_to": self.sent_to,
            "message": self.message,
            "hash": self.hash,
        }


class SentRequest(BaseModel):
    """Uuids of messages the device queued for local delivery."""
    queued_messages: list[Any] = Field(default_factory=list)

    model_config = {"extra": "ignore"}


class DeliveryReport(BaseModel):
    """Delivery status of one sms, as reported by the device."""
    uuid: Optional[Any] = None
    sent_result_code: Optional[int] = None
    sent_result_message: Optional[str] = None
    delivered_result_code: Optional[int] = None
    delivered_result_message: Optional[str] = None

    model_config = {"extra": "ignore"}


class DeliveredRequest(BaseModel):
    """Delivery reports posted by the device."""
    message_result: list[DeliveryReport] = Field(default_factory=list)

    model_config = {"extra": "ignore"}


# =============================================================================
# Response Models
# =============================================================================

class TaskPayload(BaseModel):
    """Body of the `payload` object the device expects."""
    success: Optional[bool] = None
    error: Optional[str] = None
    task: Optional[str] = None
    secret: Optional[str] = None
    messages: Optional[list[Envelope]] = None


class TaskResponse(BaseModel):
    """Response for receive and send tasks."""
    payload: TaskPayload


class MessageUuidsResponse(BaseModel):
    """Response for the sent task and the delivery report poll."""
    message_uuids: list[str] = Field(default_factory=list)


class DeliveredPayload(BaseModel):
    success: bool = True
    error: Optional[str] = None
    messages: list[Message] = Field(default_factory=list)


class DeliveredResponse(BaseModel):
    """Response for delivery reports: the updated messages."""
    payload: DeliveredPayload


class ErrorResponse(BaseModel):
    """Response model for error responses."""
    detail: str = Field(..., description="Error description")


class HealthResponse(BaseModel):
    """Response model for health check endpoints."""
    status: str = Field(..., description="Health status")
    reason: Optional[str] = Field(None, description="Reason if not ready")
