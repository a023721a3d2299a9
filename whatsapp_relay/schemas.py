"""
Pydantic schemas for request/response validation.

This module contains:
- Webhook envelope models used by the event classifier
- Request models for the operator endpoints
- Response models for API responses
"""

from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


# =============================================================================
# Webhook Envelope Models
# =============================================================================

class StatusPayload(BaseModel):
    """Delivery status callback for a message we sent."""
    id: str = Field(..., min_length=1, description="Provider message id the status refers to")
    status: str = Field(..., min_length=1, description="sent | delivered | read | failed")
    recipient_id: Optional[str] = Field(None, description="Phone the message was sent to")
    from_msisdn: Optional[str] = Field(None, alias="from", description="Sender phone, present on some status callbacks")
    timestamp: Optional[str] = None

    model_config = ConfigDict(extra="allow", populate_by_name=True)


class TextPayload(BaseModel):
    body: Optional[str] = None

    model_config = ConfigDict(extra="allow")


class MessagePayload(BaseModel):
    """
    Inbound message object.

    'from' is a reserved word in Python, so the sender is exposed as
    `from_msisdn` with an alias.
    """
    from_msisdn: str = Field(..., alias="from", min_length=1, description="Sender phone")
    to: Optional[str] = None
    id: str = Field(..., min_length=1, description="Provider message id")
    type: str = Field(..., min_length=1)
    timestamp: Optional[str] = None
    text: Optional[TextPayload] = None
    interactive: Optional[dict[str, Any]] = None

    model_config = ConfigDict(extra="allow", populate_by_name=True)


class ChangeValue(BaseModel):
    statuses: Optional[list[StatusPayload]] = None
    messages: Optional[list[MessagePayload]] = None

    model_config = ConfigDict(extra="allow")


class Change(BaseModel):
    value: ChangeValue

    model_config = ConfigDict(extra="allow")


class Entry(BaseModel):
    changes: list[Change] = Field(..., min_length=1)

    model_config = ConfigDict(extra="allow")


class WebhookEnvelope(BaseModel):
    """
    Outer webhook notification.

    Only the first change of the first entry is processed.
    """
    entry: list[Entry] = Field(..., min_length=1)

    model_config = ConfigDict(extra="allow")


# =============================================================================
# Pydantic Request Models
# =============================================================================

class SendMessageRequest(BaseModel):
    to: str = Field(..., min_length=1, description="Recipient phone")
    message: str = Field(..., min_length=1, description="Text body")


class SendInteractiveRequest(BaseModel):
    to: str = Field(..., min_length=1, description="Recipient phone")
    template: Literal["list", "buttons"] = Field(..., description="Sample interactive message to send")


class BroadcastRequest(BaseModel):
    recipients: list[str] = Field(..., min_length=1, description="Recipient phones")
    message: str = Field(..., min_length=1, description="Text body sent to every recipient")

    @field_validator("recipients")
    @classmethod
    def drop_blank_recipients(cls, v: list[str]) -> list[str]:
        """Strip whitespace and drop empty entries, keeping order and uniqueness."""
        cleaned = []
        for phone in v:
            phone = phone.strip()
            if phone and phone not in cleaned:
                cleaned.append(phone)
        if not cleaned:
            raise ValueError("recipients must contain at least one phone number")
        return cleaned


class ContactRenameRequest(BaseModel):
    name: Optional[str] = Field(None, max_length=256, description="Display name, null clears it")


# =============================================================================
# Pydantic Response Models
# =============================================================================

class WebhookResponse(BaseModel):
    """Response model for acknowledged webhook deliveries."""
    status: str = Field(default="ok", description="Operation status")
    result: Optional[str] = Field(None, description="Processing result")


class ErrorResponse(BaseModel):
    """Response model for error responses."""
    detail: str = Field(..., description="Error description")


class SendMessageResponse(BaseModel):
    success: bool
    message_id: Optional[str] = Field(None, description="Provider message id of the send")


class BroadcastResponse(BaseModel):
    sent: list[str] = Field(default_factory=list, description="Recipients the provider accepted")
    failed: list[str] = Field(default_factory=list, description="Recipients the provider rejected")


class MessageResponse(BaseModel):
    """
    Response model for a single ledger row.
    Maps store columns to API response format.
    """
    id: int
    kind: str
    from_: Optional[str] = Field(None, alias="from", serialization_alias="from")
    to: Optional[str] = None
    phone: Optional[str] = None
    type: Optional[str] = None
    body: Optional[str] = None
    message_id: Optional[str] = None
    reply_to_message_id: Optional[str] = None
    status: Optional[str] = None
    timestamp: Optional[str] = None
    interactive: Optional[dict[str, Any]] = None
    interactive_selection: Optional[dict[str, Any]] = None
    raw: Optional[Any] = None
    created_at: datetime
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(populate_by_name=True)


class MessagesListResponse(BaseModel):
    """
    Response model for GET /logs with pagination.

    Contains:
    - data: ledger rows matching filters, newest first
    - total: total count of rows matching filters (ignoring pagination)
    - page: 1-indexed page number
    - limit: rows per page
    """
    page: int = Field(..., ge=1)
    limit: int = Field(..., ge=1, le=200)
    total: int = Field(..., ge=0)
    data: list[MessageResponse] = Field(default_factory=list)


class ContactResponse(BaseModel):
    phone: str
    name: Optional[str] = None
    last_message_id: Optional[str] = None
    last_body: Optional[str] = None
    last_type: Optional[str] = None
    last_kind: Optional[str] = None
    last_direction: Optional[str] = None
    last_sender_id: Optional[str] = None
    last_recipient_phone: Optional[str] = None
    last_timestamp: Optional[datetime] = None
    total_messages: int = 0
    updated_at: Optional[datetime] = None


class ContactsListResponse(BaseModel):
    page: int = Field(..., ge=1)
    limit: int = Field(..., ge=1, le=200)
    total: int = Field(..., ge=0)
    data: list[ContactResponse] = Field(default_factory=list)


class HealthResponse(BaseModel):
    """Response model for health check endpoints."""
    status: str = Field(..., description="Health status")
    reason: Optional[str] = Field(None, description="Reason if not ready")
