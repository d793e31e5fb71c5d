"""Session state and API payload types."""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .protocol import ConnectionEvent, WhatsAppConnection

SessionStatus = Literal["connected", "waiting_qr", "connecting"]


@dataclass
class Session:
    """One logical WhatsApp connection, keyed by a caller-chosen id.

    Status fields are only changed through ``set_qr``, ``mark_open`` and
    ``mark_closed`` so that a connected session never keeps a QR code.
    """

    session_id: str
    instance_name: str
    webhook_secret: str = ""
    connection: Optional[WhatsAppConnection] = None
    qr_code: Optional[str] = None
    is_connected: bool = False
    phone_number: Optional[str] = None
    push_name: Optional[str] = None

    # Event pipeline, owned by the connection supervisor
    events: "asyncio.Queue[ConnectionEvent]" = field(
        default_factory=asyncio.Queue, repr=False
    )
    worker: Optional["asyncio.Task[None]"] = field(default=None, repr=False)
    closed: bool = field(default=False, repr=False)

    # Pending webhooks as (event, data); ``None`` ends delivery
    outbox: "asyncio.Queue[Optional[tuple[str, dict[str, Any]]]]" = field(
        default_factory=asyncio.Queue, repr=False
    )

    @property
    def status(self) -> SessionStatus:
        if self.is_connected:
            return "connected"
        if self.qr_code:
            return "waiting_qr"
        return "connecting"

    def set_qr(self, qr_code: str) -> bool:
        """Store a pairing code. Ignored once the session is connected."""
        if self.is_connected:
            return False
        self.qr_code = qr_code
        return True

    def mark_open(self, phone_number: Optional[str], push_name: Optional[str]) -> None:
        self.is_connected = True
        self.qr_code = None
        self.phone_number = phone_number
        self.push_name = push_name

    def mark_closed(self) -> None:
        self.is_connected = False

    def summary(self) -> "SessionSummary":
        return SessionSummary(
            session_id=self.session_id,
            instance_name=self.instance_name,
            is_connected=self.is_connected,
            phone_number=self.phone_number,
        )


# API schemas (camelCase on the wire)


class CamelModel(BaseModel):
    """Base model serialized with camelCase field names."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CreateInstanceRequest(CamelModel):
    session_id: str = Field(..., min_length=1)
    instance_name: str = Field(..., min_length=1)
    webhook_secret: Optional[str] = None


class CreateInstanceResponse(CamelModel):
    success: bool = True
    session_id: str
    instance_name: str
    is_connected: bool


class QRCodeResponse(CamelModel):
    qr_code: Optional[str] = None
    is_connected: bool
    phone_number: Optional[str] = None
    push_name: Optional[str] = None


class StatusResponse(CamelModel):
    status: SessionStatus
    is_connected: bool
    phone_number: Optional[str] = None
    push_name: Optional[str] = None


class SessionSummary(CamelModel):
    session_id: str
    instance_name: str
    is_connected: bool
    phone_number: Optional[str] = None


class SessionListResponse(CamelModel):
    sessions: list[SessionSummary]


class DeleteResponse(CamelModel):
    success: bool = True


class SendTextRequest(CamelModel):
    session_id: str = Field(..., min_length=1)
    phone: str = Field(..., min_length=1)
    message: str = Field(..., min_length=1)


class SendTextResponse(CamelModel):
    success: bool = True
    to: str


class HealthResponse(CamelModel):
    status: str = "ok"
    sessions: int
    timestamp: datetime


class WebhookPayload(CamelModel):
    """Envelope POSTed to the webhook receiver."""

    event: Literal["qr.update", "connection.update", "messages.upsert", "messages.update"]
    session_id: str
    instance_name: str
    data: dict[str, Any]
