"""Contract with the WhatsApp Web protocol client.

The gateway never speaks the wire protocol itself. A provider opens
connections, persists credentials and reports everything that happens on a
connection as one of the typed events below, in the order the connection
produced them.
"""

from dataclasses import dataclass, field
from enum import IntEnum
from pathlib import Path
from typing import Any, Callable, Optional, Protocol, Union

USER_JID_SUFFIX = "@s.whatsapp.net"
STATUS_BROADCAST_JID = "status@broadcast"


class DisconnectReason(IntEnum):
    """Reason codes attached to a closed connection."""

    CONNECTION_CLOSED = 428
    CONNECTION_LOST = 408
    CONNECTION_REPLACED = 440
    TIMED_OUT = 408
    LOGGED_OUT = 401
    BAD_SESSION = 500
    RESTART_REQUIRED = 515
    MULTIDEVICE_MISMATCH = 411
    FORBIDDEN = 403
    UNAVAILABLE_SERVICE = 503


@dataclass
class UserIdentity:
    """Account the connection is logged in as."""

    id: str
    name: Optional[str] = None
    notify: Optional[str] = None

    @property
    def phone_number(self) -> str:
        """Bare phone number, without device suffix or address domain."""
        return self.id.split(":")[0].replace(USER_JID_SUFFIX, "")

    @property
    def display_name(self) -> Optional[str]:
        return self.name or self.notify or None


# Events


@dataclass
class CredentialsUpdated:
    """New credential material that must be persisted."""

    credentials: Any = None


@dataclass
class QRCodeReceived:
    """Raw pairing code to be shown to the user."""

    code: str


@dataclass
class ConnectionOpened:
    """The connection is authenticated and ready to send."""


@dataclass
class ConnectionClosed:
    """The connection dropped; ``status_code`` is a ``DisconnectReason`` value."""

    status_code: Optional[int] = None
    reason: Optional[str] = None

    @property
    def is_logged_out(self) -> bool:
        return self.status_code == DisconnectReason.LOGGED_OUT


@dataclass
class MessagesUpserted:
    """Batch of messages; ``type`` is ``notify`` for live traffic."""

    messages: list[dict[str, Any]] = field(default_factory=list)
    type: str = "notify"

    @property
    def is_live(self) -> bool:
        return self.type == "notify"


@dataclass
class MessagesUpdated:
    """Batch of delivery/read status updates."""

    updates: list[dict[str, Any]] = field(default_factory=list)


ConnectionEvent = Union[
    CredentialsUpdated,
    QRCodeReceived,
    ConnectionOpened,
    ConnectionClosed,
    MessagesUpserted,
    MessagesUpdated,
]

EventCallback = Callable[[ConnectionEvent], None]


class AuthState(Protocol):
    """Persisted credentials of one instance."""

    async def save_credentials(self, credentials: Any) -> None:
        ...


class WhatsAppConnection(Protocol):
    """Live protocol connection."""

    @property
    def user(self) -> Optional[UserIdentity]:
        ...

    async def send_text(self, jid: str, text: str) -> Any:
        ...

    async def logout(self) -> None:
        ...

    async def close(self) -> None:
        ...


class WhatsAppProvider(Protocol):
    """Factory for protocol connections."""

    async def load_auth_state(self, path: Path) -> AuthState:
        ...

    async def open_connection(
        self,
        auth_state: AuthState,
        on_event: EventCallback,
        browser: tuple[str, str, str],
    ) -> WhatsAppConnection:
        ...


def normalize_recipient(phone: str) -> str:
    """Turn a phone number into a user address.

    Values that already carry an address domain are passed through.

    Example: "+1 (555) 123-4567" -> "15551234567@s.whatsapp.net"
    """
    if "@" in phone:
        return phone

    digits = "".join(char for char in phone if char.isdigit())
    if not digits:
        raise ValueError(f"Phone number has no digits: {phone!r}")
    return f"{digits}{USER_JID_SUFFIX}"
