"""WhatsApp session management module."""

from .registry import SessionRegistry
from .relay import WebhookRelay
from .supervisor import ConnectionSupervisor
from .types import Session

__all__ = ["ConnectionSupervisor", "Session", "SessionRegistry", "WebhookRelay"]
