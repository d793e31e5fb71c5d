"""Outbound webhook relay.

Every protocol event observed on a session is forwarded to a single external
receiver. Delivery is best effort: one POST, no retries, failures are logged
and never raised.
"""

from typing import Any, Optional

import httpx
import structlog

from ..config import get_settings
from .types import WebhookPayload

logger = structlog.get_logger()

WEBHOOK_SECRET_HEADER = "X-Webhook-Secret"


class WebhookRelay:
    """Fire-and-forget notifier for the configured webhook URL."""

    def __init__(
        self,
        url: str,
        *,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._url = url
        self._timeout = timeout
        self._transport = transport

    @property
    def enabled(self) -> bool:
        return bool(self._url)

    async def notify(
        self,
        event: str,
        session_id: str,
        instance_name: str,
        data: dict[str, Any],
        *,
        secret: str = "",
    ) -> None:
        """POST ``{event, sessionId, instanceName, data}`` to the receiver."""
        if not self._url:
            logger.warning("No webhook URL configured", webhook_event=event)
            return

        try:
            payload = WebhookPayload(
                event=event,
                session_id=session_id,
                instance_name=instance_name,
                data=data,
            )
            headers = {"Content-Type": "application/json"}
            if secret:
                headers[WEBHOOK_SECRET_HEADER] = secret

            async with httpx.AsyncClient(
                timeout=self._timeout, transport=self._transport
            ) as client:
                response = await client.post(
                    self._url,
                    content=payload.model_dump_json(by_alias=True),
                    headers=headers,
                )

            logger.info(
                "Webhook sent",
                webhook_event=event,
                session_id=session_id,
                status_code=response.status_code,
            )

        except Exception as e:
            logger.error(
                "Webhook error",
                webhook_event=event,
                session_id=session_id,
                error=str(e),
            )


def get_webhook_relay() -> WebhookRelay:
    """Build a relay from application settings."""
    settings = get_settings()
    return WebhookRelay(
        settings.webhook_url,
        timeout=settings.webhook_timeout_seconds,
    )
