"""Connection supervisor.

Drives each session through connect / pair / open / close cycles. Protocol
callbacks only enqueue typed events; one consumer task per session applies
them in order to the registry entry. Webhooks are queued on the session's
outbox and delivered in order by a separate courier task, so a slow
receiver never holds up state changes.

Reconnect policy: any close other than "logged out" drops the session from
the registry and schedules a fresh ``connect`` after a fixed delay, forever.
A logged-out session is dropped and left for the caller to re-pair.
"""

import asyncio
from typing import Any, Callable

import structlog

from .protocol import (
    STATUS_BROADCAST_JID,
    AuthState,
    ConnectionClosed,
    ConnectionEvent,
    ConnectionOpened,
    CredentialsUpdated,
    MessagesUpdated,
    MessagesUpserted,
    QRCodeReceived,
    WhatsAppProvider,
)
from .qr import render_qr_data_url
from .registry import SessionRegistry
from .relay import WebhookRelay
from .types import Session

logger = structlog.get_logger()

DEFAULT_BROWSER = ("Lovable CRM", "Chrome", "120.0.0")


class ConnectionSupervisor:
    """Opens protocol connections and keeps sessions in sync with them."""

    def __init__(
        self,
        registry: SessionRegistry,
        relay: WebhookRelay,
        provider: WhatsAppProvider,
        *,
        reconnect_delay: float = 5.0,
        browser: tuple[str, str, str] = DEFAULT_BROWSER,
        render_qr: Callable[[str], str] = render_qr_data_url,
        drain_timeout: float = 5.0,
    ) -> None:
        self.registry = registry
        self.relay = relay
        self.provider = provider
        self.reconnect_delay = reconnect_delay
        self.browser = browser
        self.render_qr = render_qr
        self.drain_timeout = drain_timeout
        # session_id -> (task, instance_name) while waiting out the delay
        self._reconnects: dict[str, tuple[asyncio.Task[None], str]] = {}
        self._couriers: set[asyncio.Task[None]] = set()
        self._stopped = False

    async def connect(
        self, session_id: str, instance_name: str, webhook_secret: str = ""
    ) -> Session:
        """Return the session for ``session_id``, opening a connection if new.

        The session is registered before the first await, so concurrent
        calls for the same id share one session and one connection.
        """
        existing = self.registry.get(session_id)
        if existing is not None:
            logger.info("Session already exists", session_id=session_id, instance_name=instance_name)
            return existing

        session = self.registry.create(session_id, instance_name, webhook_secret)
        logger.info("Creating session", session_id=session_id, instance_name=instance_name)

        try:
            auth_state = await self.provider.load_auth_state(
                self.registry.auth_path(instance_name)
            )
            if session.closed:
                return session

            connection = await self.provider.open_connection(
                auth_state, session.events.put_nowait, self.browser
            )
        except Exception:
            self.registry.discard(session)
            session.closed = True
            raise

        if session.closed:
            # Deleted while the connection was being opened
            try:
                await connection.close()
            except Exception as e:
                logger.warning("Connection close error", session_id=session_id, error=str(e))
            return session

        session.connection = connection
        session.worker = asyncio.create_task(
            self._consume(session, auth_state),
            name=f"session-events:{session_id}",
        )
        courier = asyncio.create_task(
            self._deliver(session),
            name=f"session-webhooks:{session_id}",
        )
        self._couriers.add(courier)
        courier.add_done_callback(self._couriers.discard)
        return session

    async def delete(self, session_id: str) -> bool:
        """Delete a session, or stop one that is waiting to reconnect.

        Returns:
            False if the id is neither registered nor pending reconnect.
        """
        pending = self._reconnects.pop(session_id, None)
        if pending is not None:
            task, instance_name = pending
            task.cancel()
            logger.info("Pending reconnect cancelled", session_id=session_id)

        if await self.registry.delete(session_id):
            return True

        if pending is not None:
            await self.registry.erase_credentials(instance_name)
            return True
        return False

    async def _consume(self, session: Session, auth_state: AuthState) -> None:
        """Apply a session's events one at a time until its connection closes."""
        while not session.closed:
            event = await session.events.get()
            try:
                if session.closed:
                    break
                await self._apply(session, auth_state, event)
            except Exception as e:
                logger.error(
                    "Event handling failed",
                    session_id=session.session_id,
                    event_type=type(event).__name__,
                    error=str(e),
                )
            finally:
                session.events.task_done()
            if isinstance(event, ConnectionClosed):
                break

    async def _deliver(self, session: Session) -> None:
        """Send a session's queued webhooks in order until told to stop."""
        while True:
            item = await session.outbox.get()
            try:
                if item is None:
                    break
                event, data = item
                await self.relay.notify(
                    event,
                    session.session_id,
                    session.instance_name,
                    data,
                    secret=session.webhook_secret,
                )
            except Exception as e:
                logger.error("Webhook delivery failed", session_id=session.session_id, error=str(e))
            finally:
                session.outbox.task_done()

    async def _apply(
        self, session: Session, auth_state: AuthState, event: ConnectionEvent
    ) -> None:
        if isinstance(event, CredentialsUpdated):
            await auth_state.save_credentials(event.credentials)
        elif isinstance(event, QRCodeReceived):
            self._on_qr(session, event)
        elif isinstance(event, ConnectionOpened):
            self._on_open(session)
        elif isinstance(event, ConnectionClosed):
            await self._on_close(session, event)
        elif isinstance(event, MessagesUpserted):
            self._on_messages(session, event)
        elif isinstance(event, MessagesUpdated):
            self._relay(session, "messages.update", {"updates": event.updates})
        else:
            logger.debug("Ignoring unknown event", event_type=type(event).__name__)

    def _on_qr(self, session: Session, event: QRCodeReceived) -> None:
        if not session.set_qr(self.render_qr(event.code)):
            return
        logger.info("QR code generated", session_id=session.session_id, instance_name=session.instance_name)
        self._relay(session, "qr.update", {"qrCode": session.qr_code})

    def _on_open(self, session: Session) -> None:
        phone_number = session.phone_number
        push_name = session.push_name
        user = session.connection.user if session.connection is not None else None
        if user is not None:
            phone_number = user.phone_number
            push_name = user.display_name

        session.mark_open(phone_number, push_name)
        logger.info(
            "Session connected",
            session_id=session.session_id,
            instance_name=session.instance_name,
            phone=phone_number,
        )
        self._relay(
            session,
            "connection.update",
            {
                "connection": "open",
                "isConnected": True,
                "phoneNumber": session.phone_number,
                "pushName": session.push_name,
            },
        )

    async def _on_close(self, session: Session, event: ConnectionClosed) -> None:
        session.mark_closed()
        should_reconnect = not event.is_logged_out

        # Drop the stale entry first so status queries report "not found"
        self.registry.discard(session)

        logger.info(
            "Session disconnected",
            session_id=session.session_id,
            instance_name=session.instance_name,
            status_code=event.status_code,
            reconnect=should_reconnect,
        )
        self._relay(
            session,
            "connection.update",
            {"connection": "close", "isConnected": False, "statusCode": event.status_code},
        )

        if should_reconnect:
            self._schedule_reconnect(
                session.session_id, session.instance_name, session.webhook_secret
            )
        await self.registry.teardown(session, logout=False)

    def _on_messages(self, session: Session, event: MessagesUpserted) -> None:
        if not event.is_live:
            return

        for message in event.messages:
            key = message.get("key") or {}
            remote_jid = key.get("remoteJid")
            if remote_jid == STATUS_BROADCAST_JID:
                continue

            logger.info("Message received", session_id=session.session_id, remote_jid=remote_jid)
            self._relay(
                session,
                "messages.upsert",
                {
                    "messages": [
                        {
                            "key": key,
                            "message": message.get("message"),
                            "messageTimestamp": message.get("messageTimestamp"),
                            "pushName": message.get("pushName"),
                        }
                    ]
                },
            )

    def _relay(self, session: Session, event: str, data: dict[str, Any]) -> None:
        session.outbox.put_nowait((event, data))

    def _schedule_reconnect(
        self, session_id: str, instance_name: str, webhook_secret: str
    ) -> None:
        if self._stopped:
            return
        task = asyncio.create_task(
            self._reconnect_later(session_id, instance_name, webhook_secret),
            name=f"session-reconnect:{session_id}",
        )
        self._reconnects[session_id] = (task, instance_name)
        task.add_done_callback(lambda done: self._forget_reconnect(session_id, done))

    def _forget_reconnect(self, session_id: str, task: "asyncio.Task[None]") -> None:
        pending = self._reconnects.get(session_id)
        if pending is not None and pending[0] is task:
            del self._reconnects[session_id]

    async def _reconnect_later(
        self, session_id: str, instance_name: str, webhook_secret: str
    ) -> None:
        await asyncio.sleep(self.reconnect_delay)
        if self._stopped:
            return
        # From here on the attempt is visible in the registry
        self._forget_reconnect(session_id, asyncio.current_task())
        logger.info("Reconnecting session", session_id=session_id, instance_name=instance_name)
        try:
            await self.connect(session_id, instance_name, webhook_secret)
        except Exception as e:
            logger.error(
                "Reconnect failed",
                session_id=session_id,
                instance_name=instance_name,
                error=str(e),
            )
            self._schedule_reconnect(session_id, instance_name, webhook_secret)

    @property
    def pending_reconnects(self) -> int:
        return len(self._reconnects)

    async def shutdown(self) -> None:
        """Close every connection (keeping credentials) and cancel reconnects.

        Queued webhooks get ``drain_timeout`` seconds to go out.
        """
        self._stopped = True
        tasks = [task for task, _ in self._reconnects.values()]
        self._reconnects.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        for session in self.registry:
            await self.registry.teardown(session, logout=False)
            self.registry.discard(session)

        if self._couriers:
            _, pending = await asyncio.wait(set(self._couriers), timeout=self.drain_timeout)
            for courier in pending:
                courier.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)
        logger.info("Connection supervisor stopped")
