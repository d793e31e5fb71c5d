"""Protocol provider backed by the ``neonize`` library.

neonize keeps its multi-device credentials in a SQLite store, one per
instance directory. Its callbacks are translated into gateway events and
handed to the supervisor on the event loop.
"""

import asyncio
from pathlib import Path
from types import SimpleNamespace
from typing import Any, Optional

import structlog

from .protocol import (
    USER_JID_SUFFIX,
    ConnectionClosed,
    ConnectionOpened,
    DisconnectReason,
    EventCallback,
    MessagesUpdated,
    MessagesUpserted,
    QRCodeReceived,
    UserIdentity,
)

logger = structlog.get_logger()

STORE_FILENAME = "session.sqlite3"
DEFAULT_SERVER = "s.whatsapp.net"


def _load_neonize() -> SimpleNamespace:
    """Import the neonize names used here, on first connection."""
    from google.protobuf.json_format import MessageToDict
    from neonize.aioze.client import NewAClient
    from neonize.aioze.events import (
        ConnectedEv,
        DisconnectedEv,
        LoggedOutEv,
        MessageEv,
        ReceiptEv,
    )
    from neonize.proto.waCompanionReg.WAWebProtobufsCompanionReg_pb2 import DeviceProps
    from neonize.utils import build_jid

    return SimpleNamespace(
        NewAClient=NewAClient,
        ConnectedEv=ConnectedEv,
        DisconnectedEv=DisconnectedEv,
        LoggedOutEv=LoggedOutEv,
        MessageEv=MessageEv,
        ReceiptEv=ReceiptEv,
        DeviceProps=DeviceProps,
        MessageToDict=MessageToDict,
        build_jid=build_jid,
    )


def jid_to_str(jid: Any) -> str:
    """Render a neonize JID as ``user@server``."""
    return f"{jid.User}@{jid.Server or DEFAULT_SERVER}"


def device_props(props_cls: Any, browser: tuple[str, str, str]) -> Any:
    """Build the device properties shown in the phone's linked devices list.

    The client part of ``browser`` picks the platform when neonize knows it
    by name.
    """
    name, client, _ = browser
    platforms = props_cls.PlatformType
    platform = client.upper()
    if platform in platforms.keys():
        return props_cls(os=name, platformType=platforms.Value(platform))
    return props_cls(os=name)


def decode_qr(data_qr: Any) -> str:
    return data_qr.decode() if isinstance(data_qr, bytes) else str(data_qr)


def message_to_upsert(event: Any, to_dict: Any) -> MessagesUpserted:
    """Translate a neonize message event into a live message batch."""
    info = event.Info
    source = info.MessageSource
    return MessagesUpserted(
        messages=[
            {
                "key": {
                    "remoteJid": jid_to_str(source.Chat),
                    "fromMe": source.IsFromMe,
                    "id": info.ID,
                },
                "message": to_dict(event.Message),
                "messageTimestamp": info.Timestamp,
                "pushName": info.Pushname or None,
            }
        ],
        type="notify",
    )


class NeonizeAuthState:
    """Credential store location for one instance.

    neonize writes credential changes to its store as they happen, so there
    is nothing left to persist on a credentials event.
    """

    def __init__(self, path: Path) -> None:
        self.path = path

    @property
    def store_path(self) -> Path:
        return self.path / STORE_FILENAME

    async def save_credentials(self, credentials: Any) -> None:
        logger.debug("Credentials persisted by store", path=str(self.store_path))


class NeonizeConnection:
    """Adapter exposing a neonize client as a gateway connection."""

    def __init__(self, client: Any, build_jid: Any) -> None:
        self._client = client
        self._build_jid = build_jid
        self._user: Optional[UserIdentity] = None
        self._runner: Optional[asyncio.Task] = None

    @property
    def user(self) -> Optional[UserIdentity]:
        return self._user

    async def refresh_user(self) -> None:
        device = await self._client.get_me()
        jid = device.JID
        self._user = UserIdentity(
            id=jid_to_str(jid) if jid.Server else f"{jid.User}{USER_JID_SUFFIX}",
            name=device.PushName or None,
        )

    async def send_text(self, jid: str, text: str) -> Any:
        user, _, server = jid.partition("@")
        return await self._client.send_message(self._build_jid(user, server or DEFAULT_SERVER), text)

    async def logout(self) -> None:
        await self._client.logout()

    async def close(self) -> None:
        try:
            await self._client.disconnect()
        finally:
            if self._runner is not None and not self._runner.done():
                self._runner.cancel()


class NeonizeProvider:
    """Opens neonize clients, one per instance directory."""

    async def load_auth_state(self, path: Path) -> NeonizeAuthState:
        await asyncio.to_thread(path.mkdir, parents=True, exist_ok=True)
        return NeonizeAuthState(path)

    async def open_connection(
        self,
        auth_state: NeonizeAuthState,
        on_event: EventCallback,
        browser: tuple[str, str, str],
    ) -> NeonizeConnection:
        neonize = _load_neonize()
        loop = asyncio.get_running_loop()

        def emit(event: Any) -> None:
            loop.call_soon_threadsafe(on_event, event)

        client = neonize.NewAClient(
            str(auth_state.store_path), props=device_props(neonize.DeviceProps, browser)
        )
        connection = NeonizeConnection(client, neonize.build_jid)
        logger.info("Opening neonize client", store=str(auth_state.store_path), browser=browser[0])

        @client.qr
        async def on_qr(_: Any, data_qr: bytes) -> None:
            emit(QRCodeReceived(code=decode_qr(data_qr)))

        @client.event(neonize.ConnectedEv)
        async def on_connected(_: Any, __: Any) -> None:
            try:
                await connection.refresh_user()
            except Exception as e:
                logger.warning("Failed to read own identity", error=str(e))
            emit(ConnectionOpened())

        @client.event(neonize.LoggedOutEv)
        async def on_logged_out(_: Any, event: Any) -> None:
            emit(ConnectionClosed(status_code=DisconnectReason.LOGGED_OUT, reason=str(event.Reason)))

        @client.event(neonize.DisconnectedEv)
        async def on_disconnected(_: Any, __: Any) -> None:
            emit(ConnectionClosed(status_code=DisconnectReason.CONNECTION_CLOSED))

        @client.event(neonize.MessageEv)
        async def on_message(_: Any, event: Any) -> None:
            emit(message_to_upsert(event, neonize.MessageToDict))

        @client.event(neonize.ReceiptEv)
        async def on_receipt(_: Any, event: Any) -> None:
            emit(MessagesUpdated(updates=[neonize.MessageToDict(event)]))

        connection._runner = asyncio.create_task(client.connect(), name="neonize-connect")
        return connection
