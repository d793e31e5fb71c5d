"""neonize adapter tests.

The neonize client is replaced by a fake that records the handlers the
adapter registers, so callbacks can be fired by hand.
"""

import asyncio
from types import SimpleNamespace

import pytest

from src.wa_gateway.whatsapp import neonize_provider
from src.wa_gateway.whatsapp.neonize_provider import (
    STORE_FILENAME,
    NeonizeConnection,
    NeonizeProvider,
)
from src.wa_gateway.whatsapp.protocol import (
    STATUS_BROADCAST_JID,
    ConnectionClosed,
    ConnectionOpened,
    MessagesUpdated,
    MessagesUpserted,
    QRCodeReceived,
)

BROWSER = ("Lovable CRM", "Chrome", "120.0.0")


class ConnectedEv:
    pass


class DisconnectedEv:
    pass


class LoggedOutEv:
    pass


class MessageEv:
    pass


class ReceiptEv:
    pass


class FakeDeviceProps:
    class PlatformType:
        _values = {"CHROME": 1, "SAFARI": 5}

        @classmethod
        def keys(cls):
            return list(cls._values)

        @classmethod
        def Value(cls, name):
            return cls._values[name]

    def __init__(self, **fields):
        self.fields = fields


def jid(user, server="s.whatsapp.net"):
    return SimpleNamespace(User=user, Server=server)


class FakeClient:
    def __init__(self, name, props=None):
        self.name = name
        self.props = props
        self.handlers = {}
        self.qr_handler = None
        self.me = SimpleNamespace(JID=jid("1555"), PushName="Alice")
        self.me_error = None
        self.sent = []
        self.disconnected = False
        self.logged_out = False

    def qr(self, handler):
        self.qr_handler = handler
        return handler

    def event(self, event_type):
        def register(handler):
            self.handlers[event_type] = handler
            return handler

        return register

    async def fire(self, event_type, event=None):
        await self.handlers[event_type](self, event)
        # Callbacks reach the loop through call_soon_threadsafe
        await asyncio.sleep(0)

    async def connect(self):
        await asyncio.sleep(3600)

    async def disconnect(self):
        self.disconnected = True

    async def logout(self):
        self.logged_out = True

    async def get_me(self):
        if self.me_error is not None:
            raise self.me_error
        return self.me

    async def send_message(self, to, text):
        self.sent.append((to, text))
        return {"id": "m1"}


def build_jid(user, server):
    return f"jid:{user}@{server}"


@pytest.fixture
def fake_neonize(monkeypatch):
    clients = []

    def new_client(name, props=None):
        client = FakeClient(name, props)
        clients.append(client)
        return client

    namespace = SimpleNamespace(
        NewAClient=new_client,
        ConnectedEv=ConnectedEv,
        DisconnectedEv=DisconnectedEv,
        LoggedOutEv=LoggedOutEv,
        MessageEv=MessageEv,
        ReceiptEv=ReceiptEv,
        DeviceProps=FakeDeviceProps,
        MessageToDict=lambda message: {"proto": message},
        build_jid=build_jid,
        clients=clients,
    )
    monkeypatch.setattr(neonize_provider, "_load_neonize", lambda: namespace)
    return namespace


async def open_fake(tmp_path, fake_neonize, browser=BROWSER):
    provider = NeonizeProvider()
    auth_state = await provider.load_auth_state(tmp_path / "inst1")
    events = []
    connection = await provider.open_connection(auth_state, events.append, browser)
    return connection, fake_neonize.clients[-1], events


def message_event(chat, pushname=""):
    return SimpleNamespace(
        Info=SimpleNamespace(
            MessageSource=SimpleNamespace(Chat=chat, IsFromMe=False),
            ID="m1",
            Timestamp=1700000000,
            Pushname=pushname,
        ),
        Message="hello",
    )


@pytest.mark.asyncio
async def test_open_uses_instance_store_and_browser_label(tmp_path, fake_neonize):
    connection, client, _ = await open_fake(tmp_path, fake_neonize)

    assert (tmp_path / "inst1").is_dir()
    assert client.name == str(tmp_path / "inst1" / STORE_FILENAME)
    assert client.props.fields == {"os": "Lovable CRM", "platformType": 1}
    await connection.close()


@pytest.mark.asyncio
async def test_unknown_browser_client_keeps_only_the_name(tmp_path, fake_neonize):
    connection, client, _ = await open_fake(
        tmp_path, fake_neonize, browser=("Gateway", "Netscape", "4.0")
    )

    assert client.props.fields == {"os": "Gateway"}
    await connection.close()


@pytest.mark.asyncio
async def test_qr_bytes_are_decoded(tmp_path, fake_neonize):
    connection, client, events = await open_fake(tmp_path, fake_neonize)

    await client.qr_handler(client, b"2@abc,def")
    await asyncio.sleep(0)

    assert events == [QRCodeReceived(code="2@abc,def")]
    await connection.close()


@pytest.mark.asyncio
async def test_logged_out_maps_to_401(tmp_path, fake_neonize):
    connection, client, events = await open_fake(tmp_path, fake_neonize)

    await client.fire(LoggedOutEv, SimpleNamespace(Reason="LOGGED_OUT"))

    assert events == [ConnectionClosed(status_code=401, reason="LOGGED_OUT")]
    assert events[0].is_logged_out is True
    await connection.close()


@pytest.mark.asyncio
async def test_disconnected_maps_to_428(tmp_path, fake_neonize):
    connection, client, events = await open_fake(tmp_path, fake_neonize)

    await client.fire(DisconnectedEv)

    assert events == [ConnectionClosed(status_code=428)]
    assert events[0].is_logged_out is False
    await connection.close()


@pytest.mark.asyncio
async def test_connected_reads_own_identity_first(tmp_path, fake_neonize):
    connection, client, events = await open_fake(tmp_path, fake_neonize)

    await client.fire(ConnectedEv)

    assert events == [ConnectionOpened()]
    assert connection.user.phone_number == "1555"
    assert connection.user.display_name == "Alice"
    await connection.close()


@pytest.mark.asyncio
async def test_connected_still_opens_when_identity_lookup_fails(tmp_path, fake_neonize):
    connection, client, events = await open_fake(tmp_path, fake_neonize)
    client.me_error = RuntimeError("not ready")

    await client.fire(ConnectedEv)

    assert events == [ConnectionOpened()]
    assert connection.user is None
    await connection.close()


@pytest.mark.asyncio
async def test_message_is_translated_to_live_upsert(tmp_path, fake_neonize):
    connection, client, events = await open_fake(tmp_path, fake_neonize)

    await client.fire(MessageEv, message_event(jid("1666"), pushname="Bob"))

    assert events == [
        MessagesUpserted(
            type="notify",
            messages=[
                {
                    "key": {"remoteJid": "1666@s.whatsapp.net", "fromMe": False, "id": "m1"},
                    "message": {"proto": "hello"},
                    "messageTimestamp": 1700000000,
                    "pushName": "Bob",
                }
            ],
        )
    ]
    assert events[0].is_live is True
    await connection.close()


@pytest.mark.asyncio
async def test_status_broadcast_chat_keeps_broadcast_jid(tmp_path, fake_neonize):
    connection, client, events = await open_fake(tmp_path, fake_neonize)

    await client.fire(MessageEv, message_event(jid("status", "broadcast")))

    message = events[0].messages[0]
    assert message["key"]["remoteJid"] == STATUS_BROADCAST_JID
    assert message["pushName"] is None
    await connection.close()


@pytest.mark.asyncio
async def test_receipt_is_relayed_as_update(tmp_path, fake_neonize):
    connection, client, events = await open_fake(tmp_path, fake_neonize)

    await client.fire(ReceiptEv, "receipt")

    assert events == [MessagesUpdated(updates=[{"proto": "receipt"}])]
    await connection.close()


@pytest.mark.asyncio
async def test_refresh_user_defaults_server_and_blank_push_name():
    client = FakeClient("store")
    client.me = SimpleNamespace(JID=jid("1555", ""), PushName="")
    connection = NeonizeConnection(client, build_jid)

    await connection.refresh_user()

    assert connection.user.id == "1555@s.whatsapp.net"
    assert connection.user.name is None


@pytest.mark.asyncio
async def test_send_text_splits_jid():
    client = FakeClient("store")
    connection = NeonizeConnection(client, build_jid)

    await connection.send_text("1555@s.whatsapp.net", "hi")
    await connection.send_text("120363@g.us", "team")
    await connection.send_text("1666", "bare")

    assert client.sent == [
        ("jid:1555@s.whatsapp.net", "hi"),
        ("jid:120363@g.us", "team"),
        ("jid:1666@s.whatsapp.net", "bare"),
    ]


@pytest.mark.asyncio
async def test_close_disconnects_and_stops_runner(tmp_path, fake_neonize):
    connection, client, _ = await open_fake(tmp_path, fake_neonize)
    runner = connection._runner

    await connection.close()
    await asyncio.gather(runner, return_exceptions=True)

    assert client.disconnected is True
    assert runner.cancelled()


@pytest.mark.asyncio
async def test_logout_is_forwarded():
    client = FakeClient("store")

    await NeonizeConnection(client, build_jid).logout()

    assert client.logged_out is True
