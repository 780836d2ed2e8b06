"""
Tests for the relay's event routing, the transports and presence tracking.
"""

import json

import pytest

from devconnect.services.presence import PresenceTracker
from devconnect.services.transport import InMemoryTransport, Transport, WebSocketTransport
from devconnect.services.websocket_manager import Connection, WebSocketManager

pytestmark = pytest.mark.anyio


class RecordingConnection(Connection):
    def __init__(self, user_id):
        super().__init__(user_id)
        self.received = []

    async def send(self, event, data):
        self.received.append((event, data))

    def events(self, name):
        return [data for event, data in self.received if event == name]


async def allow_public(chat_id, user_id):
    return chat_id != "private"


def stored_row(id, sender_id, chat_id="public", content="hi", is_deleted=False):
    return {"id": id, "chat_id": chat_id, "sender_id": sender_id, "content": content, "is_deleted": is_deleted}


@pytest.fixture
def stored():
    """Message rows the relay sees as persisted, by id."""
    return {}


@pytest.fixture
def manager(stored):
    async def lookup(message_id):
        return stored.get(message_id)

    return WebSocketManager(membership_checker=allow_public, message_lookup=lookup)


class TestRelayRouting:
    async def test_presence_is_broadcast_on_first_and_last_connection(self, manager):
        watcher = RecordingConnection("watcher")
        await manager.connect(watcher)
        first, second = RecordingConnection("u1"), RecordingConnection("u1")

        await manager.connect(first)
        await manager.connect(second)
        assert watcher.events("userOnline") == [{"user_id": "u1"}]
        assert manager.online_users() == ["watcher", "u1"]

        await manager.disconnect(first)
        assert watcher.events("userOffline") == []
        await manager.disconnect(second)
        assert watcher.events("userOffline") == [{"user_id": "u1"}]
        assert not manager.is_online("u1")

    async def test_get_online_users_acknowledges_the_list(self, manager):
        connection = RecordingConnection("u1")
        await manager.connect(connection)

        assert await manager.handle_event(connection, "getOnlineUsers") == ["u1"]

    async def test_join_checks_membership(self, manager):
        connection = RecordingConnection("u1")

        assert await manager.handle_event(connection, "joinChat", {"chat_id": "public"}) == {"ok": True}
        result = await manager.handle_event(connection, "joinChat", {"chat_id": "private"})
        assert result["ok"] is False
        assert "private" not in manager.rooms

    async def test_room_events_require_joining(self, manager):
        connection = RecordingConnection("u1")

        result = await manager.handle_event(connection, "typing", {"chat_id": "public"})

        assert result == {"ok": False, "error": "Join the chat first"}

    async def test_room_broadcasts_skip_the_sender(self, manager, stored):
        sender, peer, outsider = RecordingConnection("u1"), RecordingConnection("u2"), RecordingConnection("u3")
        for connection in (sender, peer):
            await manager.handle_event(connection, "joinChat", {"chat_id": "public"})
        stored["m1"] = stored_row("m1", "u1")

        await manager.handle_event(sender, "typing", {"chat_id": "public"})
        await manager.handle_event(sender, "sendMessage", {"chat_id": "public", "id": "m1", "content": "hi"})
        stored["m1"]["is_deleted"] = True
        await manager.handle_event(sender, "recallMessage", {"chat_id": "public", "message_id": "m1"})
        await manager.handle_event(peer, "messageRead", {"chat_id": "public", "message_ids": ["m1", "m2"]})

        assert peer.events("typing") == [{"chat_id": "public", "user_id": "u1"}]
        assert [data["id"] for data in peer.events("newMessage")] == ["m1"]
        assert peer.events("messageRecalled") == [{"chat_id": "public", "message_id": "m1"}]
        assert [data["message_id"] for data in sender.events("messageStatus")] == ["m1", "m2"]
        assert sender.events("typing") == []
        assert outsider.received == []

    async def test_new_messages_carry_the_stored_row(self, manager, stored):
        sender, peer = RecordingConnection("u1"), RecordingConnection("u2")
        for connection in (sender, peer):
            await manager.handle_event(connection, "joinChat", {"chat_id": "public"})
        stored["m1"] = stored_row("m1", "u1", content="hi")

        await manager.handle_event(sender, "sendMessage", {"chat_id": "public", "id": "m1", "content": "edited"})

        assert peer.events("newMessage") == [stored["m1"]]

    @pytest.mark.parametrize("data", [
        {"chat_id": "public", "id": "m2", "sender_id": "u1", "content": "I quit"},
        {"chat_id": "public", "id": "missing", "sender_id": "u1"},
        {"chat_id": "public", "id": "elsewhere", "sender_id": "u1"},
        {"chat_id": "public"},
    ])
    async def test_messages_not_sent_by_the_user_are_refused(self, manager, stored, data):
        sender, peer = RecordingConnection("u1"), RecordingConnection("u2")
        for connection in (sender, peer):
            await manager.handle_event(connection, "joinChat", {"chat_id": "public"})
        stored["m2"] = stored_row("m2", "u2")
        stored["elsewhere"] = stored_row("elsewhere", "u1", chat_id="other")

        result = await manager.handle_event(sender, "sendMessage", data)

        assert result["ok"] is False
        assert peer.received == []

    async def test_recall_of_someone_elses_message_is_refused(self, manager, stored):
        owner, member, viewer = RecordingConnection("u1"), RecordingConnection("u2"), RecordingConnection("u3")
        for connection in (owner, member, viewer):
            await manager.handle_event(connection, "joinChat", {"chat_id": "public"})
        stored["m1"] = stored_row("m1", "u1", is_deleted=True)

        result = await manager.handle_event(member, "recallMessage", {"chat_id": "public", "message_id": "m1"})

        assert result["ok"] is False
        assert owner.events("messageRecalled") == []
        assert viewer.events("messageRecalled") == []

    async def test_recall_must_be_stored_first(self, manager, stored):
        owner, peer = RecordingConnection("u1"), RecordingConnection("u2")
        for connection in (owner, peer):
            await manager.handle_event(connection, "joinChat", {"chat_id": "public"})
        stored["m1"] = stored_row("m1", "u1")

        result = await manager.handle_event(owner, "recallMessage", {"chat_id": "public", "message_id": "m1"})

        assert result["ok"] is False
        assert peer.events("messageRecalled") == []

    async def test_leave_and_disconnect_clear_rooms(self, manager):
        connection = RecordingConnection("u1")
        await manager.connect(connection)
        await manager.handle_event(connection, "joinChat", {"chat_id": "a"})
        await manager.handle_event(connection, "joinChat", {"chat_id": "b"})

        await manager.handle_event(connection, "leaveChat", {"chat_id": "a"})
        assert list(manager.rooms) == ["b"]
        await manager.disconnect(connection)
        assert manager.rooms == {}

    async def test_unknown_and_malformed_events(self, manager):
        connection = RecordingConnection("u1")

        assert (await manager.handle_event(connection, "dance", {}))["ok"] is False
        assert (await manager.handle_event(connection, "joinChat", "public"))["ok"] is False


class TestInMemoryTransport:
    async def test_handlers_receive_json_data(self, manager, stored):
        alice = await InMemoryTransport(manager, "alice").connect()
        bob = await InMemoryTransport(manager, "bob").connect()
        received = []
        bob.on("newMessage", received.append)
        for transport in (alice, bob):
            await transport.emit("joinChat", {"chat_id": "public"})
        stored["m1"] = {**stored_row("m1", "alice"), "file_size": 3}

        await alice.emit("sendMessage", {"chat_id": "public", "id": "m1"})

        assert received == [stored["m1"]]

    async def test_off_detaches_one_handler(self, manager):
        transport = InMemoryTransport(manager, "alice")
        first, second = [], []
        transport.on("typing", first.append)
        transport.on("typing", second.append)

        transport.off("typing", first.append)
        assert transport.handler_count("typing") == 1
        transport.off("typing")
        assert transport.handler_count("typing") == 0

    async def test_ack_callback_receives_the_result(self, manager):
        transport = await InMemoryTransport(manager, "alice").connect()
        acks = []

        await transport.emit("joinChat", {"chat_id": "public"}, acks.append)

        assert acks == [{"ok": True}]

    async def test_emit_after_disconnect_is_dropped(self, manager):
        transport = await InMemoryTransport(manager, "alice").connect()
        await transport.disconnect()
        acks = []

        await transport.emit("getOnlineUsers", None, acks.append)

        assert acks == []

    async def test_failing_handler_does_not_break_dispatch(self, manager):
        transport = InMemoryTransport(manager, "alice")
        received = []

        def broken(data):
            raise RuntimeError("boom")

        transport.on("typing", broken)
        transport.on("typing", received.append)
        await transport._dispatch("typing", {"chat_id": "c"})

        assert received == [{"chat_id": "c"}]


class FakeSocket:
    def __init__(self):
        self.sent = []
        self.closed = False

    async def send_text(self, text):
        self.sent.append(json.loads(text))

    async def close(self):
        self.closed = True


class TestWebSocketTransport:
    async def test_emit_frames_carry_ack_ids(self):
        socket = FakeSocket()
        transport = WebSocketTransport(socket)

        await transport.emit("typing", {"chat_id": "c"})
        await transport.emit("getOnlineUsers", None, lambda users: None)

        assert socket.sent == [
            {"event": "typing", "data": {"chat_id": "c"}, "ack": None},
            {"event": "getOnlineUsers", "data": None, "ack": 1},
        ]

    async def test_ack_frames_resolve_callbacks(self):
        transport = WebSocketTransport(FakeSocket())
        acks = []
        await transport.emit("getOnlineUsers", None, acks.append)

        await transport.handle_frame(json.dumps({"event": "ack", "ack": 1, "data": ["u1"]}))
        await transport.handle_frame(json.dumps({"event": "ack", "ack": 1, "data": ["again"]}))

        assert acks == [["u1"]]

    async def test_event_frames_reach_handlers(self):
        transport = WebSocketTransport(FakeSocket())
        received = []
        transport.on("userOnline", received.append)

        await transport.handle_frame(json.dumps({"event": "userOnline", "data": {"user_id": "u2"}}))
        await transport.handle_frame(json.dumps({"error": "Invalid frame format"}))
        await transport.handle_frame("not json")

        assert received == [{"user_id": "u2"}]

    async def test_disconnect_closes_the_socket(self):
        socket = FakeSocket()
        transport = WebSocketTransport(socket)

        await transport.disconnect()

        assert socket.closed
        assert not transport.connected


class TestPresenceTracker:
    async def test_seeded_then_kept_current(self, manager):
        await InMemoryTransport(manager, "bob").connect()
        alice = await InMemoryTransport(manager, "alice").connect()
        presence = PresenceTracker()
        snapshots = []
        presence.add_listener(snapshots.append)

        await presence.attach(alice)
        assert presence.online == {"alice", "bob"}

        carol = await InMemoryTransport(manager, "carol").connect()
        assert presence.is_online("carol")
        await carol.disconnect()
        assert not presence.is_online("carol")
        assert len(snapshots) == 3

    async def test_detach_stops_updates(self, manager):
        alice = await InMemoryTransport(manager, "alice").connect()
        presence = PresenceTracker()
        await presence.attach(alice)
        presence.detach()

        await InMemoryTransport(manager, "bob").connect()

        assert not presence.is_online("bob")


class TestIncompletePeers:
    async def test_transport_without_disconnect_cannot_be_created(self):
        class SendOnly(Transport):
            async def emit(self, event, data=None, callback=None):
                pass

        with pytest.raises(TypeError):
            SendOnly()

    async def test_connection_without_send_cannot_be_created(self):
        class Mute(Connection):
            pass

        with pytest.raises(TypeError):
            Mute("u1")
