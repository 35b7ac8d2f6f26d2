import json
from uuid import uuid4

from textflow.helpers import bg_tasks, utcnow
from textflow.models.chat import ChatEvent, ChatMessageResp
from textflow.service import ChatRoomService, ChatServer

from fastapi.websockets import WebSocketState


class FakeWebSocket:
    def __init__(self, broken: bool = False):
        self.client_state = WebSocketState.CONNECTED
        self.broken = broken
        self.received: list[dict] = []
        self.close_args: tuple[int, str | None] | None = None

    async def send_text(self, text: str) -> None:
        if self.broken:
            raise RuntimeError("connection reset")
        self.received.append(json.loads(text))

    async def close(self, code: int = 1000, reason: str | None = None) -> None:
        self.client_state = WebSocketState.DISCONNECTED
        self.close_args = (code, reason)


def make_message(room_id, message_id=1) -> ChatMessageResp:
    return ChatMessageResp(id=message_id, room_id=room_id, nickname="ada", content="hi", created_at=utcnow())


def test_connect_and_disconnect():
    server = ChatServer()
    room_id, member = uuid4(), uuid4()
    ws = FakeWebSocket()

    server.connect(room_id, member, ws)
    server.connect(room_id, member, ws)
    assert server.rooms == {room_id: {member: [ws]}}

    server.disconnect(room_id, member, ws)
    assert server.rooms == {}
    # disconnecting twice is harmless
    server.disconnect(room_id, member, ws)


async def test_new_message_reaches_every_stream_of_the_room():
    server = ChatServer()
    room_id, other_room = uuid4(), uuid4()
    first, second, outsider = FakeWebSocket(), FakeWebSocket(), FakeWebSocket()
    server.connect(room_id, uuid4(), first)
    server.connect(room_id, uuid4(), second)
    server.connect(other_room, uuid4(), outsider)
    message = make_message(room_id, 42)

    server.send_message_to_room(message)
    await bg_tasks.join()

    expected = {"event": "chat.message.new", "data": {"messages": [message.model_dump(mode="json")]}}
    assert first.received == [expected]
    assert second.received == [expected]
    assert outsider.received == []


async def test_message_to_room_without_streams_schedules_nothing():
    server = ChatServer()

    server.send_message_to_room(make_message(uuid4()))

    assert not bg_tasks.tasks


async def test_member_who_left_receives_no_more_messages():
    server = ChatServer()
    room_id, stayer, leaver = uuid4(), uuid4(), uuid4()
    kept, gone = FakeWebSocket(), FakeWebSocket()
    server.connect(room_id, stayer, kept)
    server.connect(room_id, leaver, gone)

    server.disconnect_member(room_id, leaver, "left")
    server.send_message_to_room(make_message(room_id, 7))
    await bg_tasks.join()

    assert gone.received == [{"event": "chat.room.left", "data": {"room_id": str(room_id), "reason": "left"}}]
    assert gone.close_args == (1000, "left")
    assert [e["event"] for e in kept.received] == ["chat.message.new"]
    assert server.rooms == {room_id: {stayer: [kept]}}


async def test_disconnect_unknown_member_is_a_noop():
    server = ChatServer()
    room_id = uuid4()
    ws = FakeWebSocket()
    server.connect(room_id, uuid4(), ws)

    server.disconnect_member(room_id, uuid4(), "idle")
    server.disconnect_member(uuid4(), uuid4(), "idle")

    assert not bg_tasks.tasks
    assert ws.received == []


async def test_broadcast_drops_broken_streams():
    server = ChatServer()
    room_id, member = uuid4(), uuid4()
    healthy, broken = FakeWebSocket(), FakeWebSocket(broken=True)
    server.connect(room_id, member, healthy)
    server.connect(room_id, member, broken)

    await server.broadcast(room_id, ChatEvent(event="ping", data=None))

    assert healthy.received == [{"event": "ping", "data": None}]
    assert server.rooms[room_id] == {member: [healthy]}


async def test_closed_streams_are_skipped():
    server = ChatServer()
    room_id = uuid4()
    ws = FakeWebSocket()
    ws.client_state = WebSocketState.DISCONNECTED
    server.connect(room_id, uuid4(), ws)

    await server.broadcast(room_id, ChatEvent(event="ping", data=None))

    assert ws.received == []


async def test_close_room_notifies_then_closes():
    server = ChatServer()
    room_id = uuid4()
    first, second = FakeWebSocket(), FakeWebSocket()
    server.connect(room_id, uuid4(), first)
    server.connect(room_id, uuid4(), second)

    server.close_room(room_id, "empty")
    assert room_id not in server.rooms
    await bg_tasks.join()

    for ws in (first, second):
        assert ws.received == [{"event": "chat.room.closed", "data": {"room_id": str(room_id), "reason": "empty"}}]
        assert ws.close_args == (1000, "empty")


async def test_close_room_without_streams_is_a_noop():
    server = ChatServer()

    server.close_room(uuid4(), "purged")

    assert not bg_tasks.tasks


async def test_leaving_member_stops_receiving_room_messages(session, clock):
    server = ChatServer()
    service = ChatRoomService(session, clock=clock, server=server)
    alice, bob = uuid4(), uuid4()
    room = await service.create_room(alice)
    await service.join_room(bob, room.room_code)
    await service.set_nickname(alice, room.room_id, "alice")
    alice_ws, bob_ws = FakeWebSocket(), FakeWebSocket()
    server.connect(room.room_id, alice, alice_ws)
    server.connect(room.room_id, bob, bob_ws)

    assert await service.leave_room(bob, room.room_id) is False
    await service.send_message(alice, room.room_id, "anyone here?")
    await bg_tasks.join()

    assert [e["event"] for e in bob_ws.received] == ["chat.room.left"]
    assert bob_ws.close_args == (1000, "left")
    assert [e["event"] for e in alice_ws.received] == ["chat.message.new"]


async def test_idle_member_stream_is_closed_by_purge(session, clock):
    server = ChatServer()
    service = ChatRoomService(session, clock=clock, server=server)
    alice, bob = uuid4(), uuid4()
    room = await service.create_room(alice)
    await service.join_room(bob, room.room_code)
    alice_ws, bob_ws = FakeWebSocket(), FakeWebSocket()
    server.connect(room.room_id, alice, alice_ws)
    server.connect(room.room_id, bob, bob_ws)

    clock.advance(seconds=100)
    await service.touch_member(alice, room.room_id)
    clock.advance(seconds=30)
    result = await service.purge()
    await bg_tasks.join()

    assert (result.removed_members, result.removed_rooms) == (1, 0)
    assert bob_ws.received == [{"event": "chat.room.left", "data": {"room_id": str(room.room_id), "reason": "idle"}}]
    assert alice_ws.received == []
    assert server.rooms == {room.room_id: {alice: [alice_ws]}}
