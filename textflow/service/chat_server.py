"""WebSocket fan-out for chat rooms.

Keeps the open message streams of each room, grouped by the member they
belong to, and pushes "new message", "member left" and "room closed" events to
them. Delivery is best-effort: the channel has no replay, so clients close
gaps by reconnecting with ``since=<last id>``.
"""

import asyncio
from uuid import UUID

from textflow.helpers import bg_tasks, safe_json_dumps
from textflow.log import log
from textflow.models.chat import ChatEvent, ChatMessageResp

from fastapi import WebSocket
from fastapi.websockets import WebSocketState

logger = log("ChatServer")


class ChatServer:
    """Registry of WebSocket streams per room and member.

    Only current members may hold a stream; callers drop a member's streams
    through :meth:`disconnect_member` once the membership is gone.

    Attributes:
        rooms: Dict mapping room IDs to member IDs to that member's streams.
    """

    def __init__(self):
        self.rooms: dict[UUID, dict[UUID, list[WebSocket]]] = {}

    def connect(self, room_id: UUID, member_id: UUID, client: WebSocket) -> None:
        streams = self.rooms.setdefault(room_id, {}).setdefault(member_id, [])
        if client not in streams:
            streams.append(client)

    def disconnect(self, room_id: UUID, member_id: UUID, client: WebSocket) -> None:
        members = self.rooms.get(room_id)
        if members is None:
            return
        streams = members.get(member_id)
        if streams is not None:
            if client in streams:
                streams.remove(client)
            if not streams:
                del members[member_id]
        if not members:
            del self.rooms[room_id]

    async def send_event(self, client: WebSocket, event: ChatEvent) -> None:
        if client.client_state == WebSocketState.CONNECTED:
            await client.send_text(safe_json_dumps(event))

    async def broadcast(self, room_id: UUID, event: ChatEvent) -> None:
        """Send an event to every stream of a room, dropping streams that fail."""
        targets = [
            (member_id, client)
            for member_id, streams in self.rooms.get(room_id, {}).items()
            for client in streams
        ]
        logger.debug(f"Broadcasting {event['event']} to room {room_id}, {len(targets)} stream(s)")

        results = await asyncio.gather(*(self.send_event(c, event) for _, c in targets), return_exceptions=True)
        for (member_id, client), result in zip(targets, results, strict=True):
            if isinstance(result, Exception):
                logger.warning(f"Dropping stream of member {member_id} in room {room_id}: {result}")
                self.disconnect(room_id, member_id, client)

    def send_message_to_room(self, message: ChatMessageResp) -> None:
        """Queue a new message for delivery to the room's streams."""
        if message.room_id not in self.rooms:
            return
        event = ChatEvent(
            event="chat.message.new",
            data={"messages": [message.model_dump(mode="json")]},
        )
        bg_tasks.add_task(self.broadcast, message.room_id, event)

    async def _close_streams(self, room_id: UUID, clients: list[WebSocket], event: ChatEvent, reason: str) -> None:
        await asyncio.gather(*(self.send_event(c, event) for c in clients), return_exceptions=True)
        for client in clients:
            if client.client_state == WebSocketState.CONNECTED:
                try:
                    await client.close(code=1000, reason=reason)
                except RuntimeError as e:
                    logger.debug(f"Stream in room {room_id} already closed: {e}")

    def disconnect_member(self, room_id: UUID, member_id: UUID, reason: str) -> None:
        """Stop delivering a room's events to a member who is no longer in it.

        The streams leave the registry right away, so no later broadcast
        reaches them; the ``chat.room.left`` notice and the close run in the
        background.
        """
        members = self.rooms.get(room_id)
        if not members or member_id not in members:
            return
        clients = members.pop(member_id)
        if not members:
            del self.rooms[room_id]
        event = ChatEvent(event="chat.room.left", data={"room_id": str(room_id), "reason": reason})
        bg_tasks.add_task(self._close_streams, room_id, clients, event, reason)

    def close_room(self, room_id: UUID, reason: str) -> None:
        """Tell a room's streams that the room is gone and close them."""
        members = self.rooms.pop(room_id, None)
        if not members:
            return
        clients = [client for streams in members.values() for client in streams]
        event = ChatEvent(event="chat.room.closed", data={"room_id": str(room_id), "reason": reason})
        bg_tasks.add_task(self._close_streams, room_id, clients, event, reason)


server = ChatServer()
