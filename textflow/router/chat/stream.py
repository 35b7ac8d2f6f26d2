"""WebSocket stream of new messages for one room."""

from typing import Annotated
from uuid import UUID

from textflow.auth import member_id_from_token
from textflow.dependencies.database import with_db
from textflow.log import log
from textflow.models.chat import ChatEvent
from textflow.models.error import RequestError
from textflow.service import ChatRoomService, chat_server

from .router import router

from fastapi import Header, Query, WebSocket, WebSocketDisconnect

logger = log("ChatStream")


async def _listen_stop(ws: WebSocket, room_id: UUID, member_id: UUID):
    """Keep the stream open until the client disconnects or sends ``chat.end``."""
    try:
        while True:
            packet = await ws.receive_json()
            if isinstance(packet, dict) and packet.get("event") == "chat.end":
                await ws.close(code=1000)
                break
    except WebSocketDisconnect as e:
        logger.debug(f"Member {member_id} disconnected from room {room_id}: {e.code}")
    except RuntimeError as e:
        # raised when the server side already closed the socket, e.g. room destroyed
        logger.debug(f"Stream of member {member_id} in room {room_id} ended: {e}")


@router.websocket("/rooms/{room_id}/stream")
async def room_stream(
    websocket: WebSocket,
    room_id: UUID,
    token: Annotated[str | None, Query(description="Session token, supports passing via URL parameter")] = None,
    since: Annotated[int, Query(ge=0, description="Replay messages with an ID greater than this first")] = 0,
    authorization: Annotated[str | None, Header(description="Bearer auth header")] = None,
):
    """Stream ``chat.message.new`` events of a room to one of its members.

    Messages after ``since`` are replayed on connect, so a client that lost its
    connection reconnects with the last id it saw and misses nothing. A
    ``chat.room.closed`` event is sent before the server closes the stream
    because the room was destroyed, and ``chat.room.left`` when the member
    left or was reaped as idle. Non-members are refused before the handshake.

    Args:
        websocket: The WebSocket connection.
        room_id: Room to stream.
        token: Session token from the query string.
        since: Last message id the client already has.
        authorization: Optional Bearer auth header.
    """
    auth_token = token
    if not auth_token and authorization:
        auth_token = authorization.removeprefix("Bearer ")
    member_id = member_id_from_token(auth_token)
    if member_id is None:
        await websocket.close(code=1008, reason="AUTH_REQUIRED")
        return

    try:
        async with with_db() as session:
            service = ChatRoomService(session)
            await service.get_member_state(member_id, room_id)
            await websocket.accept()
            # Subscribe before reading the backlog so nothing slips in between;
            # clients de-duplicate by message id.
            chat_server.connect(room_id, member_id, websocket)
            backlog = await service.list_messages(member_id, room_id, since)
    except RequestError as e:
        chat_server.disconnect(room_id, member_id, websocket)
        await websocket.close(code=1008, reason=e.msg_key)
        return

    try:
        if backlog:
            await chat_server.send_event(
                websocket,
                ChatEvent(event="chat.message.new", data={"messages": [m.model_dump(mode="json") for m in backlog]}),
            )
        await _listen_stop(websocket, room_id, member_id)
    finally:
        chat_server.disconnect(room_id, member_id, websocket)
