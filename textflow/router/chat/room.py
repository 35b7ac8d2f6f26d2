"""Chat room endpoints.

This module maps the room lifecycle operations (create, join, nickname,
messages, heartbeat, leave) and the client audit log onto HTTP.
"""

from typing import Annotated
from uuid import UUID

from textflow.config import settings
from textflow.dependencies.chat import ChatService
from textflow.dependencies.client_ip import IPAddress
from textflow.dependencies.user import CurrentMember
from textflow.models.chat import (
    ChatEventReq,
    ChatMessageResp,
    JoinRoomReq,
    LeaveRoomResp,
    MemberStateResp,
    MessageReq,
    NicknameReq,
    NicknameResp,
    RoomCreatedResp,
    RoomJoinedResp,
)

from .router import router

from fastapi import Body, Path, Query

RoomId = Annotated[UUID, Path(description="Room ID")]


@router.post(
    "/rooms",
    response_model=RoomCreatedResp,
    name="Create Room",
    description="Create a room under a random free 4-digit code and join it.",
)
async def create_room(service: ChatService, current_member: CurrentMember):
    return await service.create_room(current_member)


@router.post(
    "/rooms/join",
    response_model=RoomJoinedResp,
    name="Join Room",
    description="Join an active room by its 4-digit code. Limited to 10 attempts per minute per session and per IP.",
)
async def join_room(
    service: ChatService,
    current_member: CurrentMember,
    client_ip: IPAddress,
    req: Annotated[JoinRoomReq, Body()],
):
    """Join a room by code.

    Args:
        service: Chat room service.
        current_member: The calling member.
        client_ip: Best-effort client address from proxy headers.
        req: The room code to join.

    Returns:
        RoomJoinedResp with the room id and its expiry.
    """
    return await service.join_room(current_member, req.code, client_ip)


@router.put(
    "/rooms/{room_id}/nickname",
    response_model=NicknameResp,
    name="Set Nickname",
    description="Set the caller's nickname in the room (1-20 characters after trimming).",
)
async def set_nickname(
    service: ChatService,
    current_member: CurrentMember,
    room_id: RoomId,
    req: Annotated[NicknameReq, Body()],
):
    nickname = await service.set_nickname(current_member, room_id, req.nickname)
    return NicknameResp(nickname=nickname)


@router.post(
    "/rooms/{room_id}/messages",
    response_model=ChatMessageResp,
    name="Send Message",
    description="Send a message to the room. A nickname must be set first.",
)
async def send_message(
    service: ChatService,
    current_member: CurrentMember,
    room_id: RoomId,
    req: Annotated[MessageReq, Body()],
):
    """Send a message to a room.

    The created message is returned so the sender can render it right away;
    other members receive it through the room stream.

    Args:
        service: Chat room service.
        current_member: The calling member.
        room_id: Target room.
        req: Message content.

    Returns:
        The stored message.
    """
    return await service.send_message(current_member, room_id, req.content)


@router.get(
    "/rooms/{room_id}/messages",
    response_model=list[ChatMessageResp],
    name="Get Messages",
    description="Get the room's messages in sending order. Only members of an active room may read them.",
)
async def get_messages(
    service: ChatService,
    current_member: CurrentMember,
    room_id: RoomId,
    since: Annotated[int, Query(ge=0, description="Only messages with an ID greater than this")] = 0,
    limit: Annotated[
        int,
        Query(ge=1, le=settings.chat_message_history_limit, description="Number of messages to retrieve"),
    ] = settings.chat_message_history_limit,
):
    return await service.list_messages(current_member, room_id, since, limit)


@router.get(
    "/rooms/{room_id}/me",
    response_model=MemberStateResp,
    name="Get Member State",
    description="Get the caller's membership in the room, including the current nickname.",
)
async def get_member_state(service: ChatService, current_member: CurrentMember, room_id: RoomId):
    return await service.get_member_state(current_member, room_id)


@router.post(
    "/rooms/{room_id}/touch",
    status_code=204,
    name="Heartbeat",
    description="Mark the caller as still present in the room. Never fails for a valid session.",
)
async def touch_member(service: ChatService, current_member: CurrentMember, room_id: RoomId):
    await service.touch_member(current_member, room_id)


@router.post(
    "/rooms/{room_id}/leave",
    response_model=LeaveRoomResp,
    name="Leave Room",
    description="Leave the room. The room is destroyed when its last member leaves.",
)
async def leave_room(service: ChatService, current_member: CurrentMember, room_id: RoomId):
    destroyed = await service.leave_room(current_member, room_id)
    return LeaveRoomResp(destroyed=destroyed)


@router.post(
    "/events",
    status_code=204,
    name="Log Chat Event",
    description="Record a client-side chat event (e.g. a room expiring on screen or a failed request).",
)
async def log_chat_event(
    service: ChatService,
    current_member: CurrentMember,
    req: Annotated[ChatEventReq, Body()],
):
    await service.log_event(current_member, req.event_type, req.room_id, req.event_meta)
