from datetime import datetime
from enum import StrEnum
from typing import Any, TypedDict
from uuid import UUID

from pydantic import BaseModel, Field


class RoomStatus(StrEnum):
    """Lifecycle status of a chat room."""

    ACTIVE = "active"
    CLOSED = "closed"


class ChatEventType(StrEnum):
    """Kinds of rows written to the chat audit log."""

    CREATE = "create"
    JOIN = "join"
    LEAVE = "leave"
    EXPIRED = "expired"
    ERROR = "error"


class ChatEvent(TypedDict):
    """Envelope pushed to WebSocket subscribers."""

    event: str
    data: dict[str, Any] | None


# Requests


class JoinRoomReq(BaseModel):
    code: str


class NicknameReq(BaseModel):
    nickname: str


class MessageReq(BaseModel):
    content: str


class ChatEventReq(BaseModel):
    """Client-reported audit event, e.g. a room expiring on screen or a failed send."""

    event_type: str
    room_id: UUID | None = None
    event_meta: dict[str, Any] = Field(default_factory=dict)


# Responses


class RoomCreatedResp(BaseModel):
    room_id: UUID
    room_code: str
    expires_at: datetime


class RoomJoinedResp(BaseModel):
    room_id: UUID
    expires_at: datetime


class NicknameResp(BaseModel):
    nickname: str


class ChatMessageResp(BaseModel):
    id: int
    room_id: UUID
    nickname: str
    content: str
    created_at: datetime


class LeaveRoomResp(BaseModel):
    destroyed: bool


class MemberStateResp(BaseModel):
    room_id: UUID
    room_code: str
    nickname: str | None
    joined_at: datetime
    last_seen_at: datetime
    expires_at: datetime


class PurgeResult(BaseModel):
    removed_members: int
    removed_rooms: int
    ran_at: datetime
