"""Anonymous chat room database models.

A room is addressed by a 4-digit code and lives for a fixed hour. It owns its
memberships and messages; deleting the room cascades to both.
"""

from datetime import datetime
from uuid import UUID, uuid4

from textflow.helpers import utcnow
from textflow.models.chat import RoomStatus

from sqlalchemy import CHAR, BigInteger, Index, Integer, Text, Uuid
from sqlmodel import (
    VARCHAR,
    Column,
    DateTime,
    Field,
    ForeignKey,
    SQLModel,
)

# SQLite only autoincrements INTEGER PRIMARY KEY columns; tables also set
# sqlite_autoincrement so ids are never reused after deletes
AutoIncrementBigInt = BigInteger().with_variant(Integer(), "sqlite")


class ChatRoom(SQLModel, table=True):
    """An ephemeral chat room.

    ``active_code`` mirrors ``code`` while the room is active and is NULL once
    it is closed. Its unique index is what guarantees that no two active rooms
    share a code, while allowing closed rooms to keep theirs.
    """

    __tablename__: str = "chat_rooms"
    __table_args__ = (Index("idx_chat_rooms_status_expires", "status", "expires_at"),)

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    code: str = Field(sa_column=Column(CHAR(4), nullable=False, index=True))
    active_code: str | None = Field(default=None, sa_column=Column(CHAR(4), nullable=True, unique=True))
    created_at: datetime = Field(default_factory=utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))
    expires_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False, index=True))
    status: RoomStatus = Field(default=RoomStatus.ACTIVE)


class ChatRoomMember(SQLModel, table=True):
    """Membership of an anonymous member in a room, carrying a per-room nickname."""

    __tablename__: str = "chat_room_members"
    __table_args__ = (
        Index("idx_chat_room_members_room_last_seen", "room_id", "last_seen_at"),
        Index("idx_chat_room_members_member_room", "member_id", "room_id"),
    )

    room_id: UUID = Field(
        sa_column=Column(Uuid, ForeignKey("chat_rooms.id", ondelete="CASCADE"), primary_key=True),
    )
    member_id: UUID = Field(sa_column=Column(Uuid, primary_key=True))
    nickname: str | None = Field(default=None, sa_column=Column(VARCHAR(64), nullable=True))
    joined_at: datetime = Field(default_factory=utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))
    last_seen_at: datetime = Field(default_factory=utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))


class ChatMessage(SQLModel, table=True):
    """A message posted to a room. Never edited after insert."""

    __tablename__: str = "chat_messages"
    __table_args__ = (
        Index("idx_chat_messages_room_id", "room_id", "id"),
        {"sqlite_autoincrement": True},
    )

    id: int | None = Field(default=None, sa_column=Column(AutoIncrementBigInt, primary_key=True, autoincrement=True))
    room_id: UUID = Field(sa_column=Column(Uuid, ForeignKey("chat_rooms.id", ondelete="CASCADE"), nullable=False))
    member_id: UUID = Field(sa_column=Column(Uuid, nullable=False))
    nickname: str = Field(sa_column=Column(VARCHAR(64), nullable=False))
    content: str = Field(sa_column=Column(Text, nullable=False))
    created_at: datetime = Field(default_factory=utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))
