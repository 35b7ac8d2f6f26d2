"""Chat audit events database models.

One row per lifecycle transition (create, join, leave, expired, error). The
table is append-only and written on a best-effort basis.
"""

from datetime import datetime
from typing import Any
from uuid import UUID

from textflow.helpers import utcnow
from textflow.models.chat import ChatEventType

from .chat import AutoIncrementBigInt

from sqlalchemy import Index, Uuid
from sqlmodel import JSON, Column, DateTime, Field, ForeignKey, SQLModel


class ChatEventLog(SQLModel, table=True):
    """Audit row for a chat lifecycle transition.

    ``room_id`` is set to NULL when the room is deleted so the history survives it.
    """

    __tablename__: str = "chat_events"
    __table_args__ = (
        Index("idx_chat_events_room_time", "room_id", "created_at"),
        Index("idx_chat_events_type_time", "event_type", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id: int | None = Field(default=None, sa_column=Column(AutoIncrementBigInt, primary_key=True, autoincrement=True))
    member_id: UUID | None = Field(default=None, sa_column=Column(Uuid, nullable=True))
    room_id: UUID | None = Field(
        default=None,
        sa_column=Column(Uuid, ForeignKey("chat_rooms.id", ondelete="SET NULL"), nullable=True),
    )
    event_type: ChatEventType
    event_meta: dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    created_at: datetime = Field(default_factory=utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))
