"""Join attempt ledger used for sliding-window rate limiting."""

from datetime import datetime
from uuid import UUID

from textflow.helpers import utcnow

from .chat import AutoIncrementBigInt

from sqlalchemy import Index, Uuid
from sqlmodel import VARCHAR, Column, DateTime, Field, SQLModel


class ChatJoinAttempt(SQLModel, table=True):
    __tablename__: str = "chat_join_attempts"
    __table_args__ = (
        Index("idx_chat_join_attempts_member_time", "member_id", "attempted_at"),
        Index("idx_chat_join_attempts_ip_time", "ip", "attempted_at"),
        {"sqlite_autoincrement": True},
    )

    id: int | None = Field(default=None, sa_column=Column(AutoIncrementBigInt, primary_key=True, autoincrement=True))
    member_id: UUID = Field(sa_column=Column(Uuid, nullable=False))
    # normalized textual address, NULL when the origin could not be determined
    ip: str | None = Field(default=None, sa_column=Column(VARCHAR(45), nullable=True))
    attempted_at: datetime = Field(default_factory=utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))
