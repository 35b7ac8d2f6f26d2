"""Anonymous chat room lifecycle.

Every public method is one unit of work: it runs in a single transaction on the
session it was given and either commits all of its changes or none of them.

Rooms are addressed by a random 4-digit code and live for a fixed time from
creation. They are closed lazily (on the next creation), deleted when their
last member leaves, and swept by :meth:`ChatRoomService.purge`.
"""

from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
import re
import secrets
from typing import Any
from uuid import UUID

from textflow.config import settings
from textflow.database import ChatEventLog, ChatJoinAttempt, ChatMessage, ChatRoom, ChatRoomMember
from textflow.helpers import Clock, ensure_utc, utcnow
from textflow.helpers.strings import normalize_text
from textflow.log import log
from textflow.models.chat import (
    ChatEventType,
    ChatMessageResp,
    MemberStateResp,
    PurgeResult,
    RoomCreatedResp,
    RoomJoinedResp,
    RoomStatus,
)
from textflow.models.error import ErrorType, RequestError

from .chat_server import ChatServer, server as chat_server

from sqlalchemy import exists, func, or_, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.sql.elements import ColumnElement
from sqlmodel import col, delete, select
from sqlmodel.ext.asyncio.session import AsyncSession

logger = log("ChatRoom")

ROOM_CODE_PATTERN = re.compile(r"[0-9]{4}")


def generate_room_code() -> str:
    """Uniformly random zero-padded code in 0000-9999."""
    return f"{secrets.randbelow(10000):04d}"


class ChatRoomService:
    """Room lifecycle operations for one request.

    Args:
        session: Database session the operations run on.
        clock: Source of the current time; every timestamp an operation
            writes or compares against comes from a single call to it.
        code_generator: Produces candidate room codes.
        server: Realtime fan-out notified of new messages and destroyed rooms.
    """

    def __init__(
        self,
        session: AsyncSession,
        *,
        clock: Clock = utcnow,
        code_generator: Callable[[], str] = generate_room_code,
        server: ChatServer | None = None,
    ):
        self.session = session
        self.clock = clock
        self.code_generator = code_generator
        self.server = server if server is not None else chat_server

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[None]:
        try:
            yield
            await self.session.commit()
        except BaseException:
            await self.session.rollback()
            raise

    @staticmethod
    def _room_usable(now: datetime) -> list[ColumnElement[bool]]:
        return [col(ChatRoom.status) == RoomStatus.ACTIVE, col(ChatRoom.expires_at) > now]

    def _membership_usable(self, room_id: UUID, member_id: UUID, now: datetime) -> list[ColumnElement[bool]]:
        return [
            col(ChatRoomMember.room_id) == room_id,
            col(ChatRoomMember.member_id) == member_id,
            exists().where(col(ChatRoom.id) == room_id, *self._room_usable(now)),
        ]

    async def _record_event(
        self,
        event_type: ChatEventType,
        room_id: UUID | None,
        meta: dict[str, Any],
        member_id: UUID | None,
    ) -> None:
        # Audit rows are best-effort: the savepoint keeps a failed insert from
        # taking the surrounding operation down with it.
        try:
            async with self.session.begin_nested():
                self.session.add(
                    ChatEventLog(
                        member_id=member_id,
                        room_id=room_id,
                        event_type=event_type,
                        event_meta=meta,
                        created_at=self.clock(),
                    )
                )
        except Exception as e:
            logger.warning(f"Failed to record {event_type} event for room {room_id}: {e}")

    async def _upsert_member(self, room_id: UUID, member_id: UUID, now: datetime) -> ChatRoomMember:
        member = await self.session.get(ChatRoomMember, (room_id, member_id), populate_existing=True)
        if member is None:
            member = ChatRoomMember(room_id=room_id, member_id=member_id, joined_at=now, last_seen_at=now)
            self.session.add(member)
        else:
            member.last_seen_at = now
        await self.session.flush()
        return member

    async def close_expired_rooms(self, now: datetime) -> int:
        """Close active rooms past their expiry and release their codes."""
        result = await self.session.execute(
            update(ChatRoom)
            .where(col(ChatRoom.status) == RoomStatus.ACTIVE, col(ChatRoom.expires_at) <= now)
            .values(status=RoomStatus.CLOSED, active_code=None)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount:
            logger.debug(f"Closed {result.rowcount} expired room(s)")
        return result.rowcount

    async def create_room(self, member_id: UUID) -> RoomCreatedResp:
        """Open a new room under a free code with the caller as its first member.

        Raises:
            RequestError: ROOM_CREATE_RETRY_EXCEEDED when no free code was found.
        """
        now = self.clock()
        max_attempts = settings.chat_room_code_max_attempts
        async with self._transaction():
            await self.close_expired_rooms(now)

            room: ChatRoom | None = None
            for attempt in range(1, max_attempts + 1):
                code = self.code_generator()
                candidate = ChatRoom(
                    code=code,
                    active_code=code,
                    created_at=now,
                    expires_at=now + timedelta(minutes=settings.chat_room_lifetime_minutes),
                    status=RoomStatus.ACTIVE,
                )
                try:
                    async with self.session.begin_nested():
                        self.session.add(candidate)
                except IntegrityError:
                    logger.debug(f"Room code {code} is taken, retrying ({attempt}/{max_attempts})")
                    continue
                room = candidate
                break

            if room is None:
                logger.error(f"Gave up creating a room after {max_attempts} code collisions")
                raise RequestError(ErrorType.ROOM_CREATE_RETRY_EXCEEDED)

            await self._upsert_member(room.id, member_id, now)
            await self._record_event(ChatEventType.CREATE, room.id, {"room_code": room.code}, member_id)
            resp = RoomCreatedResp(room_id=room.id, room_code=room.code, expires_at=room.expires_at)

        logger.info(f"Member {member_id} created room {resp.room_id} with code {resp.room_code}")
        return resp

    async def _count_recent_attempts(self, clause: ColumnElement[bool], since: datetime) -> int:
        return (
            await self.session.exec(
                select(func.count())
                .select_from(ChatJoinAttempt)
                .where(clause, col(ChatJoinAttempt.attempted_at) > since)
            )
        ).one()

    async def join_room(self, member_id: UUID, code: str, client_ip: str | None = None) -> RoomJoinedResp:
        """Join the active room holding ``code``.

        The attempt is recorded once it passes the rate limit and stays
        recorded even when no room is found, so code guessing is throttled.

        Raises:
            RequestError: INVALID_ROOM_CODE, JOIN_RATE_LIMIT_USER,
                JOIN_RATE_LIMIT_IP or ROOM_NOT_FOUND_OR_EXPIRED.
        """
        code = normalize_text(code)
        if not ROOM_CODE_PATTERN.fullmatch(code):
            raise RequestError(ErrorType.INVALID_ROOM_CODE)

        now = self.clock()
        window_start = now - timedelta(seconds=settings.chat_join_rate_window_seconds)
        limit = settings.chat_join_rate_limit
        async with self._transaction():
            if await self._count_recent_attempts(col(ChatJoinAttempt.member_id) == member_id, window_start) >= limit:
                logger.info(f"Join rate limit hit by member {member_id}")
                raise RequestError(ErrorType.JOIN_RATE_LIMIT_USER)
            if (
                client_ip is not None
                and await self._count_recent_attempts(col(ChatJoinAttempt.ip) == client_ip, window_start) >= limit
            ):
                logger.info(f"Join rate limit hit by address {client_ip}")
                raise RequestError(ErrorType.JOIN_RATE_LIMIT_IP)

            self.session.add(ChatJoinAttempt(member_id=member_id, ip=client_ip, attempted_at=now))
            await self.session.flush()

            room = (
                await self.session.exec(
                    select(ChatRoom)
                    .where(col(ChatRoom.code) == code, *self._room_usable(now))
                    .order_by(col(ChatRoom.created_at).desc())
                    .limit(1)
                )
            ).first()
            if room is None:
                await self.session.commit()
                raise RequestError(ErrorType.ROOM_NOT_FOUND_OR_EXPIRED)

            await self._upsert_member(room.id, member_id, now)
            await self._record_event(ChatEventType.JOIN, room.id, {"room_code": code}, member_id)
            resp = RoomJoinedResp(room_id=room.id, expires_at=ensure_utc(room.expires_at))

        logger.info(f"Member {member_id} joined room {resp.room_id}")
        return resp

    async def set_nickname(self, member_id: UUID, room_id: UUID, nickname: str) -> str:
        """Set the caller's nickname in a room and return it trimmed.

        Raises:
            RequestError: INVALID_NICKNAME or ROOM_MEMBER_NOT_FOUND_OR_EXPIRED.
        """
        nickname = normalize_text(nickname)
        if not 1 <= len(nickname) <= settings.chat_nickname_max_length:
            raise RequestError(ErrorType.INVALID_NICKNAME)

        now = self.clock()
        async with self._transaction():
            result = await self.session.execute(
                update(ChatRoomMember)
                .where(*self._membership_usable(room_id, member_id, now))
                .values(nickname=nickname, last_seen_at=now)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                raise RequestError(ErrorType.ROOM_MEMBER_NOT_FOUND_OR_EXPIRED)
        return nickname

    async def send_message(self, member_id: UUID, room_id: UUID, content: str) -> ChatMessageResp:
        """Post a message stamped with the sender's current nickname.

        The stored nickname is a snapshot; renaming later does not touch
        messages already sent.

        Raises:
            RequestError: INVALID_MESSAGE_LENGTH or NICKNAME_REQUIRED.
        """
        content = normalize_text(content)
        if not 1 <= len(content) <= settings.chat_message_max_length:
            raise RequestError(ErrorType.INVALID_MESSAGE_LENGTH)

        now = self.clock()
        async with self._transaction():
            nickname = (
                await self.session.exec(
                    select(ChatRoomMember.nickname).where(*self._membership_usable(room_id, member_id, now))
                )
            ).first()
            if nickname is None or not nickname.strip():
                raise RequestError(ErrorType.NICKNAME_REQUIRED)

            message = ChatMessage(
                room_id=room_id,
                member_id=member_id,
                nickname=nickname,
                content=content,
                created_at=now,
            )
            self.session.add(message)
            await self.session.execute(
                update(ChatRoomMember)
                .where(col(ChatRoomMember.room_id) == room_id, col(ChatRoomMember.member_id) == member_id)
                .values(last_seen_at=now)
                .execution_options(synchronize_session=False)
            )
            await self.session.flush()
            resp = ChatMessageResp(
                id=message.id,  # pyright: ignore[reportArgumentType]
                room_id=room_id,
                nickname=nickname,
                content=content,
                created_at=now,
            )

        self.server.send_message_to_room(resp)
        return resp

    async def touch_member(self, member_id: UUID, room_id: UUID) -> None:
        """Heartbeat. Refreshes ``last_seen_at`` when possible and never raises."""
        now = self.clock()
        try:
            async with self._transaction():
                await self.session.execute(
                    update(ChatRoomMember)
                    .where(*self._membership_usable(room_id, member_id, now))
                    .values(last_seen_at=now)
                    .execution_options(synchronize_session=False)
                )
        except Exception as e:
            logger.warning(f"Heartbeat for member {member_id} in room {room_id} failed: {e}")

    async def leave_room(self, member_id: UUID, room_id: UUID) -> bool:
        """Leave a room, deleting it if the caller was its last member.

        Returns:
            True if the room was destroyed. False if the caller was not a
            member or other members remain.
        """
        async with self._transaction():
            result = await self.session.execute(
                delete(ChatRoomMember)
                .where(
                    col(ChatRoomMember.room_id) == room_id,
                    col(ChatRoomMember.member_id) == member_id,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                return False

            remaining = (
                await self.session.exec(
                    select(func.count()).select_from(ChatRoomMember).where(col(ChatRoomMember.room_id) == room_id)
                )
            ).one()
            destroyed = remaining == 0

            # Must be written while the room row still exists: the event row
            # references it and is only nulled out by the delete below.
            await self._record_event(ChatEventType.LEAVE, room_id, {"room_destroyed": destroyed}, member_id)

            if destroyed:
                await self.session.execute(
                    delete(ChatRoom)
                    .where(col(ChatRoom.id) == room_id)
                    .execution_options(synchronize_session=False)
                )

        logger.info(f"Member {member_id} left room {room_id} (destroyed: {destroyed})")
        if destroyed:
            self.server.close_room(room_id, "empty")
        else:
            self.server.disconnect_member(room_id, member_id, "left")
        return destroyed

    async def _get_usable_membership(
        self, member_id: UUID, room_id: UUID, now: datetime
    ) -> tuple[ChatRoomMember, ChatRoom]:
        row = (
            await self.session.exec(
                select(ChatRoomMember, ChatRoom)
                .join(ChatRoom, col(ChatRoom.id) == col(ChatRoomMember.room_id))
                .where(
                    col(ChatRoomMember.room_id) == room_id,
                    col(ChatRoomMember.member_id) == member_id,
                    *self._room_usable(now),
                )
                .execution_options(populate_existing=True)
            )
        ).first()
        if row is None:
            raise RequestError(ErrorType.ROOM_MEMBER_NOT_FOUND_OR_EXPIRED)
        return row

    async def get_member_state(self, member_id: UUID, room_id: UUID) -> MemberStateResp:
        """The caller's own membership in a usable room."""
        async with self._transaction():
            member, room = await self._get_usable_membership(member_id, room_id, self.clock())
            return MemberStateResp(
                room_id=room.id,
                room_code=room.code,
                nickname=member.nickname,
                joined_at=ensure_utc(member.joined_at),
                last_seen_at=ensure_utc(member.last_seen_at),
                expires_at=ensure_utc(room.expires_at),
            )

    async def list_messages(
        self,
        member_id: UUID,
        room_id: UUID,
        since: int = 0,
        limit: int | None = None,
    ) -> list[ChatMessageResp]:
        """Messages of a room the caller belongs to, oldest first.

        Args:
            since: Only return messages with an id greater than this.
            limit: Maximum number of messages, capped by the history limit.
        """
        cap = settings.chat_message_history_limit
        limit = cap if limit is None else min(limit, cap)
        async with self._transaction():
            await self._get_usable_membership(member_id, room_id, self.clock())
            messages = (
                await self.session.exec(
                    select(ChatMessage)
                    .where(col(ChatMessage.room_id) == room_id, col(ChatMessage.id) > since)
                    .order_by(col(ChatMessage.id).asc())
                    .limit(limit)
                )
            ).all()
            return [
                ChatMessageResp(
                    id=m.id,  # pyright: ignore[reportArgumentType]
                    room_id=m.room_id,
                    nickname=m.nickname,
                    content=m.content,
                    created_at=ensure_utc(m.created_at),
                )
                for m in messages
            ]

    async def log_event(
        self,
        member_id: UUID | None,
        event_type: str,
        room_id: UUID | None = None,
        meta: dict[str, Any] | None = None,
    ) -> None:
        """Record a client-reported audit event.

        Raises:
            RequestError: INVALID_EVENT_TYPE for an unknown event type. Storage
                failures are logged and ignored.
        """
        try:
            type_ = ChatEventType(normalize_text(event_type).lower())
        except ValueError:
            raise RequestError(ErrorType.INVALID_EVENT_TYPE) from None

        try:
            async with self._transaction():
                await self._record_event(type_, room_id, meta or {}, member_id)
        except Exception as e:
            logger.warning(f"Failed to commit client {type_} event: {e}")

    async def purge(self) -> PurgeResult:
        """Delete dead memberships and rooms.

        A membership is dead when its room is expired or closed, or when the
        member has not been seen for the idle cutoff. A room is dead when it
        is expired, closed, or has no members left. Messages go with their
        room. Open streams of removed members and rooms are closed. Running it
        again right away deletes nothing.
        """
        now = self.clock()
        idle_cutoff = now - timedelta(seconds=settings.chat_member_idle_seconds)
        dead_room = or_(
            col(ChatRoom.expires_at) <= now,
            col(ChatRoom.status) != RoomStatus.ACTIVE,
        )
        dead_member = or_(
            col(ChatRoomMember.last_seen_at) < idle_cutoff,
            col(ChatRoomMember.room_id).in_(select(ChatRoom.id).where(dead_room)),
        )

        async with self._transaction():
            removed_pairs = (
                await self.session.exec(select(ChatRoomMember.room_id, ChatRoomMember.member_id).where(dead_member))
            ).all()
            members_result = await self.session.execute(
                delete(ChatRoomMember)
                .where(dead_member)
                .execution_options(synchronize_session=False)
            )

            dead_or_empty = or_(
                dead_room,
                ~exists().where(col(ChatRoomMember.room_id) == col(ChatRoom.id)),
            )
            room_ids = (await self.session.exec(select(ChatRoom.id).where(dead_or_empty))).all()
            removed_rooms = 0
            if room_ids:
                rooms_result = await self.session.execute(
                    delete(ChatRoom)
                    .where(col(ChatRoom.id).in_(room_ids), dead_or_empty)
                    .execution_options(synchronize_session=False)
                )
                removed_rooms = rooms_result.rowcount

        for room_id in room_ids:
            self.server.close_room(room_id, "purged")
        removed_room_ids = set(room_ids)
        for room_id, member_id in removed_pairs:
            if room_id not in removed_room_ids:
                self.server.disconnect_member(room_id, member_id, "idle")
        return PurgeResult(removed_members=members_result.rowcount, removed_rooms=removed_rooms, ran_at=now)
