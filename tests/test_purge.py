from contextlib import asynccontextmanager
from datetime import timedelta
from uuid import uuid4

from textflow.config import settings
from textflow.database import ChatMessage, ChatRoom, ChatRoomMember
from textflow.dependencies.scheduler import get_scheduler
from textflow.tasks import chat_purge, register_chat_purge_job, run_manual_chat_purge

import pytest
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession


async def test_purge_reaps_idle_members_and_empty_rooms(service, clock, codes, fanout, fetch):
    codes.push("1000", "2000")
    a, b, c = uuid4(), uuid4(), uuid4()
    quiet = await service.create_room(a)
    busy = await service.create_room(b)
    await service.join_room(c, busy.room_code)

    clock.advance(seconds=100)
    await service.touch_member(c, busy.room_id)
    clock.advance(seconds=30)

    result = await service.purge()

    assert (result.removed_members, result.removed_rooms) == (2, 1)
    assert result.ran_at == clock()
    assert [r.id for r in await fetch(select(ChatRoom))] == [busy.room_id]
    assert [m.member_id for m in await fetch(select(ChatRoomMember))] == [c]
    assert fanout.closed == [(quiet.room_id, "purged")]
    assert fanout.left == [(busy.room_id, b, "idle")]


async def test_purge_keeps_member_seen_exactly_at_cutoff(service, clock):
    member = uuid4()
    created = await service.create_room(member)
    clock.advance(seconds=settings.chat_member_idle_seconds)

    result = await service.purge()

    assert (result.removed_members, result.removed_rooms) == (0, 0)
    assert (await service.get_member_state(member, created.room_id)).room_id == created.room_id


async def test_purge_removes_expired_rooms_with_their_messages(service, clock, codes, fetch, monkeypatch):
    monkeypatch.setattr(settings, "chat_member_idle_seconds", 24 * 3600)
    codes.push("1111", "2222")
    member = uuid4()
    old = await service.create_room(member)
    await service.set_nickname(member, old.room_id, "ada")
    await service.send_message(member, old.room_id, "hello")

    clock.advance(hours=1)
    # lazily closes the first room
    fresh = await service.create_room(uuid4())
    (closed,) = await fetch(select(ChatRoom).where(ChatRoom.id == old.room_id))
    assert closed.status == "closed"

    result = await service.purge()

    assert (result.removed_members, result.removed_rooms) == (1, 1)
    assert [r.id for r in await fetch(select(ChatRoom))] == [fresh.room_id]
    assert await fetch(select(ChatMessage)) == []


async def test_purge_is_idempotent(service, clock, fanout):
    for _ in range(3):
        await service.create_room(uuid4())
    clock.advance(hours=2)

    first = await service.purge()
    second = await service.purge()

    assert (first.removed_members, first.removed_rooms) == (3, 3)
    assert (second.removed_members, second.removed_rooms) == (0, 0)
    assert len(fanout.closed) == 3


async def test_purge_on_empty_store(service):
    result = await service.purge()

    assert (result.removed_members, result.removed_rooms) == (0, 0)


async def test_manual_purge_uses_its_own_session(engine, service, fetch, monkeypatch):
    # rooms are created in the fake clock's past, so the real clock sees them expired
    await service.create_room(uuid4())

    @asynccontextmanager
    async def _with_db():
        async with AsyncSession(engine, expire_on_commit=False) as session:
            yield session

    monkeypatch.setattr(chat_purge, "with_db", _with_db)

    result = await run_manual_chat_purge()

    assert (result.removed_members, result.removed_rooms) == (1, 1)
    assert await fetch(select(ChatRoom)) == []


@pytest.fixture
def scheduler():
    scheduler = get_scheduler()
    if scheduler.get_job("purge_chat") is not None:
        scheduler.remove_job("purge_chat")
    yield scheduler
    if scheduler.get_job("purge_chat") is not None:
        scheduler.remove_job("purge_chat")


def test_purge_job_registration(scheduler, monkeypatch):
    monkeypatch.setattr(settings, "enable_chat_purge", True)

    register_chat_purge_job()

    job = scheduler.get_job("purge_chat")
    assert job is not None
    assert job.trigger.interval == timedelta(seconds=settings.chat_purge_interval_seconds)
    assert job.max_instances == 1
    assert job.coalesce is True


def test_purge_job_can_be_disabled(scheduler, monkeypatch):
    monkeypatch.setattr(settings, "enable_chat_purge", False)

    register_chat_purge_job()

    assert scheduler.get_job("purge_chat") is None
