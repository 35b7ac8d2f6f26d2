import os

# Must be set before textflow is imported: settings and the engine are built at import time.
os.environ["JWT_SECRET_KEY"] = "test-secret-key-for-textflow-chat"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["ENABLE_CHAT_PURGE"] = "false"
os.environ["LOG_LEVEL"] = "WARNING"

from collections.abc import AsyncIterator  # noqa: E402
from datetime import UTC, datetime, timedelta  # noqa: E402
from uuid import UUID, uuid4  # noqa: E402

from textflow.auth import create_access_token  # noqa: E402
from textflow.dependencies.database import build_engine, create_tables, get_db  # noqa: E402
from textflow.helpers import bg_tasks  # noqa: E402
from textflow.models.chat import ChatMessageResp  # noqa: E402
from textflow.service import ChatRoomService, ChatServer, generate_room_code  # noqa: E402

from httpx import ASGITransport, AsyncClient  # noqa: E402
import pytest  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncEngine  # noqa: E402
from sqlmodel.ext.asyncio.session import AsyncSession  # noqa: E402


class FakeClock:
    """Clock that only moves when told to."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2026, 1, 1, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class ScriptedCodes:
    """Hands out queued room codes first, then random ones."""

    def __init__(self, *codes: str):
        self.queue = list(codes)
        self.calls = 0

    def push(self, *codes: str) -> None:
        self.queue.extend(codes)

    def __call__(self) -> str:
        self.calls += 1
        if self.queue:
            return self.queue.pop(0)
        return generate_room_code()


class RecordingServer(ChatServer):
    """Fan-out that records what it was asked to deliver instead of sending."""

    def __init__(self):
        super().__init__()
        self.sent: list[ChatMessageResp] = []
        self.closed: list[tuple[UUID, str]] = []
        self.left: list[tuple[UUID, UUID, str]] = []

    def send_message_to_room(self, message: ChatMessageResp) -> None:
        self.sent.append(message)

    def close_room(self, room_id: UUID, reason: str) -> None:
        self.closed.append((room_id, reason))

    def disconnect_member(self, room_id: UUID, member_id: UUID, reason: str) -> None:
        self.left.append((room_id, member_id, reason))


@pytest.fixture
async def engine() -> AsyncIterator[AsyncEngine]:
    engine = build_engine("sqlite+aiosqlite:///:memory:")
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def codes() -> ScriptedCodes:
    return ScriptedCodes()


@pytest.fixture
def fanout() -> RecordingServer:
    return RecordingServer()


@pytest.fixture
async def session(engine: AsyncEngine) -> AsyncIterator[AsyncSession]:
    async with AsyncSession(engine, expire_on_commit=False) as session:
        yield session


@pytest.fixture
def service(session: AsyncSession, clock: FakeClock, codes: ScriptedCodes, fanout: RecordingServer) -> ChatRoomService:
    return ChatRoomService(session, clock=clock, code_generator=codes, server=fanout)


@pytest.fixture
def fetch(engine: AsyncEngine):
    """Run a read-only statement on a fresh session and return all rows."""

    async def _fetch(statement):
        async with AsyncSession(engine) as s:
            return (await s.exec(statement)).all()

    return _fetch


@pytest.fixture
async def client(engine: AsyncEngine) -> AsyncIterator[AsyncClient]:
    from main import app

    async def _get_db():
        async with AsyncSession(engine, expire_on_commit=False) as session:
            yield session

    app.dependency_overrides[get_db] = _get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://testserver") as client:
        yield client
    await bg_tasks.join()
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    """Build bearer headers for a member, a fresh one by default."""

    def _headers(member_id: UUID | None = None) -> dict[str, str]:
        token = create_access_token({"sub": str(member_id or uuid4()), "typ": "anonymous"})
        return {"Authorization": f"Bearer {token}"}

    return _headers
