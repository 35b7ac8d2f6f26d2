from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from contextvars import ContextVar
from datetime import datetime
import json
from typing import Annotated

from textflow.config import settings

from fastapi import Depends
from pydantic import BaseModel
from sqlalchemy import event
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession


def json_serializer(value):
    if isinstance(value, BaseModel | SQLModel):
        return value.model_dump_json()
    elif isinstance(value, datetime):
        return value.isoformat()
    return json.dumps(value)


def _configure_sqlite(engine: AsyncEngine) -> None:
    # Let SQLAlchemy own BEGIN/SAVEPOINT so nested transactions work, and turn
    # on foreign keys so ON DELETE CASCADE / SET NULL are enforced.
    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, _connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")


def build_engine(database_url: str) -> AsyncEngine:
    """Create the async engine for a database URL.

    SQLite (tests and local development) gets a single shared connection for
    in-memory databases; everything else gets the pooled production setup.
    """
    url = make_url(database_url)
    if url.get_backend_name() == "sqlite":
        kwargs = {}
        if url.database in (None, "", ":memory:"):
            kwargs["poolclass"] = StaticPool
        sqlite_engine = create_async_engine(
            url,
            json_serializer=json_serializer,
            connect_args={"check_same_thread": False},
            **kwargs,
        )
        _configure_sqlite(sqlite_engine)
        return sqlite_engine

    return create_async_engine(
        url,
        json_serializer=json_serializer,
        pool_size=30,
        max_overflow=50,
        pool_timeout=30.0,
        pool_recycle=3600,
        pool_pre_ping=True,
    )


engine = build_engine(settings.database_url)


async def create_tables(target: AsyncEngine | None = None) -> None:
    # Import the models so their tables are registered on the metadata
    import textflow.database  # noqa: F401

    async with (target or engine).begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)


# Database dependency
db_session_context: ContextVar[AsyncSession | None] = ContextVar("db_session_context", default=None)


async def get_db():
    session = db_session_context.get()
    if session is None:
        session = AsyncSession(engine, expire_on_commit=False)
        db_session_context.set(session)
        try:
            yield session
        finally:
            await session.close()
            db_session_context.set(None)
    else:
        yield session


@asynccontextmanager
async def with_db() -> AsyncIterator[AsyncSession]:
    async with AsyncSession(engine, expire_on_commit=False) as session:
        try:
            yield session
        finally:
            await session.close()


Database = Annotated[AsyncSession, Depends(get_db)]
