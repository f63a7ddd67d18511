import asyncio
from contextlib import asynccontextmanager
from typing import AsyncContextManager, Callable, NamedTuple, Optional

from loguru import logger
from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
)

Gated = Callable[[], AsyncContextManager[None]]

SQLITE_PRAGMAS = (
    "PRAGMA journal_mode=WAL;",
    "PRAGMA busy_timeout=5000;",
    "PRAGMA synchronous=NORMAL;",
    "PRAGMA foreign_keys=ON;",
)


class Database(NamedTuple):
    engine: AsyncEngine
    SessionAsync: async_sessionmaker
    gated: Gated


def async_url(url: str) -> str:
    """Pin plain sqlite / postgres URLs to their async drivers."""
    for plain, driver in (
        ("sqlite://", "sqlite+aiosqlite://"),
        ("postgresql://", "postgresql+asyncpg://"),
        ("postgres://", "postgresql+asyncpg://"),
    ):
        if url.startswith(plain):
            return driver + url[len(plain):]
    return url


# DB-GATE: at most `limit` coroutines talk to the store at once
def make_gate(limit: int) -> Gated:
    sem = asyncio.Semaphore(max(1, limit))

    @asynccontextmanager
    async def gated():
        async with sem:
            yield

    return gated


def make_async_engine(
    database_url: str, *,
    pool_size: int = 10,
    max_overflow: int = 10,
    pool_timeout: int = 30,
    gate_limit: Optional[int] = None,
) -> Database:
    url = async_url(database_url)
    kw = dict(future=True, pool_pre_ping=True)
    is_sqlite = url.startswith("sqlite+aiosqlite://")
    if not is_sqlite:
        kw.update(
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_timeout=pool_timeout,
        )

    engine = create_async_engine(url, **kw)

    if is_sqlite:
        @event.listens_for(engine.sync_engine, "connect")
        def _sqlite_pragmas(dbapi_connection, _):
            cur = dbapi_connection.cursor()
            for pragma in SQLITE_PRAGMAS:
                cur.execute(pragma)
            cur.close()

    SessionAsync = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )

    # the pool bounds postgres; sqlite has no pool to size against
    if gate_limit is None:
        gate_limit = pool_size
    logger.debug("engine {} (gate={})", engine.url.get_backend_name(),
                 gate_limit)
    return Database(engine, SessionAsync, make_gate(gate_limit))


async def create_schema(engine: AsyncEngine) -> None:
    from ..model.orm import Base

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
