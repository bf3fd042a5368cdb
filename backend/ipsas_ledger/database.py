from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import StaticPool

from ipsas_ledger.config import settings
from ipsas_ledger.exceptions import ConflictError, DuplicateKeyError


def engine_options(url: str) -> dict[str, Any]:
    """Pool settings for *url*; SQLite gets a single shared connection."""
    if url.startswith("sqlite"):
        return {
            "poolclass": StaticPool,
            "connect_args": {"check_same_thread": False},
        }
    return {"pool_size": 20, "max_overflow": 10}


# ---------------------------------------------------------------------------
# Async engine & session
# ---------------------------------------------------------------------------
async_engine = create_async_engine(
    settings.DATABASE_URL,
    echo=settings.DATABASE_ECHO,
    **engine_options(settings.DATABASE_URL),
)

AsyncSessionLocal = async_sessionmaker(
    bind=async_engine,
    class_=AsyncSession,
    expire_on_commit=False,
)

# ---------------------------------------------------------------------------
# Declarative base for all models
# ---------------------------------------------------------------------------


class Base(DeclarativeBase):
    pass


# ---------------------------------------------------------------------------
# Unit of work
# ---------------------------------------------------------------------------

_ATOMIC_DEPTH_KEY = "ipsas_ledger.atomic_depth"


@asynccontextmanager
async def atomic(session: AsyncSession) -> AsyncGenerator[AsyncSession, None]:
    """Run the enclosed block as one all-or-nothing unit of work.

    The outermost ``atomic`` block commits on success and rolls back on any
    exception.  Inner blocks on the same session join the outer unit and
    leave commit/rollback to it, so a service operation called from inside
    another operation never commits half of the caller's work.
    """
    depth = session.info.get(_ATOMIC_DEPTH_KEY, 0)
    session.info[_ATOMIC_DEPTH_KEY] = depth + 1
    try:
        yield session
        if depth == 0:
            await session.commit()
    except Exception:
        if depth == 0:
            await session.rollback()
        raise
    finally:
        session.info[_ATOMIC_DEPTH_KEY] = depth


async def create_tables() -> None:
    async with async_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


# ---------------------------------------------------------------------------
# FastAPI dependency
# ---------------------------------------------------------------------------


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()


async def flush_or_raise(session: AsyncSession, duplicate_message: str) -> None:
    """Flush pending writes, translating constraint violations to ledger errors."""
    try:
        await session.flush()
    except IntegrityError as exc:
        text = str(exc.orig).lower()
        if "unique" in text or "duplicate" in text:
            raise DuplicateKeyError(duplicate_message) from exc
        raise ConflictError(
            "The change violates a ledger integrity constraint",
            {"constraint": str(exc.orig)},
        ) from exc
