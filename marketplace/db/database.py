import asyncio
from typing import AsyncGenerator, Awaitable, TypeVar

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from marketplace.config import settings
from marketplace.core.exceptions import OutcomeUnknownError

T = TypeVar("T")


class Base(DeclarativeBase):
    pass


engine = create_async_engine(
    settings.database_url,
    echo=settings.debug,
    pool_pre_ping=True,
    pool_size=10,
    max_overflow=20,
    pool_timeout=30,
    pool_recycle=1800,  # Recycle connections every 30 minutes
    connect_args={
        "server_settings": {
            "statement_timeout": str(settings.statement_timeout_ms),
            "idle_in_transaction_session_timeout": "60000",  # 60 second idle timeout
        }
    },
)

async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def with_write_timeout(operation: Awaitable[T], what: str) -> T:
    """Run a store write with the configured timeout.

    A timeout means the write may or may not have landed, so it is reported
    as OutcomeUnknownError and must not be retried without a dedup key.
    """
    try:
        return await asyncio.wait_for(operation, timeout=settings.store_timeout_seconds)
    except asyncio.TimeoutError as e:
        raise OutcomeUnknownError(
            f"Timed out during {what}; outcome unknown, check before retrying",
            code="outcome_unknown",
        ) from e


async def init_db() -> None:
    """Initialize database connection and create tables if needed."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
