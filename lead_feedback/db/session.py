from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncGenerator, Optional

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from lead_feedback.core.config import settings
from lead_feedback.core.exceptions import FeedbackError
from lead_feedback.core.logging import get_structlog_logger
from lead_feedback.db.base import Base
from lead_feedback.db.errors import translate_db_error

logger = get_structlog_logger(__name__)

SessionFactory = async_sessionmaker[AsyncSession]

# Global engine instance, created on first use
engine: Optional[AsyncEngine] = None
AsyncSessionLocal: Optional[SessionFactory] = None


def build_engine(database_url: Optional[str] = None, *, testing: Optional[bool] = None) -> AsyncEngine:
    """Create and configure an async database engine."""
    url = database_url or settings.database_url
    testing = settings.is_testing if testing is None else testing

    if testing:
        # Use NullPool for tests to ensure clean state
        return create_async_engine(
            url,
            poolclass=NullPool,
            echo=settings.debug,
            connect_args={"server_settings": {"jit": "off"}},
        )

    return create_async_engine(
        url,
        pool_size=settings.database_pool_size,
        max_overflow=settings.database_max_overflow,
        pool_timeout=settings.database_pool_timeout,
        pool_recycle=settings.database_pool_recycle,
        pool_pre_ping=True,  # Verify connections before using
        echo=settings.debug,
        connect_args={
            "command_timeout": 60,
            "server_settings": {
                "application_name": "lead_feedback",
                "jit": "off",
            },
        },
    )


def build_session_factory(bind: AsyncEngine) -> SessionFactory:
    return async_sessionmaker(
        bind=bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


def get_engine() -> AsyncEngine:
    global engine, AsyncSessionLocal

    if engine is None:
        engine = build_engine()
        AsyncSessionLocal = build_session_factory(engine)
        logger.info(
            "database.engine.created",
            pool_size=settings.database_pool_size,
            max_overflow=settings.database_max_overflow,
            testing=settings.is_testing,
        )
    return engine


def get_session_factory() -> SessionFactory:
    get_engine()
    return AsyncSessionLocal


async def dispose_engine() -> None:
    global engine, AsyncSessionLocal

    if engine is not None:
        await engine.dispose()
        logger.info("database.connection_closed")
    engine = None
    AsyncSessionLocal = None


async def _set_statement_timeout(session: AsyncSession, timeout_ms: Optional[int]) -> None:
    timeout_ms = settings.statement_timeout_ms if timeout_ms is None else timeout_ms
    await session.execute(text(f"SET LOCAL statement_timeout = {int(timeout_ms)}"))


@asynccontextmanager
async def transaction_session(
    session_factory: Optional[SessionFactory] = None,
    *,
    statement_timeout_ms: Optional[int] = None,
) -> AsyncGenerator[AsyncSession, None]:
    """One atomic unit of work: commits on clean exit, rolls back everything otherwise."""
    factory = session_factory or get_session_factory()

    async with factory() as session:
        try:
            async with session.begin():
                await _set_statement_timeout(session, statement_timeout_ms)
                yield session
        except FeedbackError:
            raise
        except SQLAlchemyError as e:
            logger.error("database.transaction_error", error=str(e))
            raise translate_db_error(e) from e


@asynccontextmanager
async def read_session(
    session_factory: Optional[SessionFactory] = None,
    *,
    statement_timeout_ms: Optional[int] = None,
) -> AsyncGenerator[AsyncSession, None]:
    """Session for read-only queries; observes whatever is committed at query time."""
    factory = session_factory or get_session_factory()

    async with factory() as session:
        try:
            await _set_statement_timeout(session, statement_timeout_ms)
            yield session
        except FeedbackError:
            raise
        except SQLAlchemyError as e:
            logger.error("database.read_error", error=str(e))
            raise translate_db_error(e) from e


async def create_schema(bind: Optional[AsyncEngine] = None) -> None:
    """Create all tables. Models must be imported so they register on the metadata."""
    import lead_feedback.models  # noqa: F401

    bind = bind or get_engine()
    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("database.schema_created", tables=sorted(Base.metadata.tables))


async def drop_schema(bind: Optional[AsyncEngine] = None) -> None:
    import lead_feedback.models  # noqa: F401

    bind = bind or get_engine()
    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


async def health_check(bind: Optional[AsyncEngine] = None) -> dict:
    """Check database health."""
    bind = bind or get_engine()
    try:
        async with bind.connect() as conn:
            result = await conn.execute(
                text("SELECT version() AS version, current_database() AS database")
            )
            row = result.first()
            return {
                "status": "healthy",
                "database": row._asdict() if row else {},
                "timestamp": datetime.now(timezone.utc).isoformat(),
            }
    except (SQLAlchemyError, OSError) as e:
        logger.error("database.health_check_failed", error=str(e))
        return {
            "status": "unhealthy",
            "error": str(e),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
