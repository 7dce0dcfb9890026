"""
Database Connection and Session Management

Provides async SQLAlchemy 2.0 engine, session factory, and helpers for
database operations, plus the trigger that publishes appointment changes
for the push detector.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from notifier.config import settings
from notifier.models.database import Base


# Create async engine
engine = create_async_engine(
    settings.database_url,
    echo=settings.debug,
    poolclass=NullPool,
)

# Create session factory
async_session_factory = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


# Publishes every insert/update on appointments as JSON on the notify channel.
CHANGE_TRIGGER_STATEMENTS = (
    """
    CREATE OR REPLACE FUNCTION notify_appointment_change() RETURNS trigger AS $$
    DECLARE
        payload json;
    BEGIN
        IF TG_OP = 'INSERT' THEN
            payload := json_build_object(
                'op', TG_OP, 'id', NEW.id, 'status', NEW.status
            );
        ELSE
            payload := json_build_object(
                'op', TG_OP, 'id', NEW.id, 'status', NEW.status,
                'old_status', OLD.status
            );
        END IF;
        PERFORM pg_notify(TG_ARGV[0], payload::text);
        RETURN NEW;
    END;
    $$ LANGUAGE plpgsql
    """,
    "DROP TRIGGER IF EXISTS appointments_notify_change ON appointments",
    """
    CREATE TRIGGER appointments_notify_change
    AFTER INSERT OR UPDATE ON appointments
    FOR EACH ROW EXECUTE FUNCTION notify_appointment_change('{channel}')
    """,
)


@asynccontextmanager
async def get_db_context() -> AsyncGenerator[AsyncSession, None]:
    """
    Context manager for database sessions.

    Used by the repositories, detectors and background jobs.

    Usage:
        async with get_db_context() as db:
            result = await db.execute(select(Appointment))
            appointments = result.scalars().all()

    Yields:
        AsyncSession: Database session
    """
    session = async_session_factory()
    try:
        yield session
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    finally:
        await session.close()


async def init_db() -> None:
    """
    Create all database tables and the change-notification trigger.

    WARNING: This is for development only. In production the schema is
    managed by the booking site's migrations.
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
        await install_change_trigger(conn, settings.notify_channel)


async def install_change_trigger(conn, channel: str) -> None:
    """Install (or replace) the appointments NOTIFY trigger on ``channel``."""
    for statement in CHANGE_TRIGGER_STATEMENTS:
        await conn.execute(text(statement.replace("{channel}", channel)))


async def close_db() -> None:
    """
    Close all database connections.

    Should be called during application shutdown.
    """
    await engine.dispose()


async def check_db_health() -> bool:
    """
    Check database connectivity for health checks.

    Returns:
        bool: True if database is accessible, False otherwise
    """
    try:
        async with get_db_context() as db:
            await db.execute(text("SELECT 1"))
        return True
    except Exception:
        return False
