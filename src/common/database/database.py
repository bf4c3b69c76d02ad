import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, AsyncIterator, Optional
from uuid import UUID

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

from src.common.config import settings  # Import the settings object
from src.common.exceptions import QueueEngineError, StorageFailure

logger = logging.getLogger(__name__)

# SQLAlchemy async engine and session setup
engine = create_async_engine(
    settings.DATABASE_URL,
    echo=settings.DEBUG,
    future=True,
    pool_pre_ping=True,
    pool_recycle=1800,
)

async_session = sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False
)

async def connect_to_db():
    """Connect to the database."""
    try:
        # Test connection by executing a simple query
        async with engine.begin() as conn:
            await conn.execute(text("SELECT 1"))
            logger.info("Database connected successfully")
    except Exception:
        logger.exception("Error connecting to the database")
        raise

async def close_db_connection():
    """Close the database connection."""
    try:
        await engine.dispose()
        logger.info("Database connection closed")
    except Exception:
        logger.exception("Error closing the database connection")
        raise

# Dependency for using a session in routes
async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield a database session for use in FastAPI routes."""
    async with async_session() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise


@asynccontextmanager
async def unit_of_work(
    session: AsyncSession, entity_id: Optional[UUID] = None
) -> AsyncIterator[AsyncSession]:
    """
    Run the enclosed statements as one transaction.

    Commits when the block exits cleanly and rolls back on any error, so an
    operation either applies completely or leaves no trace. Driver and
    connection errors surface as StorageFailure.
    """
    try:
        yield session
        await session.commit()
    except QueueEngineError:
        await session.rollback()
        raise
    except SQLAlchemyError as e:
        await session.rollback()
        logger.error("Storage failure: %s", e, exc_info=True)
        raise StorageFailure(
            f"Storage failure: {e.__class__.__name__}", entity_id=entity_id
        ) from e
    except BaseException:
        await session.rollback()
        raise


def get_session_factory() -> sessionmaker:
    """Session factory for long-lived consumers (WebSocket feeds) that open their own sessions."""
    return async_session
