# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Registry database connection management using SQLAlchemy async.

Uses SQLAlchemy 2.0 async API with asyncpg in deployments and aiosqlite in
tests.

Example:
    from src.infrastructure.database.connection import (
        init_database,
        get_session,
    )

    # Initialize at application startup
    await init_database(settings)

    # Use in request handlers
    async with get_session() as session:
        students = StudentService(session, services)
"""

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, AsyncIterator, Optional

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from src.infrastructure.database.models import Base

if TYPE_CHECKING:
    from src.core.config.settings import Settings

# Module-level state for the registry database connection
_engine: Optional[AsyncEngine] = None
_sessionmaker: Optional[async_sessionmaker[AsyncSession]] = None


class DatabaseError(Exception):
    """Base exception for database operations.

    Attributes:
        message: Human-readable error description.
        original_error: The underlying SQLAlchemy or database error.
    """

    def __init__(self, message: str, original_error: Optional[Exception] = None) -> None:
        super().__init__(message)
        self.message = message
        self.original_error = original_error

    def __str__(self) -> str:
        """Return string representation of the error."""
        if self.original_error:
            return f"{self.message}: {self.original_error}"
        return self.message


def create_sessionmaker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Build the sessionmaker used by the registries.

    expire_on_commit is disabled so services can read attributes of
    committed objects without an implicit (sync) reload.
    """
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


async def init_database(settings: "Settings", url: str | None = None) -> None:
    """Initialize the registry connection pool.

    Args:
        settings: Application settings containing database configuration.
        url: Optional URL overriding settings.database.url.

    Raises:
        DatabaseError: If connection pool creation fails.
    """
    global _engine, _sessionmaker

    try:
        _engine = create_async_engine(
            url or settings.database.url,
            pool_size=settings.database.pool_size,
            max_overflow=settings.database.max_overflow,
            pool_pre_ping=True,
            pool_recycle=1800,
            echo=settings.debug,
        )
        _sessionmaker = create_sessionmaker(_engine)
    except SQLAlchemyError as e:
        raise DatabaseError("Failed to initialize database connection", e) from e


async def create_all(engine: AsyncEngine | None = None) -> None:
    """Create registry tables that do not exist yet."""
    target = engine or get_engine()
    async with target.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_database() -> None:
    """Dispose of the connection pool at application shutdown."""
    global _engine, _sessionmaker

    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _sessionmaker = None


def get_engine() -> AsyncEngine:
    """Get the registry async engine.

    Raises:
        DatabaseError: If the database has not been initialized.
    """
    if _engine is None:
        raise DatabaseError("Database not initialized. Call init_database() first.")
    return _engine


def get_sessionmaker() -> async_sessionmaker[AsyncSession]:
    """Get the registry sessionmaker.

    Raises:
        DatabaseError: If the database has not been initialized.
    """
    if _sessionmaker is None:
        raise DatabaseError("Database not initialized. Call init_database() first.")
    return _sessionmaker


@asynccontextmanager
async def get_session() -> AsyncIterator[AsyncSession]:
    """Get an async session for the registry database.

    The session is committed on success and rolled back on exception.

    Raises:
        DatabaseError: If the database has not been initialized or
            if a database operation fails.
    """
    sessionmaker = get_sessionmaker()

    async with sessionmaker() as session:
        try:
            yield session
            await session.commit()
        except SQLAlchemyError as e:
            await session.rollback()
            raise DatabaseError("Database operation failed", e) from e
        except Exception:
            await session.rollback()
            raise


async def check_database_connection() -> bool:
    """Check if the registry database is reachable."""
    if _engine is None:
        return False

    try:
        async with _engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True
    except SQLAlchemyError:
        return False
