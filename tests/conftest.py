# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Pytest configuration and shared fixtures.

This module provides fixtures used across all test types:
- Governance services with a fixed test key
- An in-memory SQLite registry database
- Caller contexts for each actor type
"""

from collections.abc import AsyncGenerator

import pytest
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.pool import StaticPool

from src.core.config.settings import RegistrySettings
from src.core.container import GovernanceServices
from src.domains.governance.access_control import AccessControlService
from src.domains.governance.audit_logger import AuditLogger
from src.domains.governance.rules import AccessContext, UserType
from src.domains.security.codes import CodeGenerator
from src.domains.security.encryption import SecurityService
from src.infrastructure.database.connection import create_sessionmaker
from src.infrastructure.database.models import Base, EdgeHub

TEST_ENCRYPTION_KEY = "test-encryption-key-with-at-least-32-chars"
TEST_HUB_ID = "hub-test-001"


# =============================================================================
# Marker Configuration
# =============================================================================


def pytest_configure(config: pytest.Config) -> None:
    """Configure custom pytest markers."""
    config.addinivalue_line(
        "markers", "unit: mark test as a unit test"
    )
    config.addinivalue_line(
        "markers", "integration: mark test as an integration test (uses a database)"
    )
    config.addinivalue_line(
        "markers", "slow: mark test as slow running"
    )


# =============================================================================
# Governance Fixtures
# =============================================================================


@pytest.fixture(scope="session")
def security() -> SecurityService:
    """Provide a SecurityService with a valid test key.

    Session scoped: key derivation runs scrypt once.
    """
    return SecurityService(encryption_key=TEST_ENCRYPTION_KEY)


class RecordingSleep:
    """Async sleep replacement that records requested delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


@pytest.fixture
def fake_sleep() -> RecordingSleep:
    """Provide a sleep that returns immediately and records delays."""
    return RecordingSleep()


@pytest.fixture
def services(security: SecurityService, fake_sleep: RecordingSleep) -> GovernanceServices:
    """Provide fresh governance services (empty audit buffer) per test."""
    return GovernanceServices(
        security=security,
        access_control=AccessControlService(),
        audit=AuditLogger(capacity=1000),
        codes=CodeGenerator(security, sleep=fake_sleep),
        registry=RegistrySettings(),
    )


class StaleExistsCheck:
    """Code lookup that misses the first ``misses`` calls.

    Stands in for a concurrent writer inserting the same code between the
    existence check and the insert.
    """

    def __init__(self, real, misses: int) -> None:
        self.real = real
        self.misses = misses
        self.calls = 0

    async def __call__(self, code: str) -> bool:
        self.calls += 1
        if self.calls <= self.misses:
            return False
        return await self.real(code)


@pytest.fixture
def stale_exists() -> type[StaleExistsCheck]:
    """Provide the factory for lookups that miss a concurrent insert."""
    return StaleExistsCheck


# =============================================================================
# Database Fixtures
# =============================================================================


@pytest.fixture
async def engine() -> AsyncGenerator[AsyncEngine, None]:
    """Provide an in-memory SQLite engine with the registry schema.

    The driver's own transaction handling is switched off so that SQLAlchemy
    emits BEGIN itself and SAVEPOINTs nest inside it.
    """
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    @event.listens_for(engine.sync_engine, "connect")
    def _disable_driver_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
async def db_session(engine: AsyncEngine) -> AsyncGenerator[AsyncSession, None]:
    """Provide a session bound to the in-memory database."""
    session_factory = create_sessionmaker(engine)
    async with session_factory() as session:
        yield session


@pytest.fixture
async def hub(db_session: AsyncSession) -> EdgeHub:
    """Provide a registered hub."""
    hub = EdgeHub(hub_id=TEST_HUB_ID, name="Test Hub", status="active")
    db_session.add(hub)
    await db_session.commit()
    await db_session.refresh(hub)
    return hub


# =============================================================================
# Context Fixtures
# =============================================================================


@pytest.fixture
def admin_context() -> AccessContext:
    """Provide an admin caller context."""
    return AccessContext(
        user_type=UserType.ADMIN,
        user_id="admin-1",
        ip_address="10.0.0.1",
        user_agent="pytest",
    )


@pytest.fixture
def system_context() -> AccessContext:
    """Provide a system caller context scoped to the test hub."""
    return AccessContext.system(TEST_HUB_ID)


@pytest.fixture
def anonymous_context() -> AccessContext:
    """Provide an anonymous caller context (device login)."""
    return AccessContext(user_type=UserType.ANONYMOUS, ip_address="192.168.1.20")
