"""
Shared pytest fixtures for all tests.

Every test gets its own SQLite database file (aiosqlite) with the full
schema, plus seeded staff, a client and a product. API tests talk to the
app through httpx over ASGI with real bearer tokens.
"""

import os
import tempfile
from datetime import date, time
from decimal import Decimal
from typing import AsyncGenerator

# Settings are read at import time; configure the test environment first
os.environ.setdefault(
    "DATABASE_URL",
    "sqlite+aiosqlite:///" + os.path.join(tempfile.gettempdir(), "clinic_queue_test.db"),
)
os.environ.setdefault("JWT_SECRET", "test-secret-not-for-production-use-0123456789")
os.environ["APP_ENV"] = "test"
os.environ["DEBUG"] = "false"
os.environ.setdefault("CLINIC_TIMEZONE", "America/Sao_Paulo")

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

from src.auth.auth_service import create_user_token
from src.common.database.database import get_db_session, get_session_factory
from src.common.realtime.notifier import change_notifier
from src.models.models import Base, Client, Product, StaffRole, User
from src.modules.services import services_service
from src.modules.services.schemas import ServiceCreateRequest


QUEUE_DAY = date(2024, 1, 1)


# ============================================================================
# DATABASE FIXTURES
# ============================================================================


@pytest_asyncio.fixture
async def engine(tmp_path):
    """Fresh database file with the full schema."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'clinic.db'}", future=True)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def serialized_engine(tmp_path):
    """
    Database whose transactions start with BEGIN IMMEDIATE.

    SQLite has no row locks; taking the write lock up front gives concurrent
    writers the same serialization a row lock gives on PostgreSQL.
    """
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'serialized.db'}", future=True)

    @event.listens_for(engine.sync_engine, "connect")
    def do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def do_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        try:
            yield session
        finally:
            await session.rollback()


@pytest.fixture(autouse=True)
def close_subscriptions():
    """No subscription outlives its test."""
    yield
    for subscription in list(change_notifier._subscriptions):
        subscription.close()


# ============================================================================
# SEED DATA
# ============================================================================


async def seed_reference_data(session: AsyncSession):
    staff = {
        StaffRole.RECEPTION: User(email="reception@clinic.test", full_name="Marina Souza", role=StaffRole.RECEPTION),
        StaffRole.MEDICATION: User(email="medication@clinic.test", full_name="Paulo Lima", role=StaffRole.MEDICATION),
        StaffRole.DOCTOR: User(email="doctor@clinic.test", full_name="Helena Costa", role=StaffRole.DOCTOR),
    }
    clients = [
        Client(full_name="Ana Ribeiro", phone="+55 11 91234-0001"),
        Client(full_name="Bruno Carvalho", phone="+55 11 91234-0002"),
        Client(full_name="Carla Mendes", phone="+55 11 91234-0003"),
    ]
    product = Product(name="Vitamin B12 injection", type="medication", price=Decimal("45.00"))
    session.add_all([*staff.values(), *clients, product])
    await session.commit()
    return staff, clients, product


@pytest_asyncio.fixture
async def seeded(session_factory):
    # Seeded rows live outside the test session so a rollback there never expires them
    async with session_factory() as seed_session:
        return await seed_reference_data(seed_session)


@pytest.fixture
def staff(seeded):
    return seeded[0]


@pytest.fixture
def receptionist(staff):
    return staff[StaffRole.RECEPTION]


@pytest.fixture
def clients(seeded):
    return seeded[1]


@pytest.fixture
def product(seeded):
    return seeded[2]


@pytest.fixture
def book_service(session, receptionist, clients):
    """Factory booking a scheduled service; returns its ServiceRecord."""
    async def _book(client_index: int = 0, service_date: date = QUEUE_DAY, service_time: time = time(9, 0)):
        response = await services_service.create_service(
            session,
            receptionist,
            ServiceCreateRequest(
                client_id=clients[client_index].id,
                service_date=service_date,
                service_time=service_time,
                service_type="Medication application",
            ),
        )
        return response.service
    return _book


# ============================================================================
# API FIXTURES
# ============================================================================


@pytest_asyncio.fixture
async def api_client(session_factory, seeded) -> AsyncGenerator[AsyncClient, None]:
    from src.main import app

    async def override_get_db_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db_session] = override_get_db_session
    app.dependency_overrides[get_session_factory] = lambda: session_factory

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers(staff):
    def _headers(role: StaffRole) -> dict:
        return {"Authorization": f"Bearer {create_user_token(staff[role])}"}
    return _headers


@pytest.fixture
def serialized_factory(serialized_engine):
    return sessionmaker(serialized_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def serialized_seeded(serialized_factory):
    async with serialized_factory() as seed_session:
        return await seed_reference_data(seed_session)
