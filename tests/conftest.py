"""
Shared test fixtures.

Uses an in-memory SQLite database (via aiosqlite) with the production
models, so tests run without Docker / PostgreSQL / Redis.  Redis is an
``AsyncMock`` and e-mail goes to a recording dispatcher.
"""

from datetime import date
from typing import AsyncGenerator, Optional
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool, StaticPool

from trip_booking.config import Settings
from trip_booking.domain.entities import Identity, Trip
from trip_booking.domain.enums import TripStatus
from trip_booking.infrastructure.database import Base
from trip_booking.infrastructure.events import TripEventPublisher
from trip_booking.infrastructure import models  # noqa: F401  (registers tables)
from trip_booking.infrastructure.notifications import DeliveryResult, NotificationDispatcher
from trip_booking.infrastructure.repositories import TripRepository
from trip_booking.services.assignment import DriverAssignmentCoordinator

OWNER = Identity(user_id="owner-1", email="owner@example.com")
STRANGER = Identity(user_id="someone-else", email="other@example.com")
DRIVER_A = "driver.a@example.com"
DRIVER_B = "driver.b@example.com"


class RecordingDispatcher(NotificationDispatcher):
    """Keeps every message; can be told to fail for some or all recipients."""

    def __init__(self):
        self.sent: list[tuple[str, str, str]] = []
        self.fail_for: set[str] = set()
        self.fail_all = False

    async def send(self, to: str, subject: str, body: str) -> DeliveryResult:
        if self.fail_all or to in self.fail_for:
            return DeliveryResult(success=False, error="smtp down")
        self.sent.append((to, subject, body))
        return DeliveryResult(success=True, message_id=f"msg-{len(self.sent)}")

    def to(self, address: str) -> list[tuple[str, str]]:
        return [(s, b) for t, s, b in self.sent if t == address]


# ── Database ──────────────────────────────────────────────────────────


async def _create_engine(url: str, **kwargs) -> AsyncEngine:
    engine = create_async_engine(url, echo=False, **kwargs)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    return engine


@pytest_asyncio.fixture
async def engine() -> AsyncGenerator[AsyncEngine, None]:
    """Fresh in-memory database per test (one shared connection)."""
    engine = await _create_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def file_engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """File database with a connection per session, for real concurrent writers."""
    engine = await _create_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'booking.db'}",
        poolclass=NullPool,
        connect_args={"timeout": 10},
    )
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


# ── Collaborators ─────────────────────────────────────────────────────


@pytest.fixture
def mock_redis() -> AsyncMock:
    redis = AsyncMock()
    redis.set = AsyncMock(return_value=True)
    redis.eval = AsyncMock(return_value=1)
    redis.xadd = AsyncMock(return_value="1-0")
    return redis


@pytest.fixture
def dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        email_api_key="",
        public_base_url="https://trips.example.com",
        token_lock_wait_seconds=0.05,
        expose_magic_links=True,
        jwt_secret_key="test-secret",
    )


def build_coordinator(session_factory, redis, dispatcher, config) -> DriverAssignmentCoordinator:
    return DriverAssignmentCoordinator(
        session_factory,
        redis,
        dispatcher,
        publisher=TripEventPublisher(redis),
        config=config,
    )


@pytest.fixture
def coordinator(session_factory, mock_redis, dispatcher, test_settings) -> DriverAssignmentCoordinator:
    return build_coordinator(session_factory, mock_redis, dispatcher, test_settings)


async def create_trip(
    session_factory,
    status: TripStatus = TripStatus.NOT_CONFIRMED,
    driver: Optional[str] = None,
) -> Trip:
    async with session_factory() as session:
        trip = await TripRepository(session).create(
            owner_id=OWNER.user_id,
            owner_email=OWNER.email,
            status=status,
            driver=driver,
            trip_date=date(2026, 11, 20),
            trip_destination="Heathrow T5",
            lead_passenger_name="Sam Traveller",
        )
        await session.commit()
    return trip


@pytest_asyncio.fixture
async def trip(session_factory) -> Trip:
    return await create_trip(session_factory)
