"""
Centralized Test Configuration.
"""

import asyncio
from datetime import date, timedelta

import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy import select
from sqlalchemy.pool import StaticPool

from backend.app.main import app
from backend.app.db.session import get_db, Base
from backend.app.core.clock import utcnow
from backend.app.models.enums import ProfileRole, ProfileStatus
from backend.app.models.patient import Patient
from backend.app.models.profile import Profile
from backend.app.models.trip import Trip
from backend.app.models.trip_enums import TripStatus
from backend.app.services.change_feed import ChangeFeed
from backend.app.services.scheduler_runtime import build_scheduling_loop

# Setup In-Memory Test Database
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# Event handler to enable foreign keys for SQLite
from sqlalchemy import event
from sqlalchemy.pool import Pool

@event.listens_for(Pool, "connect")
def set_sqlite_pragma(dbapi_conn, connection_record):
    """Enable foreign key constraints for SQLite."""
    if 'sqlite' in str(type(dbapi_conn)):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

engine = create_async_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestingSessionLocal = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False
)


class MockPubSub:
    def __init__(self, redis):
        self.redis = redis
        self.channels = set()
        self.queue = asyncio.Queue()
        self.closed = False

    async def subscribe(self, *channels):
        self.channels.update(channels)
        self.redis.subscribers.append(self)
        for channel in channels:
            await self.queue.put({"type": "subscribe", "channel": channel, "data": 1})

    async def unsubscribe(self, *channels):
        self.channels.difference_update(channels)
        if self in self.redis.subscribers:
            self.redis.subscribers.remove(self)

    async def listen(self):
        while True:
            yield await self.queue.get()

    async def aclose(self):
        self.closed = True


# Mock Redis for reliability in CI/CD
class MockRedis:
    def __init__(self):
        self.published = []
        self.subscribers = []
        self._closed = False

    async def ping(self):
        if self._closed:
            return False
        return True

    async def publish(self, channel, message):
        if self._closed:
            raise ConnectionError("Redis connection closed")
        self.published.append((channel, message))
        receivers = 0
        for pubsub in self.subscribers:
            if channel in pubsub.channels:
                await pubsub.queue.put({"type": "message", "channel": channel, "data": message})
                receivers += 1
        return receivers

    def pubsub(self):
        return MockPubSub(self)

    async def aclose(self):
        self._closed = True


class RecordingNotifier:
    """Stands in for NotificationService; records trips it was told about."""

    def __init__(self, fail: bool = False):
        self.notified = []
        self.fail = fail

    async def notify_trip_assigned(self, trip_id):
        if self.fail:
            raise RuntimeError("SMS gateway down")
        self.notified.append(trip_id)


@pytest.fixture(autouse=True)
async def setup_database():
    """Create tables before each test function and drop after."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
def session_factory():
    return TestingSessionLocal


# Shared session for fixture data creation
@pytest.fixture
async def db_session():
    async with TestingSessionLocal() as session:
        yield session


@pytest.fixture
def mock_redis():
    return MockRedis()


@pytest.fixture
def change_feed(mock_redis):
    return ChangeFeed(mock_redis)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def scheduling_loop(change_feed, notifier):
    return build_scheduling_loop(TestingSessionLocal, change_feed=change_feed, notifier=notifier)


@pytest.fixture
async def client(scheduling_loop, change_feed):
    """Async client for testing, wired to the test database and scheduler."""
    async def override_get_db():
        async with TestingSessionLocal() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.state.scheduling_loop = scheduling_loop
    app.state.change_feed = change_feed

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides = {}


@pytest.fixture
def make_driver(db_session):
    async def _make_driver(
        full_name,
        latitude=None,
        longitude=None,
        first_start_date=None,
        status=ProfileStatus.ACTIVE,
    ):
        driver = Profile(
            full_name=full_name,
            role=ProfileRole.DRIVER,
            status=status,
            phone="555-0100",
            current_latitude=latitude,
            current_longitude=longitude,
            first_start_date=first_start_date,
        )
        db_session.add(driver)
        await db_session.commit()
        await db_session.refresh(driver)
        return driver
    return _make_driver


@pytest.fixture
def make_trip(db_session):
    async def _make_trip(
        pickup_lat=40.7128,
        pickup_lng=-74.0060,
        status=TripStatus.PENDING,
        driver_id=None,
        scheduled_pickup_time=None,
        actual_pickup_time=None,
        patient_id=None,
    ):
        trip = Trip(
            patient_id=patient_id,
            pickup_address="100 Main St",
            pickup_lat=pickup_lat,
            pickup_lng=pickup_lng,
            dropoff_address="1 Hospital Way",
            dropoff_lat=40.75,
            dropoff_lng=-73.99,
            scheduled_pickup_time=scheduled_pickup_time or utcnow() + timedelta(hours=2),
            actual_pickup_time=actual_pickup_time,
            status=status,
            driver_id=driver_id,
        )
        db_session.add(trip)
        await db_session.commit()
        await db_session.refresh(trip)
        return trip
    return _make_trip


@pytest.fixture
async def patient(db_session):
    patient = Patient(full_name="Ada Rider", phone="555-0199", mobility_needs="wheelchair")
    db_session.add(patient)
    await db_session.commit()
    await db_session.refresh(patient)
    return patient


@pytest.fixture
def veteran_start():
    """Employment start far enough back for a maxed experience score."""
    return date.today() - timedelta(days=1200)


@pytest.fixture
def recent_start():
    return date.today() - timedelta(days=95)


@pytest.fixture
def load_trips():
    """Read trips back through a fresh session."""
    async def _load_trips(trip_ids):
        async with TestingSessionLocal() as session:
            result = await session.execute(
                select(Trip).where(Trip.id.in_(trip_ids)).order_by(Trip.id)
            )
            return list(result.scalars().all())
    return _load_trips
