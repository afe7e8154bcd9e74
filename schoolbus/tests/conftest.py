"""
Centralized Test Configuration.
"""

import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import Pool, StaticPool

from schoolbus.app.main import app
from schoolbus.app.db.session import get_db, get_session_factory, Base
from schoolbus.app.core.jwt import create_access_token
from schoolbus.app.core.redis_client import get_redis
from schoolbus.app.models.bus import Bus
from schoolbus.app.models.child import Child
from schoolbus.app.models.enums import UserRole
from schoolbus.app.models.route import Route
from schoolbus.app.models.user import User
from schoolbus.app.services.push_delivery import (
    PushDispatcher,
    PushGatewayError,
    PushRejectedError,
    get_push_dispatcher,
    push_gateway_breaker,
)

# Setup In-Memory Test Database
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


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
    engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
)


# Mock Redis for reliability in CI/CD
class MockRedis:
    def __init__(self):
        self.store = {}

    async def ping(self):
        return True

    async def get(self, key):
        return self.store.get(key)

    async def set(self, key, value, ex=None):
        self.store[key] = value
        return True

    async def setex(self, key, ttl, value):
        self.store[key] = value
        return True

    async def delete(self, key):
        if key in self.store:
            del self.store[key]
            return 1
        return 0

    async def exists(self, key):
        return 1 if key in self.store else 0

    async def flushdb(self):
        self.store = {}


class RecordingPushSender:
    """Stands in for the FCM gateway; records every send."""

    def __init__(self):
        self.sent = []
        self.topics = []
        self.failing_tokens = set()
        self.gateway_down = False
        self.fail_topics = False

    async def send_to_token(self, token, title, body, data):
        if self.gateway_down:
            raise PushGatewayError("Gateway returned 503")
        if token in self.failing_tokens:
            raise PushRejectedError(f"NotRegistered: {token}")
        self.sent.append({"token": token, "title": title, "body": body, "data": data})
        return f"msg-{len(self.sent)}"

    async def send_to_topic(self, topic, title, body, data):
        if self.fail_topics:
            raise PushGatewayError("Gateway returned 503")
        self.topics.append({"topic": topic, "title": title, "body": body, "data": data})
        return f"topic-msg-{len(self.topics)}"


@pytest.fixture
def redis_client():
    return MockRedis()


@pytest.fixture
def push_sender():
    return RecordingPushSender()


@pytest.fixture
def session_factory():
    return TestingSessionLocal


@pytest.fixture
def push_dispatcher(push_sender):
    return PushDispatcher(
        session_factory=TestingSessionLocal,
        sender=push_sender,
        circuit_breaker=push_gateway_breaker(),
        max_attempts=2,
        backoff_base=0,
    )


@pytest.fixture(autouse=True)
def apply_overrides(redis_client, push_dispatcher):
    """Route the app's database, Redis and push gateway to test doubles."""

    async def override_get_db():
        async with TestingSessionLocal() as session:
            yield session

    async def override_get_redis():
        return redis_client

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_redis] = override_get_redis
    app.dependency_overrides[get_session_factory] = lambda: TestingSessionLocal
    app.dependency_overrides[get_push_dispatcher] = lambda: push_dispatcher
    yield
    app.dependency_overrides = {}


@pytest.fixture(autouse=True)
async def setup_database():
    """Create tables before each test function and drop after."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
async def client():
    """Async client for testing."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


# Shared session for fixture data creation
@pytest.fixture
async def db_session():
    async with TestingSessionLocal() as session:
        yield session


@pytest.fixture
def auth_headers():
    """Bearer headers for a user id."""
    def _headers(user_id: str) -> dict:
        token = create_access_token({"sub": user_id})
        return {"Authorization": f"Bearer {token}"}
    return _headers


@pytest.fixture
async def seed(db_session):
    """
    One school with a route of two active children and one inactive child.

    parent-1 has a push token, parent-2 does not. bus-1 is assigned to
    driver-1, bus-2 to driver-2.
    """
    db_session.add_all([
        User(id="driver-1", name="Dana Driver", role=UserRole.DRIVER, school_id="school-1"),
        User(id="driver-2", name="Dev Driver", role=UserRole.DRIVER, school_id="school-1"),
        User(id="parent-1", name="Pat Parent", role=UserRole.PARENT, school_id="school-1", fcm_token="token-p1"),
        User(id="parent-2", name="Pip Parent", role=UserRole.PARENT, school_id="school-1"),
        User(id="admin-1", name="Ada Admin", role=UserRole.SCHOOL_ADMIN, school_id="school-1"),
        User(id="admin-2", name="Abe Admin", role=UserRole.SCHOOL_ADMIN, school_id="school-2"),
        User(id="super-1", name="Sam Super", role=UserRole.SUPER_ADMIN),
        User(id="retired-1", name="Rey Retired", role=UserRole.DRIVER, school_id="school-1", is_active=False),
    ])
    await db_session.flush()

    db_session.add(Route(id="route-1", name="North Loop", school_id="school-1"))
    db_session.add_all([
        Bus(id="bus-1", bus_number="42", school_id="school-1", driver_id="driver-1"),
        Bus(id="bus-2", bus_number="17", school_id="school-1", driver_id="driver-2"),
    ])
    await db_session.flush()

    db_session.add_all([
        Child(id="child-1", name="Alice", parent_id="parent-1", route_id="route-1", school_id="school-1"),
        Child(id="child-2", name="Ben", parent_id="parent-2", route_id="route-1", school_id="school-1"),
        Child(id="child-3", name="Cleo", parent_id="parent-1", route_id="route-1", school_id="school-1", is_active=False),
    ])
    await db_session.commit()
    return db_session
