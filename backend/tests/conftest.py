"""Shared test fixtures.

Sets environment variables BEFORE any app imports so that
``app.config.settings`` resolves without needing a real .env file,
PostgreSQL or Redis.
"""

import os

# --- Environment setup (must happen before app imports) -------------------
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/0")
os.environ.setdefault("ADMIN_API_KEY", "test-admin-key")
os.environ.setdefault("ADMIN_EMAIL", "shop-admin@example.com")
os.environ.setdefault("REALTIME_ENABLED", "false")

# --- Now it's safe to import app modules ---------------------------------
import uuid
from unittest.mock import patch

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from starlette.testclient import TestClient

from app.database import Base, get_db
from app.main import app
from app.models.user import User
from app.services.rate_limiter import InMemoryRateLimiter, get_rate_limiter
from app.services.realtime import get_publisher


# In-memory SQLite engine shared across the test session
_engine = create_engine("sqlite://", connect_args={"check_same_thread": False})
_TestingSession = sessionmaker(autocommit=False, autoflush=False, bind=_engine)


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingPublisher:
    """Collects published events instead of talking to Redis."""

    def __init__(self) -> None:
        self.events: list[tuple[str, str, dict]] = []

    def publish(self, channel: str, event: str, payload: dict) -> None:
        self.events.append((channel, event, payload))


@pytest.fixture(scope="session", autouse=True)
def _create_tables():
    """Create all tables once, drop them when the session ends."""
    Base.metadata.create_all(bind=_engine)
    yield
    Base.metadata.drop_all(bind=_engine)


@pytest.fixture()
def db_session():
    """Yield a transactional DB session that rolls back after each test."""
    connection = _engine.connect()
    transaction = connection.begin()
    session = _TestingSession(bind=connection)
    yield session
    session.close()
    transaction.rollback()
    connection.close()


@pytest.fixture(autouse=True)
def email_task():
    """Keep Celery off the network; tests can assert on the enqueue."""
    with patch("app.services.message_service.send_message_email") as mock_task:
        yield mock_task


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def rate_limiter(clock):
    return InMemoryRateLimiter(max_hits=10, window_seconds=60, clock=clock)


@pytest.fixture()
def publisher():
    return RecordingPublisher()


@pytest.fixture()
def client(db_session, rate_limiter, publisher):
    """FastAPI TestClient with DB, rate limiter and publisher overridden."""

    def _override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_rate_limiter] = lambda: rate_limiter
    app.dependency_overrides[get_publisher] = lambda: publisher
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture()
def make_user(db_session):
    def _make_user(name: str | None = "Test User") -> User:
        user = User(
            id=str(uuid.uuid4()),
            email=f"shopper-{uuid.uuid4().hex[:8]}@example.com",
            name=name,
        )
        db_session.add(user)
        db_session.commit()
        return user

    return _make_user
