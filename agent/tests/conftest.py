"""Shared test fixtures for the platform test suite.

Provides mock database sessions, Redis clients, an in-memory SQLite
database, and fake notifier collaborators so tests run without Docker
infrastructure or a Telegram bot.
"""

from __future__ import annotations

import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from modules.event_notifier.errors import DeliveryError, StoreError
from modules.event_notifier.gateway import DeliveryGateway
from modules.event_notifier.store import threshold_window
from shared.database import create_session_factory
from shared.models import Base
from shared.models.event import Event
from shared.models.user import User
from shared.schemas.notifications import Threshold


# ---------------------------------------------------------------------------
# Database mocks
# ---------------------------------------------------------------------------


@pytest.fixture
def mock_db_session():
    """Mock async SQLAlchemy session.

    Supports the common patterns used in store code:
        session.execute(stmt) -> result
        session.commit()
    """
    session = AsyncMock()
    # Default: execute returns a result with no rows
    default_result = MagicMock()
    default_result.scalar_one_or_none.return_value = None
    default_result.scalars.return_value.all.return_value = []
    default_result.rowcount = 0
    session.execute = AsyncMock(return_value=default_result)
    return session


@pytest.fixture
def mock_session_factory(mock_db_session):
    """Mock async session factory compatible with ``async with factory() as session:``."""

    @asynccontextmanager
    async def _session_ctx():
        yield mock_db_session

    factory = MagicMock(side_effect=lambda: _session_ctx())
    return factory


@pytest.fixture
async def sqlite_session_factory():
    """Session factory over a fresh in-memory SQLite database."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield create_session_factory(engine)
    await engine.dispose()


# ---------------------------------------------------------------------------
# Redis mock
# ---------------------------------------------------------------------------


@pytest.fixture
def mock_redis():
    """Mock async Redis client with common operations."""
    redis = AsyncMock()
    redis.get = AsyncMock(return_value=None)
    redis.set = AsyncMock(return_value=True)
    redis.delete = AsyncMock()
    return redis


# ---------------------------------------------------------------------------
# Model factories
# ---------------------------------------------------------------------------


@pytest.fixture
def now():
    """A fixed 'current time' for deterministic window maths."""
    return datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def make_event(now):
    """Factory for creating Event instances."""

    def _make(
        title: str = "Intro to Python",
        kind: str = "WEBINAR",
        starts_at: datetime | None = None,
        meeting_url: str | None = None,
        recording_url: str | None = None,
        notify_enabled: bool = True,
        notified_24h: bool = False,
        notified_1h: bool = False,
        notified_record: bool = False,
    ) -> Event:
        return Event(
            id=uuid.uuid4(),
            title=title,
            kind=kind,
            starts_at=starts_at or now + timedelta(days=3),
            ends_at=None,
            meeting_url=meeting_url,
            recording_url=recording_url,
            notify_enabled=notify_enabled,
            notified_24h=notified_24h,
            notified_1h=notified_1h,
            notified_record=notified_record,
            created_at=now,
        )

    return _make


@pytest.fixture
def make_user():
    """Factory for creating User instances."""

    def _make(telegram_id: str | None = None, first_name: str = "Student") -> User:
        return User(
            id=uuid.uuid4(),
            first_name=first_name,
            telegram_id=telegram_id,
            created_at=datetime.now(timezone.utc),
        )

    return _make


# ---------------------------------------------------------------------------
# Fake notifier collaborators
# ---------------------------------------------------------------------------

_FLAG_ATTRS = {
    Threshold.H24: "notified_24h",
    Threshold.H1: "notified_1h",
    Threshold.RECORDING: "notified_record",
}


class FakeEventStore:
    """In-memory stand-in for EventStore with the same query semantics."""

    def __init__(self):
        self.events: dict[uuid.UUID, Event] = {}
        self.recipients: set[str] = set()
        self.mark_calls: list[tuple[uuid.UUID, Threshold]] = []
        # Threshold -> StoreError raised when reading that threshold's candidates
        self.read_errors: dict[Threshold, StoreError] = {}
        self.recipients_error: StoreError | None = None
        self.mark_error: StoreError | None = None

    def add(self, *events: Event) -> None:
        for event in events:
            self.events[event.id] = event

    async def find_events_crossing_threshold(self, threshold, now, tolerance):
        if threshold in self.read_errors:
            raise self.read_errors[threshold]
        start, end = threshold_window(threshold, now, tolerance)
        flag = _FLAG_ATTRS[threshold]
        return [
            e for e in self.events.values()
            if e.notify_enabled and not getattr(e, flag) and start <= e.starts_at <= end
        ]

    async def find_events_with_unnotified_recording(self, now):
        if Threshold.RECORDING in self.read_errors:
            raise self.read_errors[Threshold.RECORDING]
        return [
            e for e in self.events.values()
            if not e.notified_record and e.recording_url and e.starts_at <= now
        ]

    async def mark_notified(self, event_id, threshold):
        self.mark_calls.append((event_id, threshold))
        if self.mark_error is not None:
            raise self.mark_error
        event = self.events[event_id]
        flag = _FLAG_ATTRS[threshold]
        if getattr(event, flag):
            return False
        if threshold == Threshold.RECORDING and not event.recording_url:
            return False
        setattr(event, flag, True)
        return True

    async def list_recipient_identities(self):
        if self.recipients_error is not None:
            raise self.recipients_error
        return set(self.recipients)

    async def get_event(self, event_id):
        return self.events.get(event_id)


class FakeGateway(DeliveryGateway):
    """Records every delivery; recipients in ``failing`` raise DeliveryError."""

    def __init__(self, failing: set[str] | None = None):
        super().__init__(max_concurrent_sends=5)
        self.failing = failing or set()
        self.sent: list[tuple[str, str]] = []
        self.attempts: list[str] = []

    async def send_one(self, recipient: str, message: str) -> None:
        self.attempts.append(recipient)
        if recipient in self.failing:
            raise DeliveryError(recipient, "Forbidden: bot was blocked by the user")
        self.sent.append((recipient, message))

    def messages_to(self, recipient: str) -> list[str]:
        return [m for r, m in self.sent if r == recipient]


@pytest.fixture
def fake_store():
    store = FakeEventStore()
    store.recipients = {"1001", "1002", "1003"}
    return store


@pytest.fixture
def fake_gateway():
    return FakeGateway()


@pytest.fixture
def make_gateway():
    """Factory for FakeGateway instances with chosen failing recipients."""

    def _make(failing: set[str] | None = None) -> FakeGateway:
        return FakeGateway(failing=failing)

    return _make
