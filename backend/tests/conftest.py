"""Pytest configuration and fixtures."""

import os

# Keep the app-level engine off disk and the background loop idle during tests
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("KITCHEN_SCHEDULER_ENABLED", "false")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")

from datetime import datetime, timedelta
from typing import Generator, List, Optional

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool

from app.db.base import Base
from app.db.session import build_engine, build_session_factory, get_db
from app.main import app
# Import all models to ensure they're registered with Base.metadata
from app.models import *
from app.models.kitchen import Order, OrderLine, OrderStatus
from app.services.notification_service import KitchenEventPublisher
from app.services.scheduler_service import KitchenScheduler
from app.services.settings_service import SystemSettingsStore
from app.services.timing_service import priority_for

# Use in-memory SQLite for tests
TEST_DATABASE_URL = "sqlite:///:memory:"


class FakeClock:
    """Settable clock returning naive UTC datetimes."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class RecordingPublisher(KitchenEventPublisher):
    """Publisher that keeps every message it sends."""

    def __init__(self):
        super().__init__()
        self.messages: List[dict] = []
        self.subscribe(self.messages.append)

    def events(self, name: str) -> List[dict]:
        return [m for m in self.messages if m["event"] == name]


@pytest.fixture(scope="function")
def db_engine():
    """Create a test database engine."""
    engine = build_engine(TEST_DATABASE_URL, poolclass=StaticPool)
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def session_factory(db_engine):
    return build_session_factory(db_engine)


@pytest.fixture(scope="function")
def db_session(session_factory) -> Generator[Session, None, None]:
    """Create a test database session."""
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def clock() -> FakeClock:
    """Mid-morning on a Friday, outside every dynamic-capacity window."""
    return FakeClock(datetime(2025, 3, 14, 10, 0, 0))


@pytest.fixture
def publisher() -> RecordingPublisher:
    return RecordingPublisher()


@pytest.fixture
def settings_store(db_session: Session) -> SystemSettingsStore:
    return SystemSettingsStore(db_session)


@pytest.fixture
def set_capacity(settings_store: SystemSettingsStore):
    def _set(value: int):
        settings_store.set_value("max_concurrent_preparations", value)
    return _set


@pytest.fixture
def make_order(db_session: Session, clock: FakeClock):
    """Factory for kitchen orders; created "now" on the fake clock by default."""

    def _make(
        status: OrderStatus = OrderStatus.RECEIVED,
        delivery_time: Optional[datetime] = None,
        created_at: Optional[datetime] = None,
        auto_promote: bool = True,
        duration: Optional[int] = None,
        lines: int = 1,
        **fields,
    ) -> Order:
        order = Order(
            status=status,
            priority=priority_for(delivery_time),
            requested_delivery_time=delivery_time,
            estimated_duration_minutes=duration,
            auto_promote=auto_promote,
            created_at=created_at or clock(),
            customer_name=fields.pop("customer_name", "Ana"),
            service_mode=fields.pop("service_mode", "TAKEAWAY"),
            **fields,
        )
        for i in range(lines):
            order.lines.append(
                OrderLine(article_id=100 + i, article_name=f"Pizza {i + 1}", quantity=1)
            )
        db_session.add(order)
        db_session.commit()
        db_session.refresh(order)
        return order

    return _make


@pytest.fixture(scope="function")
def client(db_session: Session, session_factory) -> Generator[TestClient, None, None]:
    """Create a test client with database override."""
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    # Disable rate limiters during tests to avoid flaky failures
    from app.core.rate_limit import limiter as global_limiter
    global_limiter.enabled = False
    with TestClient(app, raise_server_exceptions=False) as test_client:
        app.state.kitchen_scheduler = KitchenScheduler(
            session_factory, publisher=RecordingPublisher()
        )
        yield test_client
        app.state.kitchen_scheduler.stop()
    global_limiter.enabled = True
    app.dependency_overrides.clear()

