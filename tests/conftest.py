"""
Pytest Configuration and Shared Fixtures
========================================

This module provides shared fixtures for all PillMind tests.
Fixtures include database sessions, a test client, sample data and a fake
notification transport.
"""

import os
import sys
from datetime import datetime, date, timezone
from typing import Generator, Dict, List, Optional

# Keep the app's own engine in memory during tests
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from database import Base, get_db, configure_sqlite
from models import (
    User, UserSettings, Medication, Inventory, Prescription, Schedule, DoseLog,
    Channel, DoseStatus, MedForm, NotificationStatus, TimeFormat, Unit
)
from tools.notification_service import DeliveryResult
from app import app


# Monday 2025-03-03 06:00 UTC
FIXED_NOW = datetime(2025, 3, 3, 6, 0, tzinfo=timezone.utc)


# ==================== DATABASE FIXTURES ====================

@pytest.fixture(scope="function")
def test_engine():
    """Create a test database engine with in-memory SQLite"""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False
    )
    configure_sqlite(engine)

    # Create all tables
    Base.metadata.create_all(bind=engine)

    yield engine

    # Cleanup
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture(scope="function")
def db_session(test_engine) -> Generator[Session, None, None]:
    """Create a test database session"""
    TestingSessionLocal = sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=test_engine
    )

    session = TestingSessionLocal()

    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture(scope="function")
def client(db_session: Session) -> Generator[TestClient, None, None]:
    """Create a FastAPI test client with database override"""

    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


# ==================== CLOCK ====================

@pytest.fixture
def now() -> datetime:
    return FIXED_NOW


# ==================== SAMPLE DATA FIXTURES ====================

def make_user(
    db_session: Session,
    email: str,
    tz: str = "UTC",
    channels: Optional[List[str]] = None,
    time_format: TimeFormat = TimeFormat.H24
) -> User:
    user = User(email=email, name=email.split("@")[0].title())
    db_session.add(user)
    db_session.flush()
    db_session.add(UserSettings(
        user_id=user.id,
        timezone=tz,
        time_format=time_format,
        default_channels=channels if channels is not None else [Channel.EMAIL.value],
    ))
    db_session.commit()
    db_session.refresh(user)
    return user


@pytest.fixture
def test_user(db_session: Session) -> User:
    """Create and return a test user in UTC"""
    return make_user(db_session, "jane@example.com")


@pytest.fixture
def other_user(db_session: Session) -> User:
    """A second account, used to check ownership scoping"""
    return make_user(db_session, "sam@example.com", tz="Europe/Berlin")


@pytest.fixture
def auth_headers(test_user: User) -> Dict[str, str]:
    return {"X-User-Id": str(test_user.id)}


@pytest.fixture
def test_medication(db_session: Session, test_user: User) -> Medication:
    """Metformin with 30 tablets in stock and a threshold of 10"""
    medication = Medication(
        user_id=test_user.id,
        name="Metformin",
        form=MedForm.TABLET,
        strength_value=500,
        strength_unit=Unit.MG,
    )
    db_session.add(medication)
    db_session.flush()
    db_session.add(Inventory(
        medication_id=medication.id,
        current_qty=30,
        unit=Unit.TAB,
        low_threshold=10,
    ))
    db_session.commit()
    db_session.refresh(medication)
    return medication


@pytest.fixture
def test_prescription(db_session: Session, test_user: User, test_medication: Medication) -> Prescription:
    prescription = Prescription(
        user_id=test_user.id,
        medication_id=test_medication.id,
        start_date=date(2025, 3, 1),
        as_needed=False,
        indication="Type 2 diabetes",
    )
    db_session.add(prescription)
    db_session.commit()
    db_session.refresh(prescription)
    return prescription


@pytest.fixture
def test_schedule(db_session: Session, test_prescription: Prescription) -> Schedule:
    """MON/WED/FRI at 08:00 and 20:00 UTC, one tablet per dose"""
    schedule = Schedule(
        prescription_id=test_prescription.id,
        timezone="UTC",
        days_of_week=["MON", "WED", "FRI"],
        times=["08:00", "20:00"],
        dose_quantity=1,
        dose_unit=Unit.TAB,
    )
    db_session.add(schedule)
    db_session.commit()
    db_session.refresh(schedule)
    return schedule


@pytest.fixture
def make_dose(db_session: Session, test_prescription: Prescription, test_schedule: Schedule):
    """Factory for persisted dose instances; scheduled_for is stored as naive UTC"""
    def _make(scheduled_for: datetime, status: DoseStatus = DoseStatus.SCHEDULED, **kwargs) -> DoseLog:
        naive = scheduled_for.astimezone(timezone.utc).replace(tzinfo=None) if scheduled_for.tzinfo else scheduled_for
        dose = DoseLog(
            prescription_id=kwargs.pop("prescription_id", test_prescription.id),
            schedule_id=kwargs.pop("schedule_id", test_schedule.id),
            scheduled_for=naive,
            slot_for=kwargs.pop("slot_for", naive),
            status=status,
            **kwargs
        )
        db_session.add(dose)
        db_session.commit()
        db_session.refresh(dose)
        return dose
    return _make


# ==================== TRANSPORT FAKES ====================

class FakeTransport:
    """Records every send; answers with a fixed status or raises"""

    def __init__(self, status: NotificationStatus = NotificationStatus.SENT, raises: Optional[Exception] = None):
        self.status = status
        self.raises = raises
        self.calls = []

    async def send(self, user_id, channel, payload, db=None) -> DeliveryResult:
        self.calls.append((user_id, Channel(channel), payload))
        if self.raises is not None:
            raise self.raises
        return DeliveryResult(
            status=self.status,
            channel=Channel(channel),
            reason=None if self.status == NotificationStatus.SENT else "delivery_failed",
        )


@pytest.fixture
def fake_transport() -> FakeTransport:
    return FakeTransport()


# ==================== PYTEST CONFIGURATION ====================

def pytest_configure(config):
    """Register custom markers"""
    config.addinivalue_line("markers", "unit: mark test as a unit test")
    config.addinivalue_line("markers", "integration: mark test as an integration test")
    config.addinivalue_line("markers", "api: mark test as an API test")
    config.addinivalue_line("markers", "database: mark test as requiring database")
