"""
Pytest fixtures for telematics tracker tests.
"""

import os
import sys
from datetime import timedelta

import pytest

# Add receiver to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'receiver'))

# Set DATABASE_URL BEFORE importing app to use SQLite for tests
os.environ['DATABASE_URL'] = 'sqlite:///:memory:'
os.environ['FLASK_TESTING'] = 'true'

from app import app as flask_app  # noqa: E402
from database import engine  # noqa: E402
from models import (  # noqa: E402
    Base,
    BatteryHealthSnapshot,
    TelematicsAccount,
    Vehicle,
)
from sqlalchemy.orm import sessionmaker  # noqa: E402
from utils.timezone import utc_now  # noqa: E402

# Independent of the scoped SessionLocal, which scheduler jobs remove when they finish
TestSession = sessionmaker(bind=engine, expire_on_commit=False)


@pytest.fixture
def app():
    """Create application for testing."""
    flask_app.config['TESTING'] = True

    Base.metadata.create_all(engine)

    yield flask_app

    Base.metadata.drop_all(engine)


@pytest.fixture
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture
def db_session(app):
    """Provide a database session for tests."""
    session = TestSession()
    yield session
    session.rollback()
    session.close()


@pytest.fixture(autouse=True)
def reset_shared_state(monkeypatch):
    """Give every test an empty state buffer and no shared poll scheduler."""
    import services.scheduler as scheduler_module
    from services.state_buffer import state_buffer

    for vehicle_id in list(state_buffer.get_buffer_stats()):
        state_buffer.clear_vehicle(vehicle_id)
    monkeypatch.setattr(scheduler_module, 'poll_scheduler', None)
    yield
    if scheduler_module.poll_scheduler is not None:
        scheduler_module.poll_scheduler.shutdown(wait=False)


# ============================================================================
# Model factories
# ============================================================================

@pytest.fixture
def account(db_session):
    """An active account with tokens."""
    account = TelematicsAccount(
        email='driver@example.com',
        display_name='Test Driver',
        access_token='access-token',
        refresh_token='refresh-token',
        is_active=True,
    )
    db_session.add(account)
    db_session.commit()
    return account


@pytest.fixture
def vehicle(db_session, account):
    """A 2023 vehicle on the test account."""
    vehicle = Vehicle(
        account_id=account.id,
        remote_vehicle_id='remote-vehicle-1',
        vin='7FCTGAAA1PN000001',
        name='Adventure Truck',
        model='R1T',
        year=2023,
    )
    db_session.add(vehicle)
    db_session.commit()
    return vehicle


@pytest.fixture
def make_snapshots(db_session):
    """Factory adding battery health snapshots for a vehicle.

    Each point is (odometer_miles, health_percent, confidence); snapshots are
    spaced one day apart, oldest first.
    """

    def _make(vehicle, points, original_capacity=131.0):
        start = utc_now() - timedelta(days=len(points))
        snapshots = []
        for i, (odometer, health, confidence) in enumerate(points):
            capacity = original_capacity * health / 100.0
            snapshot = BatteryHealthSnapshot(
                vehicle_id=vehicle.id,
                timestamp=start + timedelta(days=i),
                odometer_miles=odometer,
                reported_capacity_kwh=capacity,
                original_capacity_kwh=original_capacity,
                health_percent=health,
                capacity_lost_kwh=original_capacity - capacity,
                degradation_percent=100.0 - health,
                reading_confidence=confidence,
            )
            db_session.add(snapshot)
            snapshots.append(snapshot)
        db_session.commit()
        return snapshots

    return _make


def remote_field(value, timestamp='2026-01-01T12:00:00Z'):
    """Wrap a value the way the remote API reports each field."""
    return {'value': value, 'timeStamp': timestamp}


@pytest.fixture
def sample_payload():
    """A full remote state payload for an awake, parked vehicle."""
    return {
        'gnssLocation': remote_field({'latitude': 40.7128, 'longitude': -74.0060}),
        'batteryLevel': remote_field(80.0),
        'batteryLimit': remote_field(85.0),
        'batteryCapacity': remote_field(125.0),
        'distanceToEmpty': remote_field(400.0),
        'vehicleMileage': remote_field(16093440.0),
        'powerState': remote_field('ready'),
        'gearStatus': remote_field('park'),
        'chargerState': remote_field('chrgr_sts_not_connected'),
        'cabinClimateInteriorTemperature': remote_field(21.5),
        'otaCurrentVersion': remote_field('2026.02.1'),
        'doorFrontLeftClosed': remote_field('closed'),
        'doorFrontRightClosed': remote_field('closed'),
        'doorRearLeftClosed': remote_field('closed'),
        'doorRearRightClosed': remote_field('closed'),
        'tirePressureStatusFrontLeft': remote_field('OK'),
    }
