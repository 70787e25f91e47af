import enum
from datetime import datetime, timezone

from sqlalchemy import (
    Column, Integer, String, Float, Boolean,
    DateTime, ForeignKey, Text, create_engine, JSON, Enum as SAEnum
)
from sqlalchemy.dialects.postgresql import UUID, JSONB
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.pool import StaticPool
from sqlalchemy import TypeDecorator
import uuid as uuid_module


Base = declarative_base()


def _utcnow():
    return datetime.now(timezone.utc).replace(tzinfo=None)


# Custom UUID type that works with both PostgreSQL and SQLite
class GUID(TypeDecorator):
    """Platform-independent GUID type.

    Uses PostgreSQL's UUID type when available, otherwise stores as String(36).
    """
    impl = String(36)
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == 'postgresql':
            return dialect.type_descriptor(UUID(as_uuid=True))
        else:
            return dialect.type_descriptor(String(36))

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        elif dialect.name == 'postgresql':
            return value
        else:
            return str(value)

    def process_result_value(self, value, dialect):
        if value is None:
            return value
        elif isinstance(value, uuid_module.UUID):
            return value
        else:
            return uuid_module.UUID(value)


# Custom JSON type that works with both PostgreSQL (JSONB) and SQLite (JSON)
class JSONType(TypeDecorator):
    """Platform-independent JSON type.

    Uses PostgreSQL's JSONB type when available, otherwise uses JSON.
    """
    impl = JSON
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == 'postgresql':
            return dialect.type_descriptor(JSONB)
        else:
            return dialect.type_descriptor(JSON)


# ============================================================================
# Telemetry enumerations
# ============================================================================
# Every enumeration carries an explicit UNKNOWN member. UNKNOWN is the "not
# reported" marker used by the state buffer when merging partial updates.


class PowerState(enum.Enum):
    UNKNOWN = "unknown"
    SLEEP = "sleep"
    STANDBY = "standby"
    READY = "ready"
    GO = "go"
    CHARGING = "charging"


class GearStatus(enum.Enum):
    UNKNOWN = "unknown"
    PARK = "park"
    REVERSE = "reverse"
    NEUTRAL = "neutral"
    DRIVE = "drive"


class ChargerState(enum.Enum):
    UNKNOWN = "unknown"
    DISCONNECTED = "disconnected"
    CONNECTED = "connected"
    READY_TO_CHARGE = "ready_to_charge"
    CHARGING = "charging"
    COMPLETE = "complete"
    FAULT = "fault"


class TirePressureStatus(enum.Enum):
    UNKNOWN = "unknown"
    OK = "ok"
    LOW = "low"
    HIGH = "high"
    CRITICAL = "critical"


class BatteryPackType(enum.Enum):
    UNKNOWN = "unknown"
    STANDARD = "standard"
    LARGE = "large"
    MAX = "max"


def _enum_column(enum_cls, **kwargs):
    return Column(
        SAEnum(enum_cls, native_enum=False, length=20, values_callable=lambda e: [m.value for m in e]),
        default=enum_cls.UNKNOWN,
        nullable=False,
        **kwargs,
    )


class TelematicsAccount(Base):
    """Linked remote telematics account and its polling metadata."""

    __tablename__ = 'telematics_accounts'

    id = Column(Integer, primary_key=True)
    email = Column(String(255), nullable=False)
    remote_user_id = Column(String(255))
    display_name = Column(String(255))

    # Opaque credentials issued by the remote API
    access_token = Column(Text)
    refresh_token = Column(Text)
    token_expires_at = Column(DateTime(timezone=True))

    # Scheduling metadata
    poll_interval_seconds = Column(Integer)
    last_sync_at = Column(DateTime(timezone=True))
    last_sync_error = Column(Text)

    is_active = Column(Boolean, default=True, index=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)

    # Relationships
    vehicles = relationship('Vehicle', back_populates='account')

    def to_dict(self):
        return {
            'id': self.id,
            'email': self.email,
            'display_name': self.display_name,
            'poll_interval_seconds': self.poll_interval_seconds,
            'last_sync_at': self.last_sync_at.isoformat() if self.last_sync_at else None,
            'last_sync_error': self.last_sync_error,
            'is_active': self.is_active,
        }


class Vehicle(Base):
    """A vehicle bound to a remote vehicle id, with cached static specs."""

    __tablename__ = 'vehicles'

    id = Column(Integer, primary_key=True)
    public_id = Column(GUID(), default=uuid_module.uuid4, unique=True, nullable=False)
    account_id = Column(Integer, ForeignKey('telematics_accounts.id'), index=True)
    remote_vehicle_id = Column(String(255), unique=True, nullable=False)
    vin = Column(String(17))
    name = Column(String(255))
    model = Column(String(50))
    year = Column(Integer)

    # Static battery specs, inferred once and cached
    battery_pack = _enum_column(BatteryPackType)
    original_capacity_kwh = Column(Float)
    battery_cell_type = Column(String(50))
    software_version = Column(String(50))

    created_at = Column(DateTime(timezone=True), default=_utcnow)
    last_seen_at = Column(DateTime(timezone=True))
    is_active = Column(Boolean, default=True, index=True)

    # Relationships
    account = relationship('TelematicsAccount', back_populates='vehicles')
    state = relationship('VehicleState', back_populates='vehicle', uselist=False)
    health_snapshots = relationship('BatteryHealthSnapshot', back_populates='vehicle')

    @property
    def display_name(self):
        return self.name or self.remote_vehicle_id

    def to_dict(self):
        return {
            'id': self.id,
            'public_id': str(self.public_id) if self.public_id else None,
            'account_id': self.account_id,
            'remote_vehicle_id': self.remote_vehicle_id,
            'vin': self.vin,
            'name': self.name,
            'model': self.model,
            'year': self.year,
            'battery_pack': self.battery_pack.value if self.battery_pack else None,
            'original_capacity_kwh': self.original_capacity_kwh,
            'battery_cell_type': self.battery_cell_type,
            'software_version': self.software_version,
            'last_seen_at': self.last_seen_at.isoformat() if self.last_seen_at else None,
            'is_active': self.is_active,
        }


class VehicleState(Base):
    """Canonical merged telemetry for a vehicle. Exactly one row per vehicle."""

    __tablename__ = 'vehicle_states'

    id = Column(Integer, primary_key=True)
    vehicle_id = Column(Integer, ForeignKey('vehicles.id'), unique=True, nullable=False)
    timestamp = Column(DateTime(timezone=True), nullable=False, index=True)

    # Location
    latitude = Column(Float)
    longitude = Column(Float)
    altitude = Column(Float)  # meters
    speed = Column(Float)  # m/s
    heading = Column(Float)  # degrees

    active_driver_name = Column(String(255))

    # Battery & range
    battery_level = Column(Float)
    battery_limit = Column(Float)
    battery_capacity_kwh = Column(Float)
    range_estimate_miles = Column(Float)
    twelve_volt_battery_health = Column(String(50))
    battery_cell_type = Column(String(50))
    odometer_miles = Column(Float)

    # Power & drive
    power_state = _enum_column(PowerState)
    gear_status = _enum_column(GearStatus)
    drive_mode = Column(String(50))

    # Charging
    charger_state = _enum_column(ChargerState)
    time_to_end_of_charge = Column(Integer)
    charge_port_open = Column(Boolean)
    charger_derate_status = Column(String(50))

    # Cold weather limits
    limited_accel_cold = Column(Boolean)
    limited_regen_cold = Column(Boolean)

    # Climate
    cabin_temperature = Column(Float)  # Celsius
    climate_target_temp = Column(Float)
    is_preconditioning_active = Column(Boolean)
    is_pet_mode_active = Column(Boolean)
    is_defrost_active = Column(Boolean)

    # Closures
    all_doors_closed = Column(Boolean)
    all_doors_locked = Column(Boolean)
    all_windows_closed = Column(Boolean)
    frunk_closed = Column(Boolean)
    frunk_locked = Column(Boolean)
    liftgate_closed = Column(Boolean)
    tailgate_closed = Column(Boolean)
    tonneau_closed = Column(Boolean)
    gear_guard_status = Column(String(50))

    # Tires
    tire_pressure_status_front_left = _enum_column(TirePressureStatus)
    tire_pressure_status_front_right = _enum_column(TirePressureStatus)
    tire_pressure_status_rear_left = _enum_column(TirePressureStatus)
    tire_pressure_status_rear_right = _enum_column(TirePressureStatus)

    # Software
    ota_current_version = Column(String(50))
    ota_available_version = Column(String(50))
    ota_status = Column(String(50))
    ota_install_progress = Column(Integer)

    raw_data = Column(JSONType())
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    # Relationships
    vehicle = relationship('Vehicle', back_populates='state')

    def to_dict(self):
        data = {}
        for column in self.__table__.columns:
            if column.name in ('id', 'raw_data', 'updated_at'):
                continue
            value = getattr(self, column.name)
            if isinstance(value, enum.Enum):
                value = value.value
            elif isinstance(value, datetime):
                value = value.isoformat()
            data[column.name] = value
        return data


class BatteryHealthSnapshot(Base):
    """Immutable battery capacity reading, appended at a throttled rate."""

    __tablename__ = 'battery_health_snapshots'

    id = Column(Integer, primary_key=True)
    vehicle_id = Column(Integer, ForeignKey('vehicles.id'), nullable=False, index=True)
    timestamp = Column(DateTime(timezone=True), nullable=False, index=True)
    odometer_miles = Column(Float)

    # Capacity as reported by the vehicle
    reported_capacity_kwh = Column(Float, nullable=False)
    state_of_charge = Column(Float)
    temperature_c = Column(Float)

    # Reference and derived health metrics
    original_capacity_kwh = Column(Float, nullable=False)
    health_percent = Column(Float, nullable=False)
    capacity_lost_kwh = Column(Float)
    degradation_percent = Column(Float)
    reading_confidence = Column(Float)

    # Smoothing across recent readings
    smoothed_capacity_kwh = Column(Float)
    smoothed_health_percent = Column(Float)
    remaining_warranty_capacity_kwh = Column(Float)

    created_at = Column(DateTime(timezone=True), default=_utcnow)

    # Relationships
    vehicle = relationship('Vehicle', back_populates='health_snapshots')

    def to_dict(self):
        return {
            'id': self.id,
            'vehicle_id': self.vehicle_id,
            'timestamp': self.timestamp.isoformat() if self.timestamp else None,
            'odometer_miles': self.odometer_miles,
            'reported_capacity_kwh': self.reported_capacity_kwh,
            'state_of_charge': self.state_of_charge,
            'temperature_c': self.temperature_c,
            'original_capacity_kwh': self.original_capacity_kwh,
            'health_percent': self.health_percent,
            'capacity_lost_kwh': self.capacity_lost_kwh,
            'degradation_percent': self.degradation_percent,
            'reading_confidence': self.reading_confidence,
            'smoothed_capacity_kwh': self.smoothed_capacity_kwh,
            'smoothed_health_percent': self.smoothed_health_percent,
            'remaining_warranty_capacity_kwh': self.remaining_warranty_capacity_kwh,
        }


def get_engine(database_url):
    """Create database engine.

    In-memory SQLite is shared across threads so scheduler workers and the
    request thread see the same database.
    """
    if database_url.startswith("sqlite") and ":memory:" in database_url:
        return create_engine(
            database_url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    return create_engine(database_url, pool_pre_ping=True)
