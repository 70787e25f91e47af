"""Decode sparse remote vehicle state payloads into typed snapshots."""

import logging
from dataclasses import dataclass, field, fields, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from models import ChargerState, GearStatus, PowerState, TirePressureStatus
from utils.timezone import utc_now

logger = logging.getLogger(__name__)

METERS_PER_MILE = 1609.344
MILES_PER_KM = 0.621371


@dataclass
class VehicleSnapshot:
    """
    One decoded vehicle state.

    Every telemetry field is independently optional: None (or UNKNOWN for
    enumerations) means "not reported", never false or zero.
    """

    timestamp: datetime = field(default_factory=utc_now)

    # Location
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    altitude: Optional[float] = None
    speed: Optional[float] = None
    heading: Optional[float] = None

    active_driver_name: Optional[str] = None

    # Battery & range
    battery_level: Optional[float] = None
    battery_limit: Optional[float] = None
    battery_capacity_kwh: Optional[float] = None
    range_estimate_miles: Optional[float] = None
    twelve_volt_battery_health: Optional[str] = None
    battery_cell_type: Optional[str] = None
    odometer_miles: Optional[float] = None

    # Power & drive
    power_state: PowerState = PowerState.UNKNOWN
    gear_status: GearStatus = GearStatus.UNKNOWN
    drive_mode: Optional[str] = None

    # Charging
    charger_state: ChargerState = ChargerState.UNKNOWN
    time_to_end_of_charge: Optional[int] = None
    charge_port_open: Optional[bool] = None
    charger_derate_status: Optional[str] = None

    limited_accel_cold: Optional[bool] = None
    limited_regen_cold: Optional[bool] = None

    # Climate (Celsius)
    cabin_temperature: Optional[float] = None
    climate_target_temp: Optional[float] = None
    is_preconditioning_active: Optional[bool] = None
    is_pet_mode_active: Optional[bool] = None
    is_defrost_active: Optional[bool] = None

    # Closures
    all_doors_closed: Optional[bool] = None
    all_doors_locked: Optional[bool] = None
    all_windows_closed: Optional[bool] = None
    frunk_closed: Optional[bool] = None
    frunk_locked: Optional[bool] = None
    liftgate_closed: Optional[bool] = None
    tailgate_closed: Optional[bool] = None
    tonneau_closed: Optional[bool] = None
    gear_guard_status: Optional[str] = None

    # Tires
    tire_pressure_status_front_left: TirePressureStatus = TirePressureStatus.UNKNOWN
    tire_pressure_status_front_right: TirePressureStatus = TirePressureStatus.UNKNOWN
    tire_pressure_status_rear_left: TirePressureStatus = TirePressureStatus.UNKNOWN
    tire_pressure_status_rear_right: TirePressureStatus = TirePressureStatus.UNKNOWN

    # Software
    ota_current_version: Optional[str] = None
    ota_available_version: Optional[str] = None
    ota_status: Optional[str] = None
    ota_install_progress: Optional[int] = None

    raw_data: Optional[Dict[str, Any]] = None

    @property
    def is_awake(self) -> bool:
        """Awake means a known power state other than sleep, or a known gear other than park."""
        if self.power_state not in (PowerState.UNKNOWN, PowerState.SLEEP):
            return True
        return self.gear_status not in (GearStatus.UNKNOWN, GearStatus.PARK)

    def copy(self, **changes) -> "VehicleSnapshot":
        return replace(self, **changes)


# Telemetry field names, excluding the snapshot timestamp
TELEMETRY_FIELDS = tuple(f.name for f in fields(VehicleSnapshot) if f.name != "timestamp")


def is_unset(value: Any) -> bool:
    """True for the null marker of a field: None, or UNKNOWN for enumerations."""
    if value is None:
        return True
    return isinstance(value, Enum) and value.value == "unknown"


class TelemetryDecoder:
    """
    Decodes the remote API's vehicle state payload.

    The payload is a mapping of remote field names to ``{"value": ...,
    "timeStamp": ...}`` objects. Fields missing from the payload, or with a
    null value, stay unset on the decoded snapshot.
    """

    # Direct numeric/string fields: remote name -> (snapshot field, converter)
    FIELD_MAP = {
        'gnssAltitude': ('altitude', float),
        'gnssSpeed': ('speed', float),
        'gnssBearing': ('heading', float),
        'activeDriverName': ('active_driver_name', str),
        'batteryLevel': ('battery_level', float),
        'batteryLimit': ('battery_limit', float),
        'batteryCapacity': ('battery_capacity_kwh', float),
        'twelveVoltBatteryHealth': ('twelve_volt_battery_health', str),
        'batteryCellType': ('battery_cell_type', str),
        'driveMode': ('drive_mode', str),
        'timeToEndOfCharge': ('time_to_end_of_charge', int),
        'chargerDerateStatus': ('charger_derate_status', str),
        'cabinClimateInteriorTemperature': ('cabin_temperature', float),
        'cabinClimateDriverTemperature': ('climate_target_temp', float),
        'otaCurrentVersion': ('ota_current_version', str),
        'otaAvailableVersion': ('ota_available_version', str),
        'otaStatus': ('ota_status', str),
        'otaInstallProgress': ('ota_install_progress', int),
    }

    CLOSURE_MAP = {
        'closureFrunkClosed': 'frunk_closed',
        'closureLiftgateClosed': 'liftgate_closed',
        'closureTailgateClosed': 'tailgate_closed',
        'closureTonneauClosed': 'tonneau_closed',
    }

    TIRE_MAP = {
        'tirePressureStatusFrontLeft': 'tire_pressure_status_front_left',
        'tirePressureStatusFrontRight': 'tire_pressure_status_front_right',
        'tirePressureStatusRearLeft': 'tire_pressure_status_rear_left',
        'tirePressureStatusRearRight': 'tire_pressure_status_rear_right',
    }

    DOOR_CLOSED_FIELDS = ('doorFrontLeftClosed', 'doorFrontRightClosed', 'doorRearLeftClosed', 'doorRearRightClosed')
    DOOR_LOCKED_FIELDS = ('doorFrontLeftLocked', 'doorFrontRightLocked', 'doorRearLeftLocked', 'doorRearRightLocked')
    WINDOW_CLOSED_FIELDS = (
        'windowFrontLeftClosed', 'windowFrontRightClosed', 'windowRearLeftClosed', 'windowRearRightClosed'
    )

    @classmethod
    def decode(cls, payload: Optional[dict], timestamp: Optional[datetime] = None) -> VehicleSnapshot:
        """
        Decode a remote state payload into a VehicleSnapshot.

        Args:
            payload: Mapping of remote field name to value object
            timestamp: Receipt time (defaults to now)

        Returns:
            VehicleSnapshot with only the reported fields set
        """
        payload = payload or {}
        values = {}

        for remote_name, (field_name, converter) in cls.FIELD_MAP.items():
            raw = cls._value(payload, remote_name)
            if raw is None:
                continue
            try:
                values[field_name] = converter(raw)
            except (TypeError, ValueError):
                logger.debug(f"Ignoring unparseable {remote_name}={raw!r}")

        location = cls._value(payload, 'gnssLocation')
        if isinstance(location, dict):
            values['latitude'] = cls._parse_float(location.get('latitude'))
            values['longitude'] = cls._parse_float(location.get('longitude'))

        mileage_m = cls._parse_float(cls._value(payload, 'vehicleMileage'))
        if mileage_m is not None:
            values['odometer_miles'] = mileage_m / METERS_PER_MILE

        range_km = cls._parse_float(cls._value(payload, 'distanceToEmpty'))
        if range_km is not None:
            values['range_estimate_miles'] = range_km * MILES_PER_KM

        values['power_state'] = parse_power_state(cls._value(payload, 'powerState'))
        values['gear_status'] = parse_gear_status(cls._value(payload, 'gearStatus'))
        values['charger_state'] = parse_charger_state(
            cls._value(payload, 'chargerState') or cls._value(payload, 'chargerStatus')
        )

        port = cls._value(payload, 'chargePortState')
        if port:
            values['charge_port_open'] = str(port).lower() == 'open'

        for remote_name, field_name in (('limitedAccelCold', 'limited_accel_cold'),
                                        ('limitedRegenCold', 'limited_regen_cold')):
            limited = cls._parse_float(cls._value(payload, remote_name))
            if limited is not None:
                values[field_name] = limited > 0

        precondition = cls._value(payload, 'cabinPreconditioningStatus')
        if precondition:
            values['is_preconditioning_active'] = str(precondition).lower() not in ('undefined', 'off')
        pet_mode = cls._value(payload, 'petModeStatus')
        if pet_mode:
            values['is_pet_mode_active'] = str(pet_mode).lower() == 'on'
        defrost = cls._value(payload, 'defrostDefogStatus')
        if defrost:
            values['is_defrost_active'] = str(defrost).lower() != 'off'

        values['all_doors_closed'] = _all_equal(
            [cls._value(payload, name) for name in cls.DOOR_CLOSED_FIELDS], 'closed'
        )
        values['all_doors_locked'] = _all_equal(
            [cls._value(payload, name) for name in cls.DOOR_LOCKED_FIELDS], 'locked'
        )
        values['all_windows_closed'] = _all_equal(
            [cls._value(payload, name) for name in cls.WINDOW_CLOSED_FIELDS], 'closed'
        )
        for remote_name, field_name in cls.CLOSURE_MAP.items():
            closure = cls._value(payload, remote_name)
            if closure:
                values[field_name] = str(closure).lower() == 'closed'
        frunk_lock = cls._value(payload, 'closureFrunkLocked')
        if frunk_lock:
            values['frunk_locked'] = str(frunk_lock).lower() == 'locked'

        gear_guard = cls._value(payload, 'gearGuardVideoStatus')
        if gear_guard:
            # "away_from_home" -> "Away From Home"
            values['gear_guard_status'] = ' '.join(word.capitalize() for word in str(gear_guard).split('_'))

        for remote_name, field_name in cls.TIRE_MAP.items():
            values[field_name] = parse_tire_pressure_status(cls._value(payload, remote_name))

        values['raw_data'] = dict(payload) if payload else None

        return VehicleSnapshot(timestamp=timestamp or utc_now(), **values)

    @staticmethod
    def _value(payload: dict, name: str) -> Any:
        """Extract the value of a remote field, accepting bare values too."""
        entry = payload.get(name)
        if isinstance(entry, dict) and 'value' in entry:
            return entry['value']
        return entry

    @staticmethod
    def _parse_float(value: Any) -> Optional[float]:
        if value is None or value == '':
            return None
        try:
            return float(value)
        except (TypeError, ValueError):
            return None


def _all_equal(values, expected: str) -> Optional[bool]:
    if all(v is None for v in values):
        return None
    return all(v is not None and str(v).lower() == expected for v in values)


def parse_power_state(value: Optional[str]) -> PowerState:
    if not value:
        return PowerState.UNKNOWN
    try:
        return PowerState(str(value).lower())
    except ValueError:
        return PowerState.UNKNOWN


def parse_gear_status(value: Optional[str]) -> GearStatus:
    if not value:
        return GearStatus.UNKNOWN
    try:
        return GearStatus(str(value).lower())
    except ValueError:
        return GearStatus.UNKNOWN


def parse_charger_state(value: Optional[str]) -> ChargerState:
    """
    Map the remote charger status string onto ChargerState.

    The remote API uses several spellings ("chrgr_sts_not_connected",
    "charging_ready", "charging_active", ...), so match on substrings in
    priority order.
    """
    if not value:
        return ChargerState.UNKNOWN

    lower = str(value).lower()
    if 'not_connected' in lower or 'disconnected' in lower:
        return ChargerState.DISCONNECTED
    if 'ready' in lower:
        return ChargerState.READY_TO_CHARGE
    if 'charging' in lower:
        return ChargerState.CHARGING
    if 'complete' in lower:
        return ChargerState.COMPLETE
    if 'connected' in lower:
        return ChargerState.CONNECTED
    if 'fault' in lower or 'error' in lower:
        return ChargerState.FAULT
    return ChargerState.UNKNOWN


def parse_tire_pressure_status(value: Optional[str]) -> TirePressureStatus:
    if not value:
        return TirePressureStatus.UNKNOWN
    try:
        return TirePressureStatus(str(value).lower())
    except ValueError:
        return TirePressureStatus.UNKNOWN
