"""
Battery Health Recording Service

Samples the merged vehicle state at a bounded rate and appends immutable
battery capacity snapshots, each scored with a reading confidence and
smoothed against recent history.
"""

import logging
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from calculations import (
    calculate_health_percent,
    calculate_reading_confidence,
    calculate_remaining_warranty_capacity,
    filter_weighted_outliers,
    get_original_capacity_kwh,
    health_status_label,
    weighted_mean,
)
from calculations.constants import MIN_READINGS_AFTER_FILTER
from config import Config
from exceptions import DatabaseError
from models import BatteryHealthSnapshot, Vehicle
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session
from utils.telemetry_decoder import VehicleSnapshot
from utils.timezone import normalize_datetime, seconds_between

logger = logging.getLogger(__name__)

__all__ = [
    "calculate_reading_confidence",
    "calculate_smoothed_capacity",
    "get_health_snapshots",
    "get_health_summary",
    "get_latest_snapshot",
    "maybe_record",
    "record_health_snapshot",
    "should_record",
]


def get_latest_snapshot(db: Session, vehicle_id: int) -> Optional[BatteryHealthSnapshot]:
    return (
        db.query(BatteryHealthSnapshot)
        .filter(BatteryHealthSnapshot.vehicle_id == vehicle_id)
        .order_by(BatteryHealthSnapshot.timestamp.desc(), BatteryHealthSnapshot.id.desc())
        .first()
    )


def should_record(
    latest: Optional[BatteryHealthSnapshot], capacity_kwh: float, timestamp: datetime
) -> bool:
    """
    Throttle decision for a new capacity reading.

    Records when there is no prior snapshot, the latest one is older than the
    snapshot interval, or capacity moved by more than the change threshold.
    Readings older than the latest snapshot are never recorded.
    """
    if latest is None:
        return True

    elapsed = seconds_between(latest.timestamp, timestamp)
    if elapsed < 0:
        return False

    if elapsed > Config.HEALTH_SNAPSHOT_INTERVAL_SECONDS:
        return True

    return abs(capacity_kwh - latest.reported_capacity_kwh) > Config.CAPACITY_CHANGE_THRESHOLD_KWH


def calculate_smoothed_capacity(
    current: Tuple[float, float], history: List[Tuple[float, float]]
) -> float:
    """
    Confidence-weighted capacity across the current reading and recent history.

    Args:
        current: (capacity_kwh, confidence) of the new reading
        history: (capacity_kwh, confidence) of recent snapshots, newest first

    Returns:
        Smoothed capacity in kWh. Readings outside the IQR bounds are dropped
        when at least three readings survive the filter.
    """
    readings = [current] + list(history)
    if len(readings) == 1:
        return current[0]

    smoothed = weighted_mean([c for c, _ in readings], [w for _, w in readings])

    filtered = filter_weighted_outliers(readings)
    if len(filtered) >= MIN_READINGS_AFTER_FILTER:
        smoothed = weighted_mean([c for c, _ in filtered], [w for _, w in filtered])
        outliers = len(readings) - len(filtered)
        if outliers:
            logger.debug(f"Filtered {outliers} outlier readings from capacity smoothing")

    return smoothed


def _original_capacity(vehicle: Vehicle) -> float:
    if vehicle.original_capacity_kwh:
        return vehicle.original_capacity_kwh
    return get_original_capacity_kwh(vehicle.battery_pack, vehicle.year)


def record_health_snapshot(db: Session, vehicle: Vehicle, state: VehicleSnapshot) -> BatteryHealthSnapshot:
    """
    Append a battery health snapshot built from the merged state.

    Args:
        db: Database session
        vehicle: Vehicle the reading belongs to
        state: Merged state carrying a reported capacity

    Returns:
        The committed snapshot

    Raises:
        DatabaseError: If the snapshot could not be written
    """
    reported = state.battery_capacity_kwh
    original = _original_capacity(vehicle)
    health_percent = calculate_health_percent(reported, original)
    confidence = calculate_reading_confidence(state.battery_level, state.cabin_temperature)

    history = (
        db.query(BatteryHealthSnapshot.reported_capacity_kwh, BatteryHealthSnapshot.reading_confidence)
        .filter(BatteryHealthSnapshot.vehicle_id == vehicle.id)
        .order_by(BatteryHealthSnapshot.timestamp.desc(), BatteryHealthSnapshot.id.desc())
        .limit(Config.HEALTH_SMOOTHING_WINDOW)
        .all()
    )
    smoothed = calculate_smoothed_capacity(
        (reported, confidence),
        [(capacity, weight if weight is not None else 0.5) for capacity, weight in history],
    )

    snapshot = BatteryHealthSnapshot(
        vehicle_id=vehicle.id,
        timestamp=normalize_datetime(state.timestamp),
        odometer_miles=state.odometer_miles,
        reported_capacity_kwh=reported,
        state_of_charge=state.battery_level,
        temperature_c=state.cabin_temperature,
        original_capacity_kwh=original,
        health_percent=health_percent,
        capacity_lost_kwh=original - reported,
        degradation_percent=100.0 - health_percent,
        reading_confidence=confidence,
        smoothed_capacity_kwh=smoothed,
        smoothed_health_percent=calculate_health_percent(smoothed, original),
        remaining_warranty_capacity_kwh=calculate_remaining_warranty_capacity(reported, original),
    )

    try:
        db.add(snapshot)
        db.commit()
    except (IntegrityError, OperationalError) as e:
        error = DatabaseError(
            f"Failed to record battery health snapshot: {e}",
            {"vehicle_id": vehicle.id},
        )
        logger.error(str(error), exc_info=True)
        db.rollback()
        raise error from e

    odometer = f"{snapshot.odometer_miles:.0f} miles" if snapshot.odometer_miles is not None else "unknown odometer"
    logger.info(
        f"Recorded battery health for vehicle {vehicle.id}: {health_percent:.1f}% raw, "
        f"{snapshot.smoothed_health_percent:.1f}% smoothed ({reported:.1f} kWh, "
        f"confidence {confidence:.2f}) at {odometer}"
    )
    return snapshot


def maybe_record(db: Session, vehicle: Vehicle, state: VehicleSnapshot) -> Optional[BatteryHealthSnapshot]:
    """
    Record a snapshot if the merged state carries a capacity worth keeping.

    Returns:
        The new snapshot, or None if nothing was recorded
    """
    if state.battery_capacity_kwh is None:
        return None

    latest = get_latest_snapshot(db, vehicle.id)
    if not should_record(latest, state.battery_capacity_kwh, state.timestamp):
        return None

    return record_health_snapshot(db, vehicle, state)


def get_health_snapshots(
    db: Session, vehicle_id: int, start: Optional[datetime] = None, end: Optional[datetime] = None
) -> List[BatteryHealthSnapshot]:
    """Snapshots for a vehicle in timestamp order, optionally bounded (inclusive)."""
    query = db.query(BatteryHealthSnapshot).filter(BatteryHealthSnapshot.vehicle_id == vehicle_id)
    if start is not None:
        query = query.filter(BatteryHealthSnapshot.timestamp >= normalize_datetime(start))
    if end is not None:
        query = query.filter(BatteryHealthSnapshot.timestamp <= normalize_datetime(end))
    return query.order_by(BatteryHealthSnapshot.timestamp, BatteryHealthSnapshot.id).all()


def get_health_summary(db: Session, vehicle_id: int) -> Optional[Dict]:
    """
    Latest battery health with a status label and change since the first snapshot.

    Returns:
        Summary dict, or None if the vehicle has no snapshots
    """
    latest = get_latest_snapshot(db, vehicle_id)
    if latest is None:
        return None

    first = (
        db.query(BatteryHealthSnapshot)
        .filter(BatteryHealthSnapshot.vehicle_id == vehicle_id)
        .order_by(BatteryHealthSnapshot.timestamp, BatteryHealthSnapshot.id)
        .first()
    )
    snapshot_count = db.query(BatteryHealthSnapshot).filter(BatteryHealthSnapshot.vehicle_id == vehicle_id).count()

    health = latest.smoothed_health_percent or latest.health_percent

    return {
        "vehicle_id": vehicle_id,
        "health_percent": round(health, 1),
        "status": health_status_label(health),
        "reported_capacity_kwh": latest.reported_capacity_kwh,
        "original_capacity_kwh": latest.original_capacity_kwh,
        "remaining_warranty_capacity_kwh": latest.remaining_warranty_capacity_kwh,
        "odometer_miles": latest.odometer_miles,
        "last_recorded_at": latest.timestamp.isoformat() if latest.timestamp else None,
        "first_recorded_at": first.timestamp.isoformat() if first.timestamp else None,
        "health_change_percent": round(health - (first.smoothed_health_percent or first.health_percent), 2),
        "snapshot_count": snapshot_count,
    }
