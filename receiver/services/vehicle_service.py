"""
Vehicle State Service

Routes decoded telemetry through the merge buffer into the single canonical
state row per vehicle, keeps the vehicle's cached specs current and hands
the merged state to the battery health recorder.
"""

import logging
from typing import List, Optional, Tuple

from calculations import get_battery_cell_type, get_original_capacity_kwh, infer_pack_from_capacity
from exceptions import DatabaseError
from models import BatteryPackType, Vehicle, VehicleState
from services import battery_health_service
from services.state_buffer import VehicleStateBuffer, state_buffer
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session
from utils.telemetry_decoder import TELEMETRY_FIELDS, TelemetryDecoder, VehicleSnapshot
from utils.timezone import normalize_datetime

logger = logging.getLogger(__name__)


def _apply_snapshot(row: VehicleState, snapshot: VehicleSnapshot) -> None:
    row.timestamp = normalize_datetime(snapshot.timestamp)
    for name in TELEMETRY_FIELDS:
        setattr(row, name, getattr(snapshot, name))


def upsert_vehicle_state(db: Session, vehicle_id: int, snapshot: VehicleSnapshot) -> VehicleState:
    """
    Write the canonical state row for a vehicle, creating it on first use.

    A concurrent writer creating the row first surfaces as an IntegrityError
    on the unique vehicle_id; the row is then reloaded and updated.

    Raises:
        DatabaseError: If the write fails
    """
    try:
        row = db.query(VehicleState).filter(VehicleState.vehicle_id == vehicle_id).first()
        if row is None:
            row = VehicleState(vehicle_id=vehicle_id)
            db.add(row)
        _apply_snapshot(row, snapshot)
        db.commit()
        return row
    except IntegrityError:
        db.rollback()
        logger.debug(f"Vehicle {vehicle_id}: state row created concurrently, updating instead")

    try:
        row = db.query(VehicleState).filter(VehicleState.vehicle_id == vehicle_id).one()
        _apply_snapshot(row, snapshot)
        db.commit()
        return row
    except (IntegrityError, OperationalError) as e:
        error = DatabaseError(f"Failed to save vehicle state: {e}", {"vehicle_id": vehicle_id})
        logger.error(str(error), exc_info=True)
        db.rollback()
        raise error from e


def update_vehicle_specs(vehicle: Vehicle, snapshot: VehicleSnapshot) -> None:
    """
    Refresh cached vehicle metadata from a merged state.

    The battery pack is inferred from reported capacity once and then kept.
    """
    vehicle.last_seen_at = normalize_datetime(snapshot.timestamp)

    if snapshot.ota_current_version and vehicle.software_version != snapshot.ota_current_version:
        logger.info(
            f"Vehicle {vehicle.id} software updated: {vehicle.software_version} -> {snapshot.ota_current_version}"
        )
        vehicle.software_version = snapshot.ota_current_version

    if (vehicle.battery_pack in (None, BatteryPackType.UNKNOWN)) and snapshot.battery_capacity_kwh is not None:
        pack = infer_pack_from_capacity(snapshot.battery_capacity_kwh, vehicle.year)
        vehicle.battery_pack = pack
        vehicle.original_capacity_kwh = get_original_capacity_kwh(pack, vehicle.year)
        logger.info(
            f"Vehicle {vehicle.id} battery pack inferred from capacity: {pack.value} "
            f"({vehicle.original_capacity_kwh} kWh original)"
        )

    if not vehicle.battery_cell_type:
        cell_type = snapshot.battery_cell_type or get_battery_cell_type(vehicle.battery_pack, vehicle.year)
        if cell_type:
            vehicle.battery_cell_type = cell_type


def process_vehicle_state(
    db: Session,
    vehicle: Vehicle,
    payload: dict,
    is_partial: bool = False,
    buffer: Optional[VehicleStateBuffer] = None,
) -> Tuple[VehicleSnapshot, bool]:
    """
    Process one telemetry payload for a vehicle.

    Args:
        db: Database session
        vehicle: Vehicle the payload belongs to
        payload: Remote state payload
        is_partial: True for push updates carrying only changed fields
        buffer: State buffer (defaults to the shared one)

    Returns:
        (merged snapshot, whether the canonical state was written)
    """
    buffer = buffer or state_buffer

    snapshot = TelemetryDecoder.decode(payload)
    merged = buffer.update_current(vehicle.id, snapshot, is_partial)

    persisted = buffer.should_persist(vehicle.id, merged)
    if persisted:
        upsert_vehicle_state(db, vehicle.id, merged)
        buffer.mark_persisted(vehicle.id, merged)

    update_vehicle_specs(vehicle, merged)
    db.commit()

    if not persisted:
        return merged, False

    battery_health_service.maybe_record(db, vehicle, merged)

    return merged, True


def get_current_state(db: Session, vehicle_id: int) -> Optional[VehicleState]:
    """Canonical state row for a vehicle, or None before its first successful poll."""
    return db.query(VehicleState).filter(VehicleState.vehicle_id == vehicle_id).first()


def get_active_vehicles(db: Session, account_id: int) -> List[Vehicle]:
    return (
        db.query(Vehicle)
        .filter(Vehicle.account_id == account_id, Vehicle.is_active.is_(True))
        .order_by(Vehicle.id)
        .all()
    )
