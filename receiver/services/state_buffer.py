"""
In-memory merge and dedup buffer for vehicle telemetry.

Keeps two snapshots per vehicle:
- the current state: every partial update merged onto the last known state
- the persisted state: the last state written to the database, used to decide
  whether the next one is worth writing

Each vehicle has its own lock so a push update and a scheduled poll for the
same vehicle serialize, while different vehicles never contend.
"""

import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Optional

from calculations.geo import distance_between_fixes
from config import Config
from utils.telemetry_decoder import TELEMETRY_FIELDS, VehicleSnapshot, is_unset
from utils.timezone import seconds_between

logger = logging.getLogger(__name__)

# Any change at all in these counts as significant
SIGNIFICANT_ENUM_FIELDS = ("power_state", "gear_status", "charger_state")


@dataclass
class _BufferEntry:
    current: Optional[VehicleSnapshot] = None
    persisted: Optional[VehicleSnapshot] = None
    persisted_at: Optional[datetime] = None


def merge_snapshots(previous: Optional[VehicleSnapshot], incoming: VehicleSnapshot) -> VehicleSnapshot:
    """
    Fill every unset field of ``incoming`` from ``previous``.

    The result always carries the incoming timestamp.
    """
    if previous is None:
        return incoming.copy()

    filled = {
        name: getattr(previous, name)
        for name in TELEMETRY_FIELDS
        if is_unset(getattr(incoming, name)) and not is_unset(getattr(previous, name))
    }
    return incoming.copy(**filled)


def has_significant_change(old: Optional[float], new: Optional[float], threshold: float) -> bool:
    """
    Numeric change detection with an inclusive threshold.

    Appearing or disappearing values always count; two missing values never do.
    """
    if old is None and new is None:
        return False
    if old is None or new is None:
        return True
    return abs(new - old) >= threshold


def has_location_change(last: VehicleSnapshot, current: VehicleSnapshot, threshold_meters: float) -> bool:
    last_fix = last.latitude is not None and last.longitude is not None
    current_fix = current.latitude is not None and current.longitude is not None

    if not last_fix and not current_fix:
        return False
    if last_fix != current_fix:
        return True

    distance = distance_between_fixes(last.latitude, last.longitude, current.latitude, current.longitude)
    return distance >= threshold_meters


class VehicleStateBuffer:
    """Per-vehicle current/persisted state with significance filtering."""

    def __init__(self, heartbeat_seconds: Optional[float] = None, battery_threshold: Optional[float] = None,
                 movement_threshold_meters: Optional[float] = None):
        self.heartbeat_seconds = heartbeat_seconds if heartbeat_seconds is not None else Config.STATE_HEARTBEAT_SECONDS
        self.battery_threshold = battery_threshold if battery_threshold is not None else Config.BATTERY_LEVEL_THRESHOLD
        self.movement_threshold_meters = (
            movement_threshold_meters if movement_threshold_meters is not None else Config.MIN_MOVEMENT_METERS
        )

        self._entries: Dict[int, _BufferEntry] = {}
        self._locks: Dict[int, threading.Lock] = {}
        self._registry_lock = threading.Lock()

    def _lock_for(self, vehicle_id: int) -> threading.Lock:
        with self._registry_lock:
            lock = self._locks.get(vehicle_id)
            if lock is None:
                lock = self._locks[vehicle_id] = threading.Lock()
            return lock

    def update_current(self, vehicle_id: int, incoming: VehicleSnapshot, is_partial: bool = False) -> VehicleSnapshot:
        """
        Record an update and return the merged current state.

        Full updates replace the buffered state outright. Partial updates
        keep every previously known field the update does not report.
        """
        with self._lock_for(vehicle_id):
            entry = self._entries.setdefault(vehicle_id, _BufferEntry())
            if is_partial:
                merged = merge_snapshots(entry.current, incoming)
            else:
                merged = incoming.copy()
            entry.current = merged
            return merged

    def should_persist(self, vehicle_id: int, candidate: VehicleSnapshot) -> bool:
        """Decide whether ``candidate`` differs enough from the last persisted state."""
        with self._lock_for(vehicle_id):
            entry = self._entries.setdefault(vehicle_id, _BufferEntry())
            last = entry.persisted

        if last is None:
            return True

        elapsed = seconds_between(last.timestamp, candidate.timestamp)
        if elapsed is not None and elapsed >= self.heartbeat_seconds:
            logger.debug(f"Vehicle {vehicle_id}: forcing save after {elapsed / 60:.0f} minutes (heartbeat)")
            return True

        return self._has_meaningful_change(vehicle_id, last, candidate)

    def _has_meaningful_change(self, vehicle_id: int, last: VehicleSnapshot, current: VehicleSnapshot) -> bool:
        for name in SIGNIFICANT_ENUM_FIELDS:
            old, new = getattr(last, name), getattr(current, name)
            if old != new:
                logger.debug(f"Vehicle {vehicle_id}: {name} changed {old.value} -> {new.value}")
                return True

        if has_significant_change(last.battery_level, current.battery_level, self.battery_threshold):
            logger.debug(f"Vehicle {vehicle_id}: battery_level changed {last.battery_level} -> {current.battery_level}")
            return True

        if has_location_change(last, current, self.movement_threshold_meters):
            logger.debug(f"Vehicle {vehicle_id}: moved")
            return True

        return False

    def mark_persisted(self, vehicle_id: int, state: VehicleSnapshot, persisted_at: Optional[datetime] = None) -> None:
        """Set the reference used by the next should_persist. Call after a successful write."""
        with self._lock_for(vehicle_id):
            entry = self._entries.setdefault(vehicle_id, _BufferEntry())
            entry.persisted = state
            entry.persisted_at = persisted_at or state.timestamp

    def get_current(self, vehicle_id: int) -> Optional[VehicleSnapshot]:
        with self._lock_for(vehicle_id):
            entry = self._entries.get(vehicle_id)
            return entry.current if entry else None

    def clear_vehicle(self, vehicle_id: int) -> None:
        """Forget everything buffered for a vehicle."""
        with self._registry_lock:
            self._entries.pop(vehicle_id, None)
            self._locks.pop(vehicle_id, None)

    def get_buffer_stats(self) -> Dict[int, Optional[datetime]]:
        """Last persisted time per tracked vehicle."""
        with self._registry_lock:
            return {vehicle_id: entry.persisted_at for vehicle_id, entry in self._entries.items()}


# Shared by the poll scheduler and any push update handler
state_buffer = VehicleStateBuffer()
