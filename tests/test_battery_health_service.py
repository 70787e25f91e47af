"""
Tests for battery health snapshot recording.

Covers:
- Throttling by interval and capacity change
- Confidence scoring and smoothing of recorded readings
- Snapshot queries and the health summary
"""

from datetime import datetime, timedelta

import pytest
from models import BatteryHealthSnapshot, BatteryPackType
from services import battery_health_service
from services.battery_health_service import (
    calculate_smoothed_capacity,
    get_health_snapshots,
    get_health_summary,
    maybe_record,
    record_health_snapshot,
    should_record,
)
from utils.telemetry_decoder import VehicleSnapshot

BASE_TIME = datetime(2026, 1, 1, 12, 0, 0)


def state(minutes=0, capacity=125.0, **fields):
    fields.setdefault('battery_level', 95.0)
    fields.setdefault('cabin_temperature', 22.0)
    fields.setdefault('odometer_miles', 10000.0)
    return VehicleSnapshot(
        timestamp=BASE_TIME + timedelta(minutes=minutes),
        battery_capacity_kwh=capacity,
        **fields,
    )


class TestShouldRecord:
    """Throttle decisions."""

    def _latest(self, capacity=125.0):
        return BatteryHealthSnapshot(timestamp=BASE_TIME, reported_capacity_kwh=capacity)

    def test_first_reading(self):
        """No prior snapshot always records."""
        assert should_record(None, 125.0, BASE_TIME) is True

    def test_within_interval_small_change(self):
        """A small change inside the interval is skipped."""
        assert should_record(self._latest(), 125.3, BASE_TIME + timedelta(minutes=30)) is False

    def test_within_interval_large_change(self):
        """A capacity jump beyond the threshold records immediately."""
        assert should_record(self._latest(), 124.0, BASE_TIME + timedelta(minutes=30)) is True

    def test_after_interval(self):
        """Once the interval passes, any reading records."""
        assert should_record(self._latest(), 125.0, BASE_TIME + timedelta(hours=1, seconds=1)) is True

    def test_older_reading_never_recorded(self):
        """Readings timestamped before the latest snapshot are ignored."""
        assert should_record(self._latest(), 100.0, BASE_TIME - timedelta(hours=5)) is False


class TestSmoothing:
    """Tests for calculate_smoothed_capacity."""

    def test_single_reading(self):
        """Without history the reading is its own smoothed value."""
        assert calculate_smoothed_capacity((120.0, 0.8), []) == 120.0

    def test_confidence_weighted(self):
        """Confident readings dominate."""
        smoothed = calculate_smoothed_capacity((120.0, 1.0), [(110.0, 0.1)])

        assert smoothed == pytest.approx((120.0 * 1.0 + 110.0 * 0.1) / 1.1)

    def test_outlier_dropped(self):
        """A far-off reading is excluded when enough readings remain."""
        history = [(121.0, 1.0), (122.0, 1.0), (123.0, 1.0), (80.0, 1.0)]

        smoothed = calculate_smoothed_capacity((120.0, 1.0), history)

        assert smoothed == pytest.approx(121.5)


class TestRecordHealthSnapshot:
    """Tests for record_health_snapshot and maybe_record."""

    def test_records_derived_metrics(self, db_session, vehicle):
        """Health, loss and warranty margin are derived from original capacity."""
        snapshot = record_health_snapshot(db_session, vehicle, state(capacity=117.9))

        assert snapshot.id is not None
        assert snapshot.original_capacity_kwh == 131.0
        assert snapshot.health_percent == pytest.approx(90.0)
        assert snapshot.capacity_lost_kwh == pytest.approx(13.1)
        assert snapshot.degradation_percent == pytest.approx(10.0)
        assert snapshot.remaining_warranty_capacity_kwh == pytest.approx(117.9 - 91.7)
        assert snapshot.reading_confidence == pytest.approx(1.0)
        assert snapshot.smoothed_capacity_kwh == pytest.approx(117.9)
        assert snapshot.odometer_miles == 10000.0

    def test_uses_cached_original_capacity(self, db_session, vehicle):
        """A vehicle's inferred original capacity takes precedence."""
        vehicle.battery_pack = BatteryPackType.MAX
        vehicle.original_capacity_kwh = 141.0
        db_session.commit()

        snapshot = record_health_snapshot(db_session, vehicle, state(capacity=141.0))

        assert snapshot.health_percent == pytest.approx(100.0)

    def test_missing_odometer_left_unset(self, db_session, vehicle):
        """An unknown odometer is stored as null rather than zero."""
        snapshot = record_health_snapshot(db_session, vehicle, state(odometer_miles=None))

        assert snapshot.odometer_miles is None

    def test_smoothing_uses_history(self, db_session, vehicle):
        """The second snapshot is smoothed against the first."""
        record_health_snapshot(db_session, vehicle, state(capacity=120.0))
        second = record_health_snapshot(db_session, vehicle, state(minutes=90, capacity=118.0))

        assert second.smoothed_capacity_kwh == pytest.approx(119.0)

    def test_maybe_record_without_capacity(self, db_session, vehicle):
        """States without a reported capacity are skipped."""
        assert maybe_record(db_session, vehicle, state(capacity=None)) is None

    def test_maybe_record_throttles(self, db_session, vehicle):
        """A second unchanged reading inside the interval is skipped."""
        assert maybe_record(db_session, vehicle, state()) is not None
        assert maybe_record(db_session, vehicle, state(minutes=10)) is None
        assert maybe_record(db_session, vehicle, state(minutes=61)) is not None

        assert db_session.query(BatteryHealthSnapshot).count() == 2

    def test_confidence_reexported(self):
        """The confidence scorer is available from the service."""
        assert battery_health_service.calculate_reading_confidence(95, 22) == pytest.approx(1.0)


class TestQueries:
    """Tests for snapshot queries and the summary."""

    def test_snapshots_in_range(self, db_session, vehicle, make_snapshots):
        """Range bounds are inclusive and results are oldest first."""
        snapshots = make_snapshots(vehicle, [(1000, 99.0, 1.0), (2000, 98.0, 1.0), (3000, 97.0, 1.0)])

        result = get_health_snapshots(
            db_session, vehicle.id, start=snapshots[1].timestamp, end=snapshots[2].timestamp
        )

        assert [s.odometer_miles for s in result] == [2000, 3000]

    def test_all_snapshots(self, db_session, vehicle, make_snapshots):
        """Without bounds every snapshot is returned."""
        make_snapshots(vehicle, [(1000, 99.0, 1.0), (2000, 98.0, 1.0)])

        assert len(get_health_snapshots(db_session, vehicle.id)) == 2

    def test_summary(self, db_session, vehicle, make_snapshots):
        """Summary reports the latest health and change since the first."""
        make_snapshots(vehicle, [(1000, 99.0, 1.0), (5000, 96.0, 1.0)])

        summary = get_health_summary(db_session, vehicle.id)

        assert summary['health_percent'] == 96.0
        assert summary['status'] == 'Excellent'
        assert summary['health_change_percent'] == pytest.approx(-3.0)
        assert summary['snapshot_count'] == 2
        assert summary['odometer_miles'] == 5000

    def test_summary_without_snapshots(self, db_session, vehicle):
        """No snapshots, no summary."""
        assert get_health_summary(db_session, vehicle.id) is None
