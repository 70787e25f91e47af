"""
Tests for the remote vehicle state payload decoder.
"""

from datetime import datetime

import pytest
from models import ChargerState, GearStatus, PowerState, TirePressureStatus
from utils.telemetry_decoder import (
    TelemetryDecoder,
    VehicleSnapshot,
    is_unset,
    parse_charger_state,
    parse_power_state,
)


def remote_field(value, timestamp='2026-01-01T12:00:00Z'):
    return {'value': value, 'timeStamp': timestamp}


class TestDecodeFullPayload:
    """Decoding a complete payload."""

    def test_unit_conversions(self, sample_payload):
        """Mileage arrives in meters and range in kilometers."""
        snapshot = TelemetryDecoder.decode(sample_payload)

        assert snapshot.odometer_miles == pytest.approx(10000.0)
        assert snapshot.range_estimate_miles == pytest.approx(400.0 * 0.621371)

    def test_scalar_fields(self, sample_payload):
        """Numeric and string fields are copied through."""
        snapshot = TelemetryDecoder.decode(sample_payload)

        assert snapshot.battery_level == 80.0
        assert snapshot.battery_limit == 85.0
        assert snapshot.battery_capacity_kwh == 125.0
        assert snapshot.cabin_temperature == 21.5
        assert snapshot.ota_current_version == '2026.02.1'

    def test_location(self, sample_payload):
        """GNSS location is split into latitude and longitude."""
        snapshot = TelemetryDecoder.decode(sample_payload)

        assert snapshot.latitude == 40.7128
        assert snapshot.longitude == -74.0060

    def test_enumerations(self, sample_payload):
        """Power, gear, charger and tire strings map onto enumerations."""
        snapshot = TelemetryDecoder.decode(sample_payload)

        assert snapshot.power_state == PowerState.READY
        assert snapshot.gear_status == GearStatus.PARK
        assert snapshot.charger_state == ChargerState.DISCONNECTED
        assert snapshot.tire_pressure_status_front_left == TirePressureStatus.OK
        assert snapshot.tire_pressure_status_rear_right == TirePressureStatus.UNKNOWN

    def test_door_aggregate(self, sample_payload):
        """All four doors closed yields all_doors_closed True."""
        snapshot = TelemetryDecoder.decode(sample_payload)

        assert snapshot.all_doors_closed is True
        assert snapshot.all_doors_locked is None

    def test_raw_payload_kept(self, sample_payload):
        """The raw payload is kept for debugging."""
        snapshot = TelemetryDecoder.decode(sample_payload)

        assert snapshot.raw_data == sample_payload

    def test_explicit_timestamp(self, sample_payload):
        """A receipt time can be supplied."""
        received = datetime(2026, 3, 1, 8, 30)

        assert TelemetryDecoder.decode(sample_payload, timestamp=received).timestamp == received


class TestDecodeSparsePayload:
    """Missing and null fields stay unset."""

    def test_empty_payload(self):
        """An empty payload decodes to an all-unset snapshot."""
        snapshot = TelemetryDecoder.decode({})

        assert snapshot.battery_level is None
        assert snapshot.latitude is None
        assert snapshot.power_state == PowerState.UNKNOWN
        assert snapshot.all_doors_closed is None
        assert snapshot.raw_data is None

    def test_none_payload(self):
        """None is treated like an empty payload."""
        assert TelemetryDecoder.decode(None).odometer_miles is None

    def test_null_value_stays_unset(self):
        """A field reported with a null value is not zero."""
        snapshot = TelemetryDecoder.decode({'batteryLevel': remote_field(None)})

        assert snapshot.battery_level is None

    def test_unparseable_value_ignored(self):
        """Garbage values are dropped rather than raising."""
        snapshot = TelemetryDecoder.decode({'batteryLevel': remote_field('not-a-number')})

        assert snapshot.battery_level is None

    def test_bare_values_accepted(self):
        """Fields may also arrive without the value wrapper."""
        snapshot = TelemetryDecoder.decode({'batteryLevel': 64})

        assert snapshot.battery_level == 64.0

    def test_one_open_door(self):
        """Any door not closed makes all_doors_closed False."""
        snapshot = TelemetryDecoder.decode({
            'doorFrontLeftClosed': remote_field('open'),
            'doorFrontRightClosed': remote_field('closed'),
        })

        assert snapshot.all_doors_closed is False


class TestDecodeFlags:
    """Boolean flags derived from status strings."""

    def test_charge_port_open(self):
        """chargePortState 'open' sets charge_port_open."""
        assert TelemetryDecoder.decode({'chargePortState': remote_field('open')}).charge_port_open is True
        assert TelemetryDecoder.decode({'chargePortState': remote_field('closed')}).charge_port_open is False

    def test_cold_limits(self):
        """Cold-limited acceleration and regen are positive numbers when active."""
        snapshot = TelemetryDecoder.decode({
            'limitedAccelCold': remote_field(1),
            'limitedRegenCold': remote_field(0),
        })

        assert snapshot.limited_accel_cold is True
        assert snapshot.limited_regen_cold is False

    def test_gear_guard_title_case(self):
        """Gear guard status is made readable."""
        snapshot = TelemetryDecoder.decode({'gearGuardVideoStatus': remote_field('away_from_home')})

        assert snapshot.gear_guard_status == 'Away From Home'

    def test_charger_status_fallback_key(self):
        """chargerStatus is read when chargerState is absent."""
        snapshot = TelemetryDecoder.decode({'chargerStatus': remote_field('charging_active')})

        assert snapshot.charger_state == ChargerState.CHARGING


class TestEnumParsing:
    """Status string parsing."""

    @pytest.mark.parametrize("raw,expected", [
        ('chrgr_sts_not_connected', ChargerState.DISCONNECTED),
        ('charging_ready', ChargerState.READY_TO_CHARGE),
        ('charging_active', ChargerState.CHARGING),
        ('charging_complete', ChargerState.CHARGING),
        ('complete', ChargerState.COMPLETE),
        ('chrgr_sts_connected_no_chrg', ChargerState.CONNECTED),
        ('fault', ChargerState.FAULT),
        ('something_else', ChargerState.UNKNOWN),
        (None, ChargerState.UNKNOWN),
    ])
    def test_charger_state(self, raw, expected):
        """Charger strings match on substrings in priority order."""
        assert parse_charger_state(raw) == expected

    def test_power_state_case_insensitive(self):
        """Power state parsing ignores case."""
        assert parse_power_state('Sleep') == PowerState.SLEEP

    def test_unknown_power_state(self):
        """Unrecognized power states map to UNKNOWN."""
        assert parse_power_state('hibernate') == PowerState.UNKNOWN


class TestSnapshotHelpers:
    """VehicleSnapshot helpers."""

    def test_is_awake(self):
        """Known non-sleep power states are awake."""
        assert VehicleSnapshot(power_state=PowerState.GO).is_awake is True
        assert VehicleSnapshot(power_state=PowerState.SLEEP).is_awake is False
        assert VehicleSnapshot().is_awake is False

    @pytest.mark.parametrize("gear,expected", [
        (GearStatus.DRIVE, True),
        (GearStatus.REVERSE, True),
        (GearStatus.NEUTRAL, True),
        (GearStatus.PARK, False),
        (GearStatus.UNKNOWN, False),
    ])
    def test_gear_without_power_state(self, gear, expected):
        """A known gear other than park counts as awake when power state is unreported."""
        assert VehicleSnapshot(gear_status=gear).is_awake is expected

    def test_decoded_gear_only_payload_is_awake(self):
        """A payload reporting only a drive gear decodes as awake."""
        assert TelemetryDecoder.decode({'gearStatus': remote_field('drive')}).is_awake is True

    def test_copy_with_changes(self):
        """copy() returns an independent snapshot with overrides applied."""
        original = VehicleSnapshot(battery_level=50.0)
        changed = original.copy(battery_level=60.0)

        assert original.battery_level == 50.0
        assert changed.battery_level == 60.0

    @pytest.mark.parametrize("value,expected", [
        (None, True),
        (PowerState.UNKNOWN, True),
        (PowerState.SLEEP, False),
        (0.0, False),
        (False, False),
    ])
    def test_is_unset(self, value, expected):
        """Only None and UNKNOWN count as unset."""
        assert is_unset(value) is expected
