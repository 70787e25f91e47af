"""Utility modules for the telematics tracker receiver."""

from .telemetry_decoder import TelemetryDecoder, VehicleSnapshot
from .timezone import (
    utc_now,
    normalize_datetime,
    seconds_between,
    parse_iso_datetime,
)

__all__ = [
    'TelemetryDecoder',
    'VehicleSnapshot',
    'utc_now',
    'normalize_datetime',
    'seconds_between',
    'parse_iso_datetime',
]
