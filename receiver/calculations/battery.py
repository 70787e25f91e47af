"""
Battery-related Calculations

Handles battery capacity, health, and degradation calculations:
- Pack specifications (original capacity, pack inference, cell chemistry)
- Health percentage and warranty margins
- Reading confidence scoring
- Degradation rates and projections
"""

from typing import Optional

from models import BatteryPackType

from .constants import (
    BASE_READING_CONFIDENCE,
    DEFAULT_ORIGINAL_CAPACITY_KWH,
    EXTREME_TEMP_HIGH_C,
    EXTREME_TEMP_LOW_C,
    GEN1_LARGE_CAPACITY_KWH,
    GEN1_LARGE_MAX_KWH,
    GEN1_MAX_CAPACITY_KWH,
    GEN1_STANDARD_CAPACITY_KWH,
    GEN1_STANDARD_MAX_KWH,
    GEN2_FIRST_MODEL_YEAR,
    GEN2_LARGE_CAPACITY_KWH,
    GEN2_LARGE_MAX_KWH,
    GEN2_MAX_CAPACITY_KWH,
    GEN2_STANDARD_CAPACITY_KWH,
    GEN2_STANDARD_MAX_KWH,
    MAX_READING_CONFIDENCE,
    MILES_PER_RATE_UNIT,
    MIN_READING_CONFIDENCE,
    NORMAL_DEGRADATION_MAX_PCT_PER_10K,
    OPTIMAL_TEMP_MAX_C,
    OPTIMAL_TEMP_MIN_C,
    WARRANTY_THRESHOLD_PERCENT,
)

_ORIGINAL_CAPACITY_KWH = {
    (BatteryPackType.STANDARD, False): GEN1_STANDARD_CAPACITY_KWH,
    (BatteryPackType.LARGE, False): GEN1_LARGE_CAPACITY_KWH,
    (BatteryPackType.MAX, False): GEN1_MAX_CAPACITY_KWH,
    (BatteryPackType.STANDARD, True): GEN2_STANDARD_CAPACITY_KWH,
    (BatteryPackType.LARGE, True): GEN2_LARGE_CAPACITY_KWH,
    (BatteryPackType.MAX, True): GEN2_MAX_CAPACITY_KWH,
}


def is_gen2(model_year: Optional[int]) -> bool:
    return model_year is not None and model_year >= GEN2_FIRST_MODEL_YEAR


def get_original_capacity_kwh(pack: Optional[BatteryPackType], model_year: Optional[int] = None) -> float:
    """
    Usable capacity of a new pack.

    Unknown packs fall back to the Gen 1 Large capacity.

    Examples:
        >>> get_original_capacity_kwh(BatteryPackType.LARGE, 2023)
        131.0
        >>> get_original_capacity_kwh(BatteryPackType.MAX, 2025)
        140.0
    """
    return _ORIGINAL_CAPACITY_KWH.get((pack, is_gen2(model_year)), DEFAULT_ORIGINAL_CAPACITY_KWH)


def infer_pack_from_capacity(capacity_kwh: float, model_year: Optional[int] = None) -> BatteryPackType:
    """
    Guess the pack type from a reported capacity.

    Cut-offs sit midway between nominal capacities so a degraded pack still
    maps to its own type.

    Examples:
        >>> infer_pack_from_capacity(128.0, 2022)
        <BatteryPackType.LARGE: 'large'>
        >>> infer_pack_from_capacity(95.0, 2025)
        <BatteryPackType.STANDARD: 'standard'>
    """
    if is_gen2(model_year):
        if capacity_kwh < GEN2_STANDARD_MAX_KWH:
            return BatteryPackType.STANDARD
        if capacity_kwh < GEN2_LARGE_MAX_KWH:
            return BatteryPackType.LARGE
        return BatteryPackType.MAX

    if capacity_kwh < GEN1_STANDARD_MAX_KWH:
        return BatteryPackType.STANDARD
    if capacity_kwh < GEN1_LARGE_MAX_KWH:
        return BatteryPackType.LARGE
    return BatteryPackType.MAX


def get_battery_cell_type(pack: Optional[BatteryPackType], model_year: Optional[int] = None) -> Optional[str]:
    """Cell format for a pack. Gen 2 Standard packs are LFP."""
    if pack == BatteryPackType.LARGE:
        return "50g"
    if pack == BatteryPackType.MAX:
        return "53g"
    if pack == BatteryPackType.STANDARD:
        return "LFP" if is_gen2(model_year) else "50g"
    return None


def calculate_health_percent(current_capacity_kwh: float, original_capacity_kwh: float) -> float:
    """
    Current capacity as a percentage of original capacity.

    Examples:
        >>> calculate_health_percent(117.9, 131.0)
        90.0
    """
    if original_capacity_kwh <= 0:
        return 0.0
    return (current_capacity_kwh / original_capacity_kwh) * 100.0


def calculate_remaining_warranty_capacity(
    current_capacity_kwh: float,
    original_capacity_kwh: float,
    threshold_percent: float = WARRANTY_THRESHOLD_PERCENT,
) -> float:
    """kWh left above the warranty floor (negative once below it)."""
    return current_capacity_kwh - original_capacity_kwh * (threshold_percent / 100.0)


def calculate_reading_confidence(
    state_of_charge: Optional[float], temperature_c: Optional[float]
) -> float:
    """
    Score how trustworthy a BMS capacity reading is, in [0.1, 1.0].

    Readings near full charge at moderate temperature score highest; low
    state of charge and temperature extremes are down-weighted. Missing
    inputs leave the score unchanged.

    Examples:
        >>> calculate_reading_confidence(95, 22)
        1.0
        >>> calculate_reading_confidence(10, 20)
        0.5
        >>> calculate_reading_confidence(None, None)
        0.5
    """
    confidence = BASE_READING_CONFIDENCE

    if state_of_charge is not None:
        if state_of_charge >= 90:
            confidence += 0.3
        elif 50 <= state_of_charge < 70:
            confidence += 0.1
        elif state_of_charge < 20:
            confidence -= 0.2

    if temperature_c is not None:
        if OPTIMAL_TEMP_MIN_C <= temperature_c <= OPTIMAL_TEMP_MAX_C:
            confidence += 0.2
        elif temperature_c < EXTREME_TEMP_LOW_C or temperature_c > EXTREME_TEMP_HIGH_C:
            confidence -= 0.2

    return max(MIN_READING_CONFIDENCE, min(MAX_READING_CONFIDENCE, confidence))


def calculate_degradation_rate_per_10k(slope_percent_per_mile: float) -> float:
    """
    Health change per 10,000 miles from a regression slope.

    Negative means the pack is losing capacity. Positive slopes (apparent
    gains after recalibration) are returned unchanged.
    """
    return slope_percent_per_mile * MILES_PER_RATE_UNIT


def project_health(slope: float, intercept: float, odometer_miles: float) -> float:
    """Health percent predicted by the linear model at a given odometer."""
    return intercept + slope * odometer_miles


def project_mileage_to_threshold(
    slope: float, intercept: float, threshold_percent: float = WARRANTY_THRESHOLD_PERCENT
) -> Optional[float]:
    """
    Odometer at which the linear model crosses the threshold.

    Only defined for a degrading pack (slope < 0).

    Examples:
        >>> project_mileage_to_threshold(-0.001, 100.0)
        30000.0
        >>> project_mileage_to_threshold(0.0, 100.0) is None
        True
    """
    if slope >= 0:
        return None
    return (threshold_percent - intercept) / slope


def is_degradation_rate_normal(rate_per_10k: float) -> bool:
    """
    Whether a degradation rate is within the expected range.

    Stable or improving packs count as normal.

    Examples:
        >>> is_degradation_rate_normal(-1.2)
        True
        >>> is_degradation_rate_normal(-3.5)
        False
    """
    return rate_per_10k >= -NORMAL_DEGRADATION_MAX_PCT_PER_10K


def health_status_label(health_percent: Optional[float]) -> str:
    """Human-readable bucket for a health percentage."""
    if health_percent is None:
        return "Unknown"
    if health_percent >= 95:
        return "Excellent"
    if health_percent >= 90:
        return "Very Good"
    if health_percent >= 85:
        return "Good"
    if health_percent >= 80:
        return "Fair"
    if health_percent >= 70:
        return "Below Average"
    return "Poor"
