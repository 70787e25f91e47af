"""
Telematics Tracker Calculation Module

Pure calculation helpers for battery health, geographic distance and
confidence-weighted statistics.

Usage:
    from calculations import calculate_reading_confidence, haversine_distance_meters
    from calculations.constants import WARRANTY_THRESHOLD_PERCENT
"""

# Battery calculations
from .battery import (
    calculate_degradation_rate_per_10k,
    calculate_health_percent,
    calculate_reading_confidence,
    calculate_remaining_warranty_capacity,
    get_battery_cell_type,
    get_original_capacity_kwh,
    health_status_label,
    infer_pack_from_capacity,
    is_degradation_rate_normal,
    project_health,
    project_mileage_to_threshold,
)

# Geographic calculations
from .geo import distance_between_fixes, haversine_distance_meters

# Statistical calculations
from .statistics import (
    calculate_outlier_bounds,
    filter_weighted_outliers,
    weighted_linear_regression,
    weighted_mean,
)

__all__ = [
    # Battery
    "calculate_degradation_rate_per_10k",
    "calculate_health_percent",
    "calculate_reading_confidence",
    "calculate_remaining_warranty_capacity",
    "get_battery_cell_type",
    "get_original_capacity_kwh",
    "health_status_label",
    "infer_pack_from_capacity",
    "is_degradation_rate_normal",
    "project_health",
    "project_mileage_to_threshold",
    # Geo
    "distance_between_fixes",
    "haversine_distance_meters",
    # Statistics
    "calculate_outlier_bounds",
    "filter_weighted_outliers",
    "weighted_linear_regression",
    "weighted_mean",
]
