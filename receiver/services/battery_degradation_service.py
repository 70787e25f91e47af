"""
Battery Degradation Trend Service

Fits a confidence-weighted linear model of battery health against odometer
and projects it forward.
"""

import logging
from dataclasses import asdict, dataclass
from typing import Dict, List, Optional, Tuple

from calculations import (
    calculate_degradation_rate_per_10k,
    is_degradation_rate_normal,
    project_health,
    project_mileage_to_threshold,
    weighted_linear_regression,
)
from calculations.constants import FORECAST_MILESTONES, PROJECTION_MILEPOSTS, WARRANTY_THRESHOLD_PERCENT
from models import BatteryHealthSnapshot
from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

# (odometer_miles, health_percent, confidence)
DataPoint = Tuple[float, float, float]


@dataclass
class TrendResult:
    """Degradation trend derived from a vehicle's snapshot series."""

    slope: float
    intercept: float
    health_percent_now: float
    degradation_rate_per_10k: float
    projected_at_100k: float
    projected_at_150k: float
    miles_to_warranty_threshold: Optional[float]
    data_points: int

    def to_dict(self) -> Dict:
        return asdict(self)


def fit(points: List[DataPoint]) -> Tuple[float, float]:
    """
    Weighted least squares of health percent against odometer.

    Args:
        points: (odometer_miles, health_percent, confidence) triples

    Returns:
        (slope, intercept). Degenerate series (one point, or one odometer
        value) give a flat line at the weighted mean health.
    """
    return weighted_linear_regression(points)


def get_degradation_history(db: Session, vehicle_id: int) -> List[DataPoint]:
    """
    Get the data points for a vehicle's trend fit.

    Smoothed health is preferred over the raw reading. Snapshots without a
    positive odometer reading are left out of the fit.

    Returns: List of (odometer_miles, health_percent, confidence)
    """
    snapshots = (
        db.query(BatteryHealthSnapshot)
        .filter(
            BatteryHealthSnapshot.vehicle_id == vehicle_id,
            BatteryHealthSnapshot.odometer_miles.isnot(None),
            BatteryHealthSnapshot.odometer_miles > 0,
        )
        .order_by(BatteryHealthSnapshot.timestamp, BatteryHealthSnapshot.id)
        .all()
    )

    data = []
    for snapshot in snapshots:
        health = snapshot.smoothed_health_percent
        if health is None:
            health = snapshot.health_percent
        confidence = snapshot.reading_confidence if snapshot.reading_confidence is not None else 0.5
        data.append((float(snapshot.odometer_miles), float(health), float(confidence)))

    return data


def calculate_trend(points: List[DataPoint]) -> Optional[TrendResult]:
    """
    Build a TrendResult from data points, oldest first; None for an empty series.

    Current health is the latest point's health, not the fitted estimate.
    """
    if not points:
        return None

    slope, intercept = fit(points)
    at_100k, at_150k = (project_health(slope, intercept, miles) for miles in PROJECTION_MILEPOSTS)

    return TrendResult(
        slope=slope,
        intercept=intercept,
        health_percent_now=points[-1][1],
        degradation_rate_per_10k=calculate_degradation_rate_per_10k(slope),
        projected_at_100k=at_100k,
        projected_at_150k=at_150k,
        miles_to_warranty_threshold=project_mileage_to_threshold(slope, intercept, WARRANTY_THRESHOLD_PERCENT),
        data_points=len(points),
    )


def get_trend(db: Session, vehicle_id: int) -> Optional[TrendResult]:
    """
    Recompute the degradation trend for a vehicle.

    Returns:
        TrendResult, or None if the vehicle has no snapshots
    """
    trend = calculate_trend(get_degradation_history(db, vehicle_id))
    if trend:
        logger.debug(
            f"Vehicle {vehicle_id} trend: {trend.degradation_rate_per_10k:.2f}% per 10k miles "
            f"from {trend.data_points} snapshots"
        )
    return trend


def forecast_degradation(db: Session, vehicle_id: int) -> Dict:
    """
    Forecast battery health at mileage milestones beyond the current odometer.
    """
    history = get_degradation_history(db, vehicle_id)

    if len(history) < 2:
        return {
            "error": "Not enough battery health data",
            "min_readings_needed": 2,
            "current_readings": len(history),
        }

    trend = calculate_trend(history)
    current_miles, current_health, _ = max(history, key=lambda point: point[0])

    forecasts = []
    for miles in FORECAST_MILESTONES:
        if miles <= current_miles:
            continue
        forecasts.append(
            {
                "odometer_miles": miles,
                "predicted_health_pct": round(project_health(trend.slope, trend.intercept, miles), 1),
            }
        )

    rate = trend.degradation_rate_per_10k
    is_normal = is_degradation_rate_normal(rate)

    return {
        "current_status": {
            "odometer_miles": current_miles,
            "health_pct": round(current_health, 1),
        },
        "degradation_rate": {
            "percent_per_10k_miles": round(rate, 2),
            "percent_per_50k_miles": round(rate * 5, 1),
            "is_normal": is_normal,
            "comparison": "Normal" if is_normal else "Faster than typical",
        },
        "forecasts": forecasts,
        "miles_to_warranty_threshold": trend.miles_to_warranty_threshold,
        "data_points": trend.data_points,
        "model": {"slope": trend.slope, "intercept": trend.intercept},
        "recommendation": "Battery health is normal"
        if is_normal
        else "Consider having battery inspected if degradation continues",
    }
