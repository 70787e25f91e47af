"""
Statistical Calculations

Confidence-weighted statistics used by battery health tracking:
- Weighted means and weighted least squares
- IQR outlier bounds and filtering
"""

from typing import List, Optional, Sequence, Tuple

from .constants import IQR_MULTIPLIER


def weighted_mean(values: Sequence[float], weights: Sequence[float]) -> Optional[float]:
    """
    Calculate the weighted mean of values.

    Falls back to the simple mean if all weights are zero.

    Args:
        values: Numeric values
        weights: One non-negative weight per value

    Returns:
        Weighted mean, or None for an empty input

    Examples:
        >>> weighted_mean([100.0, 90.0], [1.0, 1.0])
        95.0
        >>> weighted_mean([100.0, 90.0], [0.0, 0.0])
        95.0
    """
    if not values:
        return None

    total_weight = sum(weights)
    if total_weight == 0:
        return sum(values) / len(values)

    return sum(v * w for v, w in zip(values, weights)) / total_weight


def weighted_linear_regression(points: Sequence[Tuple[float, float, float]]) -> Tuple[float, float]:
    """
    Weighted least squares fit of y = intercept + slope * x.

    Args:
        points: (x, y, weight) triples

    Returns:
        (slope, intercept). When the fit is degenerate (no points, one point,
        or every point at the same x) the slope is 0 and the intercept is the
        weighted mean of y, or 100.0 for an empty series.

    Examples:
        >>> weighted_linear_regression([(0, 100, 1), (10000, 90, 1)])
        (-0.001, 100.0)
        >>> weighted_linear_regression([(5000, 97, 0.8)])
        (0.0, 97.0)
    """
    if not points:
        return 0.0, 100.0

    if len({x for x, _, _ in points}) < 2:
        mean_y = weighted_mean([y for _, y, _ in points], [w for _, _, w in points])
        return 0.0, float(mean_y)

    sum_w = sum(w for _, _, w in points)
    sum_wx = sum(w * x for x, _, w in points)
    sum_wy = sum(w * y for _, y, w in points)
    sum_wx2 = sum(w * x * x for x, _, w in points)
    sum_wxy = sum(w * x * y for x, y, w in points)

    denominator = sum_w * sum_wx2 - sum_wx * sum_wx
    if denominator == 0:
        mean_y = weighted_mean([y for _, y, _ in points], [w for _, _, w in points])
        return 0.0, float(mean_y)

    slope = (sum_w * sum_wxy - sum_wx * sum_wy) / denominator
    intercept = (sum_wy - slope * sum_wx) / sum_w
    return slope, intercept


def calculate_outlier_bounds(values: List[float], iqr_multiplier: float = IQR_MULTIPLIER) -> dict:
    """
    Calculate outlier bounds using Interquartile Range (IQR) method.

    Quartiles are taken by index (n // 4 and 3n // 4) on the sorted values.

    Args:
        values: List of numeric values
        iqr_multiplier: Multiplier for IQR (1.5 = standard, 3.0 = extreme)

    Returns:
        Dict with q1, q3, iqr, lower_bound, upper_bound (all None if empty)

    Examples:
        >>> bounds = calculate_outlier_bounds([100, 101, 102, 103, 60])
        >>> bounds['lower_bound'] > 60
        True
    """
    if not values:
        return {"q1": None, "q3": None, "iqr": None, "lower_bound": None, "upper_bound": None}

    sorted_values = sorted(values)
    n = len(sorted_values)

    q1 = sorted_values[n // 4]
    q3 = sorted_values[3 * n // 4]
    iqr = q3 - q1

    return {
        "q1": q1,
        "q3": q3,
        "iqr": iqr,
        "lower_bound": q1 - (iqr_multiplier * iqr),
        "upper_bound": q3 + (iqr_multiplier * iqr),
    }


def filter_weighted_outliers(
    readings: Sequence[Tuple[float, float]], iqr_multiplier: float = IQR_MULTIPLIER
) -> List[Tuple[float, float]]:
    """
    Drop (value, weight) readings whose value falls outside the IQR bounds.

    Bounds are inclusive, so a series with no spread keeps every reading.
    """
    bounds = calculate_outlier_bounds([value for value, _ in readings], iqr_multiplier)
    if bounds["lower_bound"] is None:
        return []

    return [
        (value, weight)
        for value, weight in readings
        if bounds["lower_bound"] <= value <= bounds["upper_bound"]
    ]
