"""
Calculation Constants for the telematics tracker

Centralized location for the physical and battery constants used in
calculations. Tunable thresholds come from Config.
"""

from config import Config

# Unit conversions
METERS_PER_MILE = 1609.344
MILES_PER_KM = 0.621371
EARTH_RADIUS_METERS = 6371000.0

# Battery pack generations
GEN2_FIRST_MODEL_YEAR = 2025

# Usable capacity (kWh) by (pack, is_gen2)
GEN1_STANDARD_CAPACITY_KWH = 106.0
GEN1_LARGE_CAPACITY_KWH = 131.0
GEN1_MAX_CAPACITY_KWH = 141.0
GEN2_STANDARD_CAPACITY_KWH = 92.5
GEN2_LARGE_CAPACITY_KWH = 108.5
GEN2_MAX_CAPACITY_KWH = 140.0
DEFAULT_ORIGINAL_CAPACITY_KWH = Config.DEFAULT_ORIGINAL_CAPACITY_KWH

# Pack inference cut-offs (midpoints between nominal capacities)
GEN1_STANDARD_MAX_KWH = 113.5
GEN1_LARGE_MAX_KWH = 136.0
GEN2_STANDARD_MAX_KWH = 100.5
GEN2_LARGE_MAX_KWH = 124.25

# Warranty
WARRANTY_THRESHOLD_PERCENT = Config.WARRANTY_THRESHOLD_PERCENT

# Reading confidence
BASE_READING_CONFIDENCE = 0.5
MIN_READING_CONFIDENCE = 0.1
MAX_READING_CONFIDENCE = 1.0
OPTIMAL_TEMP_MIN_C = 15.0
OPTIMAL_TEMP_MAX_C = 30.0
EXTREME_TEMP_LOW_C = 5.0
EXTREME_TEMP_HIGH_C = 40.0

# Trend projections
PROJECTION_MILEPOSTS = (100000, 150000)
FORECAST_MILESTONES = (50000, 75000, 100000, 125000, 150000, 200000)
MILES_PER_RATE_UNIT = 10000

# Degradation classification (health percentage points lost per 10k miles)
NORMAL_DEGRADATION_MAX_PCT_PER_10K = 2.0

# Outlier filtering
IQR_MULTIPLIER = 1.5
MIN_READINGS_AFTER_FILTER = 3
