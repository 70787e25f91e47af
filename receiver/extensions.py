"""
Flask extensions for the telematics tracker.

This module initializes Flask extensions that need to be shared
across the application to avoid circular imports.
"""

import os

from flask_limiter import Limiter
from flask_limiter.util import get_remote_address

# Rate limiting storage (Redis in production, memory for development)
RATE_LIMIT_STORAGE = os.environ.get("RATE_LIMIT_STORAGE_URI", "memory://")

limiter = Limiter(
    key_func=get_remote_address,
    default_limits=["1000 per hour", "200 per minute"],
    storage_uri=RATE_LIMIT_STORAGE,
    strategy="fixed-window",
    headers_enabled=True,
)


class RateLimits:
    """Common rate limit configurations for different endpoint types."""

    # Read endpoints (state, snapshots, trend)
    READ_HEAVY = "500 per hour"

    # Administrative writes (register, remove, poll now)
    WRITE_MODERATE = "100 per hour"

    # Expensive reads (forecasts over the full snapshot series)
    EXPENSIVE = "120 per hour"
