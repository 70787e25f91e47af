"""
Wide Events (Canonical Log Lines) - Structured Logging Utility

- Emit ONE comprehensive JSON event per poll cycle or remote API call
- Include high-cardinality data (account ids, vehicle ids, remote ids)
- Capture full context: business metrics, errors, latencies
- Use tail sampling: keep all errors/slow operations, sample successful fast ones

Instead of logging what your code is doing, log what happened to this cycle.
"""

import random
import time
import uuid
from contextlib import contextmanager
from typing import Any, Dict, Optional

import structlog

from utils.timezone import utc_now

# Configure structlog for JSON output
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer(),
    ],
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

# Business metrics that force emission regardless of sampling
CRITICAL_EVENTS = (
    "backoff_applied",
    "auth_refreshed",
    "account_removed",
    "cadence_changed",
)


class WideEvent:
    """
    Accumulates context throughout an operation, then emits one comprehensive log event.

    Usage:
        event = WideEvent("poll_cycle", trace_id=f"account-{account_id}")
        event.add_context(account_id=account_id)
        event.add_business_metric("vehicles_polled", 2)

        with event.timer("fetch_state"):
            client.fetch_state(remote_id)

        event.emit()
    """

    def __init__(self, operation: str, request_id: Optional[str] = None, trace_id: Optional[str] = None):
        """
        Initialize a wide event for a specific operation.

        Args:
            operation: Name of the operation (e.g., "poll_cycle")
            request_id: Unique ID for this specific operation (auto-generated if not provided)
            trace_id: ID that connects related operations (e.g., every cycle of one account)
        """
        self.operation = operation
        self.context: Dict[str, Any] = {
            "operation": operation,
            "timestamp": utc_now().isoformat(),
            "start_time": time.time(),
            "request_id": request_id or str(uuid.uuid4()),
        }

        if trace_id:
            self.context["trace_id"] = trace_id

        self.logger = structlog.get_logger()

    def add_context(self, **kwargs) -> "WideEvent":
        """Add high-cardinality context fields (account_id, vehicle_id, etc.)."""
        self.context.update(kwargs)
        return self

    def add_business_metric(self, key: str, value: Any) -> "WideEvent":
        """Add business metrics (vehicles polled, states persisted, snapshots recorded, etc.)."""
        if "business_metrics" not in self.context:
            self.context["business_metrics"] = {}
        self.context["business_metrics"][key] = value
        return self

    def add_technical_metric(self, key: str, value: Any) -> "WideEvent":
        """Add technical metrics (status codes, retries, intervals, etc.)."""
        if "technical_metrics" not in self.context:
            self.context["technical_metrics"] = {}
        self.context["technical_metrics"][key] = value
        return self

    def add_error(self, error: Exception, **kwargs) -> "WideEvent":
        """Add error details to the event."""
        self.context["error"] = {
            "type": type(error).__name__,
            "message": str(error),
            "details": kwargs,
        }
        self.context["success"] = False
        return self

    def mark_success(self) -> "WideEvent":
        """Mark the operation as successful."""
        self.context["success"] = True
        return self

    def mark_failure(self, reason: str) -> "WideEvent":
        """Mark the operation as failed."""
        self.context["success"] = False
        self.context["failure_reason"] = reason
        return self

    @contextmanager
    def timer(self, operation_name: str):
        """
        Context manager to time a step within the operation.

        Usage:
            with event.timer("fetch_state"):
                client.fetch_state(remote_id)

            # Outputs: {"performance_breakdown": {"fetch_state_ms": 342.5}}
        """
        start = time.time()
        try:
            yield
        finally:
            duration_ms = (time.time() - start) * 1000
            if "performance_breakdown" not in self.context:
                self.context["performance_breakdown"] = {}
            self.context["performance_breakdown"][f"{operation_name}_ms"] = round(duration_ms, 2)

    def set_duration(self) -> "WideEvent":
        """Calculate and set the duration of the operation."""
        if "start_time" in self.context:
            duration_ms = (time.time() - self.context["start_time"]) * 1000
            self.context["duration_ms"] = round(duration_ms, 2)
            del self.context["start_time"]
        return self

    def should_emit(self, sample_rate: float = 0.05, slow_threshold_ms: float = 1000) -> bool:
        """
        Implement tail sampling logic:
        - Always emit errors
        - Always emit slow operations (>slow_threshold_ms)
        - Always emit critical scheduling events (backoff, auth refresh, etc.)
        - Sample successful fast operations at sample_rate (default 5%)
        """
        if not self.context.get("success", True):
            return True

        if self.context.get("duration_ms", 0) > slow_threshold_ms:
            return True

        business_metrics = self.context.get("business_metrics", {})
        if any(business_metrics.get(event) for event in CRITICAL_EVENTS):
            return True

        return random.random() < sample_rate

    def emit(self, level: str = "info", force: bool = False) -> None:
        """
        Emit the wide event as a single comprehensive log line.

        Args:
            level: Log level (info, warning, error)
            force: Force emission even if sampling says no
        """
        self.set_duration()

        if not force and not self.should_emit():
            return

        log_method = getattr(self.logger, level, self.logger.info)
        log_method(
            f"{self.operation}_complete",
            **self.context,
        )


@contextmanager
def track_operation(operation: str, **initial_context):
    """
    Context manager for tracking an operation with a wide event.

    Usage:
        with track_operation("refresh_auth", account_id=7) as event:
            event.add_technical_metric("status_code", 200)
            # Event emits automatically on exit
    """
    event = WideEvent(operation)
    event.add_context(**initial_context)

    try:
        yield event
        event.mark_success()
    except Exception as e:
        event.add_error(e)
        event.mark_failure(str(e))
        raise
    finally:
        event.emit(level="error" if not event.context.get("success", True) else "info", force=True)
