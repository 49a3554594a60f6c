"""
Prometheus metrics for FX platform monitoring.

Tracks:
- Conversion request counts by status and decline reason
- Conversion duration
- Exchange venue call counts and latency
- Account lock wait time
- Payments initiated
- Outbox queue depth, published events and delivery failures
"""
from prometheus_client import Counter, Gauge, Histogram

# Conversion metrics
conversion_requests_total = Counter(
    "conversion_requests_total",
    "Total number of conversion requests",
    ["status", "reason"],  # status: succeeded, declined
)

conversion_duration_seconds = Histogram(
    "conversion_duration_seconds",
    "Conversion duration in seconds, lock held for most of it",
    buckets=(0.05, 0.1, 0.25, 0.5, 0.75, 1.0, 2.5, 5.0, 10.0),
)

account_lock_wait_seconds = Histogram(
    "account_lock_wait_seconds",
    "Time spent waiting for an account row lock",
    buckets=(0.001, 0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 10.0),
)

# Exchange venue metrics
exchange_requests_total = Counter(
    "exchange_requests_total",
    "Total exchange venue requests",
    ["operation", "status"],  # operation: quote, execute
)

exchange_duration_seconds = Histogram(
    "exchange_duration_seconds",
    "Exchange venue call duration in seconds",
    ["operation"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

# Payment metrics
payments_initiated_total = Counter(
    "payments_initiated_total",
    "Total payments initiated",
    ["currency", "payment_type"],
)

# Outbox metrics
outbox_queue_depth = Gauge(
    "outbox_queue_depth",
    "Number of unpublished events in outbox",
)

outbox_events_published_total = Counter(
    "outbox_events_published_total",
    "Total outbox events published",
    ["event_type"],
)

outbox_delivery_failures_total = Counter(
    "outbox_delivery_failures_total",
    "Total outbox delivery attempts that failed",
    ["event_type"],
)

outbox_processing_duration_seconds = Histogram(
    "outbox_processing_duration_seconds",
    "Outbox run duration in seconds",
    buckets=(0.1, 0.5, 1.0, 2.5, 5.0, 10.0),
)


class MetricsCollector:
    """Helper class for collecting metrics."""

    @staticmethod
    def record_conversion(status: str, reason: str, duration_seconds: float) -> None:
        """Record a finished conversion."""
        conversion_requests_total.labels(status=status, reason=reason).inc()
        conversion_duration_seconds.observe(duration_seconds)

    @staticmethod
    def record_lock_wait(duration_seconds: float) -> None:
        """Record account lock wait time."""
        account_lock_wait_seconds.observe(duration_seconds)

    @staticmethod
    def record_exchange_call(operation: str, status: str, duration_seconds: float) -> None:
        """Record exchange venue call."""
        exchange_requests_total.labels(operation=operation, status=status).inc()
        exchange_duration_seconds.labels(operation=operation).observe(duration_seconds)

    @staticmethod
    def record_payment_initiated(currency: str, payment_type: str) -> None:
        """Record a payment initiation."""
        payments_initiated_total.labels(currency=currency, payment_type=payment_type).inc()

    @staticmethod
    def set_outbox_queue_depth(depth: int) -> None:
        """Set outbox queue depth."""
        outbox_queue_depth.set(depth)

    @staticmethod
    def record_outbox_event_published(event_type: str) -> None:
        """Record outbox event published."""
        outbox_events_published_total.labels(event_type=event_type).inc()

    @staticmethod
    def record_outbox_delivery_failure(event_type: str) -> None:
        """Record outbox delivery failure."""
        outbox_delivery_failures_total.labels(event_type=event_type).inc()

    @staticmethod
    def record_outbox_run(duration_seconds: float) -> None:
        """Record outbox run duration."""
        outbox_processing_duration_seconds.observe(duration_seconds)


# Export singleton instance
metrics = MetricsCollector()
