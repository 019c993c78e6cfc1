"""
Prometheus metrics for order service monitoring.

Tracks:
- Order transitions by name and result
- Consumed broker events by routing key and outcome
- Outbox writes, relays, failures and queue depth
- Calls to sibling services
"""
from prometheus_client import Counter, Gauge, Histogram

# Order metrics
order_transitions_total = Counter(
    "order_transitions_total",
    "Total guarded order transitions attempted",
    ["transition", "result"],  # applied, conflict
)

orders_created_total = Counter(
    "orders_created_total",
    "Total orders created",
    ["order_type"],
)

payments_created_total = Counter(
    "payments_created_total",
    "Total payment attempts created",
    ["provider"],
)

# Consumer metrics
events_consumed_total = Counter(
    "events_consumed_total",
    "Total broker events consumed",
    ["routing_key", "outcome"],  # applied, stale, malformed, error
)

event_processing_duration_seconds = Histogram(
    "event_processing_duration_seconds",
    "Consumed event processing duration in seconds",
    ["routing_key"],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5),
)

# Outbox metrics
outbox_events_recorded_total = Counter(
    "outbox_events_recorded_total",
    "Total events written to the outbox",
    ["event_type"],
)

outbox_events_published_total = Counter(
    "outbox_events_published_total",
    "Total outbox events published",
    ["event_type"],
)

outbox_publish_failures_total = Counter(
    "outbox_publish_failures_total",
    "Total outbox publish attempts rejected or failed",
    ["event_type"],
)

outbox_queue_depth = Gauge(
    "outbox_queue_depth",
    "Number of unpublished events in outbox",
)

outbox_processing_duration_seconds = Histogram(
    "outbox_processing_duration_seconds",
    "Outbox batch processing duration in seconds",
    buckets=(0.1, 0.5, 1.0, 2.5, 5.0, 10.0),
)

# Upstream metrics
upstream_requests_total = Counter(
    "upstream_requests_total",
    "Total requests to sibling services",
    ["service", "status"],  # ok, unreachable, rejected
)

upstream_request_duration_seconds = Histogram(
    "upstream_request_duration_seconds",
    "Sibling service request duration in seconds",
    ["service"],
    buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0),
)


class MetricsCollector:
    """Helper class for collecting metrics."""

    @staticmethod
    def record_transition(transition: str, applied: bool) -> None:
        """Record a guarded transition attempt."""
        result = "applied" if applied else "conflict"
        order_transitions_total.labels(transition=transition, result=result).inc()

    @staticmethod
    def record_order_created(order_type: str) -> None:
        """Record an order creation."""
        orders_created_total.labels(order_type=order_type).inc()

    @staticmethod
    def record_payment_created(provider: str) -> None:
        """Record a payment attempt."""
        payments_created_total.labels(provider=provider).inc()

    @staticmethod
    def record_event_consumed(
        routing_key: str, outcome: str, duration_seconds: float = 0
    ) -> None:
        """Record a consumed event and how it ended."""
        events_consumed_total.labels(routing_key=routing_key, outcome=outcome).inc()
        if duration_seconds > 0:
            event_processing_duration_seconds.labels(routing_key=routing_key).observe(
                duration_seconds
            )

    @staticmethod
    def record_outbox_event_recorded(event_type: str) -> None:
        """Record an outbox write."""
        outbox_events_recorded_total.labels(event_type=event_type).inc()

    @staticmethod
    def record_outbox_event_published(event_type: str) -> None:
        """Record outbox event published."""
        outbox_events_published_total.labels(event_type=event_type).inc()

    @staticmethod
    def record_outbox_publish_failure(event_type: str) -> None:
        """Record a failed outbox publish."""
        outbox_publish_failures_total.labels(event_type=event_type).inc()

    @staticmethod
    def record_outbox_batch(duration_seconds: float) -> None:
        """Record outbox batch duration."""
        outbox_processing_duration_seconds.observe(duration_seconds)

    @staticmethod
    def set_outbox_queue_depth(depth: int) -> None:
        """Set outbox queue depth."""
        outbox_queue_depth.set(depth)

    @staticmethod
    def record_upstream_request(service: str, status: str, duration_seconds: float) -> None:
        """Record a call to a sibling service."""
        upstream_requests_total.labels(service=service, status=status).inc()
        upstream_request_duration_seconds.labels(service=service).observe(duration_seconds)


# Export singleton instance
metrics = MetricsCollector()
