"""
Prometheus metrics for the marketplace ledger.

Service timings are fed by BaseService.measure_operation; the ledger counters
are incremented by the availability and earnings services directly.
"""

from prometheus_client import CollectorRegistry, Counter, Histogram, generate_latest

# Custom registry so repeated imports in tests never collide with the default one
REGISTRY = CollectorRegistry()

service_operation_duration_seconds = Histogram(
    "marketplace_service_operation_duration_seconds",
    "Service operation duration in seconds",
    ["service", "operation"],
    registry=REGISTRY,
    buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5),
)

service_operations_total = Counter(
    "marketplace_service_operations_total",
    "Total number of service operations",
    ["service", "operation", "status"],
    registry=REGISTRY,
)

slot_capacity_updates_total = Counter(
    "marketplace_slot_capacity_updates_total",
    "Availability slot counter updates by outcome",
    ["action", "outcome"],
    registry=REGISTRY,
)

earnings_transitions_total = Counter(
    "marketplace_earnings_transitions_total",
    "Earning rows created or moved between statuses",
    ["to_status"],
    registry=REGISTRY,
)


class PrometheusMetrics:
    """Thin recorder used by the service layer."""

    @staticmethod
    def record_service_operation(service: str, operation: str, duration: float, status: str) -> None:
        service_operation_duration_seconds.labels(service=service, operation=operation).observe(
            duration
        )
        service_operations_total.labels(service=service, operation=operation, status=status).inc()

    @staticmethod
    def record_slot_update(action: str, outcome: str) -> None:
        slot_capacity_updates_total.labels(action=action, outcome=outcome).inc()

    @staticmethod
    def record_earning_transition(to_status: str, count: int = 1) -> None:
        if count > 0:
            earnings_transitions_total.labels(to_status=to_status).inc(count)

    @staticmethod
    def get_metrics() -> bytes:
        """Exposition-format dump of the registry."""
        return generate_latest(REGISTRY)


prometheus_metrics = PrometheusMetrics()
