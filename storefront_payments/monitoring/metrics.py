"""
Prometheus metrics for payment gateway monitoring.

Tracks:
- Gateway API calls by operation and outcome
- Credential cache hits and misses
- Checkout outcomes
- Payment status transitions and invariant violations
- Status poller queries
"""
from prometheus_client import Counter, Histogram

# Gateway API metrics
gateway_api_requests_total = Counter(
    "gateway_api_requests_total",
    "Total payment gateway API requests",
    ["operation", "status"],  # operation: auth, create_invoice
)

gateway_api_errors_total = Counter(
    "gateway_api_errors_total",
    "Total payment gateway API errors",
    ["error_kind"],  # auth, provider, network
)

gateway_api_duration_seconds = Histogram(
    "gateway_api_duration_seconds",
    "Payment gateway API call duration in seconds",
    ["operation"],
    buckets=(0.1, 0.25, 0.5, 0.75, 1.0, 2.5, 5.0, 7.5, 10.0),
)

# Credential cache metrics
credential_cache_lookups_total = Counter(
    "credential_cache_lookups_total",
    "Credential cache lookups",
    ["result"],  # hit, miss, forced
)

# Checkout metrics
checkout_requests_total = Counter(
    "checkout_requests_total",
    "Checkout attempts by outcome",
    ["outcome"],  # created, reused, failed
)

invoice_amount_minor_units = Histogram(
    "invoice_amount_minor_units",
    "Invoice totals in minor currency units",
    buckets=(1000, 5000, 10000, 50000, 100000, 500000, 1000000, 5000000),
)

# Payment status metrics
payment_status_transitions_total = Counter(
    "payment_status_transitions_total",
    "Terminal payment status transitions",
    ["status", "source"],  # source: webhook, confirmation
)

payment_invariant_violations_total = Counter(
    "payment_invariant_violations_total",
    "Rejected attempts to overwrite a terminal payment status",
)

# Webhook metrics
webhook_events_total = Counter(
    "webhook_events_total",
    "Gateway webhook notifications received",
    ["outcome"],  # processed, ignored, rejected
)

# Poller metrics
status_poll_queries_total = Counter(
    "status_poll_queries_total",
    "Status queries issued by the reconciliation poller",
    ["outcome"],  # pending, success, failed, error
)


class MetricsCollector:
    """Helper class for collecting metrics."""

    @staticmethod
    def record_gateway_call(operation: str, status: str, duration_seconds: float) -> None:
        """Record a gateway API call."""
        gateway_api_requests_total.labels(operation=operation, status=status).inc()
        gateway_api_duration_seconds.labels(operation=operation).observe(duration_seconds)

    @staticmethod
    def record_gateway_error(error_kind: str) -> None:
        """Record a classified gateway error."""
        gateway_api_errors_total.labels(error_kind=error_kind).inc()

    @staticmethod
    def record_credential_lookup(result: str) -> None:
        """Record a credential cache lookup."""
        credential_cache_lookups_total.labels(result=result).inc()

    @staticmethod
    def record_checkout(outcome: str, amount: int = 0) -> None:
        """Record a checkout attempt."""
        checkout_requests_total.labels(outcome=outcome).inc()
        if amount > 0:
            invoice_amount_minor_units.observe(amount)

    @staticmethod
    def record_status_transition(status: str, source: str) -> None:
        """Record a terminal status transition."""
        payment_status_transitions_total.labels(status=status, source=source).inc()

    @staticmethod
    def record_invariant_violation() -> None:
        """Record a rejected terminal overwrite."""
        payment_invariant_violations_total.inc()

    @staticmethod
    def record_webhook(outcome: str) -> None:
        """Record a gateway webhook notification."""
        webhook_events_total.labels(outcome=outcome).inc()

    @staticmethod
    def record_status_poll(outcome: str) -> None:
        """Record a poller status query."""
        status_poll_queries_total.labels(outcome=outcome).inc()


# Export singleton instance
metrics = MetricsCollector()
