"""Prometheus metrics for mandate outcomes, gateway health and reconciliation"""

from prometheus_client import Counter, Histogram

# Mandate pipeline metrics
mandate_create_counter = Counter(
    "emandate_create_total",
    "Mandate creation requests by outcome",
    ["outcome"],  # redirected | failed
)

webhook_counter = Counter(
    "emandate_webhook_total",
    "Mandate webhooks by reconciled status",
    ["outcome"],  # ACTIVE | FAILED | error
)

calculation_counter = Counter(
    "emandate_calculation_total",
    "External mandate calculation requests",
    ["outcome"],  # ok | rejected
)

# Reconciliation outbox metrics
reconciliation_counter = Counter(
    "emandate_reconciliation_total",
    "Reconciliation task outcomes",
    ["outcome"],  # done | retry | failed
)

# Gateway metrics
gateway_latency_histogram = Histogram(
    "gateway_latency_seconds",
    "Payment gateway response time",
    ["endpoint"],
    buckets=[0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

gateway_failures_counter = Counter(
    "gateway_failures_total",
    "Failed payment gateway calls",
    ["endpoint"],
)

# Service health
request_duration_histogram = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["method", "endpoint", "status"],
)


def record_mandate_outcome(redirected: bool) -> None:
    """Count a create-path request as redirected to the bank or failed"""
    mandate_create_counter.labels(outcome="redirected" if redirected else "failed").inc()
