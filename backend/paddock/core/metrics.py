"""Prometheus metrics for the application"""
from prometheus_client import Counter, REGISTRY


def _counter(name: str, documentation: str, labelnames=()):
    # Module reloads in tests would otherwise raise "Duplicated timeseries"
    try:
        return Counter(name, documentation, labelnames)
    except ValueError:
        return REGISTRY._names_to_collectors.get(name)


# Webhook metrics
webhook_events_counter = _counter(
    'paddock_webhook_events_total',
    'Total number of webhook deliveries by event type and outcome',
    ['event_type', 'outcome']
)

verification_failures_counter = _counter(
    'paddock_webhook_verification_failures_total',
    'Total number of webhook deliveries rejected by signature verification',
    ['reason']
)

# Reconciliation metrics (operators alert on these rates)
missing_prerequisite_counter = _counter(
    'paddock_missing_prerequisite_total',
    'Completion events with no matching pending transaction',
    ['event_type']
)

transient_store_errors_counter = _counter(
    'paddock_transient_store_errors_total',
    'Webhook deliveries answered with a retryable status after a store failure',
    ['event_type']
)

# Ledger metrics
token_credit_retries_counter = _counter(
    'paddock_token_credit_retries_total',
    'Optimistic token credit attempts that lost a race and retried'
)

metrics_recompute_failures_counter = _counter(
    'paddock_metrics_recompute_failures_total',
    'Fan metrics recomputations that failed and were swallowed'
)
