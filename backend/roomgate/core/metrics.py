"""Prometheus metrics for the application"""
from prometheus_client import Counter, REGISTRY


def _counter(name: str, documentation: str, labelnames=()):
    # Modules may be re-imported (tests, reloaders); reuse the registered collector
    try:
        return Counter(name, documentation, labelnames)
    except ValueError:
        return REGISTRY._names_to_collectors.get(name)


# Payment pipeline
payments_processed_counter = _counter(
    'roomgate_payments_processed_total',
    'Total number of payment jobs processed',
    ['status']
)

webhook_events_counter = _counter(
    'roomgate_webhook_events_total',
    'Total number of commerce webhook deliveries',
    ['outcome']
)

# Access gate
access_validations_counter = _counter(
    'roomgate_access_validations_total',
    'Total number of room password validations',
    ['result']
)

media_tokens_counter = _counter(
    'roomgate_media_tokens_issued_total',
    'Total number of media room join tokens issued'
)

# Revocation
revocations_counter = _counter(
    'roomgate_revocations_total',
    'Total number of purchases revoked by creators'
)
