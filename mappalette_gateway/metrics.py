"""
Metrics collection and exposure.
"""
import logging
from prometheus_client import CollectorRegistry, Counter, Histogram

logger = logging.getLogger(__name__)

# Create registry
registry = CollectorRegistry()

# Define metrics
ratelimit_allowed = Counter(
    'gateway_ratelimit_allowed_total',
    'Requests let through by a rate limiter',
    ['limiter'],
    registry=registry,
)

ratelimit_blocked = Counter(
    'gateway_ratelimit_blocked_total',
    'Requests rejected by a rate limiter',
    ['limiter'],
    registry=registry,
)

store_errors = Counter(
    'gateway_store_errors_total',
    'Counter store failures',
    ['operation'],
    registry=registry,
)

validation_failures = Counter(
    'gateway_validation_failures_total',
    'Payloads rejected by schema validation',
    ['source'],
    registry=registry,
)

profile_request_latency = Histogram(
    'gateway_profile_request_duration_seconds',
    'Profile service request duration',
    ['operation'],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0),
    registry=registry,
)


def record_allowed(limiter: str):
    """Record a request allowed by a limiter."""
    ratelimit_allowed.labels(limiter=limiter).inc()


def record_blocked(limiter: str):
    """Record a request blocked by a limiter."""
    ratelimit_blocked.labels(limiter=limiter).inc()


def record_store_error(operation: str):
    """Record a counter store error."""
    store_errors.labels(operation=operation).inc()


def record_validation_failure(source: str):
    validation_failures.labels(source=source).inc()


def get_registry():
    """Get Prometheus registry."""
    return registry
