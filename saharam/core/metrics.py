"""
Metrics instrumentation for observability.
Exposes Prometheus-compatible metrics at /metrics endpoint.
"""

from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from fastapi import Response

http_requests = Counter(
    'http_requests_total',
    'HTTP requests handled',
    ['method', 'status_class']  # 2xx, 4xx, 5xx
)

# Booking metrics
booking_attempts = Counter(
    'booking_attempts_total',
    'Total booking attempts',
    ['status']  # success, conflict, rejected, error
)

booking_latency = Histogram(
    'booking_latency_seconds',
    'Booking transaction latency',
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5]
)

booking_retries = Counter(
    'booking_version_retries_total',
    'Seat counter update retries due to version conflicts'
)

seats_released = Counter(
    'seats_released_total',
    'Seats returned to trips',
    ['reason']  # payment_failed, hold_expired, cancelled
)

# Payment metrics
payment_initializations = Counter(
    'payment_initializations_total',
    'Payment initializations',
    ['provider', 'result']  # ok, error
)

payment_verifications = Counter(
    'payment_verifications_total',
    'Payment verification outcomes',
    ['provider', 'outcome']  # success, failed, duplicate
)

payment_provider_latency = Histogram(
    'payment_provider_latency_seconds',
    'Latency of calls to payment providers',
    ['provider', 'operation'],
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 15.0]
)

webhook_events = Counter(
    'payment_webhook_events_total',
    'Webhook deliveries',
    ['provider', 'result']  # processed, ignored, rejected, error
)

# Ticket metrics
ticket_verifications = Counter(
    'ticket_verifications_total',
    'Ticket verification results',
    ['result']  # valid, invalid
)

# Cache metrics
cache_operations = Counter(
    'cache_operations_total',
    'Cache operations',
    ['operation', 'result']  # get/set, hit/miss
)


def metrics_endpoint() -> Response:
    """
    Prometheus metrics endpoint.

    Usage:
        @app.get("/metrics")
        def metrics():
            return metrics_endpoint()
    """
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST
    )


# Convenience functions for instrumentation
def record_request(method: str, status_code: int):
    http_requests.labels(method=method, status_class=f"{status_code // 100}xx").inc()


def record_booking_attempt(status: str):
    """Record booking attempt. Status: success, conflict, rejected, error"""
    booking_attempts.labels(status=status).inc()


def record_seats_released(reason: str, count: int):
    if count:
        seats_released.labels(reason=reason).inc(count)


def record_payment_initialization(provider: str, ok: bool):
    payment_initializations.labels(provider=provider, result="ok" if ok else "error").inc()


def record_payment_verification(provider: str, outcome: str):
    payment_verifications.labels(provider=provider, outcome=outcome).inc()


def record_webhook(provider: str, result: str):
    webhook_events.labels(provider=provider, result=result).inc()


def record_ticket_verification(valid: bool):
    ticket_verifications.labels(result="valid" if valid else "invalid").inc()


def record_cache_operation(operation: str, hit: bool):
    """Record cache operation."""
    result = "hit" if hit else "miss"
    cache_operations.labels(operation=operation, result=result).inc()
