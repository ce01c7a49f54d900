"""
Metrics instrumentation for observability.
Exposes Prometheus-compatible metrics at /metrics endpoint.
"""

from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from fastapi import Response

# Reservation metrics
reservation_attempts = Counter(
    'reservation_attempts_total',
    'Ticket reservation requests',
    ['result']  # reserved, rejected
)

reservation_conflicts = Counter(
    'reservation_conflicts_total',
    'Compare-and-set conflicts while reserving tickets (retried)'
)

reservation_latency = Histogram(
    'reservation_latency_seconds',
    'Ticket reservation latency',
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0]
)

tickets_released = Counter(
    'tickets_released_total',
    'Tickets returned to the pool',
    ['reason']  # user, expired, superseded, payment_failed, order_cancelled
)

# Purchase metrics
purchase_confirmations = Counter(
    'purchase_confirmations_total',
    'Purchase confirmations after payment',
    ['result']  # sold, conflict
)

# Expiry sweep metrics
sweep_runs = Counter(
    'reservation_sweep_runs_total',
    'Expiry sweep cycles',
    ['result']  # ok, error
)

# Reservation store metrics
redis_store_errors = Counter(
    'reservation_store_redis_errors_total',
    'Redis errors in the reservation store (non-fatal)',
    ['operation']  # put, get, remove
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


def record_reservation(reserved: bool):
    """Record a reservation outcome."""
    result = "reserved" if reserved else "rejected"
    reservation_attempts.labels(result=result).inc()


def record_reservation_conflict():
    reservation_conflicts.inc()


def record_release(reason: str, count: int):
    """Record released tickets. Reason: user, expired, superseded, payment_failed, order_cancelled"""
    if count > 0:
        tickets_released.labels(reason=reason).inc(count)


def record_purchase(sold: bool):
    result = "sold" if sold else "conflict"
    purchase_confirmations.labels(result=result).inc()


def record_sweep(ok: bool):
    sweep_runs.labels(result="ok" if ok else "error").inc()


def record_store_error(operation: str):
    redis_store_errors.labels(operation=operation).inc()
