"""Prometheus metrics for the back-office core.

Metrics exported:
- backoffice_numbers_issued_total: Counter of issued document numbers by scope
- backoffice_sequence_collisions_total: Counter of concurrent counter-row collisions
- backoffice_points_transactions_total: Counter of ledger transactions by type and status
- backoffice_rfm_analysis_duration_seconds: Histogram of segmentation run times

Usage:
    >>> start_metrics_server(port=8000)
    # Metrics available at http://localhost:8000/metrics
"""

from threading import Lock

import structlog
from prometheus_client import Counter, Histogram, generate_latest, start_http_server

logger = structlog.get_logger(__name__)

numbers_issued_total = Counter(
    "backoffice_numbers_issued_total",
    "Total document numbers issued",
    ["scope"],
)

sequence_collisions_total = Counter(
    "backoffice_sequence_collisions_total",
    "Concurrent counter-row creations that collided and were retried",
)

points_transactions_total = Counter(
    "backoffice_points_transactions_total",
    "Total points ledger transactions",
    ["type", "status"],  # status: success or the error code
)

rfm_analysis_duration = Histogram(
    "backoffice_rfm_analysis_duration_seconds",
    "RFM segmentation duration in seconds",
    buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 30.0],
)

_metrics_server_started = False
_metrics_lock = Lock()


def start_metrics_server(port: int = 8000) -> None:
    """Start the Prometheus metrics HTTP server.

    Raises:
        RuntimeError: If the metrics server is already running
    """
    global _metrics_server_started

    with _metrics_lock:
        if _metrics_server_started:
            raise RuntimeError("Metrics server is already running")
        start_http_server(port)
        _metrics_server_started = True
        logger.info("prometheus_metrics_server_started", port=port)


def get_metrics_text() -> bytes:
    """Return current metrics in Prometheus text format."""
    return generate_latest()


def record_number_issued(scope: str) -> None:
    numbers_issued_total.labels(scope=scope).inc()


def record_sequence_collision() -> None:
    sequence_collisions_total.inc()


def record_points_transaction(transaction_type: str, status: str) -> None:
    """Record a ledger transaction outcome.

    Args:
        transaction_type: EARN, REDEEM or ADJUST
        status: "success" or the error code of the failure
    """
    points_transactions_total.labels(type=transaction_type, status=status).inc()


def record_rfm_duration(duration_seconds: float) -> None:
    rfm_analysis_duration.observe(duration_seconds)
