"""
Prometheus metrics for the SMSSync transport.

This module provides:
- HTTP request counter (method, path, status)
- SMSSync task outcome counter (task, result)
- Message state transition counter (state)
- Request latency histogram (method, path)

Metrics are stored in-memory using prometheus-client.
"""

from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST


# =============================================================================
# Metric Definitions
# =============================================================================

# HTTP request counter with labels for method, path, and status code
http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    labelnames=["method", "path", "status"]
)

# SMSSync task outcome counter
# task: receive, send, sent, queued, delivered
# result: ok, invalid_secret, validation_error, error
smssync_requests_total = Counter(
    "smssync_requests_total",
    "Total SMSSync task outcomes",
    labelnames=["task", "result"]
)

# Messages moved into a state by the sync protocol
message_transitions_total = Counter(
    "message_transitions_total",
    "Total message state transitions",
    labelnames=["state"]
)

# Request latency histogram in seconds
request_latency_seconds = Histogram(
    "request_latency_seconds",
    "Request latency in seconds",
    labelnames=["method", "path"]
)


# =============================================================================
# Helper Functions
# =============================================================================

def record_http_request(method: str, path: str, status: int, latency_seconds: float) -> None:
    """
    Record an HTTP request in metrics.

    Args:
        method: HTTP method (GET, POST, etc.)
        path: Request path
        status: HTTP status code
        latency_seconds: Request processing time in seconds
    """
    # Normalize path to avoid high-cardinality labels
    normalized_path = path.split("?")[0]

    http_requests_total.labels(
        method=method,
        path=normalized_path,
        status=str(status)
    ).inc()

    request_latency_seconds.labels(
        method=method,
        path=normalized_path
    ).observe(latency_seconds)


def record_task_outcome(task: str, result: str) -> None:
    """Record the outcome of one SMSSync task request."""
    smssync_requests_total.labels(task=task, result=result).inc()


def record_transition(state: str, count: int = 1) -> None:
    """Record `count` messages moved into `state`."""
    if count:
        message_transitions_total.labels(state=state).inc(count)


def get_metrics() -> bytes:
    """
    Generate Prometheus exposition format metrics.

    Returns:
        Metrics in Prometheus text format as bytes
    """
    return generate_latest()


def get_metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
