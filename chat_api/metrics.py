"""
Prometheus metrics for the chat API.

This module provides:
- HTTP request counter (method, path, status)
- Request latency histogram (method, path)
- Created message counter (type)
- Authentication failure counter (reason)
- Upload outcome counter (result)

Metrics are stored in-memory using prometheus-client.
"""

from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST


# =============================================================================
# Metric Definitions
# =============================================================================

http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    labelnames=["method", "path", "status"]
)

# Using default buckets: .005, .01, .025, .05, .075, .1, .25, .5, .75, 1.0, 2.5, 5.0, 7.5, 10.0
request_latency_seconds = Histogram(
    "request_latency_seconds",
    "Request latency in seconds",
    labelnames=["method", "path"]
)

# type: text, emoji, sticker, image, file
messages_created_total = Counter(
    "messages_created_total",
    "Total messages stored",
    labelnames=["type"]
)

# reason: missing, invalid, expired, bad_credentials
auth_failures_total = Counter(
    "auth_failures_total",
    "Total rejected authentication attempts",
    labelnames=["reason"]
)

# result: stored, too_large, unsupported_type, no_file, error
uploads_total = Counter(
    "uploads_total",
    "Total upload outcomes",
    labelnames=["result"]
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
    normalized_path = path.split("?")[0]
    # Collapse /uploads/<name> to keep label cardinality bounded
    if normalized_path.startswith("/uploads/"):
        normalized_path = "/uploads/{name}"

    http_requests_total.labels(
        method=method,
        path=normalized_path,
        status=str(status)
    ).inc()

    request_latency_seconds.labels(
        method=method,
        path=normalized_path
    ).observe(latency_seconds)


def record_message_created(message_type: str) -> None:
    messages_created_total.labels(type=message_type).inc()


def record_auth_failure(reason: str) -> None:
    auth_failures_total.labels(reason=reason).inc()


def record_upload_outcome(result: str) -> None:
    uploads_total.labels(result=result).inc()


def get_metrics() -> bytes:
    """
    Generate Prometheus exposition format metrics.

    Returns:
        Metrics in Prometheus text format as bytes
    """
    return generate_latest()


def get_metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
