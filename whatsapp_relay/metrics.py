"""
Prometheus metrics for the relay.

This module provides:
- HTTP request counter (method, path, status)
- Request latency histogram (method, path)
- Webhook outcome counter (result)
- Reply decision counter (decision)
- Outbound send counter (outcome)
- Persistence error counter (operation)

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

# Webhook processing outcome counter
# result: processed, reply_failed, invalid_payload, invalid_signature
webhook_requests_total = Counter(
    "webhook_requests_total",
    "Total webhook processing outcomes",
    labelnames=["result"]
)

# Reply decision counter, one increment per handled event
# decision: self_loop, first_contact_text, returning_text, selection_reply, status_update, unclassified
webhook_decisions_total = Counter(
    "webhook_decisions_total",
    "Reply decisions taken for webhook events",
    labelnames=["decision"]
)

# Outbound Graph API sends
# outcome: sent, failed
outbound_sends_total = Counter(
    "outbound_sends_total",
    "Outbound messages handed to the provider",
    labelnames=["outcome"]
)

# Store failures swallowed by best-effort bookkeeping
# operation: ledger_append, ledger_status, contact_upsert, contact_read, contact_increment, broadcast_log, broadcast_contact
persistence_errors_total = Counter(
    "persistence_errors_total",
    "Ledger and contact store failures absorbed during processing",
    labelnames=["operation"]
)

# Request latency histogram in seconds
# Using default buckets: .005, .01, .025, .05, .075, .1, .25, .5, .75, 1.0, 2.5, 5.0, 7.5, 10.0
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
    # (e.g., /logs?limit=50 -> /logs)
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


def record_webhook_outcome(result: str) -> None:
    """
    Record a webhook processing outcome.

    Args:
        result: Processing result - one of:
            - "processed": Event handled, reply sent if one was due
            - "reply_failed": Provider rejected the reply, still acknowledged
            - "invalid_signature": HMAC validation failed
            - "invalid_payload": Body is not a usable webhook envelope
    """
    webhook_requests_total.labels(result=result).inc()


def record_decision(decision: str) -> None:
    webhook_decisions_total.labels(decision=decision).inc()


def record_outbound_send(outcome: str) -> None:
    outbound_sends_total.labels(outcome=outcome).inc()


def record_persistence_error(operation: str) -> None:
    persistence_errors_total.labels(operation=operation).inc()


def get_metrics() -> bytes:
    """
    Generate Prometheus exposition format metrics.

    Returns:
        Metrics in Prometheus text format as bytes
    """
    return generate_latest()


def get_metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
