"""Prometheus metrics for the delivery queue and cookie state."""
from prometheus_client import Counter, Histogram

# API calls by outcome: delivered, retried, failed (retries exhausted), rejected (non-200)
API_CALLS_TOTAL = Counter(
    "calq_api_calls_total",
    "API calls handled by the delivery queue",
    ["endpoint", "outcome"],
)
API_CALL_LATENCY = Histogram(
    "calq_api_call_duration_seconds",
    "Latency of a single API call round trip in seconds",
    ["endpoint"],
    buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 15.0),
)
COOKIE_WRITES_TOTAL = Counter(
    "calq_cookie_writes_total",
    "Session state cookie writes",
)
