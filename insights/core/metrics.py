"""
Prometheus Metrics
==================
Process-wide collectors exposed on /metrics.
"""

from prometheus_client import Counter, Histogram

INSIGHT_REQUESTS = Counter(
    "insights_requests_total",
    "B2B insight requests by endpoint and outcome",
    ["endpoint", "outcome"],
)

INSIGHT_LATENCY = Histogram(
    "insights_request_latency_seconds",
    "Latency of successfully served insight requests",
    ["endpoint"],
)

BUCKETS_MERGED = Counter(
    "insights_buckets_merged_total",
    "Sub-threshold groups rolled up into a coarser bucket",
)

BUCKETS_OMITTED = Counter(
    "insights_buckets_omitted_total",
    "Groups omitted because they stayed below the k-anonymity threshold",
)

USAGE_RECORD_FAILURES = Counter(
    "insights_usage_record_failures_total",
    "Usage ledger writes that failed after a successful response",
)
