"""Prometheus metrics for monitoring sync throughput, ledger API health and request latency"""

from prometheus_client import Counter, Histogram

# Sync metrics
sync_records_counter = Counter(
    "ledger_sync_records_total",
    "Records processed by the sync orchestrator",
    ["stage", "outcome"],  # outcome: created | updated | skipped | failed
)

sync_runs_counter = Counter(
    "ledger_sync_runs_total",
    "Completed sync runs",
    ["result"],  # success | partial | failed | timeout
)

sync_duration_histogram = Histogram(
    "ledger_sync_duration_seconds",
    "Wall-clock duration of a full sync run",
    buckets=[1.0, 5.0, 15.0, 30.0, 60.0, 120.0, 300.0],
)

# Ledger API metrics
page_fetch_latency_histogram = Histogram(
    "ledger_page_fetch_seconds",
    "Ledger API page fetch response time",
    ["endpoint"],
    buckets=[0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

fetch_failures_counter = Counter(
    "ledger_fetch_failures_total",
    "Failed ledger API page fetches",
    ["endpoint"],
)

token_refresh_counter = Counter(
    "ledger_token_refresh_total",
    "Access token refresh attempts",
    ["result"],  # success | expired | failed
)

# Service health
request_duration_histogram = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["method", "endpoint", "status"],
)


def record_stage_outcomes(stage: str, counts: dict) -> None:
    """Record per-outcome record counts for one finished sync stage"""
    for outcome, count in counts.items():
        if count:
            sync_records_counter.labels(stage=stage, outcome=outcome).inc(count)
