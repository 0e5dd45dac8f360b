"""
Prometheus metrics for the ingestion pipeline.

Registered in the global REGISTRY on import; expose with
``prometheus_client.start_http_server``.
"""

from prometheus_client import Counter, Gauge, Histogram

BATCHES_TOTAL = Counter(
    "firehose_batches_total",
    "Batches processed by outcome",
    ["stream", "outcome"],  # outcome: success|failure
)

ITEMS_COMMITTED_TOTAL = Counter(
    "firehose_items_committed_total",
    "Items committed to the store",
    ["stream"],
)

INSERT_ATTEMPTS_TOTAL = Counter(
    "firehose_insert_attempts_total",
    "Insert requests sent to the store",
    ["table", "result"],  # result: ok|retryable|fatal
)

INSERT_LATENCY = Histogram(
    "firehose_insert_latency_seconds",
    "Latency of a whole batch insert including retries",
    ["table"],
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10, 30],
)

ERROR_RECORDS_TOTAL = Counter(
    "firehose_error_records_total",
    "Error records written to the error table",
    ["stream", "status"],  # status: written|failed
)

SUPERVISOR_RESTARTS_TOTAL = Counter(
    "firehose_supervisor_restarts_total",
    "Times a stream loop was restarted after an unexpected error",
    ["stream"],
)

WINDOW_QUEUE_DEPTH = Gauge(
    "firehose_window_queue_depth",
    "Events buffered ahead of the windower",
    ["stream"],
)
