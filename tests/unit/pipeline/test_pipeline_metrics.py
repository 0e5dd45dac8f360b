"""
Unit tests for metrics recording (light sanity checks).
"""

import asyncio

import pytest

from conftest import FlakySink, MemoryErrorTable, make_events
from firehose_store.pipeline import BatchInserter, ErrorSink, RetryPolicy, StreamSupervisor, Windower
from firehose_store.pipeline.metrics import (
    BATCHES_TOTAL,
    ERROR_RECORDS_TOTAL,
    INSERT_ATTEMPTS_TOTAL,
    ITEMS_COMMITTED_TOTAL,
)
from firehose_store.sources import iter_source


def sample_value(metric, **labels) -> float:
    for family in metric.collect():
        for s in family.samples:
            if s.name.endswith("_total") and all(s.labels.get(k) == v for k, v in labels.items()):
                return s.value
    return 0.0


@pytest.mark.asyncio
async def test_supervisor_records_batch_and_error_metrics():
    stream = "metrics-test"
    sink = FlakySink(fail_first_n=2)
    sup = StreamSupervisor(
        stream,
        lambda: iter_source(make_events(8)),
        Windower(max_count=4, max_window=0.05),
        BatchInserter(sink, "metrics_table"),
        ErrorSink(MemoryErrorTable(), stream=stream),
        RetryPolicy(max_attempts=2, initial_backoff_ms=1),
    )

    await asyncio.wait_for(sup.run(), 2.0)

    assert sample_value(BATCHES_TOTAL, stream=stream, outcome="failure") == 1
    assert sample_value(BATCHES_TOTAL, stream=stream, outcome="success") == 1
    assert sample_value(ITEMS_COMMITTED_TOTAL, stream=stream) == 4
    assert sample_value(ERROR_RECORDS_TOTAL, stream=stream, status="written") == 1
    assert sample_value(INSERT_ATTEMPTS_TOTAL, table="metrics_table", result="retryable") == 2
    assert sample_value(INSERT_ATTEMPTS_TOTAL, table="metrics_table", result="ok") == 1
