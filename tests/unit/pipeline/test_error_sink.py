"""
Unit tests for ErrorSink normalization and its best-effort write path.
"""

import pytest

from conftest import MemoryErrorTable
from firehose_store.errors import InsertAllFailedError
from firehose_store.models import ItemError
from firehose_store.pipeline import ErrorSink, InsertFailure, normalize_failure


def transport_failure() -> InsertFailure:
    try:
        raise TimeoutError("deadline exceeded")
    except TimeoutError as cause:
        err = InsertAllFailedError("insert into sample failed after 3 attempt(s)")
        err.__cause__ = cause
    return InsertFailure(err, attempts=3, batch_size=100)


def structured_failure() -> InsertFailure:
    err = InsertAllFailedError(
        "rejected",
        [
            ItemError(0, "invalid", "no such field: geo", "geo"),
            ItemError(1, "stopped"),
            ItemError(2, "invalid", "bad timestamp"),
        ],
    )
    return InsertFailure(err, attempts=1, batch_size=3)


def test_normalize_prefers_root_cause():
    exc, message = normalize_failure(transport_failure())
    assert isinstance(exc, TimeoutError)
    assert message == "deadline exceeded"


def test_normalize_joins_item_reasons_without_stopped():
    exc, message = normalize_failure(structured_failure())
    assert isinstance(exc, InsertAllFailedError)
    parts = message.split("\n\n")
    assert len(parts) == 2
    assert "no such field: geo" in parts[0]
    assert "bad timestamp" in parts[1]
    assert "stopped" not in message


@pytest.mark.asyncio
async def test_record_writes_one_row(diag_lines):
    table = MemoryErrorTable()
    sink = ErrorSink(table, stream="sample")

    assert await sink.record(transport_failure()) is True

    assert len(table.records) == 1
    rec = table.records[0]
    assert rec.type == "TimeoutError"
    assert rec.message == "deadline exceeded"
    assert rec.stream == "sample"
    assert "raise TimeoutError" in rec.stack_trace
    # one summary line, no error-path lines
    assert [r["level"].name for r in diag_lines] == ["WARNING"]


@pytest.mark.asyncio
async def test_first_write_fails_then_secondary_record_is_written(diag_lines):
    table = MemoryErrorTable(fail_first_n=1)
    sink = ErrorSink(table, stream="user")

    assert await sink.record(structured_failure()) is True

    assert table.attempts == 2
    assert len(table.records) == 1
    assert table.records[0].type == "ConnectionError"
    assert table.records[0].message == "error table unavailable"
    assert [r["level"].name for r in diag_lines] == ["WARNING", "ERROR"]


@pytest.mark.asyncio
async def test_both_writes_fail_nothing_escapes(diag_lines):
    """Error table down for both writes: no exception, two error-path diagnostics."""
    table = MemoryErrorTable(fail_first_n=2)
    sink = ErrorSink(table, stream="sample")

    assert await sink.record(transport_failure()) is False

    assert table.records == []
    assert table.attempts == 2
    error_path = [r for r in diag_lines if r["level"].name == "ERROR"]
    assert len(error_path) == 2
    assert all(r["extra"]["stream"] == "sample" for r in diag_lines)
