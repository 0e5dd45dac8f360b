"""
Unit tests for the NDJSON error table and insert-all sink.
"""

import asyncio
import json

import pytest

from firehose_store.models import ErrorRecord
from firehose_store.storage import NdjsonErrorTable, NdjsonInsertAllClient


@pytest.mark.asyncio
async def test_error_table_insert_and_replay(tmp_path):
    """Test records can be written and read back in order."""
    table = NdjsonErrorTable(tmp_path / "errors" / "errors.ndjson")

    await table.insert(ErrorRecord(type="TimeoutError", message="boom", stream="sample"))
    await table.insert(ErrorRecord(type="InsertAllFailedError", message="kapow", stream="user"))

    recs = await table.replay(10)
    assert [r.message for r in recs] == ["boom", "kapow"]
    assert recs[0].stream == "sample"
    assert recs[0].timestamp.tzinfo is not None


@pytest.mark.asyncio
async def test_error_table_replay_limit_and_missing_file(tmp_path):
    table = NdjsonErrorTable(tmp_path / "errors.ndjson")
    for i in range(10):
        await table.insert(ErrorRecord(type="X", message=f"error-{i}"))

    assert len(await table.replay(5)) == 5
    missing = NdjsonErrorTable(tmp_path / "nope" / "errors.ndjson", mkdirs=False)
    assert await missing.replay(10) == []


@pytest.mark.asyncio
async def test_error_table_concurrent_writes_and_corrupt_lines(tmp_path):
    path = tmp_path / "errors.ndjson"
    table = NdjsonErrorTable(path)

    await asyncio.gather(*[table.insert(ErrorRecord(type="X", message=str(i))) for i in range(20)])
    with path.open("a") as f:
        f.write("{not json\n")

    recs = await table.replay(100)
    assert len(recs) == 20


@pytest.mark.asyncio
async def test_sink_appends_rows_and_dedupes_insert_ids(tmp_path):
    sink = NdjsonInsertAllClient(tmp_path)

    assert await sink.insert_all("sample", [{"text": "a"}, {"text": "b"}], ["1", "2"]) == 2
    assert await sink.insert_all("sample", [{"text": "b"}, {"text": "c"}], ["2", "3"]) == 1

    lines = sink.path_for("sample").read_text().splitlines()
    assert [json.loads(line)["insert_id"] for line in lines] == ["1", "2", "3"]


@pytest.mark.asyncio
async def test_sink_loads_existing_ids_after_restart(tmp_path):
    first = NdjsonInsertAllClient(tmp_path)
    await first.insert_all("user", [{"text": "a"}], ["9"])

    second = NdjsonInsertAllClient(tmp_path)
    assert await second.insert_all("user", [{"text": "a"}, {"text": "z"}], ["9", "10"]) == 1
    assert len(second.path_for("user").read_text().splitlines()) == 2
