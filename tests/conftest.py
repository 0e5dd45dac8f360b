"""
Pytest configuration and fixtures for firehose-store.

Provides cross-platform event loop configuration, in-memory fakes for the
store and the error table, and a capture of diagnostics lines.
"""

import asyncio
import sys
from typing import Any, Mapping, Sequence

import pytest
from loguru import logger

from firehose_store.models import ErrorRecord, Event

# Set policy *before* pytest-asyncio creates any loops
if sys.platform.startswith("win"):
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())


class RecordingSink:
    """Sink that stores rows keyed by insert id (dedupes like the real store)."""

    def __init__(self):
        self.calls: list[tuple[str, list[Mapping[str, Any]], list[str]]] = []
        self.rows: dict[str, Mapping[str, Any]] = {}

    async def insert_all(self, table, rows: Sequence, insert_ids: Sequence[str]) -> int:
        await asyncio.sleep(0)
        self.calls.append((table, list(rows), list(insert_ids)))
        new = 0
        for row, key in zip(rows, insert_ids):
            if key not in self.rows:
                self.rows[key] = row
                new += 1
        return new


class FlakySink(RecordingSink):
    """Fails the first N requests with a transient error, then succeeds."""

    def __init__(self, fail_first_n: int = 1, exc: Exception | None = None):
        super().__init__()
        self._fail = fail_first_n
        self._exc = exc or TimeoutError("transient")
        self.attempts = 0

    async def insert_all(self, table, rows, insert_ids) -> int:
        self.attempts += 1
        if self._fail > 0:
            self._fail -= 1
            raise self._exc
        return await super().insert_all(table, rows, insert_ids)


class MemoryErrorTable:
    """Error table that keeps records in a list; can fail the first N inserts."""

    def __init__(self, fail_first_n: int = 0):
        self.records: list[ErrorRecord] = []
        self._fail = fail_first_n
        self.attempts = 0

    async def insert(self, record: ErrorRecord) -> None:
        self.attempts += 1
        if self._fail > 0:
            self._fail -= 1
            raise ConnectionError("error table unavailable")
        self.records.append(record)


def make_events(n: int, start: int = 0) -> list[Event]:
    return [Event(id=str(i), payload={"id_str": str(i), "text": f"tweet {i}"}) for i in range(start, start + n)]


@pytest.fixture
def diag_lines():
    """Collect records emitted on the diagnostics channel."""
    lines = []
    handler_id = logger.add(
        lambda message: lines.append(message.record),
        level="DEBUG",
        filter=lambda record: record["extra"].get("diagnostics", False),
    )
    yield lines
    logger.remove(handler_id)
