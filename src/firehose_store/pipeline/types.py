from __future__ import annotations

from typing import Any, Awaitable, Callable, Mapping, Protocol, Sequence, runtime_checkable

from ..models import ErrorRecord

BackpressureCallback = Callable[[], Awaitable[None]]


@runtime_checkable
class Sink(Protocol):
    """Batch write API of the analytical store.

    Inserts all rows of one batch as a single request. ``insert_ids`` are
    idempotency keys; the store must drop rows whose key it already holds.
    Returns the number of rows newly stored. Raises on failure;
    ``InsertAllFailedError`` with item errors signals a structural rejection.
    """

    async def insert_all(
        self,
        table: str,
        rows: Sequence[Mapping[str, Any]],
        insert_ids: Sequence[str],
    ) -> int: ...


@runtime_checkable
class ErrorTable(Protocol):
    """Single-row destination for error records."""

    async def insert(self, record: ErrorRecord) -> None: ...
