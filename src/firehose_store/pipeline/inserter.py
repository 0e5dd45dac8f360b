from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Callable, Optional, Union

from ..errors import InsertAllFailedError, PipelineStopped
from ..mapping import RowMapper
from ..models import Event, ItemError
from .metrics import INSERT_ATTEMPTS_TOTAL, INSERT_LATENCY
from .policy import RetryPolicy
from .types import Sink
from .windower import Batch


def default_insert_id(event: Event) -> str:
    return str(event.id)


@dataclass(frozen=True)
class InsertSuccess:
    committed: int  # items accepted by the store (duplicates included)
    attempts: int
    inserted: Optional[int] = None  # rows newly stored, when the sink reports it

    ok = True


@dataclass(frozen=True)
class InsertFailure:
    error: InsertAllFailedError
    attempts: int
    batch_size: int

    ok = False

    @property
    def item_errors(self) -> tuple[ItemError, ...]:
        """Rejected items, minus those aborted only because of a sibling."""
        return self.error.actionable_errors

    @property
    def transport_error(self) -> Optional[BaseException]:
        return self.error.__cause__


InsertOutcome = Union[InsertSuccess, InsertFailure]


class BatchInserter:
    """Writes whole batches to one destination table with bounded retry.

    Each event gets a stable insert id so a retried request cannot double
    count at the store. Transient failures (per the policy's classifier)
    are retried; structural rejections and exhaustion yield an
    ``InsertFailure``. Logging of failures is left to the caller.
    """

    def __init__(
        self,
        sink: Sink,
        table: str,
        *,
        mapper: Optional[RowMapper] = None,
        key_fn: Callable[[Event], str] = default_insert_id,
        stop_event: Optional[asyncio.Event] = None,
    ):
        self.sink = sink
        self.table = table
        self.mapper = mapper or RowMapper()
        self.key_fn = key_fn
        self.stop_event = stop_event or asyncio.Event()

    async def insert(self, batch: Batch, retry_policy: RetryPolicy) -> InsertOutcome:
        rows = self.mapper.to_rows(batch.events)
        insert_ids = [self.key_fn(e) for e in batch.events]
        t0 = time.perf_counter()
        attempt = 0
        try:
            while True:
                attempt += 1
                try:
                    inserted = await self.sink.insert_all(self.table, rows, insert_ids)
                except InsertAllFailedError as e:
                    INSERT_ATTEMPTS_TOTAL.labels(table=self.table, result="fatal").inc()
                    return InsertFailure(self._structured(e), attempt, len(batch))
                except (asyncio.CancelledError, MemoryError):
                    raise
                except Exception as e:
                    retryable = retry_policy.classify_retryable(e)
                    INSERT_ATTEMPTS_TOTAL.labels(
                        table=self.table, result="retryable" if retryable else "fatal"
                    ).inc()
                    if not retryable or attempt >= retry_policy.max_attempts:
                        return InsertFailure(self._wrap(e, attempt), attempt, len(batch))
                    await self._backoff(retry_policy.next_backoff_ms(attempt), e)
                    continue

                INSERT_ATTEMPTS_TOTAL.labels(table=self.table, result="ok").inc()
                return InsertSuccess(
                    committed=len(batch),
                    attempts=attempt,
                    inserted=inserted if isinstance(inserted, int) else None,
                )
        finally:
            INSERT_LATENCY.labels(table=self.table).observe(time.perf_counter() - t0)

    async def _backoff(self, delay_ms: int, cause: BaseException) -> None:
        """Sleep before the next attempt; abort promptly on shutdown."""
        if self.stop_event.is_set():
            raise PipelineStopped(f"shutdown before retrying insert into {self.table}") from cause
        try:
            await asyncio.wait_for(self.stop_event.wait(), timeout=delay_ms / 1000.0)
        except asyncio.TimeoutError:
            return
        raise PipelineStopped(f"shutdown during retry backoff for {self.table}") from cause

    def _structured(self, e: InsertAllFailedError) -> InsertAllFailedError:
        if e.item_errors or e.__cause__ is not None:
            return e
        # structural failure without detail: keep it as its own root cause
        wrapped = InsertAllFailedError(str(e) or f"insert into {self.table} failed")
        wrapped.__cause__ = e
        return wrapped

    def _wrap(self, e: BaseException, attempts: int) -> InsertAllFailedError:
        err = InsertAllFailedError(
            f"insert into {self.table} failed after {attempts} attempt(s): {type(e).__name__}: {e}"
        )
        err.__cause__ = e
        return err
