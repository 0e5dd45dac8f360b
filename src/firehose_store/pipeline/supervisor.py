from __future__ import annotations

import asyncio
from contextlib import aclosing
from dataclasses import replace
from enum import Enum
from typing import AsyncIterator, Callable, Optional

from loguru import logger

from ..errors import PipelineStopped
from ..models import Event, utc_now
from .error_sink import ErrorSink
from .inserter import BatchInserter, InsertFailure, InsertOutcome
from .metrics import BATCHES_TOTAL, ITEMS_COMMITTED_TOTAL, SUPERVISOR_RESTARTS_TOTAL
from .policy import RetryPolicy
from .progress import ProgressBus, StreamProgress
from .windower import Batch, Windower

SourceFactory = Callable[[], AsyncIterator[Event]]

#: Errors that end a stream instead of restarting it.
UNRECOVERABLE: tuple[type[BaseException], ...] = (MemoryError,)


class SupervisorState(str, Enum):
    WINDOWING = "windowing"
    INSERTING = "inserting"
    SUCCEEDED = "succeeded"
    REPORTING = "reporting"
    STOPPED = "stopped"


class StreamSupervisor:
    """Runs Windower -> BatchInserter -> ErrorSink for one named stream.

    A failed batch is recorded and the stream moves on to the next window;
    unexpected errors restart the loop from a freshly opened source. Only
    the end of the source, shutdown, or an unrecoverable error stops it.

    Example:
        sup = StreamSupervisor("sample", lambda: ndjson_source("sample.ndjson"),
                               Windower(100, 10.0), inserter, error_sink)
        await sup.run()
    """

    def __init__(
        self,
        name: str,
        source_factory: SourceFactory,
        windower: Windower,
        inserter: BatchInserter,
        error_sink: ErrorSink,
        retry_policy: Optional[RetryPolicy] = None,
        *,
        bus: Optional[ProgressBus] = None,
        restart_delay: float = 1.0,
        stop_event: Optional[asyncio.Event] = None,
        unrecoverable: tuple[type[BaseException], ...] = UNRECOVERABLE,
    ):
        self.name = name
        self._source_factory = source_factory
        self.windower = windower
        self.inserter = inserter
        self.error_sink = error_sink
        self.retry_policy = retry_policy or RetryPolicy()
        self.bus = bus or ProgressBus()
        self.restart_delay = restart_delay
        self.unrecoverable = unrecoverable

        # retries in the inserter watch the same shutdown signal
        self._stop = stop_event or inserter.stop_event
        self.inserter.stop_event = self._stop

        self._state = SupervisorState.WINDOWING
        self._progress = StreamProgress(stream=name)
        self._restarts = 0
        self._log = logger.bind(stream=name)

    @property
    def state(self) -> SupervisorState:
        return self._state

    @property
    def progress(self) -> StreamProgress:
        return self._progress

    @property
    def restarts(self) -> int:
        return self._restarts

    def stop(self) -> None:
        """Request shutdown.

        Events already read from the source are still closed into batches and
        written (one attempt each; a retry backoff is abandoned).
        """
        self._stop.set()

    async def run(self) -> StreamProgress:
        """Process the stream until it ends, is stopped, or fails unrecoverably."""
        self._log.info(f"Stream '{self.name}' started")
        try:
            while not self._stop.is_set():
                try:
                    await self._consume(self._source_factory())
                    break
                except self.unrecoverable:
                    self._log.critical(f"Stream '{self.name}' hit an unrecoverable error")
                    raise
                except PipelineStopped:
                    break
                except Exception as e:
                    self._restarts += 1
                    SUPERVISOR_RESTARTS_TOTAL.labels(stream=self.name).inc()
                    self._log.opt(exception=e).error(
                        f"Stream loop failed ({type(e).__name__}: {e}); "
                        f"restarting in {self.restart_delay:.1f}s (restart #{self._restarts})"
                    )
                    if await self._sleep_or_stop(self.restart_delay):
                        break
        finally:
            self._state = SupervisorState.STOPPED
            self._progress = replace(self._progress, stopped=True, updated_at=utc_now())
            await self.bus.publish(self._progress)
            self._log.info(
                f"Stream '{self.name}' stopped: count={self._progress.count} "
                f"failed_batches={self._progress.failed_batches}"
            )
        return self._progress

    async def _consume(self, source: AsyncIterator[Event]) -> None:
        self._state = SupervisorState.WINDOWING
        windows = self.windower.windows(source, self.name, stop=self._stop)
        async with aclosing(windows) as batches:
            # after stop() the windower still yields what it had buffered
            async for batch in batches:
                await self._handle(batch)
                self._state = SupervisorState.WINDOWING

    async def _handle(self, batch: Batch) -> None:
        self._state = SupervisorState.INSERTING
        try:
            outcome: InsertOutcome = await self.inserter.insert(batch, self.retry_policy)
        except PipelineStopped:
            self._log.warning(f"Shutdown during retries; batch of {len(batch)} events not written")
            raise

        if isinstance(outcome, InsertFailure):
            self._state = SupervisorState.REPORTING
            BATCHES_TOTAL.labels(stream=self.name, outcome="failure").inc()
            await self.error_sink.record(outcome)
            self._progress = replace(
                self._progress,
                failed_batches=self._progress.failed_batches + 1,
                updated_at=utc_now(),
            )
        else:
            self._state = SupervisorState.SUCCEEDED
            BATCHES_TOTAL.labels(stream=self.name, outcome="success").inc()
            ITEMS_COMMITTED_TOTAL.labels(stream=self.name).inc(outcome.committed)
            self._progress = replace(
                self._progress,
                count=self._progress.count + outcome.committed,
                batches=self._progress.batches + 1,
                updated_at=utc_now(),
            )
            self._log.debug(
                f"Committed batch of {outcome.committed} ({batch.reason}, "
                f"attempts={outcome.attempts}); total={self._progress.count}"
            )
        await self.bus.publish(self._progress)

    async def _sleep_or_stop(self, seconds: float) -> bool:
        """Sleep; True if shutdown was requested meanwhile."""
        try:
            await asyncio.wait_for(self._stop.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return False
        return True
