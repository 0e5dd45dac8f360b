"""
Count/time windowing of an event stream into batches.

A window opens when its first event arrives and closes once ``max_count``
events accumulated or ``max_window`` seconds passed since that first
arrival, whichever happens first. Idle time produces no batches.

Shutdown is treated like the end of the stream: whatever was already
taken from the source is closed into ``end`` batches (or dropped with a
warning when ``flush_on_end`` is off).
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import AsyncIterator, Callable, Iterator, Literal, Optional, Sequence, Union

from loguru import logger

from ..models import Event
from .metrics import WINDOW_QUEUE_DEPTH
from .queue import BoundedQueue

CloseReason = Literal["count", "time", "end"]


@dataclass(frozen=True)
class Batch:
    """A closed, non-empty window of events from one stream."""

    stream: str
    events: tuple[Event, ...]
    opened_at: float  # monotonic arrival time of the first event
    closed_at: float
    last_arrival: float
    reason: CloseReason

    def __len__(self) -> int:
        return len(self.events)

    def __iter__(self) -> Iterator[Event]:
        return iter(self.events)

    @property
    def span(self) -> float:
        """Seconds between the first and last event's arrival."""
        return self.last_arrival - self.opened_at


@dataclass(frozen=True)
class _EndOfStream:
    error: Optional[BaseException] = None


_Arrival = tuple[float, Event]
_Item = Union[_Arrival, _EndOfStream]


class Windower:
    def __init__(
        self,
        max_count: int,
        max_window: float,
        *,
        flush_on_end: bool = True,
        buffer_capacity: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_count < 1:
            raise ValueError("max_count must be >= 1")
        if max_window <= 0:
            raise ValueError("max_window must be > 0")
        self.max_count = max_count
        self.max_window = max_window
        self.flush_on_end = flush_on_end
        self.buffer_capacity = buffer_capacity or max_count
        self._clock = clock

    async def windows(
        self,
        source: AsyncIterator[Event],
        stream: str = "-",
        stop: Optional[asyncio.Event] = None,
    ) -> AsyncIterator[Batch]:
        """Yield batches from ``source`` until it ends or ``stop`` is set.

        A source error is re-raised here after the pending partial window
        has been flushed (or dropped when ``flush_on_end`` is off).
        """
        log = logger.bind(stream=stream)
        stop = stop or asyncio.Event()

        async def on_high() -> None:
            log.debug(f"Window buffer above high watermark (capacity={self.buffer_capacity})")

        async def on_low() -> None:
            log.debug("Window buffer drained below low watermark")

        queue: BoundedQueue[_Item] = BoundedQueue(
            self.buffer_capacity, on_high=on_high, on_low=on_low
        )
        held: list[_Arrival] = []  # taken from the source, waiting for room in the queue
        pump = asyncio.create_task(
            self._pump(source, queue, stream, held), name=f"{stream}-pump"
        )
        carry: Optional[_Arrival] = None
        try:
            while True:
                if carry is not None:
                    first: Optional[_Item] = carry
                    carry = None
                else:
                    first = await self._next(queue, stop)
                if first is None:
                    for batch in await self._halt(pump, queue, held, [], stream):
                        yield batch
                    return
                if isinstance(first, _EndOfStream):
                    self._finish(first)
                    return

                window = [first]
                deadline = first[0] + self.max_window
                end: Optional[_EndOfStream] = None
                stopped = False
                reason: CloseReason = "time"

                while len(window) < self.max_count:
                    remaining = deadline - self._clock()
                    try:
                        if remaining > 0:
                            item = await self._next(queue, stop, remaining)
                        else:
                            item = await queue.get_nowait()
                    except (asyncio.TimeoutError, asyncio.QueueEmpty):
                        break
                    if item is None:
                        stopped = True
                        break
                    if isinstance(item, _EndOfStream):
                        end = item
                        break
                    if item[0] > deadline:
                        carry = item
                        break
                    window.append(item)
                else:
                    reason = "count"

                if stopped:
                    for batch in await self._halt(pump, queue, held, window, stream):
                        yield batch
                    return

                if end is not None:
                    reason = "end"
                batch = self._batch(stream, window, reason)
                if reason != "end" or self.flush_on_end:
                    yield batch
                else:
                    log.warning(f"Dropping partial window of {len(batch)} events at end of stream")

                if end is not None:
                    self._finish(end)
                    return
        finally:
            pump.cancel()
            await asyncio.gather(pump, return_exceptions=True)
            WINDOW_QUEUE_DEPTH.labels(stream=stream).set(0)

    def _batch(self, stream: str, arrivals: Sequence[_Arrival], reason: CloseReason) -> Batch:
        return Batch(
            stream=stream,
            events=tuple(e for _, e in arrivals),
            opened_at=arrivals[0][0],
            closed_at=self._clock(),
            last_arrival=arrivals[-1][0],
            reason=reason,
        )

    @staticmethod
    async def _next(
        queue: BoundedQueue[_Item], stop: asyncio.Event, timeout: Optional[float] = None
    ) -> Optional[_Item]:
        """Next buffered item, or None once ``stop`` is set.

        Raises asyncio.TimeoutError when nothing arrives within ``timeout``.
        """
        if stop.is_set():
            return None
        getter = asyncio.ensure_future(queue.get())
        stopper = asyncio.ensure_future(stop.wait())
        try:
            await asyncio.wait(
                {getter, stopper}, timeout=timeout, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            # a cancelled get leaves its item in the queue
            getter.cancel()
            stopper.cancel()
            await asyncio.gather(getter, stopper, return_exceptions=True)
        if not getter.cancelled():
            return getter.result()
        if stop.is_set():
            return None
        raise asyncio.TimeoutError()

    async def _halt(
        self,
        pump: asyncio.Task,
        queue: BoundedQueue[_Item],
        held: list[_Arrival],
        window: list[_Arrival],
        stream: str,
    ) -> list[Batch]:
        """Stop reading the source and close everything already taken from it."""
        log = logger.bind(stream=stream)
        pump.cancel()
        await asyncio.gather(pump, return_exceptions=True)

        pending = list(window)
        while True:
            try:
                item = await queue.get_nowait()
            except asyncio.QueueEmpty:
                break
            if isinstance(item, _EndOfStream):
                if item.error is not None:
                    log.warning(
                        f"Source failed during shutdown: {type(item.error).__name__}: {item.error}"
                    )
                continue
            pending.append(item)
        pending.extend(held)
        if not pending:
            return []
        if not self.flush_on_end:
            log.warning(f"Dropping {len(pending)} buffered events on shutdown")
            return []

        log.info(f"Shutdown requested; closing {len(pending)} buffered events")
        return [
            self._batch(stream, pending[i : i + self.max_count], "end")
            for i in range(0, len(pending), self.max_count)
        ]

    @staticmethod
    def _finish(end: _EndOfStream) -> None:
        if end.error is not None:
            raise end.error

    async def _pump(
        self,
        source: AsyncIterator[Event],
        queue: BoundedQueue[_Item],
        stream: str,
        held: list[_Arrival],
    ) -> None:
        try:
            async for event in source:
                arrival = (self._clock(), event)
                held.append(arrival)
                await queue.put(arrival)
                held.clear()
                WINDOW_QUEUE_DEPTH.labels(stream=stream).set(queue.size)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            await queue.put(_EndOfStream(e))
            return
        finally:
            aclose = getattr(source, "aclose", None)
            if aclose is not None:
                await aclose()
        await queue.put(_EndOfStream())
