from __future__ import annotations

import asyncio
from typing import Generic, Optional, TypeVar

from .types import BackpressureCallback

T = TypeVar("T")


class BoundedQueue(Generic[T]):
    """Bounded queue with high/low watermark signals.

    Buffers events between a source pump and the windower. ``put`` blocks
    while the queue is full, so the pump stops pulling from the source
    instead of dropping anything.
    """

    def __init__(
        self,
        capacity: int,
        high_watermark: int | None = None,
        low_watermark: int | None = None,
        *,
        on_high: Optional[BackpressureCallback] = None,
        on_low: Optional[BackpressureCallback] = None,
    ):
        if capacity <= 0:
            raise ValueError("capacity must be > 0")

        self._capacity = capacity
        self._q: asyncio.Queue[T] = asyncio.Queue(maxsize=capacity)

        self._high_wm = (
            high_watermark if high_watermark is not None else max(1, int(0.8 * capacity))
        )
        self._low_wm = low_watermark if low_watermark is not None else int(0.5 * capacity)
        self._on_high = on_high
        self._on_low = on_low

        self._high_fired = False  # avoid duplicate signals

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def size(self) -> int:
        return self._q.qsize()

    async def put(self, item: T) -> None:
        """Put item, waiting for room; emits high watermark once."""
        await self._q.put(item)
        await self._maybe_signal_high()

    async def get(self) -> T:
        """Get the next item; emits low watermark when recovering."""
        item = await self._q.get()
        await self._maybe_signal_low()
        return item

    async def get_nowait(self) -> T:
        """Get an already-buffered item; raises asyncio.QueueEmpty otherwise."""
        item = self._q.get_nowait()
        await self._maybe_signal_low()
        return item

    async def _maybe_signal_high(self) -> None:
        if not self._high_fired and self.size >= self._high_wm:
            self._high_fired = True
            if self._on_high:
                await self._on_high()

    async def _maybe_signal_low(self) -> None:
        if self._high_fired and self.size <= self._low_wm:
            self._high_fired = False
            if self._on_low:
                await self._on_low()
