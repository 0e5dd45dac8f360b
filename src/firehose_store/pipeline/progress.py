"""
Per-stream progress snapshots and the channel they travel on.

Each supervisor is the only writer of its own counters and publishes
immutable ``StreamProgress`` snapshots; readers subscribe instead of
sharing state.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Protocol

from loguru import logger

from ..models import utc_now


@dataclass(frozen=True)
class StreamProgress:
    """Immutable progress snapshot of one named stream.

    Attributes:
        stream: Stream name (e.g. "sample", "user")
        count: Items committed so far (monotonically non-decreasing)
        batches: Batches committed
        failed_batches: Batches recorded as failed
        stopped: True once the stream's supervisor reached STOPPED
    """

    stream: str
    count: int = 0
    batches: int = 0
    failed_batches: int = 0
    stopped: bool = False
    updated_at: datetime = field(default_factory=utc_now)


class ProgressSubscriber(Protocol):
    async def __call__(self, progress: StreamProgress) -> None: ...


class ProgressBus:
    """In-process pub/sub for StreamProgress snapshots.

    Subscribers are called in registration order; one subscriber's failure
    is logged and does not affect others.
    """

    def __init__(self) -> None:
        self._subs: list[ProgressSubscriber] = []

    def subscribe(self, callback: ProgressSubscriber) -> None:
        if callback not in self._subs:
            self._subs.append(callback)
            logger.debug(f"Progress subscriber added (total: {len(self._subs)})")

    async def publish(self, progress: StreamProgress) -> None:
        for callback in list(self._subs):
            try:
                await callback(progress)
            except Exception as exc:
                logger.debug(f"Progress subscriber error (ignored): {type(exc).__name__}: {exc}")
