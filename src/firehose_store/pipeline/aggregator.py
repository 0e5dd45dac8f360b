"""
Joint progress of the two named streams.

The aggregator combines the latest snapshot of each supervisor whenever
either changes, samples that joint value on a fixed interval for
reporting, and blocks until the supervisors have stopped.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Literal, Optional

from loguru import logger

from .progress import StreamProgress
from .supervisor import StreamSupervisor

StopPolicy = Literal["all", "any"]
Reporter = Callable[["JointProgress"], Awaitable[None]]


@dataclass(frozen=True)
class JointProgress:
    """Latest progress of both streams, as one value."""

    first: StreamProgress
    second: StreamProgress

    @property
    def total(self) -> int:
        return self.first.count + self.second.count

    def counts(self) -> dict[str, int]:
        return {self.first.stream: self.first.count, self.second.stream: self.second.count}

    def __str__(self) -> str:
        return (
            f"{{ {self.first.stream}_count = {self.first.count}, "
            f"{self.second.stream}_count = {self.second.count} }}"
        )


async def log_reporter(joint: JointProgress) -> None:
    logger.info(str(joint))


class Aggregator:
    """Runs two stream supervisors and reports their combined progress.

    Args:
        first, second: Supervisors of the two named streams
        sample_interval: Seconds between progress reports
        stop_policy: "all" keeps going (with the stopped side frozen) until
            both stop; "any" stops the other stream once one stops
        reporter: Async callable receiving each sampled JointProgress
    """

    def __init__(
        self,
        first: StreamSupervisor,
        second: StreamSupervisor,
        *,
        sample_interval: float = 10.0,
        stop_policy: StopPolicy = "all",
        reporter: Optional[Reporter] = None,
    ):
        if first.name == second.name:
            raise ValueError("streams must have distinct names")
        if sample_interval <= 0:
            raise ValueError("sample_interval must be > 0")
        if stop_policy not in ("all", "any"):
            raise ValueError(f"unknown stop_policy: {stop_policy}")
        self.first = first
        self.second = second
        self.sample_interval = sample_interval
        self.stop_policy = stop_policy
        self.reporter = reporter or log_reporter

        self._latest = JointProgress(first.progress, second.progress)
        self._dirty = False
        self._reported: Optional[JointProgress] = None
        first.bus.subscribe(self._on_progress)
        if second.bus is not first.bus:
            second.bus.subscribe(self._on_progress)

    @property
    def latest(self) -> JointProgress:
        """Most recent combined value (not necessarily reported yet)."""
        return self._latest

    @property
    def last_reported(self) -> Optional[JointProgress]:
        return self._reported

    async def _on_progress(self, progress: StreamProgress) -> None:
        if progress.stream == self.first.name:
            self._latest = JointProgress(progress, self._latest.second)
        elif progress.stream == self.second.name:
            self._latest = JointProgress(self._latest.first, progress)
        else:
            return
        self._dirty = True

    def stop(self) -> None:
        """Ask both supervisors to shut down."""
        self.first.stop()
        self.second.stop()

    async def sample(self) -> Optional[JointProgress]:
        """Report the joint value if it changed since the last report."""
        if not self._dirty:
            return None
        self._dirty = False
        joint = self._latest
        self._reported = joint
        try:
            await self.reporter(joint)
        except Exception as exc:
            logger.warning(f"Progress reporter failed: {type(exc).__name__}: {exc}")
        return joint

    async def _sampler(self) -> None:
        while True:
            await asyncio.sleep(self.sample_interval)
            await self.sample()

    async def run(self) -> JointProgress:
        """Run both streams; block until the stop policy is satisfied.

        Re-raises the first unrecoverable error a supervisor ended with.
        """
        tasks = {
            asyncio.create_task(self.first.run(), name=f"supervisor-{self.first.name}"),
            asyncio.create_task(self.second.run(), name=f"supervisor-{self.second.name}"),
        }
        sampler = asyncio.create_task(self._sampler(), name="progress-sampler")
        error: Optional[BaseException] = None
        try:
            pending = tasks
            while pending:
                done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
                for t in done:
                    exc = t.exception()
                    if exc is not None:
                        logger.critical(f"{t.get_name()} ended with {type(exc).__name__}: {exc}")
                        error = error or exc
                if pending and self.stop_policy == "any":
                    logger.info("One stream stopped; stopping the other (stop_policy=any)")
                    self.stop()
            await self.sample()
        finally:
            sampler.cancel()
            for t in tasks:
                if not t.done():
                    t.cancel()
            await asyncio.gather(sampler, *tasks, return_exceptions=True)
        if error is not None:
            raise error
        return self._latest
