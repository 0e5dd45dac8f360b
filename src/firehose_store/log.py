"""
Logging setup and the last-resort diagnostics channel.

Everything logs through loguru. ``Diagnostics`` is the channel the error
path falls back to when the error table itself is unavailable; emitting to
it never raises.
"""

from __future__ import annotations

import sys

from loguru import logger


def setup_logging(level: str = "INFO", serialize: bool = False) -> None:
    """Replace loguru's default sink with a stderr sink at ``level``.

    ``serialize=True`` emits one JSON object per line (production).
    """
    logger.remove()
    logger.add(
        sys.stderr,
        level=level.upper(),
        serialize=serialize,
        backtrace=False,
        diagnose=False,
        format=(
            "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | "
            "<cyan>{extra[stream]}</cyan> | {message}"
        ),
    )
    logger.configure(extra={"stream": "-"})


class Diagnostics:
    """Write-only, always-available failure channel for one stream."""

    def __init__(self, stream: str = "-"):
        self.stream = stream
        self._log = logger.bind(stream=stream, diagnostics=True)

    def report(self, message: str) -> None:
        """Failure summary (one line per failed batch)."""
        self._emit("WARNING", message)

    def error_path_failure(self, exc: BaseException, context: str) -> None:
        """The error table write itself failed."""
        self._emit("ERROR", f"{context}: {type(exc).__name__}: {exc}")

    def _emit(self, level: str, message: str) -> None:
        try:
            self._log.log(level, message)
        except Exception:
            try:
                print(f"[{self.stream}] {level} {message}", file=sys.stderr)
            except Exception:
                pass
