from __future__ import annotations

import asyncio
from typing import Optional

from ..log import Diagnostics
from ..models import ErrorRecord
from .inserter import InsertFailure
from .metrics import ERROR_RECORDS_TOTAL
from .types import ErrorTable

ITEM_ERROR_SEPARATOR = "\n\n"


def normalize_failure(failure: InsertFailure) -> tuple[BaseException, str]:
    """Pick the exception to record and the message to record with it.

    A wrapped transport error wins (it is the root cause); otherwise the
    actionable per-item reasons are joined into one message.
    """
    err = failure.error
    cause = err.__cause__
    if cause is not None:
        return cause, str(cause)
    if failure.item_errors:
        return err, ITEM_ERROR_SEPARATOR.join(str(e) for e in failure.item_errors)
    return err, str(err)


class ErrorSink:
    """Records failed batches in the error table, best-effort.

    The write is not retried. If it fails, the secondary failure is reported
    to diagnostics and itself recorded once; if that fails too, it stops at
    diagnostics. ``record`` never raises for ordinary exceptions.
    """

    def __init__(
        self,
        table: ErrorTable,
        *,
        stream: str = "-",
        diagnostics: Optional[Diagnostics] = None,
    ):
        self.table = table
        self.stream = stream
        self.diagnostics = diagnostics or Diagnostics(stream)

    async def record(self, failure: InsertFailure) -> bool:
        """Write one ErrorRecord for ``failure``. True when a row was written."""
        exc, message = normalize_failure(failure)
        self.diagnostics.report(
            f"batch of {failure.batch_size} failed after {failure.attempts} attempt(s): {message}"
        )
        record = ErrorRecord.from_exception(exc, message=message, stream=self.stream)
        try:
            await self.table.insert(record)
            ERROR_RECORDS_TOTAL.labels(stream=self.stream, status="written").inc()
            return True
        except (asyncio.CancelledError, MemoryError):
            raise
        except Exception as secondary:
            ERROR_RECORDS_TOTAL.labels(stream=self.stream, status="failed").inc()
            self.diagnostics.error_path_failure(secondary, "error table write failed")
            fallback = ErrorRecord.from_exception(secondary, stream=self.stream)

        try:
            await self.table.insert(fallback)
            ERROR_RECORDS_TOTAL.labels(stream=self.stream, status="written").inc()
            return True
        except (asyncio.CancelledError, MemoryError):
            raise
        except Exception as final:
            ERROR_RECORDS_TOTAL.labels(stream=self.stream, status="failed").inc()
            self.diagnostics.error_path_failure(final, "error table write failed again, giving up")
            return False
