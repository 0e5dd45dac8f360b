"""
Custom exceptions for the firehose store pipeline.

Separates transient transport failures (retried with backoff) from
structural item rejections (recorded, never retried) and shutdown.
"""

from __future__ import annotations

from typing import Sequence, TYPE_CHECKING

if TYPE_CHECKING:
    from .models import ItemError

#: Item error reason for rows rejected only because a sibling row failed.
STOPPED_REASON = "stopped"


class FirehoseStoreError(Exception):
    """Base error for the firehose store pipeline."""

    pass


class RetryableError(FirehoseStoreError):
    """Temporary errors that should be retried with backoff."""

    pass


class ConstraintViolation(FirehoseStoreError):
    """Rows rejected by the store (constraint, type or value errors)."""

    pass


class PipelineStopped(FirehoseStoreError):
    """Shutdown was requested while a batch was in flight."""

    pass


class InsertAllFailedError(FirehoseStoreError):
    """A batch insert failed.

    Either wraps a transport exception (``__cause__`` is set, no item
    errors) or carries one ``ItemError`` per rejected row.
    """

    def __init__(self, message: str, item_errors: Sequence["ItemError"] = ()):
        super().__init__(message)
        self.item_errors: tuple["ItemError", ...] = tuple(item_errors)

    @property
    def actionable_errors(self) -> tuple["ItemError", ...]:
        """Item errors minus rows that were only aborted alongside a bad sibling."""
        return tuple(e for e in self.item_errors if e.reason != STOPPED_REASON)


def map_db_error(e: Exception) -> FirehoseStoreError:
    import psycopg
    import psycopg.errors as E

    # QueryCanceled (statement timeout) is an OperationalError, so it retries too
    if isinstance(e, (E.SerializationFailure, E.DeadlockDetected, psycopg.OperationalError)):
        return RetryableError(str(e))
    if isinstance(
        e, (E.UniqueViolation, E.CheckViolation, E.ForeignKeyViolation, psycopg.DataError)
    ):
        return ConstraintViolation(str(e))
    return FirehoseStoreError(str(e))
