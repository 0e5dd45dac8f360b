"""
Data models for firehose ingestion.

Events and error records are pydantic models (validated, serializable);
item errors are plain frozen dataclasses produced by storage clients.
"""

from __future__ import annotations

import traceback
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def utc_now() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(timezone.utc)


class Event(BaseModel):
    """One immutable firehose record (e.g. a status update)."""

    model_config = ConfigDict(frozen=True)

    id: str
    payload: dict[str, Any] = Field(default_factory=dict)
    received_at: datetime = Field(default_factory=utc_now)

    @field_validator("id", mode="before")
    @classmethod
    def _stringify_id(cls, v):
        if v is None or (isinstance(v, str) and not v.strip()):
            raise ValueError("event id must be non-empty")
        return str(v)

    @classmethod
    def from_record(cls, record: Mapping[str, Any], id_field: str = "id_str") -> "Event":
        """Build an Event from a raw firehose record.

        Uses ``id_field`` and falls back to ``id``. Raises ValueError when the
        record has no identifier.
        """
        ident = record.get(id_field)
        if ident is None:
            ident = record.get("id")
        if ident is None:
            raise ValueError(f"record has no '{id_field}' or 'id' field")
        return cls(id=ident, payload=dict(record))


@dataclass(frozen=True)
class ItemError:
    """Per-row rejection reported by the store for a batch insert."""

    index: int
    reason: str
    message: str = ""
    location: Optional[str] = None

    def __str__(self) -> str:
        loc = f" location={self.location}" if self.location else ""
        return f"index={self.index} reason={self.reason}{loc} message={self.message}"


class ErrorRecord(BaseModel):
    """One row of the error table. Read-only once written."""

    model_config = ConfigDict(frozen=True)

    timestamp: datetime = Field(default_factory=utc_now)
    type: str
    stack_trace: str = ""
    message: str = ""
    source: str = ""
    stream: Optional[str] = None

    @classmethod
    def from_exception(
        cls, exc: BaseException, message: str | None = None, stream: str | None = None
    ) -> "ErrorRecord":
        stack = "".join(traceback.format_tb(exc.__traceback__)) if exc.__traceback__ else ""
        return cls(
            type=type(exc).__name__,
            stack_trace=stack,
            message=message if message is not None else str(exc),
            source=type(exc).__module__,
            stream=stream,
        )
