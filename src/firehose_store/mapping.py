"""
Explicit field-to-column mapping for destination tables.

Callers declare which payload fields land in which column instead of the
store reflecting over a domain type. Nested references that would recurse
(a status embedding its retweeted status, a user embedding their latest
status) are flattened to plain ids, and complex values are JSON-encoded.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, Optional, Sequence

from .models import Event

_MISSING = object()


def dig(payload: Mapping[str, Any], path: str, default: Any = None) -> Any:
    """Resolve a dotted path (``"user.id"``) in a nested mapping."""
    cur: Any = payload
    for part in path.split("."):
        if not isinstance(cur, Mapping):
            return default
        cur = cur.get(part, _MISSING)
        if cur is _MISSING:
            return default
    return cur


def as_json(value: Any) -> Optional[str]:
    return None if value is None else json.dumps(value, separators=(",", ":"), default=str)


def id_of(value: Any) -> Optional[str]:
    if isinstance(value, Mapping):
        ident = value.get("id_str", value.get("id"))
        return None if ident is None else str(ident)
    return None


def ids_of(value: Any) -> list[str]:
    if not value:
        return []
    return [i for i in (id_of(v) for v in value) if i is not None]


@dataclass(frozen=True)
class Column:
    """One destination column: where its value comes from and how it is shaped."""

    name: str
    path: Optional[str] = None  # defaults to the column name
    transform: Optional[Callable[[Any], Any]] = None

    def extract(self, payload: Mapping[str, Any]) -> Any:
        value = dig(payload, self.path or self.name)
        return self.transform(value) if self.transform else value


@dataclass(frozen=True)
class RowMapper:
    """Turns Events into destination rows.

    With no columns the event payload is passed through unchanged.
    """

    columns: Sequence[Column] = field(default_factory=tuple)

    @property
    def column_names(self) -> list[str]:
        return [c.name for c in self.columns]

    def to_row(self, event: Event) -> dict[str, Any]:
        if not self.columns:
            return dict(event.payload)
        return {c.name: c.extract(event.payload) for c in self.columns}

    def to_rows(self, events: Sequence[Event]) -> list[dict[str, Any]]:
        return [self.to_row(e) for e in events]


# Status payloads from the streaming API, flattened for a columnar table.
STATUS_COLUMNS: tuple[Column, ...] = (
    Column("id", "id_str", str),
    Column("created_at"),
    Column("text"),
    Column("lang"),
    Column("source"),
    Column("in_reply_to_status_id", "in_reply_to_status_id_str"),
    Column("retweet_count"),
    Column("favorite_count"),
    Column("user_id", "user.id_str"),
    Column("user_screen_name", "user.screen_name"),
    Column("user_status_id", "user.status", id_of),
    Column("retweeted_status_id", "retweeted_status", id_of),
    Column("place_id", "place.id"),
    Column("place_contained_within_id", "place.contained_within", ids_of),
    Column("place_bounding_box", "place.bounding_box.coordinates", as_json),
    Column("coordinates", "coordinates", as_json),
    Column("entities", "entities", as_json),
)

STATUS_MAPPER = RowMapper(STATUS_COLUMNS)
