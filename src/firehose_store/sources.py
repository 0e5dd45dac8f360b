"""
Upstream Event sources.

A source is any async iterator of Events. Supervisors take a zero-argument
factory so a failed source can be reopened.
"""

from __future__ import annotations

import asyncio
import json
import sys
from pathlib import Path
from typing import Any, AsyncIterator, Iterable, Mapping, Union

from loguru import logger

from .models import Event


async def iter_source(items: Iterable[Union[Event, Mapping[str, Any]]]) -> AsyncIterator[Event]:
    """Adapt an in-memory iterable of Events or raw records."""
    for item in items:
        yield item if isinstance(item, Event) else Event.from_record(item)
        await asyncio.sleep(0)


async def ndjson_source(
    path: Union[str, Path], *, id_field: str = "id_str"
) -> AsyncIterator[Event]:
    """Read newline-delimited JSON records from a file (or ``-`` for stdin).

    Blank lines are skipped; lines that fail to decode or carry no id are
    logged and skipped (e.g. keep-alive or delete notices on the stream).
    """
    stream = sys.stdin if str(path) == "-" else open(path, "r", encoding="utf-8")
    try:
        lineno = 0
        while True:
            line = await asyncio.to_thread(stream.readline)
            if not line:
                return
            lineno += 1
            line = line.strip()
            if not line:
                continue
            try:
                record = json.loads(line)
                event = Event.from_record(record, id_field=id_field)
            except (json.JSONDecodeError, ValueError, AttributeError) as e:
                logger.debug(f"Skipping line {lineno} of {path}: {e}")
                continue
            yield event
    finally:
        if stream is not sys.stdin:
            stream.close()
