from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any, Mapping, Sequence, Union

from loguru import logger

from ..models import ErrorRecord


class NdjsonInsertAllClient:
    """Sink appending batches to ``<directory>/<table>.ndjson``.

    Deduplicates on insert id for the lifetime of the process (ids already
    in an existing file are loaded on first write to that table).
    """

    def __init__(self, directory: Union[str, Path]):
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)
        self._seen: dict[str, set[str]] = {}
        self._lock = asyncio.Lock()

    def path_for(self, table: str) -> Path:
        return self.directory / f"{table}.ndjson"

    async def insert_all(
        self,
        table: str,
        rows: Sequence[Mapping[str, Any]],
        insert_ids: Sequence[str],
    ) -> int:
        if len(rows) != len(insert_ids):
            raise ValueError("rows and insert_ids must have the same length")
        async with self._lock:
            return await asyncio.to_thread(self._write, table, rows, insert_ids)

    def _write(self, table: str, rows: Sequence[Mapping[str, Any]], insert_ids: Sequence[str]) -> int:
        seen = self._seen.get(table)
        if seen is None:
            seen = self._seen[table] = self._load_ids(table)
        lines = []
        for row, key in zip(rows, insert_ids):
            if key in seen:
                continue
            seen.add(key)
            lines.append(json.dumps({"insert_id": key, **row}, default=str))
        if lines:
            with self.path_for(table).open("a", encoding="utf-8") as f:
                f.write("\n".join(lines) + "\n")
        return len(lines)

    def _load_ids(self, table: str) -> set[str]:
        path = self.path_for(table)
        if not path.exists():
            return set()
        ids = set()
        with path.open("r", encoding="utf-8") as f:
            for line in f:
                try:
                    ids.add(str(json.loads(line)["insert_id"]))
                except (ValueError, KeyError, TypeError):
                    continue
        return ids


class NdjsonErrorTable:
    """File-backed error table: one JSON ErrorRecord per line (append-only).

    Used when no database is configured; ``replay`` reads records back for
    inspection.
    """

    def __init__(self, path: Union[str, Path], *, mkdirs: bool = True):
        self.path = Path(path)
        if mkdirs:
            self.path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = asyncio.Lock()

    async def insert(self, record: ErrorRecord) -> None:
        line = record.model_dump_json() + "\n"
        async with self._lock:
            await asyncio.to_thread(self._append, line)

    def _append(self, line: str) -> None:
        with self.path.open("a", encoding="utf-8") as f:
            f.write(line)
            f.flush()

    async def replay(self, max_records: int = 1000) -> list[ErrorRecord]:
        """Read up to ``max_records`` records, oldest first."""
        if not self.path.exists():
            return []
        return await asyncio.to_thread(self._read, max_records)

    def _read(self, max_records: int) -> list[ErrorRecord]:
        out: list[ErrorRecord] = []
        with self.path.open("r", encoding="utf-8") as f:
            for lineno, line in enumerate(f, start=1):
                if len(out) >= max_records:
                    break
                line = line.strip()
                if not line:
                    continue
                try:
                    out.append(ErrorRecord.model_validate(json.loads(line)))
                except ValueError as e:
                    logger.warning(f"Skipping corrupt error record at {self.path}:{lineno}: {e}")
        return out
