"""
PostgreSQL-backed insert-all client and error table (psycopg 3).

Rows are written with ``INSERT ... ON CONFLICT (insert_id) DO NOTHING`` so
a retried batch never stores an item twice. When a batch is rejected for
a non-transient reason, each row is replayed in its own savepoint to find
the offending rows; the others are reported as ``stopped``.
"""

from __future__ import annotations

from typing import Any, Mapping, Optional, Sequence

import psycopg
from loguru import logger
from psycopg import sql as psql
from psycopg.types.json import Jsonb
from psycopg_pool import AsyncConnectionPool

from ..errors import (
    STOPPED_REASON,
    InsertAllFailedError,
    RetryableError,
    map_db_error,
)
from ..models import ErrorRecord, ItemError

INSERT_ID_COLUMN = "insert_id"
INVALID_REASON = "invalid"

ERROR_TABLE_COLS = ["timestamp", "type", "stack_trace", "message", "source", "stream"]


def insert_ignore_statement(schema: str, table: str, cols: Sequence[str]) -> psql.Composed:
    """INSERT ... ON CONFLICT (insert_id) DO NOTHING with named parameters."""
    all_cols = [*cols, INSERT_ID_COLUMN]
    ins_cols = psql.SQL(", ").join(psql.Identifier(c) for c in all_cols)
    ins_vals = psql.SQL(", ").join(psql.Placeholder(c) for c in all_cols)
    return psql.SQL("INSERT INTO {} ({}) VALUES ({}) ON CONFLICT ({}) DO NOTHING").format(
        psql.Identifier(schema, table), ins_cols, ins_vals, psql.Identifier(INSERT_ID_COLUMN)
    )


def insert_statement(schema: str, table: str, cols: Sequence[str]) -> psql.Composed:
    ins_cols = psql.SQL(", ").join(psql.Identifier(c) for c in cols)
    ins_vals = psql.SQL(", ").join(psql.Placeholder(c) for c in cols)
    return psql.SQL("INSERT INTO {} ({}) VALUES ({})").format(
        psql.Identifier(schema, table), ins_cols, ins_vals
    )


def _adapt(value: Any) -> Any:
    # nested objects go to jsonb columns; lists of scalars stay postgres arrays
    if isinstance(value, dict):
        return Jsonb(value)
    if isinstance(value, list) and any(isinstance(v, (dict, list)) for v in value):
        return Jsonb(value)
    return value


def _columns(rows: Sequence[Mapping[str, Any]]) -> list[str]:
    """Union of row keys in first-seen order; rows lacking a column insert NULL."""
    cols: dict[str, None] = {}
    for row in rows:
        cols.update(dict.fromkeys(k for k in row if k != INSERT_ID_COLUMN))
    return list(cols)


def _params(
    rows: Sequence[Mapping[str, Any]], insert_ids: Sequence[str], cols: Sequence[str]
) -> list[dict[str, Any]]:
    out = []
    for row, key in zip(rows, insert_ids):
        p = {c: _adapt(row.get(c)) for c in cols}
        p[INSERT_ID_COLUMN] = key
        out.append(p)
    return out


class PostgresInsertAllClient:
    """Sink writing whole batches into ``schema.table`` in one transaction."""

    def __init__(self, pool: AsyncConnectionPool, schema: str = "public"):
        self.pool = pool
        self.schema = schema

    async def insert_all(
        self,
        table: str,
        rows: Sequence[Mapping[str, Any]],
        insert_ids: Sequence[str],
    ) -> int:
        if len(rows) != len(insert_ids):
            raise ValueError("rows and insert_ids must have the same length")
        if not rows:
            return 0
        cols = _columns(rows)
        stmt = insert_ignore_statement(self.schema, table, cols)
        params = _params(rows, insert_ids, cols)

        try:
            async with self.pool.connection() as conn:
                async with conn.transaction():
                    async with conn.cursor() as cur:
                        await cur.executemany(stmt, params)
                        return max(cur.rowcount, 0)
        except psycopg.Error as e:
            mapped = map_db_error(e)
            if isinstance(mapped, RetryableError):
                raise mapped from e
            item_errors = await self._diagnose(stmt, params)
            rejected = sum(1 for i in item_errors if i.reason != STOPPED_REASON)
            if not rejected:
                raise InsertAllFailedError(f"insert into {table} rejected: {e}") from e
            raise InsertAllFailedError(
                f"insert into {table} rejected {rejected} of {len(rows)} rows", item_errors
            ) from None

    async def _diagnose(
        self, stmt: psql.Composed, params: Sequence[Mapping[str, Any]]
    ) -> list[ItemError]:
        """Replay rows one by one inside savepoints, then roll everything back."""
        bad: dict[int, str] = {}
        try:
            async with self.pool.connection() as conn:
                async with conn.transaction():
                    for i, p in enumerate(params):
                        try:
                            async with conn.transaction():
                                await conn.execute(stmt, p)
                        except psycopg.Error as e:
                            bad[i] = str(e).strip()
                    raise psycopg.Rollback()
        except psycopg.Error as e:
            logger.warning(f"Could not diagnose rejected batch: {e}")
            return []
        return [
            ItemError(i, INVALID_REASON, bad[i]) if i in bad else ItemError(i, STOPPED_REASON)
            for i in range(len(params))
        ]


class PostgresErrorTable:
    """Error table: one row per ErrorRecord, plain insert."""

    def __init__(self, pool: AsyncConnectionPool, schema: str = "public", table: str = "error"):
        self.pool = pool
        self._stmt = insert_statement(schema, table, ERROR_TABLE_COLS)

    async def insert(self, record: ErrorRecord) -> None:
        try:
            async with self.pool.connection() as conn:
                await conn.execute(self._stmt, record.model_dump(include=set(ERROR_TABLE_COLS)))
        except psycopg.Error as e:
            raise map_db_error(e) from e


def open_pool(dsn: str, pool_max: int = 4, app_name: Optional[str] = None) -> AsyncConnectionPool:
    """Unopened pool shared by the sink and the error table; ``await pool.open()`` it.

    Connections are autocommit; batch writes open explicit transactions.
    """
    kwargs: dict[str, Any] = {"autocommit": True}
    if app_name:
        kwargs["application_name"] = app_name
    return AsyncConnectionPool(conninfo=dsn, max_size=pool_max, kwargs=kwargs, open=False)
