"""Storage adapters: PostgreSQL insert-all sink/error table and NDJSON file variants."""

from .ndjson import NdjsonErrorTable, NdjsonInsertAllClient
from .postgres import PostgresErrorTable, PostgresInsertAllClient, open_pool

__all__ = [
    "NdjsonErrorTable",
    "NdjsonInsertAllClient",
    "PostgresErrorTable",
    "PostgresInsertAllClient",
    "open_pool",
]
