"""
Firehose Store

Windowed, idempotent batch ingestion of two firehose streams into an
analytical store, with durable error records and joint progress reporting.

Usage:
    from firehose_store import Windower, BatchInserter, ErrorSink, StreamSupervisor, Aggregator

    sample = StreamSupervisor("sample", lambda: ndjson_source("sample.ndjson"),
                              Windower(100, 10.0), BatchInserter(sink, "sample"),
                              ErrorSink(error_table, stream="sample"))
    user = StreamSupervisor("user", ...)
    await Aggregator(sample, user, sample_interval=10.0).run()
"""

from .config import IngestSettings, get_settings
from .errors import (
    FirehoseStoreError,
    RetryableError,
    ConstraintViolation,
    InsertAllFailedError,
    PipelineStopped,
)
from .mapping import Column, RowMapper, STATUS_MAPPER
from .models import Event, ErrorRecord, ItemError
from .pipeline import (
    Aggregator,
    Batch,
    BatchInserter,
    ErrorSink,
    InsertFailure,
    InsertSuccess,
    JointProgress,
    ProgressBus,
    RetryPolicy,
    StreamProgress,
    StreamSupervisor,
    SupervisorState,
    Windower,
)
from .sources import iter_source, ndjson_source

__version__ = "0.1.0"
__all__ = [
    "IngestSettings",
    "get_settings",
    "FirehoseStoreError",
    "RetryableError",
    "ConstraintViolation",
    "InsertAllFailedError",
    "PipelineStopped",
    "Column",
    "RowMapper",
    "STATUS_MAPPER",
    "Event",
    "ErrorRecord",
    "ItemError",
    "Aggregator",
    "Batch",
    "BatchInserter",
    "ErrorSink",
    "InsertFailure",
    "InsertSuccess",
    "JointProgress",
    "ProgressBus",
    "RetryPolicy",
    "StreamProgress",
    "StreamSupervisor",
    "SupervisorState",
    "Windower",
    "iter_source",
    "ndjson_source",
]
