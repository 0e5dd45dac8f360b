"""Ingestion pipeline

Per stream: source -> Windower -> BatchInserter -> ErrorSink, supervised by
a StreamSupervisor; two supervisors are combined by the Aggregator.
- BoundedQueue (watermarks) buffering the source ahead of the windower
- RetryPolicy with exponential backoff for transient store errors
- ErrorSink recording failed batches in the error table
- ProgressBus carrying per-stream progress snapshots
- Prometheus metrics
"""

from .types import Sink, ErrorTable, BackpressureCallback
from .policy import RetryPolicy, default_retry_classifier
from .queue import BoundedQueue
from .windower import Batch, Windower
from .inserter import BatchInserter, InsertFailure, InsertOutcome, InsertSuccess
from .error_sink import ErrorSink, normalize_failure
from .progress import ProgressBus, StreamProgress
from .supervisor import StreamSupervisor, SupervisorState, UNRECOVERABLE
from .aggregator import Aggregator, JointProgress

__all__ = [
    # types
    "Sink",
    "ErrorTable",
    "BackpressureCallback",
    "Batch",
    "InsertOutcome",
    "InsertSuccess",
    "InsertFailure",
    "StreamProgress",
    "JointProgress",
    "SupervisorState",
    # policies
    "RetryPolicy",
    "default_retry_classifier",
    "UNRECOVERABLE",
    # runtime
    "BoundedQueue",
    "Windower",
    "BatchInserter",
    "ErrorSink",
    "normalize_failure",
    "ProgressBus",
    "StreamSupervisor",
    "Aggregator",
]
