"""Product sync services."""

from index_sync_service.services.chunking import ChunkAccumulator
from index_sync_service.services.dispatcher import BatchDispatcher, ParallelBatchDispatcher
from index_sync_service.services.full_scan import FullScanExporter
from index_sync_service.services.operations import (
    LocalizedDocument,
    Operation,
    OperationAction,
    encode_operation,
)
from index_sync_service.services.run_log import RunLog, SqlRunLogStore
from index_sync_service.services.step_runner import run_chunked_sync
from index_sync_service.services.sync_engine import (
    ChunkedSyncEngine,
    EngineState,
    JobParameters,
    LocaleScope,
)

__all__ = [
    "BatchDispatcher",
    "ChunkAccumulator",
    "ChunkedSyncEngine",
    "EngineState",
    "FullScanExporter",
    "JobParameters",
    "LocaleScope",
    "LocalizedDocument",
    "Operation",
    "OperationAction",
    "ParallelBatchDispatcher",
    "RunLog",
    "SqlRunLogStore",
    "encode_operation",
    "run_chunked_sync",
]
