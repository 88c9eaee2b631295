"""Stepping host that drives a ChunkedSyncEngine through one run."""

import structlog

from index_sync_service.errors import ConfigurationError
from index_sync_service.services.run_log import RunLog
from index_sync_service.services.sync_engine import ChunkedSyncEngine, JobParameters

logger = structlog.get_logger()


async def run_chunked_sync(
    engine: ChunkedSyncEngine, parameters: JobParameters | None = None
) -> RunLog:
    """
    Run the engine to completion the way a chunk-oriented job host would.

    The run succeeds unless a step raises. Dispatch failures are recorded in
    the run log by the engine and do not make the run fail. ``finalize`` is
    called on every path, including configuration errors.

    Returns:
        The persisted run log
    """
    succeeded = False
    try:
        await engine.initialize(parameters)
        logger.info("Product sync started", total_products=engine.total_count())

        while (record := await engine.read()) is not None:
            chunk = engine.accumulate(engine.transform(record))
            if chunk is not None:
                await engine.dispatch(chunk)

        remainder = engine.flush_remainder()
        if remainder is not None:
            await engine.dispatch(remainder)
        succeeded = True
    except ConfigurationError as e:
        logger.error("Product sync configuration error", error=e.message)
    except Exception as e:
        logger.exception("Product sync aborted", error=str(e))
    finally:
        run_log = await engine.finalize(succeeded)

    return run_log
