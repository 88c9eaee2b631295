"""Full-scan product export.

A self-driven alternative to the stepped engine: one loop owns the catalog
cursor, filters, transforms, batches and dispatches every product for every
locale with a registered target, then writes the run log.
"""

import time
from contextlib import contextmanager
from dataclasses import asdict, dataclass
from typing import Callable, Iterator

import structlog

from index_sync_service.config import Settings
from index_sync_service.errors import ConfigurationError, ResourceError
from index_sync_service.services.catalog import ProductRecord, RecordCursor, release_cursor
from index_sync_service.services.chunking import ChunkAccumulator
from index_sync_service.services.dispatcher import BatchDispatcher
from index_sync_service.services.localized_product import DocumentTransformer, is_included
from index_sync_service.services.operations import LocalizedDocumentSet
from index_sync_service.services.run_log import RunLog, RunLogStore
from index_sync_service.services.sync_engine import CursorFactory, ResolverFactory
from index_sync_service.services.targets import IndexTarget, resolve_targets
from shared.constants import GENERIC_RUN_ERROR_MESSAGE, INDEXING_DISABLED_MESSAGE

logger = structlog.get_logger()


@dataclass
class PhaseTimings:
    """Cumulative seconds spent per phase. Diagnostic only."""

    fetch: float = 0.0
    transform: float = 0.0
    dispatch: float = 0.0

    @contextmanager
    def measure(self, phase: str) -> Iterator[None]:
        start = time.perf_counter()
        try:
            yield
        finally:
            setattr(self, phase, getattr(self, phase) + time.perf_counter() - start)

    def to_dict(self) -> dict[str, float]:
        return {f"{phase}_ms": round(seconds * 1000, 2) for phase, seconds in asdict(self).items()}


class FullScanExporter:
    """Exports the whole catalog in fixed-size batches without a stepping host."""

    def __init__(
        self,
        settings: Settings,
        *,
        open_cursor: CursorFactory,
        transformer: DocumentTransformer,
        dispatcher: BatchDispatcher,
        run_log_store: RunLogStore,
        resolver_factory: ResolverFactory,
        include: Callable[[ProductRecord], bool] = is_included,
    ):
        self.settings = settings
        self.open_cursor = open_cursor
        self.transformer = transformer
        self.dispatcher = dispatcher
        self.run_log_store = run_log_store
        self.resolver_factory = resolver_factory
        self.include = include
        self.timings = PhaseTimings()

    async def run(self) -> RunLog:
        """
        Export every included product and persist the run log.

        Returns:
            The persisted run log
        """
        run_log = await self.run_log_store.load(self.settings.run_log_name) or RunLog()
        run_log.start_run()
        self.timings = PhaseTimings()

        try:
            targets = self._resolve_targets()
        except ConfigurationError as e:
            logger.error("Full-scan export not started", error=e.message)
            run_log.record_outcome(False, error_message=e.message)
            await self.run_log_store.save(self.settings.run_log_name, run_log)
            return run_log

        cursor: RecordCursor | None = None
        succeeded = False
        try:
            with self.timings.measure("fetch"):
                cursor = await self.open_cursor()
            await self._export(cursor, targets, run_log)
            succeeded = True
        except Exception as e:
            logger.exception("Full-scan export aborted", error=str(e))
        finally:
            if cursor is not None:
                try:
                    await release_cursor(cursor)
                except ResourceError as e:
                    logger.error("Cursor release failed", error=str(e))

        run_log.record_outcome(
            succeeded,
            error_message=GENERIC_RUN_ERROR_MESSAGE,
            fail_on_dispatch_errors=self.settings.fail_run_on_dispatch_errors,
        )
        await self.run_log_store.save(self.settings.run_log_name, run_log)

        logger.info(
            "Full-scan export finished",
            processed=run_log.processed_records,
            sent_chunks=run_log.sent_chunks,
            failed_chunks=run_log.failed_chunks,
            sent_records=run_log.sent_records,
            failed_records=run_log.failed_records,
            timings=self.timings.to_dict(),
        )
        return run_log

    async def _export(
        self,
        cursor: RecordCursor,
        targets: dict[str, IndexTarget],
        run_log: RunLog,
    ) -> None:
        locales = list(targets)
        accumulator: ChunkAccumulator[LocalizedDocumentSet] = ChunkAccumulator(
            self.settings.full_scan_batch_size
        )

        while True:
            with self.timings.measure("fetch"):
                record = await self._next_included(cursor)
            if record is None:
                break

            with self.timings.measure("transform"):
                document_set = {
                    locale: self.transformer.transform(record, locale) for locale in locales
                }
            run_log.processed_records += 1

            batch = accumulator.append(document_set)
            if batch is not None:
                await self._send(batch, targets, run_log)

        remainder = accumulator.flush_remainder()
        if remainder is not None:
            await self._send(remainder, targets, run_log)

        logger.info(
            "Processed products",
            processed=run_log.processed_records,
            locales=locales,
            timings=self.timings.to_dict(),
        )

    async def _next_included(self, cursor: RecordCursor) -> ProductRecord | None:
        while (record := await cursor.next()) is not None:
            if self.include(record):
                return record
        return None

    async def _send(
        self,
        batch: list[LocalizedDocumentSet],
        targets: dict[str, IndexTarget],
        run_log: RunLog,
    ) -> None:
        logger.info("Sending batch", size=len(batch))
        with self.timings.measure("dispatch"):
            await self.dispatcher.dispatch(batch, targets, run_log)

    def _resolve_targets(self) -> dict[str, IndexTarget]:
        if not self.settings.indexing_enabled:
            raise ConfigurationError(INDEXING_DISABLED_MESSAGE)
        return resolve_targets(self.resolver_factory(), list(self.settings.site_locales))
