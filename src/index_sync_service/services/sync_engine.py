"""Chunk-oriented product sync engine.

The engine exposes the job-step contract of a chunk-oriented job host:

    initialize -> (read -> transform -> accumulate -> dispatch)* -> finalize

It never drives itself. A stepping host (see ``step_runner``) calls one
operation at a time, decides whether the run succeeded and always calls
``finalize`` so the catalog cursor is released exactly once.
"""

import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable

import structlog

from index_sync_service.config import Settings
from index_sync_service.errors import ConfigurationError, InvalidStateError, ResourceError
from index_sync_service.services.catalog import ProductRecord, RecordCursor, release_cursor
from index_sync_service.services.chunking import ChunkAccumulator
from index_sync_service.services.dispatcher import BatchDispatcher
from index_sync_service.services.localized_product import DocumentTransformer
from index_sync_service.services.operations import LocalizedDocumentSet
from index_sync_service.services.run_log import RunLog, RunLogStore
from index_sync_service.services.targets import (
    IndexTarget,
    TargetResolver,
    resolve_targets,
)
from shared.constants import GENERIC_RUN_ERROR_MESSAGE, INDEXING_DISABLED_MESSAGE

logger = structlog.get_logger()

CursorFactory = Callable[[], Awaitable[RecordCursor]]
ResolverFactory = Callable[[], TargetResolver]


class EngineState(str, Enum):
    IDLE = "idle"
    INITIALIZED = "initialized"
    READING = "reading"
    TRANSFORMING = "transforming"
    ACCUMULATING = "accumulating"
    DISPATCHING = "dispatching"
    FINALIZING = "finalizing"
    DONE = "done"
    FAILED = "failed"


# States from which the read/transform/accumulate/dispatch loop may continue
LOOP_STATES = frozenset(
    {
        EngineState.INITIALIZED,
        EngineState.READING,
        EngineState.TRANSFORMING,
        EngineState.ACCUMULATING,
        EngineState.DISPATCHING,
    }
)


class LocaleScope(str, Enum):
    """Which locales a run emits documents for."""

    SITE = "site"  # every allowed site locale
    SINGLE = "single"  # the locale given as a job parameter


@dataclass
class JobParameters:
    locale: str | None = None
    chunk_size: int | None = None


@dataclass
class RunContext:
    """Everything one run owns, created by initialize and torn down by finalize."""

    run_id: str
    run_log: RunLog
    logger: Any
    locales: list[str] = field(default_factory=list)
    targets: dict[str, IndexTarget] = field(default_factory=dict)
    accumulator: ChunkAccumulator[LocalizedDocumentSet] | None = None
    cursor: RecordCursor | None = None
    config_error: str | None = None


class ChunkedSyncEngine:
    """State machine implementing one product sync run."""

    def __init__(
        self,
        settings: Settings,
        *,
        open_cursor: CursorFactory,
        transformer: DocumentTransformer,
        dispatcher: BatchDispatcher,
        run_log_store: RunLogStore,
        resolver_factory: ResolverFactory,
        scope: LocaleScope = LocaleScope.SITE,
    ):
        self.settings = settings
        self.open_cursor = open_cursor
        self.transformer = transformer
        self.dispatcher = dispatcher
        self.run_log_store = run_log_store
        self.resolver_factory = resolver_factory
        self.scope = scope

        self.state = EngineState.IDLE
        self.run_log: RunLog | None = None
        self._ctx: RunContext | None = None
        self._finalized = False

    # -------------------------------------------------------------------------
    # Job-step contract
    # -------------------------------------------------------------------------

    async def initialize(self, parameters: JobParameters | None = None) -> None:
        """
        Resolve configuration, reset the run log and open the catalog cursor.

        Raises:
            ConfigurationError: If the run cannot start. No cursor is opened,
                the reason is written to the run log and the engine is FAILED.
        """
        self._require(EngineState.IDLE)
        parameters = parameters or JobParameters()
        run_id = uuid.uuid4().hex[:12]
        ctx = RunContext(
            run_id=run_id,
            run_log=RunLog(),
            logger=logger.bind(run_id=run_id, scope=self.scope.value),
        )
        self._ctx = ctx
        self.run_log = ctx.run_log

        try:
            previous = await self.run_log_store.load(self.settings.run_log_name)
            if previous is not None:
                ctx.run_log = self.run_log = previous
            ctx.run_log.start_run()

            try:
                ctx.targets = self._resolve_targets(parameters)
                ctx.locales = list(ctx.targets)
                ctx.accumulator = ChunkAccumulator(self._chunk_size(parameters))
            except ConfigurationError as e:
                ctx.config_error = e.message
                ctx.run_log.processed_error_message = e.message
                ctx.logger.error("Sync run not started", error=e.message)
                await self.run_log_store.save(self.settings.run_log_name, ctx.run_log)
                raise

            ctx.cursor = await self.open_cursor()
        except Exception:
            self.state = EngineState.FAILED
            raise

        ctx.logger = ctx.logger.bind(locales=ctx.locales)
        ctx.logger.info(
            "Sync run initialized",
            chunk_size=ctx.accumulator.capacity,
            targets={locale: target.name for locale, target in ctx.targets.items()},
        )
        self.state = EngineState.INITIALIZED

    def total_count(self) -> int:
        """Size of the catalog cursor, for progress reporting only."""
        ctx = self._require(*LOOP_STATES)
        return ctx.cursor.count

    async def read(self) -> ProductRecord | None:
        """Next record from the cursor, or None once the catalog is exhausted."""
        ctx = self._require(*LOOP_STATES)
        self.state = EngineState.READING
        return await ctx.cursor.next()

    def transform(self, record: ProductRecord) -> LocalizedDocumentSet:
        """Render a record for every in-scope locale. Counts the record once."""
        ctx = self._require(*LOOP_STATES)
        self.state = EngineState.TRANSFORMING
        document_set = {
            locale: self.transformer.transform(record, locale) for locale in ctx.locales
        }
        ctx.run_log.processed_records += 1
        return document_set

    def accumulate(self, item: LocalizedDocumentSet) -> list[LocalizedDocumentSet] | None:
        """Append to the open chunk; return the chunk once it is full."""
        ctx = self._require(*LOOP_STATES)
        self.state = EngineState.ACCUMULATING
        return ctx.accumulator.append(item)

    def flush_remainder(self) -> list[LocalizedDocumentSet] | None:
        """Return the final short chunk, if any records are pending."""
        ctx = self._require(*LOOP_STATES)
        self.state = EngineState.ACCUMULATING
        return ctx.accumulator.flush_remainder()

    async def dispatch(self, chunk: list[LocalizedDocumentSet]) -> None:
        """Send a chunk to every target. Failures are counted, never raised."""
        ctx = self._require(*LOOP_STATES)
        self.state = EngineState.DISPATCHING
        await self.dispatcher.dispatch(chunk, ctx.targets, ctx.run_log)
        ctx.logger.info(
            "Chunk dispatched",
            chunk_records=len(chunk),
            processed=ctx.run_log.processed_records,
            total=ctx.cursor.count,
        )

    async def finalize(self, run_succeeded: bool) -> RunLog:
        """
        Release the cursor, record the run outcome and persist the run log.

        Args:
            run_succeeded: Whether every step ran without an unhandled error

        Returns:
            The persisted run log
        """
        ctx = self._ctx
        if ctx is None or self._finalized:
            raise InvalidStateError(f"Cannot finalize from state '{self.state.value}'")
        self._finalized = True
        self.state = EngineState.FINALIZING

        await self._release_cursor(ctx)

        run_log = ctx.run_log
        run_log.record_outcome(
            run_succeeded,
            error_message=ctx.config_error or GENERIC_RUN_ERROR_MESSAGE,
            fail_on_dispatch_errors=self.settings.fail_run_on_dispatch_errors,
        )

        try:
            await self.run_log_store.save(self.settings.run_log_name, run_log)
        finally:
            succeeded = run_succeeded and not run_log.send_error
            self.state = EngineState.DONE if succeeded else EngineState.FAILED
            self._ctx = None

        ctx.logger.info(
            "Sync run finished",
            state=self.state.value,
            sent_chunks=run_log.sent_chunks,
            failed_chunks=run_log.failed_chunks,
            sent_records=run_log.sent_records,
            failed_records=run_log.failed_records,
        )
        return run_log

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _require(self, *allowed: EngineState) -> RunContext:
        if self.state not in allowed:
            raise InvalidStateError(
                f"Operation not allowed in state '{self.state.value}'"
            )
        return self._ctx

    def _chunk_size(self, parameters: JobParameters) -> int:
        chunk_size = parameters.chunk_size or self.settings.sync_chunk_size
        if chunk_size < 1:
            raise ConfigurationError(f"Invalid chunk size: {chunk_size}")
        return chunk_size

    def _resolve_targets(self, parameters: JobParameters) -> dict[str, IndexTarget]:
        if not self.settings.indexing_enabled:
            raise ConfigurationError(INDEXING_DISABLED_MESSAGE)

        site_locales = list(self.settings.site_locales)
        if self.scope is LocaleScope.SINGLE:
            if not parameters.locale:
                raise ConfigurationError("Mandatory job step parameter missing: locale")
            if parameters.locale not in site_locales:
                raise ConfigurationError(
                    f"Locale {parameters.locale} is not allowed.", locale=parameters.locale
                )
            locales = [parameters.locale]
        else:
            locales = site_locales
        if not locales:
            raise ConfigurationError("No site locales configured")

        return resolve_targets(
            self.resolver_factory(),
            locales,
            skip_unresolved=self.scope is LocaleScope.SITE,
        )

    async def _release_cursor(self, ctx: RunContext) -> None:
        cursor, ctx.cursor = ctx.cursor, None
        if cursor is None:
            return
        try:
            await release_cursor(cursor)
        except ResourceError as e:
            ctx.logger.error("Cursor release failed", error=str(e))
