"""Product sync jobs wired from application settings.

Each job builds its collaborators (catalog cursor, batch client, run log
store), runs once and releases them. Celery tasks and the CLI call these.
"""

from contextlib import asynccontextmanager
from dataclasses import dataclass
from functools import partial
from typing import AsyncGenerator

import httpx
import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from index_sync_service.config import Settings, get_settings
from index_sync_service.infrastructure.database.connection import (
    get_async_engine,
    get_async_session_factory,
    get_session_factory,
)
from index_sync_service.infrastructure.http.batch_client import BatchWriteClient
from index_sync_service.services.batch_status import BatchClient
from index_sync_service.services.catalog import ProductCursor
from index_sync_service.services.dispatcher import BatchDispatcher, ParallelBatchDispatcher
from index_sync_service.services.full_scan import FullScanExporter
from index_sync_service.services.localized_product import LocalizedProductTransformer
from index_sync_service.services.run_log import RunLog, RunLogStore, SqlRunLogStore
from index_sync_service.services.step_runner import run_chunked_sync
from index_sync_service.services.sync_engine import (
    ChunkedSyncEngine,
    JobParameters,
    LocaleScope,
)
from index_sync_service.services.targets import IndexNameResolver, TaskResolver

logger = structlog.get_logger()


@dataclass
class JobResources:
    settings: Settings
    session_factory: async_sessionmaker[AsyncSession]
    client: BatchClient
    run_log_store: RunLogStore


async def get_run_log_store(
    settings: Settings, session_factory: async_sessionmaker[AsyncSession]
) -> RunLogStore:
    """Run log store selected by ``settings.run_log_backend``."""
    if settings.run_log_backend == "redis":
        from index_sync_service.infrastructure.redis import RedisRunLogStore, get_redis_client

        return RedisRunLogStore(await get_redis_client())
    return SqlRunLogStore(session_factory)


@asynccontextmanager
async def job_resources(settings: Settings | None = None) -> AsyncGenerator[JobResources, None]:
    """Build the collaborators of one job run and release them afterwards."""
    settings = settings or get_settings()
    # Each run owns its engine: worker tasks run every job in a fresh event loop
    engine = get_async_engine()
    session_factory = get_async_session_factory(engine)
    try:
        async with httpx.AsyncClient(timeout=float(settings.indexing_api_timeout)) as http_client:
            yield JobResources(
                settings=settings,
                session_factory=session_factory,
                client=BatchWriteClient.from_settings(settings, http_client),
                run_log_store=await get_run_log_store(settings, session_factory),
            )
    finally:
        await engine.dispose()
        if settings.run_log_backend == "redis":
            from index_sync_service.infrastructure.redis import close_redis

            await close_redis()


def build_dispatcher(settings: Settings, client: BatchClient) -> BatchDispatcher:
    if settings.dispatch_concurrency > 1:
        return ParallelBatchDispatcher(client, max_concurrency=settings.dispatch_concurrency)
    return BatchDispatcher(client)


def build_engine(resources: JobResources, scope: LocaleScope) -> ChunkedSyncEngine:
    """
    Build a stepped sync engine.

    ``LocaleScope.SITE`` sends every site locale to its own search index;
    ``LocaleScope.SINGLE`` sends one locale to its ingestion task.
    """
    settings = resources.settings
    if scope is LocaleScope.SITE:
        resolver_factory = partial(IndexNameResolver, settings.index_prefix)
    else:
        resolver_factory = partial(TaskResolver.from_json, settings.indexing_config)

    return ChunkedSyncEngine(
        settings,
        open_cursor=partial(
            ProductCursor.open,
            resources.session_factory,
            page_size=settings.catalog_page_size,
        ),
        transformer=LocalizedProductTransformer(),
        dispatcher=build_dispatcher(settings, resources.client),
        run_log_store=resources.run_log_store,
        resolver_factory=resolver_factory,
        scope=scope,
    )


def build_full_scan_exporter(resources: JobResources) -> FullScanExporter:
    settings = resources.settings
    return FullScanExporter(
        settings,
        open_cursor=partial(
            ProductCursor.open,
            resources.session_factory,
            page_size=settings.catalog_page_size,
        ),
        transformer=LocalizedProductTransformer(),
        dispatcher=build_dispatcher(settings, resources.client),
        run_log_store=resources.run_log_store,
        resolver_factory=partial(TaskResolver.from_json, settings.indexing_config),
    )


async def run_product_indexing(
    settings: Settings | None = None, chunk_size: int | None = None
) -> RunLog:
    """Index every site locale into its search index."""
    async with job_resources(settings) as resources:
        engine = build_engine(resources, LocaleScope.SITE)
        return await run_chunked_sync(engine, JobParameters(chunk_size=chunk_size))


async def run_product_ingestion(
    locale: str | None,
    settings: Settings | None = None,
    chunk_size: int | None = None,
) -> RunLog:
    """Push one locale to its ingestion task."""
    async with job_resources(settings) as resources:
        engine = build_engine(resources, LocaleScope.SINGLE)
        return await run_chunked_sync(
            engine, JobParameters(locale=locale, chunk_size=chunk_size)
        )


async def run_full_scan_export(settings: Settings | None = None) -> RunLog:
    """Export the whole catalog for every registered locale in one pass."""
    async with job_resources(settings) as resources:
        return await build_full_scan_exporter(resources).run()


async def load_last_run_log(settings: Settings | None = None) -> RunLog | None:
    settings = settings or get_settings()
    store = await get_run_log_store(settings, get_session_factory())
    return await store.load(settings.run_log_name)
