"""Product synchronization tasks."""

import asyncio

import structlog
from celery import shared_task

from index_sync_service.services.jobs import (
    run_full_scan_export,
    run_product_indexing,
    run_product_ingestion,
)

logger = structlog.get_logger()


@shared_task(bind=True)
def index_products(self, chunk_size: int | None = None) -> dict:
    """
    Index the product catalog into one search index per site locale.

    Dispatch failures are reported in the run log, not retried.

    Returns:
        dict: The persisted run log
    """
    logger.info("Starting product indexing", task_id=self.request.id)
    run_log = asyncio.run(run_product_indexing(chunk_size=chunk_size))
    return run_log.to_record()


@shared_task(bind=True)
def ingest_products(self, locale: str, chunk_size: int | None = None) -> dict:
    """
    Push the product catalog for one locale to its ingestion task.

    Args:
        locale: Site locale to ingest

    Returns:
        dict: The persisted run log
    """
    logger.info("Starting product ingestion", task_id=self.request.id, locale=locale)
    run_log = asyncio.run(run_product_ingestion(locale, chunk_size=chunk_size))
    return run_log.to_record()


@shared_task(bind=True)
def export_products_full_scan(self) -> dict:
    """Export every included product for every registered locale in one pass."""
    logger.info("Starting full-scan product export", task_id=self.request.id)
    run_log = asyncio.run(run_full_scan_export())
    return run_log.to_record()
