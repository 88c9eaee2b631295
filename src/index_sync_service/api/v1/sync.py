"""Product sync endpoints.

Operators read the last run report here and can trigger a run, which is
executed asynchronously by the sync worker.
"""

from typing import Any, Literal

import structlog
from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel, Field, model_validator

from index_sync_service.services.jobs import load_last_run_log

logger = structlog.get_logger()

router = APIRouter()

TASK_NAMES = {
    "index": "sync_worker.tasks.sync_products.index_products",
    "ingest": "sync_worker.tasks.sync_products.ingest_products",
    "full-scan": "sync_worker.tasks.sync_products.export_products_full_scan",
}


class SyncRequest(BaseModel):
    """Request model for triggering a product sync."""

    mode: Literal["index", "ingest", "full-scan"] = "index"
    locale: str | None = None
    chunk_size: int | None = Field(default=None, ge=1)

    @model_validator(mode="after")
    def check_locale(self) -> "SyncRequest":
        if self.mode == "ingest" and not self.locale:
            raise ValueError("locale is required for ingest mode")
        return self


class SyncResponse(BaseModel):
    """Response model for a triggered sync."""

    task_id: str
    mode: str
    status: str = "queued"


def enqueue_sync(request: SyncRequest) -> str:
    """Send the sync task to the worker queue and return its ID."""
    from sync_worker.main import app as celery_app

    kwargs: dict[str, Any] = {}
    if request.mode == "ingest":
        kwargs["locale"] = request.locale
    if request.mode != "full-scan" and request.chunk_size:
        kwargs["chunk_size"] = request.chunk_size

    result = celery_app.send_task(TASK_NAMES[request.mode], kwargs=kwargs)
    return result.id


@router.get("/products/log")
async def get_product_sync_log() -> dict[str, Any]:
    """
    Get the report of the last product sync run.

    Counters and error flags use the camelCase keys stored in the run log.
    """
    run_log = await load_last_run_log()
    if run_log is None:
        raise HTTPException(status_code=404, detail="No product sync has run yet")
    return run_log.to_record()


@router.post(
    "/products",
    response_model=SyncResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def trigger_product_sync(request: SyncRequest) -> SyncResponse:
    """Queue a product sync run."""
    task_id = enqueue_sync(request)
    logger.info("Product sync queued", mode=request.mode, locale=request.locale, task_id=task_id)
    return SyncResponse(task_id=task_id, mode=request.mode)
