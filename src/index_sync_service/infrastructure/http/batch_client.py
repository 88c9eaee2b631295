"""HTTP client for the search indexing batch APIs.

Two endpoints accept the same ``{"requests": [...]}`` payload:

- search indexes: ``POST {indexing_base_url}{indexName}/batch``
- ingestion tasks: ``POST {ingestion_base_url}tasks/{taskID}/batch``
"""

from typing import Sequence

import httpx
import orjson
import structlog

from index_sync_service.config import Settings
from index_sync_service.services.batch_status import CallStatus
from index_sync_service.services.operations import Operation
from index_sync_service.services.targets import IndexTarget, TargetKind

logger = structlog.get_logger()


def _with_trailing_slash(url: str) -> str:
    return url if url.endswith("/") else f"{url}/"


class BatchWriteClient:
    """Sends batches of operations and reports the outcome as a CallStatus.

    Transport failures and non-2xx responses are logged and returned as a
    failed status; nothing is raised to the caller.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        indexing_base_url: str,
        ingestion_base_url: str,
    ):
        self.http_client = http_client
        self.indexing_base_url = _with_trailing_slash(indexing_base_url)
        self.ingestion_base_url = _with_trailing_slash(ingestion_base_url)

    @classmethod
    def from_settings(
        cls, settings: Settings, http_client: httpx.AsyncClient | None = None
    ) -> "BatchWriteClient":
        if http_client is None:
            http_client = httpx.AsyncClient(timeout=float(settings.indexing_api_timeout))
        return cls(
            http_client,
            indexing_base_url=settings.indexing_base_url,
            ingestion_base_url=settings.ingestion_base_url,
        )

    def url_for(self, target: IndexTarget) -> str:
        if target.kind is TargetKind.TASK:
            return f"{self.ingestion_base_url}tasks/{target.name}/batch"
        return f"{self.indexing_base_url}{target.name}/batch"

    async def send_batch(
        self, target: IndexTarget, operations: Sequence[Operation]
    ) -> CallStatus:
        url = self.url_for(target)
        payload = {"requests": [operation.to_dict() for operation in operations]}

        try:
            response = await self.http_client.post(
                url,
                content=orjson.dumps(payload),
                headers={"Content-Type": "application/json"},
            )
        except httpx.HTTPError as e:
            logger.error("Batch request failed", url=url, error=str(e))
            return CallStatus(ok=False, message=str(e))

        if response.is_success:
            return CallStatus(ok=True, status_code=response.status_code)

        logger.error(
            "Batch request rejected",
            url=url,
            status=response.status_code,
            body=response.text[:500],
        )
        return CallStatus(
            ok=False,
            status_code=response.status_code,
            message=f"HTTP {response.status_code}: {response.text[:500]}",
        )

    async def aclose(self) -> None:
        await self.http_client.aclose()
