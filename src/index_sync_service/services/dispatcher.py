"""Batch dispatch of accumulated chunks to the indexing API.

A chunk is fanned out per locale: each in-scope locale gets exactly one
request carrying the operations for every record of the chunk. A failed
request is counted in the run log and logged; it never interrupts the
remaining locales or the run.
"""

import asyncio
from typing import Mapping, Sequence

import structlog

from index_sync_service.errors import DispatchError, MalformedDocumentError
from index_sync_service.services.batch_status import BatchClient, CallStatus
from index_sync_service.services.operations import (
    LocalizedDocumentSet,
    Operation,
    OperationAction,
    encode_operation,
)
from index_sync_service.services.run_log import RunLog
from index_sync_service.services.targets import IndexTarget

logger = structlog.get_logger()


class BatchDispatcher:
    """Sends one request per (chunk, locale), sequentially in locale order."""

    def __init__(
        self,
        client: BatchClient,
        action: OperationAction = OperationAction.ADD_OBJECT,
    ):
        self.client = client
        self.action = action

    def build_operations(
        self,
        chunk: Sequence[LocalizedDocumentSet],
        locale: str,
        run_log: RunLog,
    ) -> list[Operation]:
        """Project a chunk onto one locale, skipping documents that cannot be encoded."""
        operations: list[Operation] = []
        for document_set in chunk:
            document = document_set.get(locale)
            try:
                if document is None:
                    raise MalformedDocumentError("no document for locale", locale=locale)
                operations.append(encode_operation(document, self.action))
            except MalformedDocumentError as e:
                logger.warning("Skipping malformed document", locale=locale, error=str(e))
                run_log.failed_records += 1
        return operations

    async def dispatch(
        self,
        chunk: Sequence[LocalizedDocumentSet],
        targets: Mapping[str, IndexTarget],
        run_log: RunLog,
    ) -> None:
        """
        Dispatch a chunk to every target and update the run log.

        Args:
            chunk: Transformed records, one document set per record
            targets: Locale to target mapping, in dispatch order
            run_log: Counters to update
        """
        for locale, target in targets.items():
            operations = self.build_operations(chunk, locale, run_log)
            if not operations:
                logger.warning("Nothing to send for locale", locale=locale)
                continue
            logger.info(
                "Sending batch",
                locale=locale,
                target=target.name,
                records=len(operations),
            )
            status = await self._send(target, operations)
            self._record(status, locale, target, len(operations), run_log)

        run_log.sent_chunks += 1

    async def _send(
        self, target: IndexTarget, operations: Sequence[Operation]
    ) -> CallStatus:
        try:
            return await self.client.send_batch(target, operations)
        except DispatchError as e:
            return CallStatus(ok=False, status_code=e.status_code, message=e.message)
        except Exception as e:
            logger.error("Unexpected error sending batch", target=target.name, error=str(e))
            return CallStatus(ok=False, message=str(e))

    @staticmethod
    def _record(
        status: CallStatus,
        locale: str,
        target: IndexTarget,
        record_count: int,
        run_log: RunLog,
    ) -> None:
        if status.ok:
            run_log.sent_records += record_count
            return

        run_log.failed_chunks += 1
        run_log.failed_records += record_count
        logger.error(
            "Batch dispatch failed",
            locale=locale,
            target=target.name,
            records=record_count,
            status=status.status_code,
            error=status.message,
        )


class ParallelBatchDispatcher(BatchDispatcher):
    """Sends the per-locale requests of one chunk concurrently.

    At most ``max_concurrency`` requests are in flight at a time. Counters
    are applied in locale order once every request of the chunk has
    completed, so the run log matches the sequential dispatcher.
    """

    def __init__(
        self,
        client: BatchClient,
        max_concurrency: int,
        action: OperationAction = OperationAction.ADD_OBJECT,
    ):
        if max_concurrency < 1:
            raise ValueError(f"max_concurrency must be at least 1, got {max_concurrency}")
        super().__init__(client, action)
        self.max_concurrency = max_concurrency

    async def dispatch(
        self,
        chunk: Sequence[LocalizedDocumentSet],
        targets: Mapping[str, IndexTarget],
        run_log: RunLog,
    ) -> None:
        sem = asyncio.Semaphore(self.max_concurrency)

        async def bounded_send(
            target: IndexTarget, operations: list[Operation]
        ) -> CallStatus:
            async with sem:
                return await self._send(target, operations)

        pending: list[tuple[str, IndexTarget, list[Operation]]] = []
        for locale, target in targets.items():
            operations = self.build_operations(chunk, locale, run_log)
            if operations:
                pending.append((locale, target, operations))
            else:
                logger.warning("Nothing to send for locale", locale=locale)

        statuses = await asyncio.gather(
            *(bounded_send(target, operations) for _, target, operations in pending)
        )
        for (locale, target, operations), status in zip(pending, statuses):
            self._record(status, locale, target, len(operations), run_log)

        run_log.sent_chunks += 1
