"""Outcome of a batch request and the client contract the dispatcher relies on."""

from dataclasses import dataclass
from typing import Protocol, Sequence

from index_sync_service.services.operations import Operation
from index_sync_service.services.targets import IndexTarget


@dataclass(frozen=True)
class CallStatus:
    """Outcome of one batch request."""

    ok: bool
    status_code: int | None = None
    message: str = ""

    @property
    def error(self) -> bool:
        return not self.ok


class BatchClient(Protocol):
    async def send_batch(
        self, target: IndexTarget, operations: Sequence[Operation]
    ) -> CallStatus: ...
