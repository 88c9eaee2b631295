"""Run log: the persisted report of the last product sync run.

The log is loaded at the start of a run, its counters are reset, every stage
updates them additively, and it is written back once when the run ends.
"""

from datetime import datetime, timezone
from typing import Protocol

import orjson
import structlog
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

logger = structlog.get_logger()


class RunLog(BaseModel):
    """Counters and status flags describing one sync run."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    processed_records: int = 0
    sent_chunks: int = 0
    sent_records: int = 0
    failed_chunks: int = 0
    failed_records: int = 0

    processed_date: datetime | None = None
    processed_error: bool = False
    processed_error_message: str = ""

    send_date: datetime | None = None
    send_error: bool = False
    send_error_message: str = ""

    def start_run(self, now: datetime | None = None) -> None:
        """Reset counters for a new run. The run counts as failed until finalized."""
        self.processed_date = now or datetime.now(timezone.utc)
        self.processed_error = True
        self.processed_error_message = ""
        self.processed_records = 0
        self.sent_chunks = 0
        self.sent_records = 0
        self.failed_chunks = 0
        self.failed_records = 0

    def mark_succeeded(self) -> None:
        self.processed_error = False
        self.processed_error_message = ""
        self.send_error = False
        self.send_error_message = ""

    def mark_failed(self, message: str) -> None:
        self.processed_error = True
        self.processed_error_message = message
        self.send_error = True
        self.send_error_message = message

    def mark_send_failed(self, message: str) -> None:
        self.send_error = True
        self.send_error_message = message

    def record_outcome(
        self,
        succeeded: bool,
        error_message: str,
        fail_on_dispatch_errors: bool = False,
    ) -> None:
        """
        Map the run outcome onto the status flags and stamp the dates.

        A run that succeeded still reports success when some chunks failed
        to send, unless ``fail_on_dispatch_errors`` is set; then the send
        status is flagged with the number of failed chunks.
        """
        if not succeeded:
            self.mark_failed(error_message)
        else:
            self.mark_succeeded()
            if fail_on_dispatch_errors and self.failed_chunks:
                self.mark_send_failed(
                    f"{self.failed_chunks} chunk(s) failed to send; "
                    f"{self.failed_records} record(s) were not indexed."
                )
        self.stamp()

    def stamp(self, now: datetime | None = None) -> None:
        now = now or datetime.now(timezone.utc)
        self.processed_date = now
        self.send_date = now

    def to_record(self) -> dict:
        """Serialize with the camelCase keys operators and the UI read."""
        return self.model_dump(mode="json", by_alias=True)


class RunLogStore(Protocol):
    async def load(self, name: str) -> RunLog | None: ...

    async def save(self, name: str, run_log: RunLog) -> None: ...


class SqlRunLogStore:
    """Stores run logs as JSON documents in ``indexing.sync_logs``."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def load(self, name: str) -> RunLog | None:
        query = text("SELECT data FROM indexing.sync_logs WHERE name = :name")
        async with self.session_factory() as session:
            result = await session.execute(query, {"name": name})
            data = result.scalar()

        if data is None:
            return None
        if isinstance(data, (str, bytes)):
            data = orjson.loads(data)
        return RunLog.model_validate(data)

    async def save(self, name: str, run_log: RunLog) -> None:
        now = datetime.now()  # Use naive datetime for DB

        query = text("""
            INSERT INTO indexing.sync_logs (name, data, updated_at)
            VALUES (:name, CAST(:data AS JSON), :updated_at)
            ON CONFLICT (name) DO UPDATE SET
                data = CAST(:data AS JSON),
                updated_at = :updated_at
        """)
        async with self.session_factory() as session:
            await session.execute(
                query,
                {
                    "name": name,
                    "data": orjson.dumps(run_log.to_record()).decode(),
                    "updated_at": now,
                },
            )
            await session.commit()
        logger.debug("Run log saved", name=name)
