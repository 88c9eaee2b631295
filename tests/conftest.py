"""Pytest configuration and fixtures."""

from collections.abc import Callable, Sequence
from typing import Any

import orjson
import pytest
from fastapi.testclient import TestClient

from index_sync_service.config import Settings, get_settings
from index_sync_service.services.batch_status import CallStatus
from index_sync_service.main import create_app
from index_sync_service.services.catalog import ProductRecord
from index_sync_service.services.dispatcher import BatchDispatcher
from index_sync_service.services.localized_product import LocalizedProductTransformer
from index_sync_service.services.operations import Operation
from index_sync_service.services.run_log import RunLog
from index_sync_service.services.sync_engine import ChunkedSyncEngine, LocaleScope
from index_sync_service.services.targets import IndexNameResolver, IndexTarget, TaskResolver


class FakeCursor:
    """In-memory record cursor that counts how often it is closed."""

    def __init__(self, records: Sequence[ProductRecord]):
        self.records = list(records)
        self.position = 0
        self.close_calls = 0

    @property
    def count(self) -> int:
        return len(self.records)

    async def next(self) -> ProductRecord | None:
        if self.position >= len(self.records):
            return None
        record = self.records[self.position]
        self.position += 1
        return record

    async def close(self) -> None:
        self.close_calls += 1


class FakeBatchClient:
    """Batch client recording every call; ``fail_on(call_index, target)`` picks failures."""

    def __init__(self, fail_on: Callable[[int, IndexTarget], bool] | None = None):
        self.calls: list[tuple[IndexTarget, list[Operation]]] = []
        self.fail_on = fail_on or (lambda index, target: False)

    async def send_batch(
        self, target: IndexTarget, operations: Sequence[Operation]
    ) -> CallStatus:
        index = len(self.calls)
        self.calls.append((target, list(operations)))
        if self.fail_on(index, target):
            return CallStatus(ok=False, status_code=500, message="Internal error")
        return CallStatus(ok=True, status_code=200)


class InMemoryRunLogStore:
    """Run log store keeping serialized logs in a dict."""

    def __init__(self, initial: dict[str, dict[str, Any]] | None = None):
        self.records: dict[str, dict[str, Any]] = dict(initial or {})
        self.save_calls = 0

    async def load(self, name: str) -> RunLog | None:
        record = self.records.get(name)
        if record is None:
            return None
        return RunLog.model_validate(orjson.loads(orjson.dumps(record)))

    async def save(self, name: str, run_log: RunLog) -> None:
        self.save_calls += 1
        self.records[name] = run_log.to_record()


def make_products(count: int, start: int = 0) -> list[ProductRecord]:
    return [
        ProductRecord(
            id=f"prod-{i:05d}",
            name=f"Product {i}",
            description=f"Description {i}",
            price_cents=1000 + i,
            stock=i % 3,
            category_name="Groceries",
            translations={"fr": {"name": f"Produit {i}"}},
        )
        for i in range(start, start + count)
    ]


INDEXING_CONFIG = {
    "locales": {
        "en_US": {"products": {"tasks": {"replace": "task-en"}}},
        "fr_FR": {"products": {"tasks": {"replace": "task-fr"}}},
    }
}


@pytest.fixture
def test_settings() -> Settings:
    """Get test settings with overrides."""
    return Settings(
        app_env="test",
        debug=True,
        indexing_enabled=True,
        indexing_config=orjson.dumps(INDEXING_CONFIG).decode(),
        site_locales=["en_US"],
        index_prefix="test",
        sync_chunk_size=500,
        postgres_host="localhost",
        postgres_user="test",
        postgres_password="test",
        postgres_db="test_db",
    )


@pytest.fixture
def product_factory() -> Callable[..., list[ProductRecord]]:
    return make_products


@pytest.fixture
def batch_client_factory() -> type[FakeBatchClient]:
    return FakeBatchClient


@pytest.fixture
def batch_client() -> FakeBatchClient:
    return FakeBatchClient()


@pytest.fixture
def run_log_store() -> InMemoryRunLogStore:
    return InMemoryRunLogStore()


@pytest.fixture
def cursor_factory() -> type[FakeCursor]:
    return FakeCursor


@pytest.fixture
def engine_factory(
    test_settings: Settings,
    batch_client: FakeBatchClient,
    run_log_store: InMemoryRunLogStore,
) -> Callable[..., tuple[ChunkedSyncEngine, FakeCursor]]:
    """Build an engine over an in-memory catalog.

    Defaults to every site locale routed to a search index; pass
    ``use_tasks=True`` to route through the ingestion task mapping.
    """

    def factory(
        records: Sequence[ProductRecord],
        *,
        settings: Settings | None = None,
        client: Any = None,
        scope: LocaleScope = LocaleScope.SITE,
        use_tasks: bool = False,
        dispatcher: BatchDispatcher | None = None,
    ) -> tuple[ChunkedSyncEngine, FakeCursor]:
        settings = settings or test_settings
        cursor = FakeCursor(records)

        async def open_cursor() -> FakeCursor:
            return cursor

        if use_tasks:
            def resolver_factory() -> TaskResolver:
                return TaskResolver.from_json(settings.indexing_config)
        else:
            def resolver_factory() -> IndexNameResolver:
                return IndexNameResolver(settings.index_prefix)

        engine = ChunkedSyncEngine(
            settings,
            open_cursor=open_cursor,
            transformer=LocalizedProductTransformer(),
            dispatcher=dispatcher or BatchDispatcher(client or batch_client),
            run_log_store=run_log_store,
            resolver_factory=resolver_factory,
            scope=scope,
        )
        return engine, cursor

    return factory


@pytest.fixture
def app(test_settings: Settings) -> Any:
    """Create test application."""
    # Override settings
    def get_test_settings() -> Settings:
        return test_settings

    app = create_app()
    app.dependency_overrides[get_settings] = get_test_settings
    return app


@pytest.fixture
def client(app: Any) -> TestClient:
    """Create synchronous test client."""
    return TestClient(app)
