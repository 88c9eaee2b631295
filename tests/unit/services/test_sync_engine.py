"""Unit tests for the chunked sync engine and its stepping host."""

import pytest

from index_sync_service.errors import ConfigurationError, InvalidStateError
from index_sync_service.services.catalog import ProductRecord
from index_sync_service.services.dispatcher import BatchDispatcher
from index_sync_service.services.step_runner import run_chunked_sync
from index_sync_service.services.sync_engine import (
    EngineState,
    JobParameters,
    LocaleScope,
)
from index_sync_service.services.targets import IndexTarget, TargetKind
from shared.constants import (
    GENERIC_RUN_ERROR_MESSAGE,
    INDEXING_DISABLED_MESSAGE,
    RUN_LOG_NAME,
)


class ExplodingDispatcher(BatchDispatcher):
    async def dispatch(self, chunk, targets, run_log) -> None:
        raise RuntimeError("connection reset")


class TestChunkedRuns:
    """Counters produced by complete runs."""

    @pytest.mark.asyncio
    async def test_all_chunks_succeed(
        self, engine_factory, product_factory, batch_client
    ) -> None:
        engine, _ = engine_factory(product_factory(1000))

        run_log = await run_chunked_sync(engine)

        assert [len(ops) for _, ops in batch_client.calls] == [500, 500]
        assert run_log.sent_chunks == 2
        assert run_log.sent_records == 1000
        assert run_log.failed_chunks == 0
        assert run_log.failed_records == 0
        assert run_log.processed_records == 1000
        assert run_log.processed_error is False
        assert engine.state is EngineState.DONE

    @pytest.mark.asyncio
    async def test_failed_chunk_does_not_fail_run(
        self, engine_factory, product_factory, batch_client_factory
    ) -> None:
        client = batch_client_factory(fail_on=lambda index, target: index == 0)
        engine, _ = engine_factory(product_factory(1000), client=client)

        run_log = await run_chunked_sync(engine)

        assert run_log.failed_chunks == 1
        assert run_log.failed_records == 500
        assert run_log.sent_records == 500
        assert run_log.sent_chunks == 2
        assert run_log.processed_error is False
        assert run_log.send_error is False
        assert engine.state is EngineState.DONE

    @pytest.mark.asyncio
    async def test_short_final_chunk(
        self, engine_factory, product_factory, batch_client
    ) -> None:
        engine, _ = engine_factory(product_factory(7))

        run_log = await run_chunked_sync(engine, JobParameters(chunk_size=3))

        assert [len(ops) for _, ops in batch_client.calls] == [3, 3, 1]
        assert run_log.processed_records == 7
        assert run_log.sent_chunks == 3

    @pytest.mark.asyncio
    async def test_locale_without_target_is_skipped(
        self, engine_factory, product_factory, batch_client, test_settings
    ) -> None:
        settings = test_settings.model_copy(update={"site_locales": ["en_US", "de_DE"]})
        engine, _ = engine_factory(product_factory(500), settings=settings, use_tasks=True)

        run_log = await run_chunked_sync(engine)

        assert [target for target, _ in batch_client.calls] == [
            IndexTarget(kind=TargetKind.TASK, name="task-en")
        ]
        assert run_log.sent_records == 500
        assert run_log.failed_chunks == 0
        assert run_log.failed_records == 0
        assert run_log.processed_error is False

    @pytest.mark.asyncio
    async def test_locale_failure_leaves_other_locale_intact(
        self, engine_factory, product_factory, batch_client_factory, test_settings
    ) -> None:
        settings = test_settings.model_copy(update={"site_locales": ["en_US", "fr_FR"]})
        client = batch_client_factory(fail_on=lambda index, target: target.name == "task-fr")
        engine, _ = engine_factory(
            product_factory(500), settings=settings, client=client, use_tasks=True
        )

        run_log = await run_chunked_sync(engine)

        assert len(client.calls) == 2
        assert run_log.sent_records == 500
        assert run_log.failed_records == 500
        assert run_log.failed_chunks == 1
        assert run_log.sent_chunks == 1

    @pytest.mark.asyncio
    async def test_every_locale_gets_translated_documents(
        self, engine_factory, product_factory, batch_client, test_settings
    ) -> None:
        settings = test_settings.model_copy(update={"site_locales": ["en_US", "fr_FR"]})
        engine, _ = engine_factory(product_factory(2), settings=settings)

        await run_chunked_sync(engine)

        names = {target.name: [op.body["name"] for op in ops] for target, ops in batch_client.calls}
        assert names == {
            "test__products__en_US": ["Product 0", "Product 1"],
            "test__products__fr_FR": ["Produit 0", "Produit 1"],
        }

    @pytest.mark.asyncio
    async def test_empty_catalog(self, engine_factory, batch_client) -> None:
        engine, cursor = engine_factory([])

        run_log = await run_chunked_sync(engine)

        assert batch_client.calls == []
        assert run_log.sent_chunks == 0
        assert run_log.processed_error is False
        assert cursor.close_calls == 1

    @pytest.mark.asyncio
    async def test_malformed_document_counts_as_failed_record(
        self, engine_factory, product_factory, batch_client
    ) -> None:
        records = product_factory(3) + [ProductRecord(id="", name="No id", price_cents=100)]
        engine, _ = engine_factory(records)

        run_log = await run_chunked_sync(engine)

        assert [len(ops) for _, ops in batch_client.calls] == [3]
        assert run_log.sent_records == 3
        assert run_log.failed_records == 1
        assert run_log.failed_chunks == 0

    @pytest.mark.asyncio
    async def test_strict_mode_flags_send_error(
        self, engine_factory, product_factory, batch_client_factory, test_settings
    ) -> None:
        settings = test_settings.model_copy(update={"fail_run_on_dispatch_errors": True})
        client = batch_client_factory(fail_on=lambda index, target: index == 1)
        engine, _ = engine_factory(product_factory(1000), settings=settings, client=client)

        run_log = await run_chunked_sync(engine)

        assert run_log.processed_error is False
        assert run_log.send_error is True
        assert run_log.send_error_message == (
            "1 chunk(s) failed to send; 500 record(s) were not indexed."
        )
        assert engine.state is EngineState.FAILED


class TestRunLogPersistence:
    @pytest.mark.asyncio
    async def test_run_log_saved_once(
        self, engine_factory, product_factory, run_log_store
    ) -> None:
        engine, _ = engine_factory(product_factory(10))

        await run_chunked_sync(engine)

        assert run_log_store.save_calls == 1
        stored = run_log_store.records[RUN_LOG_NAME]
        assert stored["processedRecords"] == 10
        assert stored["sentRecords"] == 10
        assert stored["processedError"] is False
        assert stored["processedDate"] is not None
        assert stored["sendDate"] is not None

    @pytest.mark.asyncio
    async def test_previous_counters_are_reset(
        self, engine_factory, product_factory, run_log_store
    ) -> None:
        run_log_store.records[RUN_LOG_NAME] = {
            "processedRecords": 99,
            "sentChunks": 4,
            "failedRecords": 12,
            "sendErrorMessage": "old failure",
            "sendError": True,
        }
        engine, _ = engine_factory(product_factory(2))

        run_log = await run_chunked_sync(engine)

        assert run_log.processed_records == 2
        assert run_log.sent_chunks == 1
        assert run_log.failed_records == 0
        assert run_log.send_error is False
        assert run_log.send_error_message == ""


class TestConfigurationErrors:
    @pytest.mark.asyncio
    async def test_indexing_disabled(
        self, engine_factory, product_factory, batch_client, run_log_store, test_settings
    ) -> None:
        settings = test_settings.model_copy(update={"indexing_enabled": False})
        engine, cursor = engine_factory(product_factory(5), settings=settings)

        run_log = await run_chunked_sync(engine)

        assert run_log.processed_error is True
        assert run_log.processed_error_message == INDEXING_DISABLED_MESSAGE
        assert run_log.send_error is True
        assert batch_client.calls == []
        assert cursor.position == 0
        assert cursor.close_calls == 0
        assert engine.state is EngineState.FAILED
        assert run_log_store.records[RUN_LOG_NAME]["processedErrorMessage"] == (
            INDEXING_DISABLED_MESSAGE
        )

    @pytest.mark.asyncio
    async def test_initialize_raises_configuration_error(
        self, engine_factory, test_settings
    ) -> None:
        settings = test_settings.model_copy(update={"indexing_enabled": False})
        engine, _ = engine_factory([], settings=settings)

        with pytest.raises(ConfigurationError):
            await engine.initialize()
        assert engine.state is EngineState.FAILED

        run_log = await engine.finalize(False)
        assert run_log.processed_error_message == INDEXING_DISABLED_MESSAGE

    @pytest.mark.asyncio
    async def test_single_locale_requires_parameter(self, engine_factory) -> None:
        engine, _ = engine_factory([], scope=LocaleScope.SINGLE, use_tasks=True)

        run_log = await run_chunked_sync(engine, JobParameters())

        assert run_log.processed_error_message == "Mandatory job step parameter missing: locale"

    @pytest.mark.asyncio
    async def test_single_locale_must_be_a_site_locale(self, engine_factory) -> None:
        engine, _ = engine_factory([], scope=LocaleScope.SINGLE, use_tasks=True)

        run_log = await run_chunked_sync(engine, JobParameters(locale="fr_FR"))

        assert run_log.processed_error_message == "Locale fr_FR is not allowed."

    @pytest.mark.asyncio
    async def test_single_locale_without_task_fails(
        self, engine_factory, test_settings
    ) -> None:
        settings = test_settings.model_copy(update={"site_locales": ["en_US", "de_DE"]})
        engine, _ = engine_factory(
            [], settings=settings, scope=LocaleScope.SINGLE, use_tasks=True
        )

        run_log = await run_chunked_sync(engine, JobParameters(locale="de_DE"))

        assert run_log.processed_error is True
        assert run_log.processed_error_message == (
            'Locale "de_DE" is not registered on the Ingestion platform.'
        )

    @pytest.mark.asyncio
    async def test_missing_indexing_config(self, engine_factory, test_settings) -> None:
        settings = test_settings.model_copy(update={"indexing_config": ""})
        engine, _ = engine_factory(
            [], settings=settings, scope=LocaleScope.SINGLE, use_tasks=True
        )

        run_log = await run_chunked_sync(engine, JobParameters(locale="en_US"))

        assert run_log.processed_error_message == "Missing Indexing configuration"

    @pytest.mark.asyncio
    async def test_single_locale_sends_to_ingestion_task(
        self, engine_factory, product_factory, batch_client
    ) -> None:
        engine, _ = engine_factory(
            product_factory(4), scope=LocaleScope.SINGLE, use_tasks=True
        )

        run_log = await run_chunked_sync(engine, JobParameters(locale="en_US"))

        assert [target for target, _ in batch_client.calls] == [
            IndexTarget(kind=TargetKind.TASK, name="task-en")
        ]
        assert run_log.sent_records == 4
        assert run_log.processed_error is False


class TestCursorRelease:
    @pytest.mark.asyncio
    async def test_closed_once_on_success(self, engine_factory, product_factory) -> None:
        engine, cursor = engine_factory(product_factory(3))

        await run_chunked_sync(engine)

        assert cursor.close_calls == 1

    @pytest.mark.asyncio
    async def test_closed_once_when_step_raises(
        self, engine_factory, product_factory, batch_client
    ) -> None:
        engine, cursor = engine_factory(
            product_factory(3), dispatcher=ExplodingDispatcher(batch_client)
        )

        run_log = await run_chunked_sync(engine)

        assert cursor.close_calls == 1
        assert run_log.processed_error is True
        assert run_log.processed_error_message == GENERIC_RUN_ERROR_MESSAGE
        assert engine.state is EngineState.FAILED

    @pytest.mark.asyncio
    async def test_close_failure_is_logged_not_raised(
        self, engine_factory, product_factory, run_log_store
    ) -> None:
        engine, cursor = engine_factory(product_factory(2))

        async def broken_close() -> None:
            cursor.close_calls += 1
            raise OSError("socket already closed")

        cursor.close = broken_close

        run_log = await run_chunked_sync(engine)

        assert cursor.close_calls == 1
        assert run_log.processed_error is False
        assert run_log_store.save_calls == 1


class TestStateMachine:
    @pytest.mark.asyncio
    async def test_step_transitions(self, engine_factory, product_factory) -> None:
        engine, _ = engine_factory(product_factory(1))
        assert engine.state is EngineState.IDLE

        await engine.initialize(JobParameters(chunk_size=1))
        assert engine.state is EngineState.INITIALIZED
        assert engine.total_count() == 1

        record = await engine.read()
        assert engine.state is EngineState.READING

        item = engine.transform(record)
        assert engine.state is EngineState.TRANSFORMING
        assert set(item) == {"en_US"}

        chunk = engine.accumulate(item)
        assert engine.state is EngineState.ACCUMULATING
        assert chunk == [item]

        await engine.dispatch(chunk)
        assert engine.state is EngineState.DISPATCHING

        assert await engine.read() is None
        assert engine.flush_remainder() is None

        await engine.finalize(True)
        assert engine.state is EngineState.DONE

    @pytest.mark.asyncio
    async def test_read_before_initialize(self, engine_factory) -> None:
        engine, _ = engine_factory([])

        with pytest.raises(InvalidStateError):
            await engine.read()

    @pytest.mark.asyncio
    async def test_initialize_twice(self, engine_factory) -> None:
        engine, _ = engine_factory([])
        await engine.initialize()

        with pytest.raises(InvalidStateError):
            await engine.initialize()

    @pytest.mark.asyncio
    async def test_finalize_without_initialize(self, engine_factory) -> None:
        engine, _ = engine_factory([])

        with pytest.raises(InvalidStateError):
            await engine.finalize(True)

    @pytest.mark.asyncio
    async def test_finalize_twice(self, engine_factory) -> None:
        engine, cursor = engine_factory([])
        await engine.initialize()
        await engine.finalize(True)

        with pytest.raises(InvalidStateError):
            await engine.finalize(True)
        assert cursor.close_calls == 1

    @pytest.mark.asyncio
    async def test_no_steps_after_finalize(self, engine_factory, product_factory) -> None:
        engine, _ = engine_factory(product_factory(1))
        await engine.initialize()
        await engine.finalize(True)

        with pytest.raises(InvalidStateError):
            await engine.read()
