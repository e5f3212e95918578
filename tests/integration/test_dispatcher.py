"""Integration tests for BatchDispatcher against a real store."""
import asyncio
import httpx
import pytest
from batchforge.core.enums import ExecutionStatus, ItemStatus
from batchforge.core.security import CredentialResolver, encrypt_credential
from batchforge.generation.client import GenerationClient
from batchforge.repositories.execution_repository import ExecutionRepository
from batchforge.services.retry_policy import RetryPolicy
from batchforge.worker.dispatcher import BatchDispatcher
from batchforge.worker.item_processor import ItemProcessor
from batchforge.worker.models import ItemOutcome
from tests.factories.credentials import TEST_ENCRYPTION_KEY
from tests.factories.execution_factory import create_execution
from tests.factories.provider_responses import ScriptedProvider
from tests.factories.stores import SerializedStore

PROMPTS = ["A lighthouse at dusk", "A red bicycle", "A bowl of ramen"]


@pytest.fixture
def provider():
    return ScriptedProvider()


@pytest.fixture
def processor(provider, artifact_store, fake_sleep):
    client = GenerationClient(
        base_url="https://provider.test/v1beta",
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(provider)),
    )
    return ItemProcessor(
        client,
        artifact_store,
        retry_policy=RetryPolicy(max_attempts=3, base_delay=2.0),
        sleep=fake_sleep,
    )


@pytest.fixture
def make_dispatcher(store, processor):
    def make(execution_id, concurrency=1, dispatcher_store=None):
        return BatchDispatcher(
            execution_id,
            dispatcher_store or store,
            processor,
            credential_resolver=CredentialResolver(TEST_ENCRYPTION_KEY),
            concurrency=concurrency,
        )

    return make


def request_cancel_on(provider, session_factory, execution_id, prompt):
    """Request cancellation while the provider is handling the given prompt."""
    def on_call(called_prompt):
        if called_prompt == prompt:
            session = session_factory()
            try:
                ExecutionRepository(session).request_cancel(execution_id)
            finally:
                session.close()

    provider.on_call = on_call


@pytest.mark.integration
@pytest.mark.asyncio
class TestBatchDispatcher:
    """Test an execution is driven to exactly one terminal state."""

    async def test_all_items_succeed(self, db_session, encrypted_credential, make_dispatcher, provider):
        """Test a fully successful batch completes at 100%."""
        execution = create_execution(db_session, PROMPTS, encrypted_credential=encrypted_credential)

        result = await make_dispatcher(execution.id).run()

        assert result.status == ExecutionStatus.COMPLETED
        assert result.progress == 100
        assert result.error is None
        assert [r.index for r in result.results] == [0, 1, 2]
        assert all(r.status == ItemStatus.COMPLETED for r in result.results)
        assert all(r.artifact_ref.startswith("http://testserver/artifacts/") for r in result.results)
        assert result.started_at is not None
        assert result.finished_at is not None
        assert result.encrypted_credential is None
        # Items are dispatched in order when serial
        assert provider.calls == PROMPTS

    async def test_item_failures_still_complete(self, db_session, encrypted_credential, make_dispatcher, provider):
        """Test a batch with failed items is COMPLETED with mixed results."""
        provider.script[PROMPTS[1]] = [httpx.Response(400, json={"error": {"message": "Prompt was blocked"}})]
        execution = create_execution(db_session, PROMPTS, encrypted_credential=encrypted_credential)

        result = await make_dispatcher(execution.id).run()

        assert result.status == ExecutionStatus.COMPLETED
        assert result.progress == 100
        assert result.error is None
        assert [(r.index, r.status) for r in result.results] == [
            (0, ItemStatus.COMPLETED),
            (1, ItemStatus.FAILED),
            (2, ItemStatus.COMPLETED),
        ]
        assert result.results[1].error_message == "Prompt was blocked"
        assert result.results[1].attempts == 1
        assert result.succeeded == 2
        assert result.failed == 1
        # Validation errors are not retried
        assert provider.calls_for(PROMPTS[1]) == 1

    async def test_every_item_failing_still_completes(self, db_session, encrypted_credential, make_dispatcher, provider):
        """Test the execution completes even when no item succeeded."""
        for prompt in PROMPTS:
            provider.script[prompt] = [httpx.Response(503)]
        execution = create_execution(db_session, PROMPTS, encrypted_credential=encrypted_credential)

        result = await make_dispatcher(execution.id).run()

        assert result.status == ExecutionStatus.COMPLETED
        assert result.failed == 3
        assert all(r.attempts == 3 for r in result.results)
        assert len(provider.calls) == 9

    async def test_missing_credential_fails_without_calls(self, db_session, make_dispatcher, provider):
        """Test a missing credential fails the execution before any item."""
        execution = create_execution(db_session, PROMPTS)

        result = await make_dispatcher(execution.id).run()

        assert result.status == ExecutionStatus.FAILED
        assert "Missing API credential" in result.error
        assert result.results == []
        assert provider.calls == []

    async def test_undecryptable_credential_fails(self, db_session, make_dispatcher, provider):
        """Test a credential encrypted with another key fails the execution."""
        foreign = encrypt_credential("other-key", "f" * 64)
        execution = create_execution(db_session, PROMPTS, encrypted_credential=foreign)

        result = await make_dispatcher(execution.id).run()

        assert result.status == ExecutionStatus.FAILED
        assert result.error == "Credential decryption failed"
        assert result.finished_at is not None
        assert provider.calls == []

    async def test_empty_batch_fails(self, db_session, encrypted_credential, make_dispatcher, provider):
        """Test a batch with no items fails instead of completing vacuously."""
        execution = create_execution(db_session, [], encrypted_credential=encrypted_credential)

        result = await make_dispatcher(execution.id).run()

        assert result.status == ExecutionStatus.FAILED
        assert result.error == "Batch contains no items"
        assert provider.calls == []

    async def test_cancel_between_items(self, db_session, session_factory, encrypted_credential, make_dispatcher, provider):
        """Test cancellation lets the in-flight item finish and starts no more."""
        execution = create_execution(db_session, PROMPTS, encrypted_credential=encrypted_credential)
        request_cancel_on(provider, session_factory, execution.id, PROMPTS[0])

        result = await make_dispatcher(execution.id).run()

        assert result.status == ExecutionStatus.FAILED
        assert result.error == "Execution cancelled by user"
        assert [r.index for r in result.results] == [0]
        assert result.results[0].status == ItemStatus.COMPLETED
        assert provider.calls == [PROMPTS[0]]
        assert result.progress == 33

    async def test_cancel_during_last_item_completes(self, db_session, session_factory, encrypted_credential, make_dispatcher, provider):
        """Test a cancel arriving while the final item runs does not discard finished work."""
        execution = create_execution(db_session, PROMPTS, encrypted_credential=encrypted_credential)
        request_cancel_on(provider, session_factory, execution.id, PROMPTS[2])

        result = await make_dispatcher(execution.id).run()

        assert result.status == ExecutionStatus.COMPLETED
        assert len(result.results) == 3

    async def test_cancel_before_start(self, db_session, store, encrypted_credential, make_dispatcher, provider):
        """Test a pending execution cancelled before pickup fails with no results."""
        execution = create_execution(db_session, PROMPTS, encrypted_credential=encrypted_credential)
        await store.request_cancel(execution.id)

        result = await make_dispatcher(execution.id).run()

        assert result.status == ExecutionStatus.FAILED
        assert result.error == "Execution cancelled by user"
        assert result.results == []
        assert provider.calls == []

    async def test_terminal_execution_is_noop(self, db_session, encrypted_credential, make_dispatcher, provider):
        """Test re-running a finished execution changes nothing."""
        execution = create_execution(
            db_session, PROMPTS, encrypted_credential=encrypted_credential, status=ExecutionStatus.PROCESSING
        )
        ExecutionRepository(db_session).finish(execution.id, ExecutionStatus.FAILED, error="boom")

        result = await make_dispatcher(execution.id).run()

        assert result.status == ExecutionStatus.FAILED
        assert result.error == "boom"
        assert provider.calls == []

    async def test_resume_skips_recorded_items(self, db_session, store, encrypted_credential, make_dispatcher, provider):
        """Test a restarted dispatcher only processes items without a result."""
        execution = create_execution(
            db_session, PROMPTS, encrypted_credential=encrypted_credential, status=ExecutionStatus.PROCESSING
        )
        await store.record_item(
            execution.id,
            ItemOutcome(index=0, status=ItemStatus.COMPLETED, attempts=1, artifact_ref="http://a/0.png"),
        )

        result = await make_dispatcher(execution.id).run()

        assert result.status == ExecutionStatus.COMPLETED
        assert provider.calls == PROMPTS[1:]
        assert result.results[0].artifact_ref == "http://a/0.png"

    async def test_parallel_items(self, db_session, session_factory, encrypted_credential, make_dispatcher, provider):
        """Test items run on a bounded pool and every index gets one result."""
        prompts = [f"Prompt number {i}" for i in range(7)]
        execution = create_execution(db_session, prompts, encrypted_credential=encrypted_credential)
        in_flight = []
        peak = []
        pool_filled = asyncio.Event()

        async def slow_provider(request):
            in_flight.append(1)
            peak.append(len(in_flight))
            if len(in_flight) == 3:
                pool_filled.set()
            try:
                # Hold the first calls until the pool is full
                await asyncio.wait_for(pool_filled.wait(), timeout=1.0)
            except asyncio.TimeoutError:
                pass
            in_flight.pop()
            return provider(request)

        dispatcher = make_dispatcher(
            execution.id, concurrency=3, dispatcher_store=SerializedStore(session_factory)
        )
        dispatcher.processor.client._http = httpx.AsyncClient(transport=httpx.MockTransport(slow_provider))

        result = await dispatcher.run()

        assert result.status == ExecutionStatus.COMPLETED
        assert sorted(r.index for r in result.results) == list(range(7))
        assert result.progress == 100
        assert sorted(provider.calls) == sorted(prompts)
        assert max(peak) == 3
