"""Integration tests for ItemProcessor (client, retry policy, rate limiter, storage)."""
from uuid import uuid4
import httpx
import pytest
from batchforge.core.enums import FailureKind, ItemStatus
from batchforge.core.exceptions import ArtifactStoreError
from batchforge.generation.client import GenerationClient
from batchforge.services.artifact_store import ArtifactStore
from batchforge.services.rate_limiter import CredentialRateLimiter
from batchforge.services.retry_policy import RetryPolicy
from batchforge.worker.item_processor import ItemProcessor
from batchforge.worker.models import BatchItem, GenerationParams
from tests.factories.clock import FakeClock
from tests.factories.credentials import TEST_API_KEY
from tests.factories.provider_responses import ScriptedProvider, image_body

PARAMS = GenerationParams(model="gemini-2.5-flash-image")
PROMPT = "A lighthouse at dusk"


def make_processor(provider, artifact_store, sleep, **kwargs) -> ItemProcessor:
    client = GenerationClient(
        base_url="https://provider.test/v1beta",
        attempt_timeout=5.0,
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(provider)),
    )
    return ItemProcessor(
        client,
        artifact_store,
        retry_policy=kwargs.pop("retry_policy", RetryPolicy(max_attempts=3, base_delay=2.0)),
        sleep=sleep,
        **kwargs
    )


class BrokenArtifactStore(ArtifactStore):
    async def save(self, execution_id, index, data, media_type):
        raise ArtifactStoreError("Storage upload failed: disk full")


@pytest.mark.integration
@pytest.mark.asyncio
class TestItemProcessor:
    """Test one item yields exactly one outcome and never raises."""

    async def test_success_stores_artifact(self, artifact_store, fake_sleep, sleeps):
        """Test a successful item is completed with an artifact reference."""
        provider = ScriptedProvider()
        processor = make_processor(provider, artifact_store, fake_sleep)

        outcome = await processor.process(uuid4(), BatchItem(0, PROMPT), PARAMS, TEST_API_KEY)

        assert outcome.status == ItemStatus.COMPLETED
        assert outcome.attempts == 1
        assert outcome.artifact_ref.startswith("http://testserver/artifacts/")
        assert outcome.media_type == "image/png"
        assert outcome.error_message is None
        assert sleeps == []

    async def test_two_transient_failures_then_success(self, artifact_store, fake_sleep, sleeps):
        """Test an item failing twice transiently succeeds on the third attempt."""
        provider = ScriptedProvider({PROMPT: [
            httpx.Response(503),
            httpx.ConnectTimeout("timed out"),
            httpx.Response(200, json=image_body()),
        ]})
        processor = make_processor(provider, artifact_store, fake_sleep)

        outcome = await processor.process(uuid4(), BatchItem(0, PROMPT), PARAMS, TEST_API_KEY)

        assert outcome.status == ItemStatus.COMPLETED
        assert outcome.attempts == 3
        assert provider.calls_for(PROMPT) == 3
        # Exponential backoff between attempts
        assert sleeps == [2.0, 4.0]

    async def test_retry_exhaustion_keeps_last_error(self, artifact_store, fake_sleep, sleeps):
        """Test an item failing every attempt is failed with the last classified error."""
        provider = ScriptedProvider({PROMPT: [httpx.Response(500)]})
        processor = make_processor(provider, artifact_store, fake_sleep)

        outcome = await processor.process(uuid4(), BatchItem(4, PROMPT), PARAMS, TEST_API_KEY)

        assert outcome.status == ItemStatus.FAILED
        assert outcome.index == 4
        assert outcome.attempts == 3
        assert outcome.failure_kind == FailureKind.TRANSIENT_NETWORK
        assert outcome.error_message == "Generation service error. Please try again later."
        assert outcome.artifact_ref is None

    async def test_auth_error_is_not_retried(self, artifact_store, fake_sleep, sleeps):
        """Test authentication failures fail fast."""
        provider = ScriptedProvider({PROMPT: [httpx.Response(401)]})
        processor = make_processor(provider, artifact_store, fake_sleep)

        outcome = await processor.process(uuid4(), BatchItem(0, PROMPT), PARAMS, TEST_API_KEY)

        assert outcome.status == ItemStatus.FAILED
        assert outcome.attempts == 1
        assert outcome.failure_kind == FailureKind.AUTH_ERROR
        assert outcome.error_message == "Invalid or expired API key"
        assert sleeps == []

    async def test_validation_error_never_calls_provider(self, artifact_store, fake_sleep):
        """Test invalid input fails without a provider call."""
        provider = ScriptedProvider()
        processor = make_processor(provider, artifact_store, fake_sleep)

        outcome = await processor.process(uuid4(), BatchItem(0, "no"), PARAMS, TEST_API_KEY)

        assert outcome.status == ItemStatus.FAILED
        assert outcome.failure_kind == FailureKind.CLIENT_ERROR
        assert provider.calls == []

    async def test_rate_limit_backs_off_whole_credential(self, artifact_store):
        """Test a 429 cools the credential down before the retry."""
        clock = FakeClock()
        provider = ScriptedProvider({PROMPT: [
            httpx.Response(429, headers={"Retry-After": "20"}),
            httpx.Response(200, json=image_body()),
        ]})
        limiter = CredentialRateLimiter(15, 60.0, 10.0, clock=clock.now, sleep=clock.sleep)
        processor = make_processor(provider, artifact_store, clock.sleep, rate_limiter=limiter)

        outcome = await processor.process(uuid4(), BatchItem(0, PROMPT), PARAMS, TEST_API_KEY)

        assert outcome.status == ItemStatus.COMPLETED
        assert outcome.attempts == 2
        # Backoff honours Retry-After; the cooldown has then already elapsed
        assert clock.sleeps == [20.0]
        assert clock.current == 1020.0

    async def test_storage_failure_is_item_failure(self, fake_sleep):
        """Test a storage error fails the item instead of raising."""
        processor = make_processor(ScriptedProvider(), BrokenArtifactStore(), fake_sleep)

        outcome = await processor.process(uuid4(), BatchItem(0, PROMPT), PARAMS, TEST_API_KEY)

        assert outcome.status == ItemStatus.FAILED
        assert outcome.error_message == "Storage upload failed: disk full"
        assert outcome.attempts == 1

    async def test_unexpected_error_is_captured(self, artifact_store, fake_sleep):
        """Test an unexpected exception becomes a generic item failure."""
        def provider(request):
            raise RuntimeError("provider SDK exploded")

        processor = make_processor(provider, artifact_store, fake_sleep)

        outcome = await processor.process(uuid4(), BatchItem(0, PROMPT), PARAMS, TEST_API_KEY)

        assert outcome.status == ItemStatus.FAILED
        assert outcome.error_message == "Unexpected error while generating item"
        assert "exploded" not in outcome.error_message
