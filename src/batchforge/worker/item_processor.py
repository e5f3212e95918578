"""Item processor: runs one batch item end to end."""
import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional, Tuple
from uuid import UUID
from batchforge.core.enums import FailureKind, ItemStatus
from batchforge.core.exceptions import ArtifactStoreError, GenerationError
from batchforge.core.security import credential_fingerprint
from batchforge.generation.client import GeneratedArtifact, GenerationClient
from batchforge.observability.metrics import record_generation_attempt
from batchforge.services.artifact_store import ArtifactStore
from batchforge.services.rate_limiter import CredentialRateLimiter
from batchforge.services.retry_policy import RetryPolicy
from batchforge.worker.models import BatchItem, GenerationParams, ItemOutcome

logger = logging.getLogger(__name__)


class ItemProcessor:
    """
    Generates and stores the artifact for one item.

    :meth:`process` never raises: every failure ends up in the returned
    ItemOutcome.
    """

    def __init__(
        self,
        client: GenerationClient,
        artifact_store: ArtifactStore,
        retry_policy: Optional[RetryPolicy] = None,
        rate_limiter: Optional[CredentialRateLimiter] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Initialize item processor.

        Args:
            client: Generation client
            artifact_store: Where generated artifacts are written
            retry_policy: Retry policy (defaults to the configured one)
            rate_limiter: Credential-aware limiter shared across items and jobs
            sleep: Backoff sleep, injectable for tests
        """
        self.client = client
        self.artifact_store = artifact_store
        self.retry_policy = retry_policy or RetryPolicy.from_settings()
        self.rate_limiter = rate_limiter
        self._sleep = sleep

    async def process(
        self,
        execution_id: UUID,
        item: BatchItem,
        params: GenerationParams,
        credential: str,
    ) -> ItemOutcome:
        """
        Process one item with the retry policy.

        Args:
            execution_id: Owning execution
            item: Item to process
            params: Parameters shared by the batch
            credential: Plaintext provider credential

        Returns:
            ItemOutcome: Completed with an artifact reference, or failed with a reason
        """
        started = time.monotonic()
        attempts = 0
        try:
            artifact, attempts, error = await self._generate_with_retry(item, params, credential)
            if error is not None:
                logger.warning(
                    f"Execution {execution_id} item {item.index} failed after "
                    f"{attempts} attempt(s): {error.kind} {error.message}"
                )
                return self._failed(item, attempts, error.message, error.kind, started)

            artifact_ref = await self.artifact_store.save(
                execution_id, item.index, artifact.data, artifact.media_type
            )
        except ArtifactStoreError as e:
            return self._failed(item, attempts, str(e), None, started)
        except Exception as e:
            logger.error(
                f"Unexpected error processing execution {execution_id} item {item.index}: {e}",
                exc_info=True,
            )
            return self._failed(
                item, max(attempts, 1), "Unexpected error while generating item", None, started
            )

        logger.info(f"Execution {execution_id} item {item.index} completed: {artifact_ref}")
        return ItemOutcome(
            index=item.index,
            status=ItemStatus.COMPLETED,
            attempts=attempts,
            artifact_ref=artifact_ref,
            media_type=artifact.media_type,
            processing_time_ms=self._elapsed_ms(started),
        )

    async def _generate_with_retry(
        self, item: BatchItem, params: GenerationParams, credential: str
    ) -> Tuple[Optional[GeneratedArtifact], int, Optional[GenerationError]]:
        """
        Call the provider until success, a non-retriable error or an exhausted budget.

        Returns:
            Tuple of (artifact, attempts made, last error); exactly one of
            artifact and error is set
        """
        fingerprint = credential_fingerprint(credential)
        attempt = 0
        while True:
            attempt += 1
            if self.rate_limiter is not None:
                await self.rate_limiter.acquire(fingerprint, params.model)
            try:
                artifact = await self.client.generate(item.prompt, params, credential)
            except GenerationError as e:
                record_generation_attempt(str(e.kind))
                if e.kind == FailureKind.RATE_LIMITED and self.rate_limiter is not None:
                    self.rate_limiter.penalize(fingerprint, params.model, e.retry_after)

                if not self.retry_policy.should_retry(e, attempt):
                    return None, attempt, e

                delay = self.retry_policy.delay_for(attempt, e)
                logger.warning(
                    f"Item {item.index} attempt {attempt}/{self.retry_policy.max_attempts} "
                    f"failed ({e.kind}), retrying in {delay:.1f}s"
                )
                await self._sleep(delay)
            else:
                record_generation_attempt("success")
                return artifact, attempt, None

    def _failed(
        self,
        item: BatchItem,
        attempts: int,
        message: str,
        kind: Optional[FailureKind],
        started: float,
    ) -> ItemOutcome:
        return ItemOutcome(
            index=item.index,
            status=ItemStatus.FAILED,
            attempts=attempts,
            error_message=message,
            failure_kind=kind,
            processing_time_ms=self._elapsed_ms(started),
        )

    @staticmethod
    def _elapsed_ms(started: float) -> int:
        return int((time.monotonic() - started) * 1000)
