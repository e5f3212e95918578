"""Batch dispatcher: drives one execution from PENDING to a terminal state."""
import asyncio
import logging
from typing import Iterator, Optional, Set
from uuid import UUID
from batchforge.config import get_settings
from batchforge.core.enums import ExecutionStatus
from batchforge.core.exceptions import CredentialError, InvalidBatchError, JobCancelled
from batchforge.core.security import CredentialResolver
from batchforge.models.execution import Execution
from batchforge.observability.metrics import (
    executions_in_progress,
    record_execution_finished,
    record_item_processed,
)
from batchforge.services.state_machine import ExecutionStateMachine
from batchforge.worker.item_processor import ItemProcessor
from batchforge.worker.models import Batch, BatchItem, read_batch
from batchforge.worker.store import ExecutionStore

logger = logging.getLogger(__name__)

CANCELLED_MESSAGE = "Execution cancelled by user"
INTERNAL_ERROR_MESSAGE = "Execution stopped due to an internal error"


class BatchDispatcher:
    """
    Owns a single execution for its whole lifetime.

    Items run through the item processor, serially or on a bounded pool of
    workers. Every item result is written through one lock, so this
    dispatcher is the only writer of its execution record.

    The terminal decision is asymmetric: once every item has a result the
    execution is COMPLETED, however many items failed. FAILED is reserved
    for job-level faults (unreadable or empty batch, unusable credential,
    user cancellation) raised before or between items.
    """

    def __init__(
        self,
        execution_id: UUID,
        store: ExecutionStore,
        processor: ItemProcessor,
        credential_resolver: Optional[CredentialResolver] = None,
        concurrency: Optional[int] = None,
        default_model: Optional[str] = None,
    ):
        """
        Initialize dispatcher.

        Args:
            execution_id: Execution this dispatcher owns
            store: Execution store
            processor: Item processor
            credential_resolver: Resolver for the execution's encrypted credential
            concurrency: Number of items processed in parallel (1 = serial)
            default_model: Model used when the batch names none
        """
        settings = get_settings()
        self.execution_id = execution_id
        self.store = store
        self.processor = processor
        self.credential_resolver = credential_resolver or CredentialResolver()
        self.concurrency = max(1, concurrency or settings.ITEM_CONCURRENCY)
        self.default_model = default_model or settings.DEFAULT_MODEL

        self._write_lock = asyncio.Lock()
        self._recorded: Set[int] = set()
        self._cancelled = False

    async def run(self) -> Execution:
        """
        Execute the batch to a terminal state.

        Returns:
            Execution: The terminal execution record (or the current record
            if the execution was already terminal)
        """
        execution = await self.store.get(self.execution_id)
        if ExecutionStateMachine.is_terminal(execution.status):
            logger.info(f"Execution {self.execution_id} already {execution.status}, nothing to do")
            return execution

        # PENDING → PROCESSING before the first item is attempted
        execution = await self.store.mark_processing(self.execution_id)
        if execution.status != ExecutionStatus.PROCESSING:
            return execution

        executions_in_progress.inc()
        try:
            return await self._run_claimed(execution)
        finally:
            executions_in_progress.dec()

    async def _run_claimed(self, execution: Execution) -> Execution:
        try:
            batch = read_batch(execution.input, self.default_model)
            credential = self.credential_resolver.resolve(execution.encrypted_credential)
        except (InvalidBatchError, CredentialError) as e:
            logger.error(f"Execution {self.execution_id} failed before dispatch: {e}")
            return await self._finish(ExecutionStatus.FAILED, str(e))

        self._recorded = {result.index for result in execution.results}
        logger.info(
            f"Execution {self.execution_id} dispatching {len(batch.items)} item(s) "
            f"(model={batch.params.model}, concurrency={self.concurrency}, "
            f"already recorded={len(self._recorded)})"
        )

        try:
            await self._dispatch(batch, credential)
        except JobCancelled as e:
            logger.info(
                f"Execution {self.execution_id} cancelled after "
                f"{len(self._recorded)}/{len(batch.items)} item(s)"
            )
            return await self._finish(ExecutionStatus.FAILED, str(e))
        except Exception as e:
            logger.error(f"Execution {self.execution_id} dispatch error: {e}", exc_info=True)
            return await self._finish(ExecutionStatus.FAILED, INTERNAL_ERROR_MESSAGE)

        return await self._finish(ExecutionStatus.COMPLETED)

    async def _dispatch(self, batch: Batch, credential: str) -> None:
        """
        Process every item that has no result yet.

        Raises:
            JobCancelled: If cancellation stopped items from being started
        """
        pending = iter([item for item in batch.items if item.index not in self._recorded])
        worker_count = min(self.concurrency, len(batch.items) - len(self._recorded))

        tasks = [
            asyncio.create_task(self._worker(pending, batch, credential))
            for _ in range(worker_count)
        ]
        try:
            await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        if self._cancelled and len(self._recorded) < len(batch.items):
            raise JobCancelled(CANCELLED_MESSAGE)

    async def _worker(self, pending: Iterator[BatchItem], batch: Batch, credential: str) -> None:
        while True:
            # Cancellation is observed between items, never mid-call
            if self._cancelled or await self.store.is_cancel_requested(self.execution_id):
                self._cancelled = True
                return

            item = next(pending, None)
            if item is None:
                return

            outcome = await self.processor.process(
                self.execution_id, item, batch.params, credential
            )
            async with self._write_lock:
                execution = await self.store.record_item(self.execution_id, outcome)
                self._recorded.add(outcome.index)
            record_item_processed(str(outcome.status), outcome.processing_time_ms)
            logger.info(
                f"Execution {self.execution_id} item {outcome.index} {outcome.status} "
                f"(progress {execution.progress}%)"
            )

    async def _finish(self, status: ExecutionStatus, error: Optional[str] = None) -> Execution:
        execution = await self.store.finish(self.execution_id, status, error=error)
        record_execution_finished(str(execution.status), execution.duration_seconds)
        logger.info(
            f"Execution {self.execution_id} {execution.status}: "
            f"{execution.succeeded} succeeded, {execution.failed} failed"
            + (f", error: {execution.error}" if execution.error else "")
        )
        return execution
