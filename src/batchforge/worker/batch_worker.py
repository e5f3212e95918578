"""Long-running worker that pulls executions off the queue."""
import asyncio
import logging
from datetime import timedelta
from typing import Callable, Optional, Set
from uuid import UUID
from batchforge.config import get_settings
from batchforge.core.enums import ExecutionStatus
from batchforge.core.exceptions import ExecutionNotFoundError
from batchforge.core.security import CredentialResolver
from batchforge.models.base import utcnow
from batchforge.models.execution import Execution
from batchforge.observability.metrics import update_queue_metrics
from batchforge.services.redis_queue import RedisQueue
from batchforge.worker.dispatcher import BatchDispatcher
from batchforge.worker.item_processor import ItemProcessor
from batchforge.worker.store import ExecutionStore

logger = logging.getLogger(__name__)


class BatchWorker:
    """
    Polls the execution queue and runs one dispatcher per execution.

    Uses an asyncio semaphore to bound how many executions run at once.
    Dispatchers share the item processor (and so its rate limiter) but
    nothing else.
    """

    def __init__(
        self,
        worker_id: str,
        queue: RedisQueue,
        store: ExecutionStore,
        processor: ItemProcessor,
        credential_resolver: Optional[CredentialResolver] = None,
        max_concurrent_executions: int = 4,
        poll_interval: float = 1.0,
        item_concurrency: Optional[int] = None,
        dispatcher_factory: Optional[Callable[[UUID], BatchDispatcher]] = None,
        reclaim_interval: Optional[float] = None,
        stale_after: Optional[float] = None,
    ):
        """
        Initialize batch worker.

        Args:
            worker_id: Unique worker identifier
            queue: Queue of submitted execution ids
            store: Execution store
            processor: Item processor shared by all dispatchers
            credential_resolver: Credential resolver shared by all dispatchers
            max_concurrent_executions: Maximum executions dispatched at once
            poll_interval: Seconds to wait when the queue is empty
            item_concurrency: Items processed in parallel within one execution
            dispatcher_factory: Builds the dispatcher for an execution id
            reclaim_interval: Seconds between stale execution sweeps
            stale_after: Seconds without progress before an unfinished
                execution is re-queued
        """
        self.worker_id = worker_id
        self.queue = queue
        self.store = store
        self.processor = processor
        self.credential_resolver = credential_resolver or CredentialResolver()
        self.max_concurrent_executions = max_concurrent_executions
        self.poll_interval = poll_interval
        self.item_concurrency = item_concurrency
        self.dispatcher_factory = dispatcher_factory or self._build_dispatcher

        settings = get_settings()
        self.reclaim_interval = reclaim_interval or settings.RECLAIM_INTERVAL_SECONDS
        self.stale_after = stale_after or settings.STALE_EXECUTION_SECONDS

        # Concurrency control
        self._semaphore = asyncio.Semaphore(max_concurrent_executions)
        self._running_tasks: Set[asyncio.Task] = set()
        self._active: Set[UUID] = set()

        # State
        self.is_running = False
        self._stop_event = asyncio.Event()

        # Counters
        self.executions_processed = 0
        self.executions_completed = 0
        self.executions_failed = 0

    def _build_dispatcher(self, execution_id: UUID) -> BatchDispatcher:
        return BatchDispatcher(
            execution_id,
            self.store,
            self.processor,
            credential_resolver=self.credential_resolver,
            concurrency=self.item_concurrency,
        )

    async def start(self):
        """
        Start the polling and reclaim loops.

        Runs until :meth:`stop` is called.
        """
        self.is_running = True
        logger.info(f"Worker {self.worker_id} starting...")
        reclaim_task = asyncio.create_task(self._reclaim_loop())

        try:
            await self._poll_loop()
        finally:
            self._stop_event.set()
            await asyncio.gather(reclaim_task, return_exceptions=True)
            self.is_running = False
            logger.info(f"Worker {self.worker_id} stopped")

    async def stop(self, timeout: float = 30.0):
        """
        Stop the worker gracefully.

        Args:
            timeout: Maximum time to wait for running executions
        """
        logger.info(f"Worker {self.worker_id} stopping...")
        self._stop_event.set()

        if self._running_tasks:
            logger.info(f"Waiting for {len(self._running_tasks)} running executions...")
            try:
                await asyncio.wait_for(
                    asyncio.gather(*self._running_tasks, return_exceptions=True),
                    timeout=timeout,
                )
            except asyncio.TimeoutError:
                logger.warning("Timeout waiting for executions, cancelling...")
                tasks = list(self._running_tasks)
                for task in tasks:
                    task.cancel()
                # Cancelled dispatches re-queue themselves
                await asyncio.gather(*tasks, return_exceptions=True)

    async def _poll_loop(self):
        while not self._stop_event.is_set():
            try:
                # Wait for a free slot before taking work off the queue
                await self._semaphore.acquire()
                execution_id = await self._claim_execution()

                if execution_id:
                    task = asyncio.create_task(self._execute_with_semaphore(execution_id))
                    self._running_tasks.add(task)
                    task.add_done_callback(self._running_tasks.discard)
                else:
                    self._semaphore.release()
                    await self._wait(self.poll_interval)

            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in poll loop: {e}", exc_info=True)
                await self._wait(self.poll_interval)

    async def _wait(self, seconds: float) -> None:
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    async def _claim_execution(self) -> Optional[UUID]:
        """
        Pop the next execution id from the queue.

        Returns:
            Optional[UUID]: Execution id or None when the queue is empty
        """
        try:
            execution_id = await asyncio.to_thread(self.queue.dequeue)
            await asyncio.to_thread(update_queue_metrics, self.queue)
            return execution_id
        except Exception as e:
            logger.error(f"Error claiming execution: {e}", exc_info=True)
            return None

    async def run_one(self, execution_id: UUID) -> Optional[Execution]:
        """
        Dispatch a single execution to a terminal state.

        A dispatch that crashes leaves the execution unfinished, so it is
        put back on the queue for another attempt.

        Args:
            execution_id: Execution to run

        Returns:
            Optional[Execution]: Terminal record, or None if dispatch crashed
        """
        logger.info(f"Worker {self.worker_id} dispatching execution {execution_id}")
        self._active.add(execution_id)
        try:
            execution = await self.dispatcher_factory(execution_id).run()
        except ExecutionNotFoundError:
            logger.warning(f"Execution {execution_id} no longer exists, dropping it")
            return None
        except Exception as e:
            self.executions_processed += 1
            self.executions_failed += 1
            logger.error(f"Unexpected error dispatching execution {execution_id}: {e}", exc_info=True)
            await asyncio.to_thread(self._requeue, execution_id)
            return None
        finally:
            self._active.discard(execution_id)

        self.executions_processed += 1
        if execution.status == ExecutionStatus.COMPLETED:
            self.executions_completed += 1
        elif execution.status == ExecutionStatus.FAILED:
            self.executions_failed += 1
        return execution

    async def _execute_with_semaphore(self, execution_id: UUID):
        # The slot was acquired by the poll loop
        try:
            await self.run_one(execution_id)
        except asyncio.CancelledError:
            # Interrupted mid-dispatch; another worker resumes it
            self._requeue(execution_id)
            raise
        finally:
            self._semaphore.release()

    def _requeue(self, execution_id: UUID) -> bool:
        try:
            added = self.queue.enqueue(execution_id)
        except Exception as e:
            logger.error(f"Could not re-queue execution {execution_id}: {e}", exc_info=True)
            return False
        if added:
            logger.info(f"Re-queued execution {execution_id}")
        return added

    async def reclaim_stale(self) -> int:
        """
        Re-queue unfinished executions nobody has touched recently.

        Covers submissions whose enqueue failed and dispatches lost with a
        crashed worker. Executions running in this worker are skipped;
        enqueue is a no-op for ids already queued.

        Returns:
            int: Number of executions put back on the queue
        """
        stale_before = utcnow() - timedelta(seconds=self.stale_after)
        execution_ids = await self.store.find_stale_unfinished(stale_before)

        reclaimed = 0
        for execution_id in execution_ids:
            if execution_id in self._active:
                continue
            if await asyncio.to_thread(self._requeue, execution_id):
                reclaimed += 1

        if reclaimed:
            logger.warning(f"Worker {self.worker_id} reclaimed {reclaimed} stale execution(s)")
        return reclaimed

    async def _reclaim_loop(self):
        """Sweep for stale executions until the worker stops."""
        logger.info(
            f"Reclaim loop started (interval={self.reclaim_interval}s, stale_after={self.stale_after}s)"
        )

        while not self._stop_event.is_set():
            try:
                await self.reclaim_stale()
            except Exception as e:
                logger.error(f"Error in reclaim loop: {e}", exc_info=True)

            await self._wait(self.reclaim_interval)

        logger.info("Reclaim loop stopped")
