"""Async adapter over the execution repository for worker code."""
import asyncio
from datetime import datetime
from typing import Any, Callable, List, Optional, TypeVar
from uuid import UUID
from sqlalchemy.orm import sessionmaker
from batchforge.core.database import SessionLocal, session_scope
from batchforge.core.enums import ExecutionStatus
from batchforge.models.execution import Execution
from batchforge.repositories.execution_repository import ExecutionRepository
from batchforge.worker.models import ItemOutcome

T = TypeVar("T")


class ExecutionStore:
    """
    Runs repository operations off the event loop.

    Every call opens its own session in a worker thread, so dispatchers
    running in one process never share a session. Returned executions are
    detached snapshots with their results loaded.
    """

    def __init__(self, session_factory: sessionmaker = SessionLocal):
        """
        Initialize store.

        Args:
            session_factory: Factory used to open one session per call
        """
        self.session_factory = session_factory

    async def _run(self, operation: Callable[[ExecutionRepository], T]) -> T:
        def run_sync() -> T:
            with session_scope(self.session_factory) as session:
                result = operation(ExecutionRepository(session))
                if isinstance(result, Execution):
                    # Force load before detaching
                    _ = list(result.results)
                    session.expunge(result)
                return result

        return await asyncio.to_thread(run_sync)

    async def get(self, execution_id: UUID) -> Execution:
        return await self._run(lambda repo: repo.get(execution_id))

    async def mark_processing(self, execution_id: UUID) -> Execution:
        return await self._run(lambda repo: repo.mark_processing(execution_id))

    async def record_item(self, execution_id: UUID, outcome: ItemOutcome) -> Execution:
        return await self._run(lambda repo: repo.record_item(execution_id, outcome))

    async def finish(
        self,
        execution_id: UUID,
        status: ExecutionStatus,
        error: Optional[str] = None,
    ) -> Execution:
        return await self._run(lambda repo: repo.finish(execution_id, status, error=error))

    async def request_cancel(self, execution_id: UUID) -> Execution:
        return await self._run(lambda repo: repo.request_cancel(execution_id))

    async def is_cancel_requested(self, execution_id: UUID) -> bool:
        return await self._run(lambda repo: repo.is_cancel_requested(execution_id))

    async def find_stale_unfinished(self, stale_before: datetime) -> List[UUID]:
        return await self._run(lambda repo: repo.find_stale_unfinished(stale_before))

    async def create(self, input_data: Any, encrypted_credential: Optional[Any] = None) -> Execution:
        return await self._run(lambda repo: repo.create(input_data, encrypted_credential))
