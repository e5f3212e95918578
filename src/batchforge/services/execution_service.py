"""Execution service: submit, inspect and cancel batch executions."""
import logging
from typing import Optional
from uuid import UUID
from redis.exceptions import RedisError
from sqlalchemy.orm import Session
from batchforge.api.schemas.execution import BatchSubmit
from batchforge.core.exceptions import InvalidStateTransitionError
from batchforge.models.execution import Execution
from batchforge.observability.metrics import record_execution_submitted
from batchforge.repositories.execution_repository import ExecutionRepository
from batchforge.services.state_machine import ExecutionStateMachine

logger = logging.getLogger(__name__)


class ExecutionService:
    """Service for execution business logic and hand-off to workers."""

    def __init__(self, db: Session, queue: Optional["RedisQueue"] = None):
        """
        Initialize service with database session.

        Args:
            db: SQLAlchemy database session
            queue: Optional RedisQueue that workers pull executions from
        """
        self.db = db
        self.repository = ExecutionRepository(db)
        self.queue = queue

    def submit(self, batch: BatchSubmit) -> Execution:
        """
        Record a new PENDING execution and hand it to the workers.

        Batch content is not validated here: an empty batch or a missing
        credential becomes a FAILED execution once a worker picks it up.
        A queue outage does not fail the submission.

        Args:
            batch: Submitted batch

        Returns:
            Execution: Created execution instance
        """
        credential = batch.encrypted_credential.model_dump() if batch.encrypted_credential else None
        execution = self.repository.create(batch.to_input(), encrypted_credential=credential)

        if self.queue:
            try:
                self.queue.enqueue(execution.id)
            except RedisError as e:
                # Left PENDING; the worker reclaim sweep re-queues it
                logger.warning(f"Could not enqueue execution {execution.id}: {e}")

        record_execution_submitted()
        logger.info(f"Execution {execution.id} submitted with {execution.total_items} item(s)")
        return execution

    def get_execution(self, execution_id: UUID) -> Execution:
        """
        Get execution by ID. Read-only.

        Raises:
            ExecutionNotFoundError: If execution not found
        """
        return self.repository.get(execution_id)

    def cancel_execution(self, execution_id: UUID) -> Execution:
        """
        Request cancellation of an execution.

        Only sets the flag; the owning dispatcher stops before its next item.
        A PENDING execution stays queued and is failed as cancelled as soon
        as a worker claims it.

        Args:
            execution_id: Execution UUID

        Returns:
            Execution: Updated execution instance

        Raises:
            ExecutionNotFoundError: If execution not found
            InvalidStateTransitionError: If execution is already terminal
        """
        execution = self.repository.request_cancel(execution_id)
        if ExecutionStateMachine.is_terminal(execution.status):
            raise InvalidStateTransitionError(
                f"Execution {execution_id} is already {execution.status} and cannot be cancelled"
            )

        logger.info(f"Cancellation requested for execution {execution_id}")
        return execution
