"""Execution repository: the durable record of batch job state."""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID
from sqlalchemy.orm import Session
from batchforge.models.base import utcnow
from batchforge.models.execution import Execution, ItemResult
from batchforge.core.enums import ExecutionStatus
from batchforge.core.exceptions import ExecutionNotFoundError
from batchforge.services.state_machine import ExecutionStateMachine
from batchforge.worker.models import ItemOutcome

logger = logging.getLogger(__name__)


def compute_progress(done: int, total: int) -> int:
    """
    Percentage of items with a result, rounded half up.

    Args:
        done: Items that have a result (succeeded + failed)
        total: Items in the batch

    Returns:
        int: 0-100
    """
    if total <= 0:
        return 0
    done = min(done, total)
    return (200 * done + total) // (2 * total)


class ExecutionRepository:
    """
    Repository for Execution database operations.

    Writes to a terminal execution are ignored and return the record
    unchanged, so a restarted dispatcher cannot resurrect a finished job.
    """

    def __init__(self, db: Session):
        """
        Initialize repository with database session.

        Args:
            db: SQLAlchemy database session
        """
        self.db = db

    def create(
        self,
        input_data: Dict[str, Any],
        encrypted_credential: Optional[Any] = None,
    ) -> Execution:
        """
        Create a new PENDING execution.

        Args:
            input_data: Batch request ({"items": [...], "params": {...}})
            encrypted_credential: Encrypted provider credential blob

        Returns:
            Execution: Created execution instance
        """
        items = input_data.get("items") or []
        execution = Execution(
            status=ExecutionStatus.PENDING,
            progress=0,
            input=input_data,
            total_items=len(items),
            encrypted_credential=encrypted_credential,
        )
        self.db.add(execution)
        self.db.commit()
        self.db.refresh(execution)
        return execution

    def get_by_id(self, execution_id: UUID) -> Optional[Execution]:
        """
        Retrieve execution by ID.

        Args:
            execution_id: Execution UUID

        Returns:
            Optional[Execution]: Execution instance or None if not found
        """
        return self.db.query(Execution).filter(Execution.id == execution_id).first()

    def get(self, execution_id: UUID) -> Execution:
        """
        Retrieve execution by ID or fail.

        Raises:
            ExecutionNotFoundError: If execution not found
        """
        execution = self.get_by_id(execution_id)
        if execution is None:
            raise ExecutionNotFoundError(f"Execution {execution_id} not found")
        return execution

    def _get_for_update(self, execution_id: UUID) -> Execution:
        execution = (
            self.db.query(Execution)
            .filter(Execution.id == execution_id)
            .with_for_update()
            .first()
        )
        if execution is None:
            raise ExecutionNotFoundError(f"Execution {execution_id} not found")
        return execution

    def mark_processing(self, execution_id: UUID, started_at: Optional[datetime] = None) -> Execution:
        """
        Claim a PENDING execution (PENDING → PROCESSING).

        The transition and started_at are written once; claiming an execution
        that is already PROCESSING (a restarted dispatcher) keeps both.

        Args:
            execution_id: Execution UUID
            started_at: Start time (defaults to now)

        Returns:
            Execution: Updated execution instance
        """
        execution = self._get_for_update(execution_id)
        if execution.status != ExecutionStatus.PENDING:
            logger.debug(f"Execution {execution_id} already {execution.status}, claim ignored")
            self.db.rollback()
            self.db.refresh(execution)
            return execution

        ExecutionStateMachine.validate_transition(execution.status, ExecutionStatus.PROCESSING)
        execution.status = ExecutionStatus.PROCESSING
        execution.started_at = started_at or utcnow()
        self.db.commit()
        self.db.refresh(execution)
        return execution

    def record_item(self, execution_id: UUID, outcome: ItemOutcome) -> Execution:
        """
        Append or overwrite the result of one item and recompute progress.

        Args:
            execution_id: Execution UUID
            outcome: Item outcome to record

        Returns:
            Execution: Updated execution instance
        """
        execution = self._get_for_update(execution_id)
        if ExecutionStateMachine.is_terminal(execution.status):
            logger.debug(f"Execution {execution_id} is terminal, item {outcome.index} ignored")
            self.db.rollback()
            self.db.refresh(execution)
            return execution
        if not 0 <= outcome.index < execution.total_items:
            raise ValueError(
                f"Item index {outcome.index} out of range for execution {execution_id}"
            )

        result = next((r for r in execution.results if r.index == outcome.index), None)
        if result is None:
            result = ItemResult(index=outcome.index)
            execution.results.append(result)

        result.status = outcome.status
        result.artifact_ref = outcome.artifact_ref
        result.media_type = outcome.media_type
        result.error_message = outcome.error_message
        result.failure_kind = outcome.failure_kind
        result.attempts = outcome.attempts
        result.processing_time_ms = outcome.processing_time_ms
        result.completed_at = utcnow()

        # Progress never decreases while processing
        progress = compute_progress(len(execution.results), execution.total_items)
        execution.progress = max(execution.progress, progress)
        # Also marks the execution as live for the stale sweep
        execution.updated_at = utcnow()

        self.db.commit()
        self.db.refresh(execution)
        return execution

    def finish(
        self,
        execution_id: UUID,
        status: ExecutionStatus,
        error: Optional[str] = None,
        finished_at: Optional[datetime] = None,
    ) -> Execution:
        """
        Make an execution terminal.

        A second call on a terminal execution is a no-op.

        Args:
            execution_id: Execution UUID
            status: COMPLETED or FAILED
            error: Job-level failure summary (FAILED only)
            finished_at: Finish time (defaults to now)

        Returns:
            Execution: Updated execution instance

        Raises:
            InvalidStateTransitionError: If status is not reachable from the current one
        """
        execution = self._get_for_update(execution_id)
        if ExecutionStateMachine.is_terminal(execution.status):
            logger.debug(f"Execution {execution_id} already {execution.status}, finish ignored")
            self.db.rollback()
            self.db.refresh(execution)
            return execution

        ExecutionStateMachine.validate_transition(execution.status, status)
        execution.status = status
        execution.error = error if status == ExecutionStatus.FAILED else None
        execution.finished_at = finished_at or utcnow()
        if status == ExecutionStatus.COMPLETED:
            execution.progress = 100
        execution.encrypted_credential = None
        self.db.commit()
        self.db.refresh(execution)
        return execution

    def request_cancel(self, execution_id: UUID) -> Execution:
        """
        Set the cancellation flag observed by the dispatcher.

        A terminal execution is returned unchanged; callers check its status.

        Args:
            execution_id: Execution UUID

        Returns:
            Execution: Updated execution instance
        """
        execution = self._get_for_update(execution_id)
        if ExecutionStateMachine.is_terminal(execution.status):
            logger.debug(f"Execution {execution_id} already {execution.status}, cancel ignored")
            self.db.rollback()
            self.db.refresh(execution)
            return execution

        execution.cancel_requested = True
        self.db.commit()
        self.db.refresh(execution)
        return execution

    def is_cancel_requested(self, execution_id: UUID) -> bool:
        """
        Read the cancellation flag.

        Args:
            execution_id: Execution UUID

        Returns:
            bool: True if cancellation was requested
        """
        flag = (
            self.db.query(Execution.cancel_requested)
            .filter(Execution.id == execution_id)
            .scalar()
        )
        if flag is None:
            raise ExecutionNotFoundError(f"Execution {execution_id} not found")
        return bool(flag)

    def find_stale_unfinished(self, stale_before: datetime, limit: int = 100) -> List[UUID]:
        """
        Find PENDING or PROCESSING executions nobody has touched recently.

        Args:
            stale_before: Executions last updated before this time are returned
            limit: Maximum number of ids to return

        Returns:
            List[UUID]: Execution ids, oldest first
        """
        rows = (
            self.db.query(Execution.id)
            .filter(
                Execution.status.in_([ExecutionStatus.PENDING, ExecutionStatus.PROCESSING]),
                Execution.updated_at < stale_before,
            )
            .order_by(Execution.updated_at)
            .limit(limit)
            .all()
        )
        return [row[0] for row in rows]
