"""Test factory for creating Execution instances."""
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from sqlalchemy.orm import Session
from batchforge.models.execution import Execution
from batchforge.core.enums import ExecutionStatus


def create_execution(
    db: Session,
    prompts: Optional[List[str]] = None,
    params: Optional[Dict[str, Any]] = None,
    encrypted_credential: Optional[Dict[str, str]] = None,
    status: ExecutionStatus = ExecutionStatus.PENDING,
    **kwargs
) -> Execution:
    """
    Factory function to create an Execution for testing.

    Args:
        db: Database session
        prompts: Item prompts (defaults to three prompts)
        params: Shared generation parameters
        encrypted_credential: Encrypted provider credential
        status: Initial execution status
        **kwargs: Additional fields to set on the execution

    Returns:
        Execution: Created execution instance
    """
    if prompts is None:
        prompts = ["A lighthouse at dusk", "A red bicycle", "A bowl of ramen"]

    if status != ExecutionStatus.PENDING and "started_at" not in kwargs:
        kwargs["started_at"] = datetime.now(timezone.utc)

    execution = Execution(
        status=status,
        progress=kwargs.pop("progress", 0),
        input={"items": [{"prompt": p} for p in prompts], "params": params or {}},
        total_items=len(prompts),
        encrypted_credential=encrypted_credential,
        **kwargs
    )

    db.add(execution)
    db.commit()
    db.refresh(execution)

    return execution
