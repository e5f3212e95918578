"""Execution API endpoints."""
from uuid import UUID
from fastapi import APIRouter, Depends, HTTPException, status
from batchforge.api.deps import get_execution_service
from batchforge.api.schemas.execution import (
    BatchSubmit,
    CancelResponse,
    CostEstimateResponse,
    ExecutionResponse,
    SubmitResponse,
)
from batchforge.api.schemas.response import StandardResponse, ResponseCodes
from batchforge.config import get_settings
from batchforge.services.execution_service import ExecutionService
from batchforge.services.prompt_parser import estimate_cost
from batchforge.core.exceptions import ExecutionNotFoundError, InvalidStateTransitionError

router = APIRouter()


def _not_found(e: ExecutionNotFoundError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail={
            "data": None,
            "code": ResponseCodes.EXECUTION_NOT_FOUND,
            "httpStatus": "NOT_FOUND",
            "description": str(e)
        },
    )


@router.post(
    "/executions",
    response_model=StandardResponse[SubmitResponse],
    status_code=status.HTTP_202_ACCEPTED,
)
async def submit_execution(
    batch: BatchSubmit,
    service: ExecutionService = Depends(get_execution_service),
) -> StandardResponse[SubmitResponse]:
    """
    Submit a batch.

    - Records a PENDING execution and returns its id immediately
    - A worker picks it up asynchronously
    - Items may be sent as a list or as blank-line separated prompts_text
    - Includes the estimated provider cost
    """
    execution = service.submit(batch)
    estimate = estimate_cost(execution.total_items, batch.params.model or get_settings().DEFAULT_MODEL)
    return StandardResponse(
        data=SubmitResponse(
            execution_id=execution.id,
            status=execution.status,
            estimated_cost=CostEstimateResponse.model_validate(estimate),
        ),
        code=ResponseCodes.EXECUTION_SUBMITTED,
        httpStatus="ACCEPTED",
        description="Execution submitted successfully"
    )


@router.get("/executions/{execution_id}", response_model=StandardResponse[ExecutionResponse])
async def get_execution(
    execution_id: UUID,
    service: ExecutionService = Depends(get_execution_service),
) -> StandardResponse[ExecutionResponse]:
    """
    Get execution by ID.

    Returns the full record: status, progress, item results, error and timestamps.
    """
    try:
        execution = service.get_execution(execution_id)
    except ExecutionNotFoundError as e:
        raise _not_found(e)

    return StandardResponse(
        data=ExecutionResponse.model_validate(execution),
        code=ResponseCodes.EXECUTION_RETRIEVED,
        httpStatus="OK",
        description="Execution retrieved successfully"
    )


@router.post("/executions/{execution_id}/cancel", response_model=StandardResponse[CancelResponse])
async def cancel_execution(
    execution_id: UUID,
    service: ExecutionService = Depends(get_execution_service),
) -> StandardResponse[CancelResponse]:
    """
    Request cancellation of an execution.

    - Returns immediately; the item in flight is allowed to finish
    - Can only cancel non-terminal executions
    """
    try:
        execution = service.cancel_execution(execution_id)
    except ExecutionNotFoundError as e:
        raise _not_found(e)
    except InvalidStateTransitionError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={
                "data": None,
                "code": ResponseCodes.EXECUTION_INVALID_TRANSITION,
                "httpStatus": "BAD_REQUEST",
                "description": str(e)
            },
        )

    return StandardResponse(
        data=CancelResponse(
            execution_id=execution.id,
            status=execution.status,
            cancel_requested=execution.cancel_requested,
            message=f"Cancellation requested for execution {execution_id}",
        ),
        code=ResponseCodes.EXECUTION_CANCEL_REQUESTED,
        httpStatus="OK",
        description="Cancellation requested successfully"
    )
