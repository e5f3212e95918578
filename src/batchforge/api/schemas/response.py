"""Standard API response schemas."""
from typing import Generic, TypeVar
from pydantic import BaseModel, Field

T = TypeVar('T')


class StandardResponse(BaseModel, Generic[T]):
    """Standard API response wrapper."""

    data: T = Field(..., description="Response data")
    code: str = Field(..., description="Response code")
    httpStatus: str = Field(..., description="HTTP status text")
    description: str = Field(..., description="Response description")

    model_config = {"from_attributes": True}


class ResponseCodes:
    """Standard response codes."""

    # Success codes (2xx)
    EXECUTION_SUBMITTED = "EXEC_0001"
    EXECUTION_RETRIEVED = "EXEC_0002"
    EXECUTION_CANCEL_REQUESTED = "EXEC_0003"

    HEALTH_OK = "HEALTH_0001"

    # Error codes (4xx)
    EXECUTION_NOT_FOUND = "EXEC_4001"
    EXECUTION_INVALID_TRANSITION = "EXEC_4003"
