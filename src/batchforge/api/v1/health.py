"""Health check API endpoint."""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from redis import Redis
from pydantic import BaseModel
from batchforge.api.deps import get_db, get_redis_client
from batchforge.api.schemas.response import StandardResponse, ResponseCodes
from batchforge.core.redis import ping_redis

router = APIRouter()


class HealthData(BaseModel):
    """Health check data model."""

    status: str
    database: str
    redis: str


@router.get("/health", response_model=StandardResponse[HealthData])
async def health_check(
    db: Session = Depends(get_db),
    redis: Redis = Depends(get_redis_client),
) -> StandardResponse[HealthData]:
    """
    Health check endpoint.

    Returns:
        StandardResponse: Database and Redis connectivity
    """
    try:
        db.execute(text("SELECT 1"))
        db_status = "connected"
    except SQLAlchemyError:
        db_status = "disconnected"

    redis_status = "connected" if ping_redis(redis) else "disconnected"

    overall_status = "healthy"
    if db_status != "connected" or redis_status != "connected":
        overall_status = "unhealthy"

    return StandardResponse(
        data=HealthData(status=overall_status, database=db_status, redis=redis_status),
        code=ResponseCodes.HEALTH_OK,
        httpStatus="OK",
        description="Health check completed successfully",
    )
