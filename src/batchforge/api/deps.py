"""API dependencies for FastAPI."""
from typing import Annotated
from fastapi import Depends
from sqlalchemy.orm import Session
from redis import Redis
from batchforge.config import get_settings
from batchforge.core.database import get_db
from batchforge.core.redis import get_redis
from batchforge.services.execution_service import ExecutionService
from batchforge.services.redis_queue import RedisQueue


def get_redis_client() -> Redis:
    """
    Dependency to get Redis client.

    Returns:
        Redis: Redis client instance
    """
    return get_redis()


def get_queue(redis: Annotated[Redis, Depends(get_redis_client)]) -> RedisQueue:
    """
    Dependency to get the execution queue.

    Returns:
        RedisQueue: Queue workers pull executions from
    """
    return RedisQueue(redis, get_settings().QUEUE_NAME)


def get_execution_service(
    db: Annotated[Session, Depends(get_db)],
    queue: Annotated[RedisQueue, Depends(get_queue)],
) -> ExecutionService:
    """
    Dependency to get ExecutionService instance with the queue.

    Args:
        db: Database session (injected)
        queue: Execution queue (injected)

    Returns:
        ExecutionService: Execution service instance
    """
    return ExecutionService(db, queue=queue)
