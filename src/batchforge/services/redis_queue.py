"""Redis-based execution queue feeding batch workers."""
import time
from typing import Callable, Optional
from uuid import UUID
from redis import Redis


class RedisQueue:
    """
    FIFO queue of execution ids.

    Backed by a Redis sorted set scored by enqueue time, so the oldest
    submission is dequeued first and re-enqueueing an id never duplicates it.
    """

    def __init__(
        self,
        redis: Redis,
        queue_name: str = "executions",
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize Redis queue.

        Args:
            redis: Redis client instance
            queue_name: Name of the queue (default: "executions")
            clock: Score source, injectable for tests
        """
        self.redis = redis
        self.name = queue_name
        self.queue_name = f"batchforge:queue:{queue_name}"
        self._clock = clock

    def enqueue(self, execution_id: UUID) -> bool:
        """
        Add an execution to the tail of the queue.

        Args:
            execution_id: Execution UUID

        Returns:
            bool: False if the id was already queued
        """
        # NX keeps the original position when an id is enqueued twice
        return bool(self.redis.zadd(self.queue_name, {str(execution_id): self._clock()}, nx=True))

    def dequeue(self) -> Optional[UUID]:
        """
        Remove and return the oldest execution in the queue.

        Returns:
            Optional[UUID]: Execution ID if available, None if queue empty
        """
        result = self.redis.zpopmin(self.queue_name, count=1)

        if result:
            execution_id_str, _score = result[0]
            return UUID(execution_id_str)
        return None

    def get_queue_length(self) -> int:
        """Get number of executions waiting in the queue."""
        return self.redis.zcard(self.queue_name)
