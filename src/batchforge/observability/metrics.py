"""Prometheus metrics for BatchForge."""
from typing import Optional
from prometheus_client import Counter, Gauge, Histogram, Info


# Execution metrics
executions_submitted_total = Counter(
    'batchforge_executions_submitted_total',
    'Total number of batch executions submitted',
)

executions_finished_total = Counter(
    'batchforge_executions_finished_total',
    'Total number of batch executions that reached a terminal state',
    ['status']
)

execution_duration_seconds = Histogram(
    'batchforge_execution_duration_seconds',
    'Batch execution duration in seconds',
    ['status'],
    buckets=[1.0, 5.0, 15.0, 30.0, 60.0, 120.0, 300.0, 600.0, 1800.0, 3600.0]
)

executions_in_progress = Gauge(
    'batchforge_executions_in_progress',
    'Number of executions currently being dispatched in this process'
)

# Item metrics
items_processed_total = Counter(
    'batchforge_items_processed_total',
    'Total number of batch items processed',
    ['status']
)

item_duration_seconds = Histogram(
    'batchforge_item_duration_seconds',
    'Item processing duration in seconds, retries included',
    ['status'],
    buckets=[0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0]
)

generation_attempts_total = Counter(
    'batchforge_generation_attempts_total',
    'Total number of provider calls by outcome',
    ['outcome']
)

# Queue metrics
queue_length = Gauge(
    'batchforge_queue_length',
    'Number of executions waiting in the queue',
    ['queue_name']
)

# System info
system_info = Info(
    'batchforge_system',
    'BatchForge system information'
)


def update_queue_metrics(queue: Optional["RedisQueue"] = None) -> None:
    """
    Update queue gauge metrics.

    Args:
        queue: Optional RedisQueue instance
    """
    if not queue:
        return

    queue_length.labels(queue_name=queue.name).set(queue.get_queue_length())


def record_execution_submitted() -> None:
    """Record execution submission metric."""
    executions_submitted_total.inc()


def record_execution_finished(status: str, duration: Optional[float]) -> None:
    """Record terminal execution metric."""
    executions_finished_total.labels(status=status).inc()
    if duration is not None:
        execution_duration_seconds.labels(status=status).observe(duration)


def record_item_processed(status: str, duration_ms: int) -> None:
    """Record item outcome metric."""
    items_processed_total.labels(status=status).inc()
    item_duration_seconds.labels(status=status).observe(duration_ms / 1000.0)


def record_generation_attempt(outcome: str) -> None:
    """Record one provider call (success or failure kind)."""
    generation_attempts_total.labels(outcome=outcome).inc()


def init_system_info(version: str) -> None:
    """
    Initialize system information metric.

    Args:
        version: Application version
    """
    system_info.info({
        'version': version,
        'name': 'BatchForge'
    })
