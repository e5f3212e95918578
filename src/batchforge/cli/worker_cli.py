"""CLI entry point for running batch workers."""
import argparse
import asyncio
import logging
import os
import signal
import socket
import sys
from typing import Optional
from batchforge.config import get_settings
from batchforge.core.redis import close_redis, get_redis
from batchforge.core.security import CredentialResolver
from batchforge.generation.client import GenerationClient
from batchforge.observability.metrics import init_system_info
from batchforge.services.artifact_store import FileSystemArtifactStore
from batchforge.services.rate_limiter import get_rate_limiter
from batchforge.services.redis_queue import RedisQueue
from batchforge.services.retry_policy import RetryPolicy
from batchforge.worker.batch_worker import BatchWorker
from batchforge.worker.item_processor import ItemProcessor
from batchforge.worker.store import ExecutionStore

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


async def run_worker(
    worker_id: Optional[str] = None,
    max_concurrent_executions: Optional[int] = None,
    item_concurrency: Optional[int] = None,
    poll_interval: Optional[float] = None,
) -> None:
    """
    Run a batch worker until SIGINT/SIGTERM.

    Args:
        worker_id: Optional worker ID (auto-generated if not provided)
        max_concurrent_executions: Maximum executions dispatched at once
        item_concurrency: Items processed in parallel within one execution
        poll_interval: Seconds to wait when the queue is empty
    """
    settings = get_settings()

    if not worker_id:
        worker_id = f"worker-{socket.gethostname()}-{os.getpid()}"

    logger.info(f"Starting worker: {worker_id}")
    init_system_info(settings.APP_VERSION)

    if not settings.ENCRYPTION_KEY:
        # Not fatal: every execution will fail with a credential error
        logger.warning("ENCRYPTION_KEY is not set; credentials cannot be decrypted")

    generation_client = GenerationClient()
    processor = ItemProcessor(
        client=generation_client,
        artifact_store=FileSystemArtifactStore.from_settings(),
        retry_policy=RetryPolicy.from_settings(),
        rate_limiter=get_rate_limiter(),
    )
    worker = BatchWorker(
        worker_id=worker_id,
        queue=RedisQueue(get_redis(), settings.QUEUE_NAME),
        store=ExecutionStore(),
        processor=processor,
        credential_resolver=CredentialResolver(),
        max_concurrent_executions=max_concurrent_executions or settings.WORKER_MAX_CONCURRENT_EXECUTIONS,
        poll_interval=poll_interval or settings.WORKER_POLL_INTERVAL,
        item_concurrency=item_concurrency or settings.ITEM_CONCURRENCY,
    )

    # Setup signal handlers for graceful shutdown
    stop_event = asyncio.Event()

    def signal_handler(signum, frame):
        logger.info(f"Received signal {signum}, initiating graceful shutdown...")
        stop_event.set()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    worker_task = asyncio.create_task(worker.start())

    await stop_event.wait()

    # Graceful shutdown
    logger.info("Stopping worker...")
    await worker.stop(timeout=30.0)
    await worker_task

    await generation_client.aclose()
    close_redis()
    logger.info(
        f"Worker stopped: {worker.executions_processed} processed, "
        f"{worker.executions_completed} completed, {worker.executions_failed} failed"
    )


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run a BatchForge worker")
    parser.add_argument("--worker-id", help="Worker identifier (default: worker-<host>-<pid>)")
    parser.add_argument("--max-executions", type=int, help="Executions dispatched at once")
    parser.add_argument("--item-concurrency", type=int, help="Items processed in parallel per execution")
    parser.add_argument("--poll-interval", type=float, help="Seconds between polls of an empty queue")
    return parser.parse_args(argv)


def main(argv=None):
    """Main entry point."""
    args = parse_args(argv)
    try:
        asyncio.run(run_worker(
            worker_id=args.worker_id,
            max_concurrent_executions=args.max_executions,
            item_concurrency=args.item_concurrency,
            poll_interval=args.poll_interval,
        ))
    except KeyboardInterrupt:
        logger.info("Worker interrupted")
    except Exception as e:
        logger.error(f"Worker error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
