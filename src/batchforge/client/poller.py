"""Status poller: follows one execution until it is terminal.

Polling is driven by :class:`ScheduledTask` so tests can inject a fake
sleep and clock instead of waiting on real timers. Every call names the
execution it works on; a poller holds no "current job".
"""
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Optional
from uuid import UUID

import httpx

from batchforge.client.api_client import ExecutionsApiClient
from batchforge.config import get_settings
from batchforge.core.enums import ExecutionStatus
from batchforge.models.base import as_utc
from batchforge.services.state_machine import ExecutionStateMachine

logger = logging.getLogger(__name__)


class ScheduledTask:
    """
    Calls ``callback`` every ``interval`` seconds until it returns True or
    the task is cancelled.
    """

    def __init__(
        self,
        callback: Callable[[], Awaitable[bool]],
        interval: float,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.callback = callback
        self.interval = interval
        self._sleep = sleep
        self._cancelled = False
        self._task: Optional[asyncio.Task] = None
        self.runs = 0

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    async def run(self) -> None:
        """Run in the current task until done or cancelled."""
        while not self._cancelled:
            self.runs += 1
            if await self.callback():
                return
            if self._cancelled:
                return
            await self._sleep(self.interval)

    def start(self) -> asyncio.Task:
        """Run in a background task."""
        if self._task is None:
            self._task = asyncio.create_task(self.run())
        return self._task

    def cancel(self) -> None:
        """Stop after the current tick; no further callback runs."""
        self._cancelled = True
        if self._task is not None and not self._task.done():
            self._task.cancel()


@dataclass(frozen=True)
class PollSnapshot:
    """What a reader sees of an execution at one poll."""

    execution_id: UUID
    status: ExecutionStatus
    progress: int
    total: int
    succeeded: int
    failed: int
    error: Optional[str]
    elapsed_seconds: Optional[float]
    estimated_remaining_seconds: Optional[float]

    @property
    def done(self) -> int:
        return self.succeeded + self.failed

    @property
    def is_terminal(self) -> bool:
        return ExecutionStateMachine.is_terminal(self.status)


def _parse_time(value: Any) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return as_utc(value)
    # fromisoformat only accepts a trailing "Z" on newer interpreters
    return as_utc(datetime.fromisoformat(str(value).replace("Z", "+00:00")))


def derive_snapshot(record: Dict[str, Any], now: datetime) -> PollSnapshot:
    """
    Derive elapsed and remaining time from an execution record.

    ``elapsed = now - started_at`` (frozen at ``finished_at`` once terminal).
    ``estimated_remaining = elapsed / done * (total - done)``, omitted while
    no item has a result and once the execution is terminal.

    Args:
        record: Execution record as returned by the status endpoint
        now: Current time

    Returns:
        PollSnapshot: Derived snapshot
    """
    status = ExecutionStatus(record["status"])
    results = record.get("results") or []
    succeeded = record.get("succeeded")
    failed = record.get("failed")
    if succeeded is None or failed is None:
        succeeded = sum(1 for r in results if r.get("status") == "completed")
        failed = sum(1 for r in results if r.get("status") == "failed")
    total = record.get("total_items") or len((record.get("input") or {}).get("items") or [])

    started_at = _parse_time(record.get("started_at"))
    finished_at = _parse_time(record.get("finished_at"))
    terminal = ExecutionStateMachine.is_terminal(status)

    elapsed = None
    if started_at is not None:
        end = finished_at if terminal and finished_at is not None else as_utc(now)
        elapsed = max((end - started_at).total_seconds(), 0.0)

    done = succeeded + failed
    remaining = None
    if elapsed is not None and done > 0 and not terminal:
        remaining = elapsed / max(1, done) * max(total - done, 0)

    return PollSnapshot(
        execution_id=UUID(str(record["id"])),
        status=status,
        progress=int(record.get("progress") or 0),
        total=total,
        succeeded=succeeded,
        failed=failed,
        error=record.get("error"),
        elapsed_seconds=elapsed,
        estimated_remaining_seconds=remaining,
    )


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class StatusPoller:
    """Polls the status endpoint at a fixed interval until a terminal status is read."""

    def __init__(
        self,
        client: ExecutionsApiClient,
        interval: Optional[float] = None,
        clock: Callable[[], datetime] = _utcnow,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        on_update: Optional[Callable[[PollSnapshot], None]] = None,
    ):
        """
        Initialize poller.

        Args:
            client: Executions API client
            interval: Seconds between polls (defaults to POLL_INTERVAL_SECONDS)
            clock: Current time source
            sleep: Sleep used between polls
            on_update: Called with every snapshot
        """
        self.client = client
        self.interval = interval if interval is not None else get_settings().POLL_INTERVAL_SECONDS
        self._clock = clock
        self._sleep = sleep
        self.on_update = on_update

    def schedule(self, execution_id: UUID) -> "PollHandle":
        """
        Build the polling task for one execution without starting it.

        Returns:
            PollHandle: Task plus the last snapshot it read
        """
        handle = PollHandle(execution_id)

        async def tick() -> bool:
            try:
                record = await self.client.get(execution_id)
            except httpx.TransportError as e:
                logger.warning(f"Polling execution {execution_id} failed: {type(e).__name__}")
                return False
            except httpx.HTTPStatusError as e:
                # 5xx is retried on the next tick
                if e.response.status_code < 500:
                    raise
                logger.warning(
                    f"Polling execution {execution_id} failed: HTTP {e.response.status_code}"
                )
                return False

            snapshot = derive_snapshot(record, self._clock())
            handle.snapshot = snapshot
            if self.on_update is not None:
                self.on_update(snapshot)
            if snapshot.is_terminal:
                logger.info(
                    f"Execution {execution_id} {snapshot.status}: "
                    f"{snapshot.succeeded} succeeded, {snapshot.failed} failed"
                )
            return snapshot.is_terminal

        handle.task = ScheduledTask(tick, self.interval, sleep=self._sleep)
        return handle

    async def poll_until_terminal(self, execution_id: UUID) -> PollSnapshot:
        """
        Poll until the execution is terminal.

        Returns:
            PollSnapshot: The terminal snapshot

        Raises:
            ExecutionNotFoundError: If the execution does not exist
        """
        handle = self.schedule(execution_id)
        await handle.task.run()
        return handle.snapshot

    def start(self, execution_id: UUID) -> "PollHandle":
        """Poll in the background; cancel with ``handle.task.cancel()``."""
        handle = self.schedule(execution_id)
        handle.task.start()
        return handle

    async def request_cancel(self, execution_id: UUID) -> Dict[str, Any]:
        """
        Ask the service to cancel an execution.

        Advisory: the item in flight finishes, no new item starts. Keep
        polling to observe the terminal state.
        """
        return await self.client.cancel(execution_id)


@dataclass
class PollHandle:
    """One execution being polled."""

    execution_id: UUID
    task: Optional[ScheduledTask] = None
    snapshot: Optional[PollSnapshot] = None
