"""
Wake scheduler for waiting executions
"""
import asyncio
import heapq
import itertools
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional

from ..clock import utcnow
from ..storage.repository import ExecutionRepository


logger = logging.getLogger(__name__)


AdvanceHandler = Callable[[str, datetime], Awaitable[Any]]


@dataclass(order=True)
class ScheduledWake:
    """Heap entry: wake ``execution_id`` at ``wake_at``"""
    wake_at: datetime
    seq: int
    execution_id: str = field(compare=False)


@dataclass
class TickResult:
    """Outcome of one scheduler tick"""
    advanced: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.advanced) + len(self.failed) + len(self.skipped)


class WakeScheduler:
    """
    Time-ordered queue of execution wake-ups

    The heap is a cache of the durable ``next_execution_at`` column: each
    tick also reads due rows from storage, so wakes lost to a restart or
    enqueued by another worker are still picked up. Cancellation is lazy;
    stale heap entries are skipped when popped.
    """

    def __init__(
        self,
        repository: ExecutionRepository,
        interval: float = 60.0,
        concurrency: int = 10,
        batch_size: int = 100
    ):
        self.repository = repository
        self.interval = interval
        self.concurrency = concurrency
        self.batch_size = batch_size
        self.handler: Optional[AdvanceHandler] = None

        self._heap: List[ScheduledWake] = []
        self._pending: Dict[str, datetime] = {}
        self._seq = itertools.count()
        self._lock = asyncio.Lock()
        self._stop_event = asyncio.Event()
        self._wake_event = asyncio.Event()
        self._loop_task: Optional[asyncio.Task] = None

        self.last_tick_at: Optional[datetime] = None
        self.ticks = 0
        self.total_advanced = 0
        self.total_failed = 0
        self.total_skipped = 0

    def set_handler(self, handler: AdvanceHandler):
        """Callback invoked for every due execution"""
        self.handler = handler

    async def enqueue(self, execution_id: str, wake_at: datetime):
        async with self._lock:
            self._pending[execution_id] = wake_at
            heapq.heappush(self._heap, ScheduledWake(wake_at, next(self._seq), execution_id))
        logger.debug(f"Scheduled execution {execution_id} at {wake_at.isoformat()}")

    async def cancel(self, execution_id: str) -> bool:
        async with self._lock:
            return self._pending.pop(execution_id, None) is not None

    async def pop_due(self, now: datetime = None) -> List[str]:
        now = now or utcnow()
        due = []
        async with self._lock:
            while self._heap and self._heap[0].wake_at <= now:
                entry = heapq.heappop(self._heap)
                if self._pending.get(entry.execution_id) != entry.wake_at:
                    continue
                del self._pending[entry.execution_id]
                due.append(entry.execution_id)
        return due

    async def next_wake_time(self) -> Optional[datetime]:
        async with self._lock:
            while self._heap and self._pending.get(self._heap[0].execution_id) != self._heap[0].wake_at:
                heapq.heappop(self._heap)
            return self._heap[0].wake_at if self._heap else None

    async def reload(self) -> int:
        """Rebuild the heap from storage"""
        executions = await self.repository.list_scheduled()
        async with self._lock:
            self._heap = []
            self._pending = {}
            for execution in executions:
                self._pending[execution.id] = execution.next_execution_at
                self._heap.append(
                    ScheduledWake(execution.next_execution_at, next(self._seq), execution.id)
                )
            heapq.heapify(self._heap)

        logger.info(f"Scheduler reloaded {len(executions)} pending wakes")
        return len(executions)

    async def tick(self, now: datetime = None) -> TickResult:
        """Advance every due execution; failures are isolated per execution"""
        if self.handler is None:
            raise RuntimeError("Scheduler has no advance handler")

        now = now or utcnow()
        due_ids = await self.pop_due(now)

        for execution in await self.repository.list_due(now, limit=self.batch_size):
            if execution.id not in due_ids:
                due_ids.append(execution.id)

        result = TickResult()
        semaphore = asyncio.Semaphore(self.concurrency)

        async def run(execution_id: str):
            async with semaphore:
                try:
                    # None means another worker holds the execution
                    if await self.handler(execution_id, now) is None:
                        result.skipped.append(execution_id)
                    else:
                        result.advanced.append(execution_id)
                except Exception as e:
                    logger.error(
                        f"Advancing execution {execution_id} failed: {e}",
                        exc_info=True,
                        extra={"execution_id": execution_id}
                    )
                    result.failed.append(execution_id)

        await asyncio.gather(*(run(execution_id) for execution_id in due_ids))

        self.ticks += 1
        self.last_tick_at = now
        self.total_advanced += len(result.advanced)
        self.total_failed += len(result.failed)
        self.total_skipped += len(result.skipped)

        if result.total:
            logger.info(
                f"Tick processed {result.total} executions "
                f"({len(result.failed)} failed, {len(result.skipped)} skipped)"
            )
        return result

    async def start(self):
        if self._loop_task:
            return

        self._stop_event.clear()
        self._loop_task = asyncio.create_task(self._run_loop())
        logger.info(f"Wake scheduler started (interval {self.interval}s)")

    async def stop(self):
        if not self._loop_task:
            return

        self._stop_event.set()
        self._wake_event.set()
        await self._loop_task
        self._loop_task = None
        logger.info("Wake scheduler stopped")

    def wake(self):
        """Run the next loop tick now instead of after the interval"""
        self._wake_event.set()

    @property
    def is_running(self) -> bool:
        return self._loop_task is not None

    def stats(self) -> Dict[str, Any]:
        return {
            "running": self.is_running,
            "pending_wakes": len(self._pending),
            "ticks": self.ticks,
            "last_tick_at": self.last_tick_at.isoformat() if self.last_tick_at else None,
            "total_advanced": self.total_advanced,
            "total_failed": self.total_failed,
            "total_skipped": self.total_skipped,
            "interval_seconds": self.interval,
            "concurrency": self.concurrency,
        }

    async def _run_loop(self):
        while not self._stop_event.is_set():
            self._wake_event.clear()
            try:
                await self.tick()
            except Exception as e:
                logger.error(f"Scheduler loop error: {e}", exc_info=True)

            try:
                await asyncio.wait_for(self._wake_event.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass
