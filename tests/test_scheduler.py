"""
Wake scheduler tests
"""
import asyncio
from datetime import timedelta

import pytest

from reminder_flows.core import WakeScheduler
from reminder_flows.models import FlowExecution, ExecutionStatus
from reminder_flows.storage.repository import InMemoryExecutionRepository

from conftest import NOW


class RecordingHandler:
    def __init__(self, fail_for=(), locked=()):
        self.calls = []
        self.fail_for = set(fail_for)
        self.locked = set(locked)

    async def __call__(self, execution_id, now):
        self.calls.append((execution_id, now))
        if execution_id in self.fail_for:
            raise RuntimeError(f"cannot advance {execution_id}")
        if execution_id in self.locked:
            return None
        return execution_id


@pytest.fixture
def repository():
    return InMemoryExecutionRepository()


@pytest.fixture
def handler():
    return RecordingHandler()


@pytest.fixture
def wake_scheduler(repository, handler):
    scheduler = WakeScheduler(repository, interval=0.05, concurrency=2)
    scheduler.set_handler(handler)
    return scheduler


async def _store(repository, execution_id, wake_at, status=ExecutionStatus.ACTIVE):
    execution = FlowExecution(
        id=execution_id,
        flow_id="flow-1",
        entity_id=f"loan-{execution_id}",
        status=status,
        next_execution_at=wake_at
    )
    await repository.create_if_absent(execution)
    return execution


class TestWakeQueue:

    @pytest.mark.asyncio
    async def test_pop_due_in_wake_order(self, wake_scheduler):
        await wake_scheduler.enqueue("late", NOW + timedelta(hours=2))
        await wake_scheduler.enqueue("early", NOW + timedelta(hours=1))
        await wake_scheduler.enqueue("future", NOW + timedelta(days=1))

        assert await wake_scheduler.pop_due(NOW) == []
        assert await wake_scheduler.pop_due(NOW + timedelta(hours=3)) == ["early", "late"]
        assert await wake_scheduler.next_wake_time() == NOW + timedelta(days=1)

    @pytest.mark.asyncio
    async def test_cancel_is_lazy(self, wake_scheduler):
        await wake_scheduler.enqueue("a", NOW)
        assert await wake_scheduler.cancel("a") is True
        assert await wake_scheduler.cancel("a") is False

        assert await wake_scheduler.pop_due(NOW) == []
        assert await wake_scheduler.next_wake_time() is None

    @pytest.mark.asyncio
    async def test_re_enqueue_replaces_previous_wake(self, wake_scheduler):
        await wake_scheduler.enqueue("a", NOW)
        await wake_scheduler.enqueue("a", NOW + timedelta(hours=1))

        assert await wake_scheduler.pop_due(NOW) == []
        assert await wake_scheduler.pop_due(NOW + timedelta(hours=1)) == ["a"]

    @pytest.mark.asyncio
    async def test_reload_from_storage(self, wake_scheduler, repository):
        await _store(repository, "waiting", NOW + timedelta(days=3))
        await _store(repository, "paused", NOW, status=ExecutionStatus.PAUSED)
        await _store(repository, "unscheduled", None)

        assert await wake_scheduler.reload() == 1
        assert await wake_scheduler.next_wake_time() == NOW + timedelta(days=3)
        assert wake_scheduler.stats()["pending_wakes"] == 1


class TestTick:

    @pytest.mark.asyncio
    async def test_tick_merges_queue_and_storage(self, wake_scheduler, repository, handler):
        await wake_scheduler.enqueue("queued", NOW)
        await _store(repository, "stored", NOW - timedelta(minutes=1))
        await _store(repository, "queued", NOW)

        result = await wake_scheduler.tick(NOW)

        called = sorted(execution_id for execution_id, _ in handler.calls)
        assert called == ["queued", "stored"]
        assert sorted(result.advanced) == ["queued", "stored"]
        assert all(now == NOW for _, now in handler.calls)

    @pytest.mark.asyncio
    async def test_tick_skips_locked_rows(self, wake_scheduler, repository, handler):
        await _store(repository, "locked", NOW)
        await repository.claim("locked", "other-worker", NOW, timedelta(minutes=5))

        result = await wake_scheduler.tick(NOW)

        assert handler.calls == []
        assert result.total == 0

    @pytest.mark.asyncio
    async def test_failures_are_isolated(self, repository):
        handler = RecordingHandler(fail_for={"bad"})
        scheduler = WakeScheduler(repository)
        scheduler.set_handler(handler)
        await scheduler.enqueue("bad", NOW)
        await scheduler.enqueue("good", NOW)

        result = await scheduler.tick(NOW)

        assert result.failed == ["bad"]
        assert result.advanced == ["good"]
        assert scheduler.stats()["total_failed"] == 1
        assert scheduler.stats()["ticks"] == 1

    @pytest.mark.asyncio
    async def test_lock_conflicts_are_counted_as_skipped(self, repository):
        scheduler = WakeScheduler(repository)
        scheduler.set_handler(RecordingHandler(locked={"busy"}))
        await scheduler.enqueue("busy", NOW)
        await scheduler.enqueue("free", NOW)

        result = await scheduler.tick(NOW)

        assert result.advanced == ["free"]
        assert result.skipped == ["busy"]
        assert scheduler.stats()["total_advanced"] == 1
        assert scheduler.stats()["total_skipped"] == 1

    @pytest.mark.asyncio
    async def test_concurrency_is_bounded(self, repository):
        running = 0
        peak = 0

        async def slow(execution_id, now):
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await asyncio.sleep(0.01)
            running -= 1
            return execution_id

        scheduler = WakeScheduler(repository, concurrency=2)
        scheduler.set_handler(slow)
        for i in range(6):
            await scheduler.enqueue(f"x{i}", NOW)

        result = await scheduler.tick(NOW)

        assert len(result.advanced) == 6
        assert peak == 2

    @pytest.mark.asyncio
    async def test_tick_without_handler(self, repository):
        with pytest.raises(RuntimeError):
            await WakeScheduler(repository).tick(NOW)


class TestLoop:

    @pytest.mark.asyncio
    async def test_start_and_stop(self, wake_scheduler, handler):
        await wake_scheduler.enqueue("a", NOW)

        await wake_scheduler.start()
        assert wake_scheduler.is_running
        await asyncio.sleep(0.15)
        await wake_scheduler.stop()

        assert not wake_scheduler.is_running
        assert [execution_id for execution_id, _ in handler.calls] == ["a"]
        assert wake_scheduler.stats()["ticks"] >= 2

    @pytest.mark.asyncio
    async def test_stop_when_not_started(self, wake_scheduler):
        await wake_scheduler.stop()
        assert not wake_scheduler.is_running

    @pytest.mark.asyncio
    async def test_wake_runs_a_tick_before_the_interval(self, repository, handler):
        scheduler = WakeScheduler(repository, interval=30.0)
        scheduler.set_handler(handler)

        await scheduler.start()
        await asyncio.sleep(0.05)
        await scheduler.enqueue("new", NOW)
        scheduler.wake()
        await asyncio.sleep(0.05)
        await scheduler.stop()

        assert [execution_id for execution_id, _ in handler.calls] == ["new"]
        assert scheduler.stats()["ticks"] == 2
