"""
Execution manager: trigger handling, advancing and admin operations
"""
import asyncio
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from ..clock import utcnow
from ..exceptions import (
    ConfigurationError, ConcurrencyConflict, ExecutionNotFoundError, StateTransitionError
)
from ..integrations.dispatcher import ChannelDispatcher, STEP_CHANNELS, resolve_recipient
from ..integrations.entities import EntityDirectory
from ..integrations.event_bus import EventBus, EXECUTION_EVENTS_TOPIC
from ..models.flow import Flow, Step, StepType, EdgeType
from ..models.execution import (
    DomainEvent, FlowExecution, ExecutionStatus, ExecutionFilter,
    ExecutionEvent, ExecutionEventType
)
from ..storage.repository import FlowRepository, ExecutionRepository
from .conditions import ConditionEvaluator
from .graph import GraphWalker
from .renderer import MessageRenderer
from .scheduler import WakeScheduler


logger = logging.getLogger(__name__)


@dataclass
class StepOutcome:
    """What a step handler decided"""
    edge_type: EdgeType = EdgeType.DEFAULT
    wait_until: Optional[datetime] = None
    finished: bool = False
    details: Dict[str, Any] = field(default_factory=dict)


StepHandler = Callable[[FlowExecution, Step, datetime], Awaitable[StepOutcome]]


class _LeaseClock:
    """Walk start time advanced by the wall time spent walking"""

    def __init__(self, started_at: datetime):
        self.started_at = started_at
        self._started = time.monotonic()

    def now(self) -> datetime:
        return self.started_at + timedelta(seconds=time.monotonic() - self._started)


class ExecutionManager:
    """Creates executions from trigger events and walks them through their flow"""

    def __init__(
        self,
        flow_repository: FlowRepository,
        execution_repository: ExecutionRepository,
        scheduler: WakeScheduler,
        dispatcher: ChannelDispatcher,
        entities: EntityDirectory,
        event_bus: EventBus = None,
        evaluator: ConditionEvaluator = None,
        renderer: MessageRenderer = None,
        walker: GraphWalker = None,
        worker_id: str = "worker",
        lock_lease: timedelta = timedelta(minutes=5),
        admin_lock_wait: float = 10.0
    ):
        self.flow_repository = flow_repository
        self.execution_repository = execution_repository
        self.scheduler = scheduler
        self.dispatcher = dispatcher
        self.entities = entities
        self.event_bus = event_bus
        self.evaluator = evaluator or ConditionEvaluator()
        self.renderer = renderer or MessageRenderer()
        self.walker = walker or GraphWalker()
        self.worker_id = worker_id
        self.lock_lease = lock_lease
        self.admin_lock_wait = admin_lock_wait

        self.step_handlers: Dict[StepType, StepHandler] = {
            StepType.TRIGGER: self._handle_trigger,
            StepType.WAIT: self._handle_wait,
            StepType.SEND_NOTIFICATION: self._handle_send,
            StepType.SEND_EMAIL: self._handle_send,
            StepType.SEND_SMS: self._handle_send,
            StepType.CONDITION: self._handle_condition,
            StepType.END: self._handle_end,
        }

        # Executions an admin call wants the in-flight advance to let go of
        self._stop_requested: Set[str] = set()

        self.scheduler.set_handler(self.advance)

    async def handle_trigger_event(
        self,
        event: DomainEvent,
        now: datetime = None,
        start: bool = True
    ) -> List[FlowExecution]:
        """
        Create (at most once per flow and entity) executions for an event

        With ``start`` the due executions are walked right away; otherwise they
        are only queued and the scheduler's next tick runs them.
        """
        now = now or utcnow()
        flows = await self.flow_repository.list_active_by_trigger(event.event_type)

        created = []
        for flow in flows:
            if not flow.targets(event.entity_id):
                continue
            execution = await self._create_execution(flow, event, now)
            if execution:
                created.append(execution)

        results = []
        for execution in created:
            if not execution.is_due(now):
                results.append(execution)
            elif start:
                try:
                    await self.advance(execution.id, now)
                except Exception as e:
                    logger.error(
                        f"Initial advance of execution {execution.id} failed: {e}",
                        exc_info=True
                    )
                results.append(await self.execution_repository.get(execution.id) or execution)
            else:
                await self.scheduler.enqueue(execution.id, execution.next_execution_at)
                results.append(execution)

        if created and not start:
            self.scheduler.wake()

        logger.info(
            f"Event {event.event_type.value} for entity {event.entity_id} "
            f"created {len(results)} executions"
        )
        return results

    async def advance(self, execution_id: str, now: datetime = None) -> Optional[FlowExecution]:
        """
        Run an execution from its current position until it waits, ends or fails

        A call before the due time or on a paused or finished execution changes
        nothing. Returns None when another worker holds the lock.
        """
        now = now or utcnow()
        execution = await self.execution_repository.get(execution_id)
        if execution is None:
            raise ExecutionNotFoundError(execution_id)
        if not execution.is_due(now):
            logger.debug(f"Execution {execution_id} not due, skipping")
            return execution

        if not await self.execution_repository.claim(
            execution_id, self.worker_id, now, self.lock_lease
        ):
            logger.info(str(ConcurrencyConflict(execution_id)))
            return None

        try:
            # Re-read under the lock; another worker may have moved it already
            execution = await self.execution_repository.get(execution_id)
            if execution is None or not execution.is_due(now):
                return execution

            await self._run(execution, now)
            return execution

        except Exception as e:
            logger.error(f"Execution {execution_id} failed unexpectedly: {e}", exc_info=True)
            await self._fail_unexpected(execution, e, now)
            raise

        finally:
            await self.execution_repository.release(execution_id, self.worker_id)

    async def pause(self, execution_id: str) -> FlowExecution:
        async with self._admin_lock(execution_id) as now:
            execution = await self._get_or_raise(execution_id)
            execution.pause(now)
            await self.execution_repository.update(execution)
            await self.scheduler.cancel(execution_id)

        await self._publish(ExecutionEventType.EXECUTION_PAUSED, execution)
        logger.info(f"Paused execution {execution_id}")
        return execution

    async def resume(self, execution_id: str) -> FlowExecution:
        async with self._admin_lock(execution_id) as now:
            execution = await self._get_or_raise(execution_id)
            execution.resume(now)
            await self.execution_repository.update(execution)
            if execution.next_execution_at:
                await self.scheduler.enqueue(execution_id, execution.next_execution_at)

        await self._publish(ExecutionEventType.EXECUTION_RESUMED, execution)
        logger.info(f"Resumed execution {execution_id}")
        return execution

    async def cancel(self, execution_id: str) -> FlowExecution:
        async with self._admin_lock(execution_id) as now:
            execution = await self._get_or_raise(execution_id)
            execution.cancel(now)
            await self.execution_repository.update(execution)
            await self.scheduler.cancel(execution_id)

        await self._publish(ExecutionEventType.EXECUTION_CANCELLED, execution)
        logger.info(f"Cancelled execution {execution_id}")
        return execution

    async def cancel_for_flow(self, flow_id: str, page_size: int = 100) -> int:
        """Cancel every live execution of a flow (used before deleting it)"""
        cancelled = 0
        for status in (ExecutionStatus.ACTIVE, ExecutionStatus.PAUSED):
            while True:
                # Cancelled rows drop out of the filter, so the first page is always the next one
                executions = await self.execution_repository.list(
                    ExecutionFilter(flow_id=flow_id, status=status, limit=page_size)
                )
                if not executions:
                    break
                for execution in executions:
                    try:
                        await self.cancel(execution.id)
                    except StateTransitionError:
                        logger.debug(f"Execution {execution.id} finished before it could be cancelled")
                        continue
                    cancelled += 1
        return cancelled

    async def get_execution(self, execution_id: str) -> FlowExecution:
        return await self._get_or_raise(execution_id)

    async def list_executions(self, filter: ExecutionFilter = None) -> List[FlowExecution]:
        return await self.execution_repository.list(filter or ExecutionFilter())

    async def reconcile(self) -> int:
        """Load every scheduled execution into the wake queue"""
        return await self.scheduler.reload()

    async def _create_execution(
        self,
        flow: Flow,
        event: DomainEvent,
        now: datetime
    ) -> Optional[FlowExecution]:
        context = await self.entities.get_context(event.entity_id)
        context.setdefault("entity_id", event.entity_id)
        context["trigger_event"] = event.event_type.value
        if event.payload:
            context["trigger_payload"] = dict(event.payload)

        execution = FlowExecution(
            flow_id=flow.id,
            flow_version=flow.version,
            entity_id=event.entity_id,
            trigger_event=event.event_type.value,
            next_execution_at=now + timedelta(days=flow.trigger_delay_days),
            context=context,
            created_at=now,
            updated_at=now
        )

        stored, created = await self.execution_repository.create_if_absent(execution)
        if not created:
            logger.info(
                f"Flow {flow.id} already has execution {stored.id} for entity "
                f"{event.entity_id} ({stored.status.value}), skipping"
            )
            return None

        logger.info(f"Created execution {execution.id} of flow '{flow.name}' for {event.entity_id}")
        await self._publish(
            ExecutionEventType.EXECUTION_CREATED,
            execution,
            flow_version=flow.version,
            entity_id=event.entity_id
        )

        if execution.next_execution_at > now:
            await self.scheduler.enqueue(execution.id, execution.next_execution_at)
        return execution

    async def _run(self, execution: FlowExecution, now: datetime):
        flow = await self.flow_repository.get(execution.flow_id, execution.flow_version)
        if flow is None:
            await self._fail(
                execution,
                f"Flow {execution.flow_id} version {execution.flow_version} not found",
                now
            )
            return

        try:
            await self._walk(flow, execution, now)
        except ConfigurationError as e:
            await self._fail(execution, str(e), now)

    async def _walk(self, flow: Flow, execution: FlowExecution, now: datetime):
        lease_clock = _LeaseClock(now)
        next_key = await self._resume_point(flow, execution, now)
        max_steps = len(flow.steps) + 1
        steps_taken = 0

        while True:
            if not await self._keep_lock(execution, lease_clock):
                return
            if next_key is None:
                await self._complete(execution, now)
                return
            if steps_taken >= max_steps:
                raise ConfigurationError(f"more than {max_steps} steps in one advance")

            step = self.walker.get_step(flow, next_key)
            if step.type in STEP_CHANNELS:
                # Position is stored before the send: a worker taking over resumes after it
                execution.current_step_key = step.key
                await self.execution_repository.update(execution)

            outcome = await self.step_handlers[step.type](execution, step, now)
            steps_taken += 1

            if not await self._keep_lock(execution, lease_clock):
                return

            execution.current_step_key = step.key
            execution.record_step(step.key, step.type.value, now, **outcome.details)
            await self._publish(ExecutionEventType.STEP_ENTERED, execution, step.key, **outcome.details)

            if outcome.finished:
                await self._complete(execution, now)
                return

            if outcome.wait_until and outcome.wait_until > now:
                execution.next_execution_at = outcome.wait_until
                await self.execution_repository.update(execution)
                await self.scheduler.enqueue(execution.id, outcome.wait_until)
                await self._publish(
                    ExecutionEventType.EXECUTION_WAITING,
                    execution,
                    step.key,
                    wake_at=outcome.wait_until.isoformat()
                )
                return

            # Due immediately so a crash here is picked up by the next tick
            execution.next_execution_at = now
            await self.execution_repository.update(execution)

            if execution.id in self._stop_requested:
                logger.info(f"Execution {execution.id} yielding to an admin request")
                return

            next_key = self.walker.next_step(flow, step.key, outcome.edge_type)

    async def _keep_lock(self, execution: FlowExecution, lease_clock: _LeaseClock) -> bool:
        """Extend the lease; False when another worker took the execution over"""
        if await self.execution_repository.renew(
            execution.id, self.worker_id, lease_clock.now(), self.lock_lease
        ):
            return True
        logger.warning(
            f"Lost the lock on execution {execution.id}, stopping at step {execution.current_step_key}",
            extra={"execution_id": execution.id, "worker_id": self.worker_id}
        )
        return False

    async def _resume_point(
        self,
        flow: Flow,
        execution: FlowExecution,
        now: datetime
    ) -> Optional[str]:
        """Key of the step to enter next, or None when the flow has nowhere to go"""
        if execution.current_step_key is None:
            return self.walker.trigger_step(flow).key

        step = self.walker.get_step(flow, execution.current_step_key)
        if step.type == StepType.CONDITION:
            result = await self._evaluate_condition(execution, step, now)
            return self.walker.next_step(flow, step.key, self.walker.outcome_edge(result))
        return self.walker.next_step(flow, step.key)

    async def _handle_trigger(self, execution: FlowExecution, step: Step, now: datetime) -> StepOutcome:
        return StepOutcome()

    async def _handle_wait(self, execution: FlowExecution, step: Step, now: datetime) -> StepOutcome:
        wake_at = now + step.config.delay
        return StepOutcome(wait_until=wake_at, details={"wake_at": wake_at.isoformat()})

    async def _handle_send(self, execution: FlowExecution, step: Step, now: datetime) -> StepOutcome:
        channel = STEP_CHANNELS[step.type]
        body = self.renderer.render(step.config.message, execution.context, execution.id)
        subject = None
        if step.config.subject:
            subject = self.renderer.render(step.config.subject, execution.context, execution.id)

        result = await self.dispatcher.send(
            channel,
            resolve_recipient(channel, execution.context),
            body,
            subject=subject,
            metadata={"execution_id": execution.id, "step_key": step.key}
        )

        details = {"channel": channel.value, "dispatched": result.ok}
        if not result.ok:
            details["error"] = result.error
            await self._publish(
                ExecutionEventType.DISPATCH_FAILED,
                execution,
                step.key,
                channel=channel.value,
                error=result.error
            )
        return StepOutcome(details=details)

    async def _handle_condition(self, execution: FlowExecution, step: Step, now: datetime) -> StepOutcome:
        result = await self._evaluate_condition(execution, step, now)
        return StepOutcome(
            edge_type=self.walker.outcome_edge(result),
            details={"condition_type": step.config.condition_type, "result": result}
        )

    async def _handle_end(self, execution: FlowExecution, step: Step, now: datetime) -> StepOutcome:
        return StepOutcome(finished=True)

    async def _evaluate_condition(self, execution: FlowExecution, step: Step, now: datetime) -> bool:
        state = await self.entities.get_state(execution.entity_id, now)
        return self.evaluator.evaluate(
            step.config.condition_type,
            step.config.condition_value,
            state
        )

    async def _complete(self, execution: FlowExecution, now: datetime):
        execution.complete(now)
        await self.execution_repository.update(execution)
        await self._publish(ExecutionEventType.EXECUTION_COMPLETED, execution, execution.current_step_key)
        logger.info(f"Execution {execution.id} completed")

    async def _fail(self, execution: FlowExecution, reason: str, now: datetime):
        execution.fail(reason, now)
        await self.execution_repository.update(execution)
        await self.scheduler.cancel(execution.id)
        await self._publish(
            ExecutionEventType.EXECUTION_FAILED,
            execution,
            execution.current_step_key,
            reason=reason
        )
        logger.warning(f"Execution {execution.id} failed: {reason}")

    async def _fail_unexpected(self, execution: Optional[FlowExecution], error: Exception, now: datetime):
        if execution is None or execution.is_terminal_state():
            return
        try:
            await self._fail(execution, f"Unexpected error: {error}", now)
        except Exception as e:
            logger.error(f"Could not record failure of execution {execution.id}: {e}", exc_info=True)

    async def _get_or_raise(self, execution_id: str) -> FlowExecution:
        execution = await self.execution_repository.get(execution_id)
        if execution is None:
            raise ExecutionNotFoundError(execution_id)
        return execution

    @asynccontextmanager
    async def _admin_lock(self, execution_id: str, poll_interval: float = 0.05):
        """Claim the execution lock, waiting a bounded time for an in-flight advance"""
        await self._get_or_raise(execution_id)

        self._stop_requested.add(execution_id)
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.admin_lock_wait
        try:
            while not await self.execution_repository.claim(
                execution_id, self.worker_id, utcnow(), self.lock_lease
            ):
                if loop.time() >= deadline:
                    raise ConcurrencyConflict(execution_id)
                await asyncio.sleep(poll_interval)
        finally:
            self._stop_requested.discard(execution_id)

        try:
            yield utcnow()
        finally:
            await self.execution_repository.release(execution_id, self.worker_id)

    async def _publish(
        self,
        event_type: ExecutionEventType,
        execution: FlowExecution,
        step_key: str = None,
        **data
    ):
        if self.event_bus is None:
            return
        event = ExecutionEvent(
            execution_id=execution.id,
            event_type=event_type,
            step_key=step_key,
            data={"flow_id": execution.flow_id, "status": execution.status.value, **data}
        )
        await self.event_bus.publish(EXECUTION_EVENTS_TOPIC, event)
