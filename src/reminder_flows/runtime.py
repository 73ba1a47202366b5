"""
Wiring of the runtime components from settings
"""
import logging
from dataclasses import dataclass
from typing import Dict, Optional

from .config import Settings
from .core import ExecutionManager, FlowStore, WakeScheduler
from .integrations import (
    Channel, ChannelDispatcher, ChannelProvider, LoggingChannelProvider,
    EntityDirectory, InMemoryEntityDirectory, EventBus
)
from .storage import (
    DatabaseManager, FlowRepository, ExecutionRepository,
    SQLAlchemyFlowRepository, SQLAlchemyExecutionRepository,
    InMemoryFlowRepository, InMemoryExecutionRepository
)


logger = logging.getLogger(__name__)


@dataclass
class ReminderRuntime:
    """Everything a process needs to store flows and drive executions"""
    settings: Settings
    flow_repository: FlowRepository
    execution_repository: ExecutionRepository
    flow_store: FlowStore
    scheduler: WakeScheduler
    dispatcher: ChannelDispatcher
    entities: EntityDirectory
    event_bus: EventBus
    manager: ExecutionManager
    db_manager: Optional[DatabaseManager] = None

    async def start(self):
        """Reload pending wakes and start the tick loop when enabled"""
        await self.manager.reconcile()
        if self.settings.scheduler_enabled:
            await self.scheduler.start()

    async def close(self):
        await self.scheduler.stop()
        if self.db_manager:
            await self.db_manager.close()


async def build_runtime(
    settings: Settings = None,
    entities: EntityDirectory = None,
    providers: Dict[Channel, ChannelProvider] = None,
    in_memory: bool = False
) -> ReminderRuntime:
    settings = settings or Settings.from_env()

    db_manager = None
    if in_memory:
        flow_repository = InMemoryFlowRepository()
        execution_repository = InMemoryExecutionRepository()
    else:
        db_manager = DatabaseManager(settings.database_url)
        await db_manager.initialize()
        flow_repository = SQLAlchemyFlowRepository(db_manager)
        execution_repository = SQLAlchemyExecutionRepository(db_manager)

    if providers is None:
        logging_provider = LoggingChannelProvider()
        providers = {channel: logging_provider for channel in Channel}

    dispatcher = ChannelDispatcher(timeout=settings.send_timeout, providers=providers)
    entities = entities or InMemoryEntityDirectory()
    event_bus = EventBus()

    scheduler = WakeScheduler(
        execution_repository,
        interval=settings.tick_interval,
        concurrency=settings.tick_concurrency,
        batch_size=settings.tick_batch_size
    )
    manager = ExecutionManager(
        flow_repository=flow_repository,
        execution_repository=execution_repository,
        scheduler=scheduler,
        dispatcher=dispatcher,
        entities=entities,
        event_bus=event_bus,
        worker_id=settings.worker_id,
        lock_lease=settings.lock_lease,
        admin_lock_wait=settings.admin_lock_wait
    )

    logger.info(f"Runtime built for worker {settings.worker_id}")
    return ReminderRuntime(
        settings=settings,
        flow_repository=flow_repository,
        execution_repository=execution_repository,
        flow_store=FlowStore(flow_repository),
        scheduler=scheduler,
        dispatcher=dispatcher,
        entities=entities,
        event_bus=event_bus,
        manager=manager,
        db_manager=db_manager
    )
