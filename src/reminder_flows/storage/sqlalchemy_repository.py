"""
SQLAlchemy repository implementations
"""
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple

from sqlalchemy import select, update, delete, and_, or_, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from ..clock import utcnow
from ..core.parser import FlowParser, flow_to_dict, step_config_to_dict
from ..models.flow import Flow, TriggerEvent
from ..models.execution import (
    FlowExecution, ExecutionStatus, ExecutionFilter
)
from .repository import FlowRepository, ExecutionRepository
from .sqlalchemy_models import (
    FlowRecord,
    FlowVersionRecord,
    FlowStepRecord,
    FlowConnectionRecord,
    FlowExecutionRecord,
    Base
)


logger = logging.getLogger(__name__)


class DatabaseManager:
    """Owns the async engine and hands out transactional sessions"""

    def __init__(self, database_url: str, echo: bool = False):
        self.database_url = database_url
        self.echo = echo
        self.engine: Optional[AsyncEngine] = None
        self.async_session_maker: Optional[async_sessionmaker] = None

    async def initialize(self, create_tables: bool = True):
        self.engine = create_async_engine(self.database_url, **self._engine_options())
        self.async_session_maker = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False
        )

        if create_tables:
            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)

        logger.info(f"Database initialized ({self.engine.url.get_backend_name()})")

    async def close(self):
        if self.engine:
            await self.engine.dispose()

    @asynccontextmanager
    async def get_session(self):
        """Session that commits on success and rolls back on error"""
        async with self.async_session_maker() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    def _engine_options(self) -> Dict:
        options = {"echo": self.echo}
        if self.database_url.startswith("sqlite"):
            if ":memory:" in self.database_url:
                options["poolclass"] = StaticPool
                options["connect_args"] = {"check_same_thread": False}
            return options

        options.update(pool_size=20, max_overflow=10, pool_pre_ping=True)
        return options


class SQLAlchemyFlowRepository(FlowRepository):
    """Flows with an append-only version table"""

    def __init__(self, db_manager: DatabaseManager):
        self.db = db_manager
        self.parser = FlowParser()

    async def save(self, flow: Flow) -> Flow:
        now = utcnow()
        async with self.db.get_session() as session:
            record = await session.get(FlowRecord, flow.id)

            if record is None:
                flow.version = 1
                flow.created_at = now
                record = FlowRecord(id=flow.id, created_at=now)
                session.add(record)
            else:
                flow.version = record.version + 1
                flow.created_at = record.created_at
                await session.execute(delete(FlowStepRecord).where(FlowStepRecord.flow_id == flow.id))
                await session.execute(
                    delete(FlowConnectionRecord).where(FlowConnectionRecord.flow_id == flow.id)
                )
            flow.updated_at = now

            record.name = flow.name
            record.description = flow.description
            record.trigger_event = flow.trigger_event.value
            record.trigger_delay_days = flow.trigger_delay_days
            record.is_active = flow.is_active
            record.apply_to_all = flow.apply_to_all
            record.target_entity_ids = sorted(flow.target_entity_ids)
            record.version = flow.version
            record.updated_at = now
            await session.flush()

            session.add(FlowVersionRecord(
                flow_id=flow.id,
                version=flow.version,
                definition=flow_to_dict(flow),
                created_at=now
            ))
            for step in flow.steps.values():
                session.add(FlowStepRecord(
                    flow_id=flow.id,
                    step_key=step.key,
                    step_type=step.type.value,
                    label=step.label,
                    description=step.description,
                    config=step_config_to_dict(step)
                ))
            for connection in flow.connections:
                session.add(FlowConnectionRecord(
                    flow_id=flow.id,
                    edge_key=connection.key,
                    source_step_key=connection.source,
                    target_step_key=connection.target,
                    edge_type=connection.type.value,
                    label=connection.label
                ))

        logger.info(f"Saved flow '{flow.name}' ({flow.id}) version {flow.version}")
        return flow

    async def get(self, flow_id: str, version: int = None) -> Optional[Flow]:
        async with self.db.get_session() as session:
            record = await session.get(FlowRecord, flow_id)
            if record is None:
                return None
            return await self._load(session, record, version)

    async def list(
        self,
        offset: int = 0,
        limit: int = 100,
        is_active: bool = None
    ) -> List[Flow]:
        async with self.db.get_session() as session:
            query = select(FlowRecord)
            if is_active is not None:
                query = query.where(FlowRecord.is_active == is_active)
            query = query.order_by(FlowRecord.created_at.desc()).offset(offset).limit(limit)

            result = await session.execute(query)
            return [await self._load(session, r) for r in result.scalars().all()]

    async def list_active_by_trigger(self, trigger_event: TriggerEvent) -> List[Flow]:
        async with self.db.get_session() as session:
            result = await session.execute(
                select(FlowRecord).where(
                    and_(
                        FlowRecord.trigger_event == trigger_event.value,
                        FlowRecord.is_active.is_(True)
                    )
                )
            )
            return [await self._load(session, r) for r in result.scalars().all()]

    async def set_active(self, flow_id: str, is_active: bool) -> Optional[Flow]:
        async with self.db.get_session() as session:
            result = await session.execute(
                update(FlowRecord)
                .where(FlowRecord.id == flow_id)
                .values(is_active=is_active, updated_at=utcnow())
            )
            if result.rowcount == 0:
                return None
        return await self.get(flow_id)

    async def delete(self, flow_id: str) -> bool:
        async with self.db.get_session() as session:
            for table in (FlowVersionRecord, FlowStepRecord, FlowConnectionRecord):
                await session.execute(delete(table).where(table.flow_id == flow_id))
            result = await session.execute(delete(FlowRecord).where(FlowRecord.id == flow_id))
            return result.rowcount > 0

    async def _load(
        self,
        session: AsyncSession,
        record: FlowRecord,
        version: int = None
    ) -> Optional[Flow]:
        result = await session.execute(
            select(FlowVersionRecord.definition).where(
                and_(
                    FlowVersionRecord.flow_id == record.id,
                    FlowVersionRecord.version == (version or record.version)
                )
            )
        )
        definition = result.scalar_one_or_none()
        if definition is None:
            return None

        # Stored snapshots were validated when saved
        flow = self.parser.parse_dict(definition, validate=False)
        flow.is_active = record.is_active
        flow.created_at = record.created_at
        flow.updated_at = record.updated_at
        return flow


class SQLAlchemyExecutionRepository(ExecutionRepository):
    """Executions with an atomic lease-based lock"""

    def __init__(self, db_manager: DatabaseManager):
        self.db = db_manager

    async def create_if_absent(self, execution: FlowExecution) -> Tuple[FlowExecution, bool]:
        key = execution.dedupe_key
        if key is not None:
            existing = await self._get_by_dedupe_key(key)
            if existing:
                return existing, False

        try:
            async with self.db.get_session() as session:
                session.add(self._execution_to_db(execution))
        except IntegrityError:
            # Lost the insert race against another worker
            existing = await self._get_by_dedupe_key(key) if key else None
            if existing is None:
                raise
            return existing, False

        return execution, True

    async def get(self, execution_id: str) -> Optional[FlowExecution]:
        async with self.db.get_session() as session:
            record = await session.get(FlowExecutionRecord, execution_id)
            return self._db_to_execution(record) if record else None

    async def update(self, execution: FlowExecution) -> bool:
        execution.updated_at = utcnow()
        async with self.db.get_session() as session:
            result = await session.execute(
                update(FlowExecutionRecord)
                .where(FlowExecutionRecord.id == execution.id)
                .values(
                    status=execution.status.value,
                    current_step_key=execution.current_step_key,
                    next_execution_at=execution.next_execution_at,
                    context=execution.context,
                    history=execution.history,
                    failure_reason=execution.failure_reason,
                    dedupe_key=execution.dedupe_key,
                    updated_at=execution.updated_at,
                    completed_at=execution.completed_at
                )
            )
            return result.rowcount > 0

    async def claim(
        self,
        execution_id: str,
        owner: str,
        now: datetime,
        lease: timedelta
    ) -> bool:
        async with self.db.get_session() as session:
            result = await session.execute(
                update(FlowExecutionRecord)
                .where(
                    and_(
                        FlowExecutionRecord.id == execution_id,
                        or_(
                            FlowExecutionRecord.locked_until.is_(None),
                            FlowExecutionRecord.locked_until < now
                        )
                    )
                )
                .values(locked_by=owner, locked_until=now + lease)
            )
            return result.rowcount == 1

    async def renew(
        self,
        execution_id: str,
        owner: str,
        now: datetime,
        lease: timedelta
    ) -> bool:
        async with self.db.get_session() as session:
            result = await session.execute(
                update(FlowExecutionRecord)
                .where(
                    and_(
                        FlowExecutionRecord.id == execution_id,
                        FlowExecutionRecord.locked_by == owner
                    )
                )
                .values(locked_until=now + lease)
            )
            return result.rowcount == 1

    async def release(self, execution_id: str, owner: str) -> None:
        async with self.db.get_session() as session:
            await session.execute(
                update(FlowExecutionRecord)
                .where(
                    and_(
                        FlowExecutionRecord.id == execution_id,
                        FlowExecutionRecord.locked_by == owner
                    )
                )
                .values(locked_by=None, locked_until=None)
            )

    async def list(self, filter: ExecutionFilter) -> List[FlowExecution]:
        async with self.db.get_session() as session:
            query = select(FlowExecutionRecord)
            if filter.flow_id:
                query = query.where(FlowExecutionRecord.flow_id == filter.flow_id)
            if filter.entity_id:
                query = query.where(FlowExecutionRecord.entity_id == filter.entity_id)
            if filter.status:
                query = query.where(FlowExecutionRecord.status == filter.status.value)

            query = query.order_by(FlowExecutionRecord.created_at.desc())
            query = query.offset(filter.offset).limit(filter.limit)

            result = await session.execute(query)
            return [self._db_to_execution(r) for r in result.scalars().all()]

    async def list_due(self, now: datetime, limit: int = 100) -> List[FlowExecution]:
        async with self.db.get_session() as session:
            result = await session.execute(
                select(FlowExecutionRecord)
                .where(
                    and_(
                        FlowExecutionRecord.status == ExecutionStatus.ACTIVE.value,
                        FlowExecutionRecord.next_execution_at <= now,
                        or_(
                            FlowExecutionRecord.locked_until.is_(None),
                            FlowExecutionRecord.locked_until < now
                        )
                    )
                )
                .order_by(FlowExecutionRecord.next_execution_at)
                .limit(limit)
            )
            return [self._db_to_execution(r) for r in result.scalars().all()]

    async def list_scheduled(self) -> List[FlowExecution]:
        async with self.db.get_session() as session:
            result = await session.execute(
                select(FlowExecutionRecord).where(
                    and_(
                        FlowExecutionRecord.status == ExecutionStatus.ACTIVE.value,
                        FlowExecutionRecord.next_execution_at.is_not(None)
                    )
                )
            )
            return [self._db_to_execution(r) for r in result.scalars().all()]

    async def count_by_status(self, flow_id: str = None) -> Dict[str, int]:
        async with self.db.get_session() as session:
            query = select(FlowExecutionRecord.status, func.count()).group_by(
                FlowExecutionRecord.status
            )
            if flow_id:
                query = query.where(FlowExecutionRecord.flow_id == flow_id)
            result = await session.execute(query)
            return {status: count for status, count in result.all()}

    async def _get_by_dedupe_key(self, dedupe_key: str) -> Optional[FlowExecution]:
        async with self.db.get_session() as session:
            result = await session.execute(
                select(FlowExecutionRecord).where(FlowExecutionRecord.dedupe_key == dedupe_key)
            )
            record = result.scalar_one_or_none()
            return self._db_to_execution(record) if record else None

    def _execution_to_db(self, execution: FlowExecution) -> FlowExecutionRecord:
        return FlowExecutionRecord(
            id=execution.id,
            flow_id=execution.flow_id,
            flow_version=execution.flow_version,
            entity_id=execution.entity_id,
            trigger_event=execution.trigger_event,
            status=execution.status.value,
            current_step_key=execution.current_step_key,
            next_execution_at=execution.next_execution_at,
            context=execution.context,
            history=execution.history,
            failure_reason=execution.failure_reason,
            dedupe_key=execution.dedupe_key,
            created_at=execution.created_at,
            updated_at=execution.updated_at,
            completed_at=execution.completed_at
        )

    def _db_to_execution(self, record: FlowExecutionRecord) -> FlowExecution:
        return FlowExecution(
            id=record.id,
            flow_id=record.flow_id,
            flow_version=record.flow_version,
            entity_id=record.entity_id,
            trigger_event=record.trigger_event,
            status=ExecutionStatus(record.status),
            current_step_key=record.current_step_key,
            next_execution_at=record.next_execution_at,
            context=dict(record.context or {}),
            history=list(record.history or []),
            failure_reason=record.failure_reason,
            created_at=record.created_at,
            updated_at=record.updated_at,
            completed_at=record.completed_at
        )
