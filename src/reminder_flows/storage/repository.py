"""
Repository interfaces and in-memory implementations
"""
import copy
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple

from ..clock import utcnow
from ..models.flow import Flow, TriggerEvent
from ..models.execution import (
    FlowExecution, ExecutionStatus, ExecutionFilter
)


class FlowRepository(ABC):
    """Durable flow definitions; every save produces a new version"""

    @abstractmethod
    async def save(self, flow: Flow) -> Flow:
        """Insert or replace a flow, bumping its version"""
        pass

    @abstractmethod
    async def get(self, flow_id: str, version: int = None) -> Optional[Flow]:
        """Latest flow, or the snapshot of a given version"""
        pass

    @abstractmethod
    async def list(
        self,
        offset: int = 0,
        limit: int = 100,
        is_active: bool = None
    ) -> List[Flow]:
        pass

    @abstractmethod
    async def list_active_by_trigger(self, trigger_event: TriggerEvent) -> List[Flow]:
        pass

    @abstractmethod
    async def set_active(self, flow_id: str, is_active: bool) -> Optional[Flow]:
        """Toggle activation without creating a new version"""
        pass

    @abstractmethod
    async def delete(self, flow_id: str) -> bool:
        pass


class ExecutionRepository(ABC):
    """Durable executions plus the per-execution lock"""

    @abstractmethod
    async def create_if_absent(self, execution: FlowExecution) -> Tuple[FlowExecution, bool]:
        """
        Insert unless a blocking execution exists for the same (flow, entity)

        Returns the stored execution and whether it was created.
        """
        pass

    @abstractmethod
    async def get(self, execution_id: str) -> Optional[FlowExecution]:
        pass

    @abstractmethod
    async def update(self, execution: FlowExecution) -> bool:
        """Persist status, position, due time, history and context in one write"""
        pass

    @abstractmethod
    async def claim(
        self,
        execution_id: str,
        owner: str,
        now: datetime,
        lease: timedelta
    ) -> bool:
        """Take the lock if free or expired"""
        pass

    @abstractmethod
    async def renew(
        self,
        execution_id: str,
        owner: str,
        now: datetime,
        lease: timedelta
    ) -> bool:
        """Extend the lock to ``now + lease``; False once another owner has taken it"""
        pass

    @abstractmethod
    async def release(self, execution_id: str, owner: str) -> None:
        """Drop the lock if still held by ``owner``"""
        pass

    @abstractmethod
    async def list(self, filter: ExecutionFilter) -> List[FlowExecution]:
        pass

    @abstractmethod
    async def list_due(self, now: datetime, limit: int = 100) -> List[FlowExecution]:
        """Active, unlocked executions whose due time has passed"""
        pass

    @abstractmethod
    async def list_scheduled(self) -> List[FlowExecution]:
        """Active executions with a due time"""
        pass

    @abstractmethod
    async def count_by_status(self, flow_id: str = None) -> Dict[str, int]:
        pass


# In-memory implementations (tests, local runs)
class InMemoryFlowRepository(FlowRepository):
    """Keeps every version of every flow in dictionaries"""

    def __init__(self):
        self.flows: Dict[str, Flow] = {}
        self.versions: Dict[Tuple[str, int], Flow] = {}

    async def save(self, flow: Flow) -> Flow:
        now = utcnow()
        existing = self.flows.get(flow.id)
        if existing:
            flow.version = existing.version + 1
            flow.created_at = existing.created_at
        else:
            flow.version = 1
            flow.created_at = now
        flow.updated_at = now

        self.flows[flow.id] = copy.deepcopy(flow)
        self.versions[(flow.id, flow.version)] = copy.deepcopy(flow)
        return flow

    async def get(self, flow_id: str, version: int = None) -> Optional[Flow]:
        current = self.flows.get(flow_id)
        if current is None:
            return None
        if version is None:
            return copy.deepcopy(current)

        snapshot = self.versions.get((flow_id, version))
        if snapshot is None:
            return None
        snapshot = copy.deepcopy(snapshot)
        snapshot.is_active = current.is_active
        return snapshot

    async def list(
        self,
        offset: int = 0,
        limit: int = 100,
        is_active: bool = None
    ) -> List[Flow]:
        flows = [
            f for f in self.flows.values()
            if is_active is None or f.is_active == is_active
        ]
        flows.sort(key=lambda f: f.created_at, reverse=True)
        return [copy.deepcopy(f) for f in flows[offset:offset + limit]]

    async def list_active_by_trigger(self, trigger_event: TriggerEvent) -> List[Flow]:
        return [
            copy.deepcopy(f) for f in self.flows.values()
            if f.is_active and f.trigger_event == trigger_event
        ]

    async def set_active(self, flow_id: str, is_active: bool) -> Optional[Flow]:
        flow = self.flows.get(flow_id)
        if flow is None:
            return None
        flow.is_active = is_active
        flow.updated_at = utcnow()
        return copy.deepcopy(flow)

    async def delete(self, flow_id: str) -> bool:
        if flow_id not in self.flows:
            return False
        del self.flows[flow_id]
        for key in [k for k in self.versions if k[0] == flow_id]:
            del self.versions[key]
        return True


class InMemoryExecutionRepository(ExecutionRepository):
    """Stores copies so callers never share mutable state, like a database would"""

    def __init__(self):
        self.executions: Dict[str, FlowExecution] = {}
        self.locks: Dict[str, Tuple[str, datetime]] = {}

    async def create_if_absent(self, execution: FlowExecution) -> Tuple[FlowExecution, bool]:
        key = execution.dedupe_key
        if key is not None:
            for existing in self.executions.values():
                if existing.dedupe_key == key:
                    return copy.deepcopy(existing), False

        self.executions[execution.id] = copy.deepcopy(execution)
        return execution, True

    async def get(self, execution_id: str) -> Optional[FlowExecution]:
        execution = self.executions.get(execution_id)
        return copy.deepcopy(execution) if execution else None

    async def update(self, execution: FlowExecution) -> bool:
        if execution.id not in self.executions:
            return False
        execution.updated_at = utcnow()
        self.executions[execution.id] = copy.deepcopy(execution)
        return True

    async def claim(
        self,
        execution_id: str,
        owner: str,
        now: datetime,
        lease: timedelta
    ) -> bool:
        if execution_id not in self.executions:
            return False
        held = self.locks.get(execution_id)
        if held and held[1] >= now:
            return False
        self.locks[execution_id] = (owner, now + lease)
        return True

    async def renew(
        self,
        execution_id: str,
        owner: str,
        now: datetime,
        lease: timedelta
    ) -> bool:
        held = self.locks.get(execution_id)
        if not held or held[0] != owner:
            return False
        self.locks[execution_id] = (owner, now + lease)
        return True

    async def release(self, execution_id: str, owner: str) -> None:
        held = self.locks.get(execution_id)
        if held and held[0] == owner:
            del self.locks[execution_id]

    async def list(self, filter: ExecutionFilter) -> List[FlowExecution]:
        executions = [e for e in self.executions.values() if filter.matches(e)]
        executions.sort(key=lambda e: e.created_at, reverse=True)
        page = executions[filter.offset:filter.offset + filter.limit]
        return [copy.deepcopy(e) for e in page]

    async def list_due(self, now: datetime, limit: int = 100) -> List[FlowExecution]:
        due = [
            e for e in self.executions.values()
            if e.is_due(now) and not self._is_locked(e.id, now)
        ]
        due.sort(key=lambda e: e.next_execution_at)
        return [copy.deepcopy(e) for e in due[:limit]]

    async def list_scheduled(self) -> List[FlowExecution]:
        return [
            copy.deepcopy(e) for e in self.executions.values()
            if e.status == ExecutionStatus.ACTIVE and e.next_execution_at is not None
        ]

    async def count_by_status(self, flow_id: str = None) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for execution in self.executions.values():
            if flow_id and execution.flow_id != flow_id:
                continue
            counts[execution.status.value] = counts.get(execution.status.value, 0) + 1
        return counts

    def _is_locked(self, execution_id: str, now: datetime) -> bool:
        held = self.locks.get(execution_id)
        return bool(held and held[1] >= now)
